"""Knowledge base data models: documents, chunks and retrieval results.

All models are frozen Pydantic v2 models.  A document is owned either by
the shared pool (``scope == "shared"``) or by exactly one avatar (``scope``
is the avatar id); chunks inherit their document's ownership.

Flow through the models::

    bytes --extract--> str --chunk--> TextSegment* --embed--> Chunk*
          \\______________________ Document ______________________/

    query --embed--> vector --rank(Chunk*)--> ScoredChunk* --> RetrievalResult
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

SHARED_SCOPE = "shared"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_shared_scope(scope: str | None) -> bool:
    """Return ``True`` for the shared pool (``None`` or ``"shared"``)."""
    return scope is None or scope == SHARED_SCOPE


# ---------------------------------------------------------------------------
# Document -- one uploaded file.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """Metadata for one ingested file.

    The raw bytes are not retained; only the extracted, chunked and embedded
    text lives on in the knowledge store.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Unique identifier assigned at ingestion.")
    scope: str = Field(description='"shared" or the owning avatar id.')
    filename: str = Field(description="Original upload filename.")
    mime_type: str = Field(description="Normalized mime type of the upload.")
    title: str = Field(description="Display title; defaults to the filename.")
    created_at: datetime = Field(default_factory=_utcnow)
    chunk_count: int = Field(default=0, ge=0)
    size_bytes: int = Field(default=0, ge=0)
    summary: str = Field(default="", description="Short preview of the document text.")
    embedding_model: str = Field(default="", description="Provider that produced the vectors.")

    @property
    def is_shared(self) -> bool:
        return self.scope == SHARED_SCOPE


# ---------------------------------------------------------------------------
# TextSegment -- chunker output, before embedding.
# ---------------------------------------------------------------------------
class TextSegment(BaseModel):
    """A window of document text produced by the chunker.

    ``start``/``end`` are offsets into the normalized text.  ``overlap`` is
    the number of characters this segment shares with its predecessor.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    overlap: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Chunk -- the unit that is embedded, stored and retrieved.
# ---------------------------------------------------------------------------
class Chunk(BaseModel):
    """A contiguous text span of a document together with its embedding.

    Chunk indices are ``0..n-1`` with no gaps for a given document, and
    every chunk of a document carries a vector of the same length.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int = Field(ge=0)
    text: str
    embedding: list[float] = Field(default_factory=list)
    token_count: int = Field(default=0, ge=0, description="Approximate token count (chars / 4).")
    start_offset: int = Field(default=0, ge=0)
    end_offset: int = Field(default=0, ge=0)
    overlap_chars: int = Field(
        default=0,
        ge=0,
        description="Characters shared with the previous chunk of the same document.",
    )
    total_chunks: int = Field(default=0, ge=0)

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id}_chunk_{self.chunk_index}"


# ---------------------------------------------------------------------------
# Retrieval output
# ---------------------------------------------------------------------------
class ScoredChunk(BaseModel):
    """A chunk paired with its cosine similarity to the query."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float
    document_id: str
    document_title: str = ""


class RetrievalResult(BaseModel):
    """Ranked chunks for one query, ready to be handed to the chat layer."""

    model_config = ConfigDict(frozen=True)

    query: str
    scope: str | None = None
    top_k: int = Field(default=5, ge=1)
    results: list[ScoredChunk] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.results

    @property
    def sources(self) -> list[str]:
        """Unique document titles in rank order."""
        seen: list[str] = []
        for item in self.results:
            title = item.document_title or item.document_id
            if title not in seen:
                seen.append(title)
        return seen

    def to_context(self) -> str:
        """Render the results as a numbered context block.

        Each entry is labelled with its source title and score so the chat
        layer can cite where a passage came from.  Returns an empty string
        when nothing was retrieved.
        """
        if not self.results:
            return ""
        parts: list[str] = []
        for rank, item in enumerate(self.results, start=1):
            title = item.document_title or item.document_id
            parts.append(
                f"[{rank}] {title} (chunk {item.chunk.chunk_index}, score {item.score:.3f})\n"
                f"{item.chunk.text}"
            )
        return "\n\n".join(parts)
