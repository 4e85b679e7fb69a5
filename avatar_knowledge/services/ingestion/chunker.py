"""Text chunking with overlapping windows and boundary-seeking cuts.

Splits normalized document text into :class:`~avatar_knowledge.models.knowledge.TextSegment`
windows of at most ``target_chunk_size`` characters (~500 tokens at four
characters per token), each starting ``overlap_size`` characters before
the previous window's cut so a sentence straddling a boundary is whole in
at least one chunk.

Cut selection, for a window starting at ``start``::

    start      start+overlap          start+target/2           start+target
      |--------------|------------------------|------------------------|
                     ^ cuts must land after here (progress guarantee)
                                              ^ paragraph / sentence cuts
                                                must land after here

1. the last paragraph break (blank line) in the right half of the window
2. else the last sentence end (``.``, ``!``, ``?`` followed by whitespace)
   in the right half; abbreviations such as "Dr." are not sentence ends
3. else the last whitespace after ``start + overlap``
4. else a hard cut at ``start + target``

Because every cut lies strictly after ``start + overlap``, the next window
starts strictly after the current one and chunking always terminates.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

import structlog

from avatar_knowledge.models.knowledge import TextSegment

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TARGET_CHUNK_SIZE = 2000
DEFAULT_OVERLAP_SIZE = 200

# Common abbreviations that should NOT end a sentence.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Ave",
        "Vol",
        "No",
        "Fig",
        "vs",
        "etc",
        "approx",
        "dept",
        "e.g",
        "i.e",
        "inc",
        "ltd",
        "co",
        "mg",
        "ml",
    }
)

_ABBREVIATION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(a) for a in sorted(_ABBREVIATIONS, key=len, reverse=True)) + r")\."
)
# Sentence-final punctuation, optional closing quotes/brackets, then whitespace.
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*(?=\s)")
_PARAGRAPH_BREAK = "\n\n"


class ChunkSequence:
    """Lazy, finite, restartable sequence of text segments.

    Iterating twice re-runs the chunker from the beginning and yields
    identical segments; nothing is computed until iteration starts.
    """

    def __init__(self, chunker: TextChunker, text: str) -> None:
        self._chunker = chunker
        self._text = text

    def __iter__(self) -> Iterator[TextSegment]:
        return self._chunker._iter_segments(self._text)


class TextChunker:
    """Splits text into overlapping, boundary-aligned windows.

    Parameters
    ----------
    target_chunk_size:
        Maximum characters per chunk (default 2000, roughly 500 tokens).
    overlap_size:
        Characters the next chunk re-reads from the end of the previous
        one (default 200, roughly 50 tokens).  Must be smaller than
        *target_chunk_size*.
    """

    def __init__(
        self,
        target_chunk_size: int = DEFAULT_TARGET_CHUNK_SIZE,
        overlap_size: int = DEFAULT_OVERLAP_SIZE,
    ) -> None:
        if target_chunk_size <= 0:
            raise ValueError(f"target_chunk_size must be positive, got {target_chunk_size}")
        if overlap_size < 0 or overlap_size >= target_chunk_size:
            raise ValueError(
                "overlap_size must be >= 0 and smaller than target_chunk_size "
                f"(got overlap_size={overlap_size}, target_chunk_size={target_chunk_size})"
            )
        self._target = target_chunk_size
        self._overlap = overlap_size

    @property
    def target_chunk_size(self) -> int:
        return self._target

    @property
    def overlap_size(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> ChunkSequence:
        """Return the lazy segment sequence for *text*.

        Empty or whitespace-only text yields zero segments.  The same text
        and configuration always yield the same segments.
        """
        return ChunkSequence(self, text or "")

    # ------------------------------------------------------------------
    # Segment generation
    # ------------------------------------------------------------------

    def _iter_segments(self, text: str) -> Iterator[TextSegment]:
        if not text.strip():
            return

        masked = _mask_abbreviations(text)
        length = len(text)
        start = 0
        index = 0
        prev_end = 0

        while start < length:
            if length - start <= self._target:
                cut = length
            else:
                cut = self._find_cut(text, masked, start)

            seg_start, seg_end = _trim_span(text, start, cut)
            if seg_end > seg_start:
                yield TextSegment(
                    index=index,
                    text=text[seg_start:seg_end],
                    start=seg_start,
                    end=seg_end,
                    overlap=max(0, prev_end - seg_start) if index else 0,
                )
                index += 1
                prev_end = seg_end

            if cut >= length or not text[cut:].strip():
                break
            start = cut - self._overlap

        logger.debug(
            "chunking_complete",
            num_chunks=index,
            chars=length,
            target=self._target,
            overlap=self._overlap,
        )

    def _find_cut(self, text: str, masked: str, start: int) -> int:
        """Return the end offset of the window beginning at *start*."""
        hi = start + self._target
        lo = start + self._overlap + 1
        floor = max(lo, start + self._target // 2)

        # 1. Paragraph break (cut before the blank line).
        para = text.rfind(_PARAGRAPH_BREAK, floor, hi + len(_PARAGRAPH_BREAK))
        if para != -1 and floor <= para <= hi:
            return para

        # 2. Sentence end (cut after the punctuation).
        sentence_cut = -1
        for match in _SENTENCE_END_RE.finditer(masked, floor - 1, hi + 1):
            if floor <= match.end() <= hi:
                sentence_cut = match.end()
        if sentence_cut != -1:
            return sentence_cut

        # 3. Word boundary.
        for cut in range(hi, lo - 1, -1):
            if text[cut].isspace():
                return cut

        # 4. Hard cut.
        return hi


def _mask_abbreviations(text: str) -> str:
    """Replace the period of known abbreviations with ``\\x00``.

    Same length as *text*, so offsets found in the mask apply to the original.
    """
    return _ABBREVIATION_RE.sub(lambda m: m.group()[:-1] + "\x00", text)


def _trim_span(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end
