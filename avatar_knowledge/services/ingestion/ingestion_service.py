"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **validate -> extract -> chunk -> embed -> store**.

:meth:`IngestionService.ingest` creates a ``pending`` job, hands the upload
to the worker pool and returns the job id straight away.  A worker then
runs :meth:`IngestionService.process`:

    1. validate     -- mime type and size ceiling           (UnsupportedType, OversizeInput)
    2. extract      -- TextExtractor in a worker thread     (ExtractionFailed)
    3. chunk        -- normalize + TextChunker              (NoContent when zero chunks)
    4. embed        -- IEmbeddingProvider, one logical call (EmbeddingFailed, DimensionMismatch)
    5. store        -- put_document + put_chunks            (StorageFailed)
    6. complete

Every failure ends the job in ``failed`` with the error's ``kind`` and a
fixed, caller-safe message; exception text only goes to the log.  A job
is never left in ``processing``: even cancellation records a failure
before the cancellation propagates.

All collaborators are injected via the constructor, so tests pass fakes
and deployments choose providers in ``avatar_knowledge.main``.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from avatar_knowledge.models.knowledge import SHARED_SCOPE, Chunk, Document
from avatar_knowledge.services.extraction.text_extractor import TextExtractor, normalize_mime_type
from avatar_knowledge.services.ingestion.chunker import TextChunker
from avatar_knowledge.services.job_tracker import INTERRUPTED_DETAIL, INTERRUPTED_KIND
from avatar_knowledge.utils.errors import (
    DimensionMismatchError,
    EmbeddingFailedError,
    ExtractionFailedError,
    InvalidTransitionError,
    KnowledgeBaseError,
    NoContentError,
    NotFoundError,
    OversizeInputError,
    StorageError,
    UnsupportedTypeError,
)
from avatar_knowledge.utils.text_normalizer import estimate_tokens, generate_summary, normalize_text

if TYPE_CHECKING:
    from avatar_knowledge.interfaces.embedding_provider import IEmbeddingProvider
    from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore
    from avatar_knowledge.pipeline.worker_pool import IngestionWorkerPool
    from avatar_knowledge.services.job_tracker import JobTracker

logger = structlog.get_logger(logger_name=__name__)

INTERNAL_ERROR_KIND = "InternalError"

# Caller-visible detail per error kind.  Never derived from exception text.
_SAFE_MESSAGES: dict[str, str] = {
    UnsupportedTypeError.kind: "Unsupported file type. Supported types: PDF, TXT, DOCX",
    OversizeInputError.kind: "File exceeds the maximum upload size",
    ExtractionFailedError.kind: "Could not extract text from the document",
    NoContentError.kind: "Document contains no extractable text",
    EmbeddingFailedError.kind: "Embedding service failed; please try again later",
    DimensionMismatchError.kind: "Embedding dimensions do not match the knowledge base",
    StorageError.kind: "Could not save the document",
    INTERNAL_ERROR_KIND: "Document processing failed",
}

_DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Attempts at persisting a job's terminal failure before giving up on it.
_FAILURE_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class IngestionTask:
    """One queued upload.  Holds the raw bytes until a worker processes it."""

    job_id: str
    data: bytes = field(repr=False)
    mime_type: str
    filename: str
    scope: str
    title: str | None = None


class IngestionService:
    """Accepts uploads and turns them into stored, embedded chunks.

    Parameters
    ----------
    job_tracker:
        Creates jobs and records every state transition.
    knowledge_store:
        Destination for documents and chunks.
    embedding_provider:
        Produces chunk vectors.
    chunker:
        Splits normalized text into overlapping windows.
    extractor:
        Turns upload bytes into text.
    max_upload_bytes:
        Size ceiling enforced before extraction (default 10 MiB).
    embedding_max_attempts:
        Total attempts for the embedding step; ``1`` disables retry.
    retry_backoff_seconds:
        Linear backoff base between embedding attempts.
    failure_write_backoff_seconds:
        Linear backoff base between attempts at recording a job failure.
    """

    def __init__(
        self,
        job_tracker: JobTracker,
        knowledge_store: IKnowledgeStore,
        embedding_provider: IEmbeddingProvider,
        chunker: TextChunker | None = None,
        extractor: TextExtractor | None = None,
        max_upload_bytes: int = _DEFAULT_MAX_UPLOAD_BYTES,
        embedding_max_attempts: int = 1,
        retry_backoff_seconds: float = 2.0,
        failure_write_backoff_seconds: float = 0.5,
    ) -> None:
        self._tracker = job_tracker
        self._store = knowledge_store
        self._embedder = embedding_provider
        self._chunker = chunker or TextChunker()
        self._extractor = extractor or TextExtractor()
        self._max_upload_bytes = max_upload_bytes
        self._max_attempts = max(1, embedding_max_attempts)
        self._retry_backoff = retry_backoff_seconds
        self._failure_write_backoff = failure_write_backoff_seconds
        self._pool: IngestionWorkerPool[IngestionTask] | None = None

    def bind_pool(self, pool: IngestionWorkerPool[IngestionTask]) -> None:
        """Attach the worker pool that :meth:`ingest` submits to."""
        self._pool = pool

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate_upload(self, data: bytes, mime_type: str) -> str:
        """Check type and size without starting a job.

        Returns the normalized mime type.

        Raises
        ------
        UnsupportedTypeError
            If the mime type is not PDF, plain text or DOCX.
        OversizeInputError
            If *data* is larger than the configured ceiling.
        """
        normalized = normalize_mime_type(mime_type)
        if not self._extractor.is_supported(normalized):
            raise UnsupportedTypeError(
                message=f"Unsupported file type: {mime_type!r}",
                provider_name="ingestion",
            )
        if len(data) > self._max_upload_bytes:
            raise OversizeInputError(
                message=f"Upload is {len(data)} bytes; limit is {self._max_upload_bytes}",
                provider_name="ingestion",
            )
        return normalized

    async def ingest(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        scope: str,
        title: str | None = None,
    ) -> str:
        """Queue an upload for processing and return its job id immediately.

        Validation happens in the background; an invalid upload produces a
        ``failed`` job, not an exception here.

        Raises
        ------
        ValueError
            If *scope* is blank.
        RuntimeError
            If no running worker pool is bound.
        """
        if not scope or not scope.strip():
            raise ValueError(f'scope must be "{SHARED_SCOPE}" or an avatar id')
        if self._pool is None or not self._pool.is_running:
            raise RuntimeError("IngestionService has no running worker pool")

        filename = filename or "untitled"
        job = await self._tracker.create(filename=filename, scope=scope.strip())
        task = IngestionTask(
            job_id=job.job_id,
            data=bytes(data),
            mime_type=mime_type,
            filename=filename,
            scope=scope.strip(),
            title=title,
        )
        await self._pool.submit(task)
        logger.info(
            "ingestion_queued",
            job_id=job.job_id,
            filename=filename,
            scope=task.scope,
            size_bytes=len(task.data),
        )
        return job.job_id

    async def process(self, task: IngestionTask) -> None:
        """Run the pipeline for *task* and record the outcome on its job.

        Never raises for pipeline failures; only cancellation propagates
        (after the job has been marked failed).
        """
        log = logger.bind(job_id=task.job_id)
        # Provider and store log lines emitted inside this task carry the job id too.
        with structlog.contextvars.bound_contextvars(job_id=task.job_id):
            try:
                await self._run_pipeline(task, log)
            except asyncio.CancelledError:
                log.warning("ingestion_cancelled")
                await self._record_failure(
                    task.job_id, INTERRUPTED_KIND, INTERRUPTED_DETAIL, log
                )
                raise
            except KnowledgeBaseError as exc:
                log.warning("ingestion_failed", error_kind=exc.kind, error=str(exc))
                detail = _SAFE_MESSAGES.get(exc.kind, _SAFE_MESSAGES[INTERNAL_ERROR_KIND])
                await self._record_failure(task.job_id, exc.kind, detail, log)
            except Exception:
                log.exception("ingestion_crashed")
                await self._record_failure(
                    task.job_id, INTERNAL_ERROR_KIND, _SAFE_MESSAGES[INTERNAL_ERROR_KIND], log
                )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(self, task: IngestionTask, log: structlog.BoundLogger) -> None:
        job_id = task.job_id
        await self._tracker.start(job_id)

        # 1. Validate
        mime_type = self.validate_upload(task.data, task.mime_type)

        # 2. Extract
        raw_text = await self._extractor.extract_async(task.data, mime_type)
        await self._tracker.update_progress(job_id, 30.0, "Text extracted")

        # 3. Chunk
        text = normalize_text(raw_text)
        segments = list(self._chunker.chunk(text))
        if not segments:
            raise NoContentError(
                message=f"{task.filename} produced no chunks",
                provider_name="ingestion",
            )
        document_id = uuid.uuid4().hex
        await self._tracker.attach_document(job_id, document_id)
        await self._tracker.update_progress(
            job_id, 50.0, f"Split into {len(segments)} chunks"
        )
        log.info("document_chunked", document_id=document_id, chunks=len(segments))

        # 4. Embed
        vectors = await self._embed_with_retry([s.text for s in segments], log)
        self._check_vectors(vectors, expected=len(segments))
        await self._tracker.update_progress(job_id, 80.0, "Embeddings generated")

        # 5. Store
        total = len(segments)
        chunks = [
            Chunk(
                document_id=document_id,
                chunk_index=segment.index,
                text=segment.text,
                embedding=vector,
                token_count=estimate_tokens(segment.text),
                start_offset=segment.start,
                end_offset=segment.end,
                overlap_chars=segment.overlap,
                total_chunks=total,
            )
            for segment, vector in zip(segments, vectors)
        ]
        document = Document(
            document_id=document_id,
            scope=task.scope,
            filename=task.filename,
            mime_type=mime_type,
            title=(task.title or "").strip() or task.filename,
            chunk_count=total,
            size_bytes=len(task.data),
            summary=generate_summary(text),
            embedding_model=self._embedder.get_provider_name(),
        )
        await self._persist(document, chunks, log)
        await self._tracker.update_progress(job_id, 95.0, "Document stored")

        # 6. Complete
        await self._tracker.complete(job_id, document_id)
        log.info(
            "ingestion_completed",
            document_id=document_id,
            chunks=total,
            scope=task.scope,
        )

    async def _embed_with_retry(
        self, texts: list[str], log: structlog.BoundLogger
    ) -> list[list[float]]:
        """Embed *texts*, retrying the whole call with linear backoff."""
        attempt = 1
        while True:
            try:
                return await self._embedder.embed(texts)
            except EmbeddingFailedError as exc:
                if attempt >= self._max_attempts:
                    raise
                backoff = self._retry_backoff * attempt
                log.warning(
                    "embedding_retry",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    backoff=backoff,
                    error=str(exc),
                )
                await asyncio.sleep(backoff)
                attempt += 1

    def _check_vectors(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise EmbeddingFailedError(
                message=f"Expected {expected} vectors, received {len(vectors)}",
                provider_name=self._embedder.get_provider_name(),
            )
        dimension = self._embedder.get_dimension() or len(vectors[0])
        bad = {len(v) for v in vectors if len(v) != dimension}
        if bad:
            raise DimensionMismatchError(
                message=f"Expected {dimension}-dim vectors, received lengths {sorted(bad)}",
                provider_name=self._embedder.get_provider_name(),
            )

    async def _persist(
        self, document: Document, chunks: list[Chunk], log: structlog.BoundLogger
    ) -> None:
        await self._store.put_document(document)
        try:
            await self._store.put_chunks(document.document_id, chunks)
        except BaseException:
            # Remove the staged record so nothing half-written lingers.
            with contextlib.suppress(NotFoundError):
                await self._store.delete_document(document.document_id)
            log.warning("staged_document_removed", document_id=document.document_id)
            raise

    async def _record_failure(
        self, job_id: str, kind: str, detail: str, log: structlog.BoundLogger
    ) -> None:
        """Write the terminal failure, retrying while the job store is unavailable.

        If every attempt fails the job's lease is released, so lease recovery
        fails it once the lease runs out.
        """
        for attempt in range(1, _FAILURE_WRITE_ATTEMPTS + 1):
            try:
                await self._tracker.fail(job_id, kind, detail)
                return
            except (InvalidTransitionError, NotFoundError):
                # Already terminal (e.g. failure after complete() was persisted).
                log.warning("job_already_terminal", error_kind=kind)
                return
            except KnowledgeBaseError:
                log.warning(
                    "job_failure_write_failed",
                    error_kind=kind,
                    attempt=attempt,
                    max_attempts=_FAILURE_WRITE_ATTEMPTS,
                    exc_info=True,
                )
                if attempt < _FAILURE_WRITE_ATTEMPTS:
                    await asyncio.sleep(self._failure_write_backoff * attempt)
        log.error("job_failure_unrecorded", error_kind=kind)
        self._tracker.release(job_id)
