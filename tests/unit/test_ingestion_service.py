"""Unit tests for IngestionService - the validate/extract/chunk/embed/store pipeline.

These drive :meth:`IngestionService.process` directly, without a worker
pool, so every outcome can be asserted deterministically.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from conftest import MockEmbeddingProvider

from avatar_knowledge.config.settings import Settings
from avatar_knowledge.models.job import JobState, ProcessingJob
from avatar_knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from avatar_knowledge.providers.job_store.memory_job_store import MemoryJobStore
from avatar_knowledge.providers.knowledge_store.memory_knowledge_store import (
    MemoryKnowledgeStore,
)
from avatar_knowledge.services.ingestion.chunker import TextChunker
from avatar_knowledge.services.ingestion.ingestion_service import IngestionService, IngestionTask
from avatar_knowledge.services.job_tracker import INTERRUPTED_KIND, JobTracker
from avatar_knowledge.utils.errors import StorageError

_TEXT = (
    "The patient was admitted on Monday. Dr. Smith prescribed rest and fluids. "
    "A follow-up visit is scheduled for next week."
)


async def _queue(
    tracker: JobTracker,
    data: bytes,
    mime_type: str = "text/plain",
    filename: str = "notes.txt",
    scope: str = "shared",
    title: str | None = None,
) -> IngestionTask:
    job = await tracker.create(filename=filename, scope=scope)
    return IngestionTask(
        job_id=job.job_id,
        data=data,
        mime_type=mime_type,
        filename=filename,
        scope=scope,
        title=title,
    )


class _WrongDimensionEmbedder(MockEmbeddingProvider):
    def get_dimension(self) -> int:
        return 12


class _ShortEmbedder(MockEmbeddingProvider):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        return (await super().embed(texts))[:-1]


class _FlakyJobStore(MemoryJobStore):
    """Rejects the next *failed_writes* saves of a ``failed`` job."""

    def __init__(self, failed_writes: int) -> None:
        super().__init__()
        self.failed_writes = failed_writes

    async def save(self, job: ProcessingJob) -> None:
        if job.state == JobState.FAILED and self.failed_writes > 0:
            self.failed_writes -= 1
            raise StorageError(message="database is locked", provider_name="test")
        await super().save(job)


# ======================================================================
# Successful ingestion
# ======================================================================


class TestSuccessfulIngestion:
    @pytest.mark.asyncio
    async def test_short_document_becomes_one_chunk(
        self,
        ingestion: IngestionService,
        tracker: JobTracker,
        knowledge_store: MemoryKnowledgeStore,
    ) -> None:
        task = await _queue(tracker, _TEXT.encode(), scope="avatar-1")
        await ingestion.process(task)

        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.COMPLETED
        assert status.progress == 100.0
        assert status.error_kind is None

        document = await knowledge_store.get_document(status.document_id)
        assert document.chunk_count == 1
        assert document.scope == "avatar-1"
        assert document.title == "notes.txt"
        assert document.mime_type == "text/plain"
        assert document.size_bytes == len(_TEXT.encode())
        assert document.embedding_model == "mock_embedding"
        assert document.summary

        pairs = await knowledge_store.get_chunks_for_scope("avatar-1")
        assert len(pairs) == 1
        chunk, vector = pairs[0]
        assert chunk.text == _TEXT
        assert chunk.total_chunks == 1
        assert chunk.token_count == -(-len(_TEXT) // 4)
        assert len(vector) == 256

    @pytest.mark.asyncio
    async def test_long_document_chunks_in_order(
        self,
        ingestion: IngestionService,
        tracker: JobTracker,
        knowledge_store: MemoryKnowledgeStore,
        embedder: MockEmbeddingProvider,
    ) -> None:
        text = "\n\n".join(f"Section {i}. " + _TEXT for i in range(10))
        task = await _queue(tracker, text.encode(), title="Care plan")
        await ingestion.process(task)

        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.COMPLETED
        document = await knowledge_store.get_document(status.document_id)
        assert document.title == "Care plan"

        chunks = [c for c, _ in await knowledge_store.get_chunks_for_scope(None)]
        assert len(chunks) == document.chunk_count > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.total_chunks == len(chunks) for c in chunks)
        assert embedder.embed_calls == 1

    @pytest.mark.asyncio
    async def test_mime_type_parameters_accepted(
        self, ingestion: IngestionService, tracker: JobTracker
    ) -> None:
        task = await _queue(tracker, _TEXT.encode(), mime_type="Text/Plain; charset=utf-8")
        await ingestion.process(task)
        assert (await tracker.get_status(task.job_id)).state == JobState.COMPLETED

    def test_validate_upload_normalizes(self, ingestion: IngestionService) -> None:
        assert ingestion.validate_upload(b"x", "TEXT/PLAIN; charset=utf-8") == "text/plain"


# ======================================================================
# Failures
# ======================================================================


class TestFailedIngestion:
    async def _failed(self, ingestion: IngestionService, tracker: JobTracker, task: IngestionTask):
        await ingestion.process(task)
        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.FAILED
        return status

    @pytest.mark.asyncio
    async def test_unsupported_type(self, ingestion: IngestionService, tracker: JobTracker) -> None:
        task = await _queue(tracker, b"\x89PNG...", mime_type="image/png", filename="x.png")
        status = await self._failed(ingestion, tracker, task)
        assert status.error_kind == "UnsupportedType"
        assert "PDF, TXT, DOCX" in status.error_detail

    @pytest.mark.asyncio
    async def test_oversize_input(self, ingestion: IngestionService, tracker: JobTracker) -> None:
        task = await _queue(tracker, b"a " * (64 * 1024))
        status = await self._failed(ingestion, tracker, task)
        assert status.error_kind == "OversizeInput"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [b"", b"   \n\n\t  "])
    async def test_no_content(
        self,
        ingestion: IngestionService,
        tracker: JobTracker,
        knowledge_store: MemoryKnowledgeStore,
        data: bytes,
    ) -> None:
        task = await _queue(tracker, data)
        status = await self._failed(ingestion, tracker, task)
        assert status.error_kind == "NoContent"
        assert await knowledge_store.list_documents(None) == []

    @pytest.mark.asyncio
    async def test_extraction_failure(
        self, ingestion: IngestionService, tracker: JobTracker
    ) -> None:
        task = await _queue(tracker, b"not really a pdf", mime_type="application/pdf")
        with patch(
            "avatar_knowledge.services.extraction.text_extractor.fitz.open",
            side_effect=RuntimeError("cannot open broken document"),
        ):
            status = await self._failed(ingestion, tracker, task)
        assert status.error_kind == "ExtractionFailed"
        assert "broken" not in status.error_detail

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(
        self,
        ingestion: IngestionService,
        tracker: JobTracker,
        knowledge_store: MemoryKnowledgeStore,
        embedder: MockEmbeddingProvider,
    ) -> None:
        embedder.fail_times = 1
        task = await _queue(tracker, _TEXT.encode())
        status = await self._failed(ingestion, tracker, task)

        assert status.error_kind == "EmbeddingFailed"
        assert "simulated" not in status.error_detail
        assert await knowledge_store.get_chunks_for_scope(None) == []
        assert await knowledge_store.list_documents(None) == []

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        service = IngestionService(tracker, knowledge_store, _ShortEmbedder())
        task = await _queue(tracker, _TEXT.encode())
        status = await self._failed(service, tracker, task)
        assert status.error_kind == "EmbeddingFailed"

    @pytest.mark.asyncio
    async def test_dimension_mismatch(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        service = IngestionService(tracker, knowledge_store, _WrongDimensionEmbedder())
        task = await _queue(tracker, _TEXT.encode())
        status = await self._failed(service, tracker, task)
        assert status.error_kind == "DimensionMismatch"
        assert await knowledge_store.get_chunks_for_scope(None) == []

    @pytest.mark.asyncio
    async def test_storage_failure_removes_staged_document(
        self,
        ingestion: IngestionService,
        tracker: JobTracker,
        knowledge_store: MemoryKnowledgeStore,
    ) -> None:
        task = await _queue(tracker, _TEXT.encode())
        with patch.object(
            knowledge_store,
            "put_chunks",
            AsyncMock(side_effect=StorageError(message="disk full", provider_name="test")),
        ):
            status = await self._failed(ingestion, tracker, task)

        assert status.error_kind == "StorageFailed"
        assert knowledge_store._staged == {}
        assert await knowledge_store.list_documents(None) == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(
        self, ingestion: IngestionService, tracker: JobTracker
    ) -> None:
        task = await _queue(tracker, _TEXT.encode())
        with patch(
            "avatar_knowledge.services.ingestion.ingestion_service.normalize_text",
            side_effect=KeyError("secret internal detail"),
        ):
            status = await self._failed(ingestion, tracker, task)

        assert status.error_kind == "InternalError"
        assert "secret" not in status.error_detail


# ======================================================================
# Retry
# ======================================================================


class TestEmbeddingRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        embedder = MockEmbeddingProvider(fail_times=2)
        service = IngestionService(
            tracker,
            knowledge_store,
            embedder,
            embedding_max_attempts=3,
            retry_backoff_seconds=0.0,
        )
        task = await _queue(tracker, _TEXT.encode())
        await service.process(task)

        assert (await tracker.get_status(task.job_id)).state == JobState.COMPLETED
        assert embedder.embed_calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        embedder = MockEmbeddingProvider(fail_times=5)
        service = IngestionService(
            tracker,
            knowledge_store,
            embedder,
            embedding_max_attempts=2,
            retry_backoff_seconds=0.0,
        )
        task = await _queue(tracker, _TEXT.encode())
        await service.process(task)

        assert (await tracker.get_status(task.job_id)).error_kind == "EmbeddingFailed"
        assert embedder.embed_calls == 2

    @pytest.mark.asyncio
    async def test_no_retry_by_default(
        self,
        ingestion: IngestionService,
        tracker: JobTracker,
        embedder: MockEmbeddingProvider,
    ) -> None:
        embedder.fail_times = 1
        task = await _queue(tracker, _TEXT.encode())
        await ingestion.process(task)
        assert embedder.embed_calls == 1


# ======================================================================
# Cancellation / entry checks
# ======================================================================


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_job_is_marked_failed(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        entered = asyncio.Event()

        class _HangingEmbedder(MockEmbeddingProvider):
            async def embed(self, texts: list[str]) -> list[list[float]]:
                entered.set()
                await asyncio.sleep(10)
                return []

        service = IngestionService(tracker, knowledge_store, _HangingEmbedder())
        task = await _queue(tracker, _TEXT.encode())
        running = asyncio.create_task(service.process(task))
        await entered.wait()
        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running

        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.FAILED
        assert status.error_kind == INTERRUPTED_KIND


class TestIngestEntryChecks:
    @pytest.mark.asyncio
    async def test_requires_running_pool(self, ingestion: IngestionService) -> None:
        with pytest.raises(RuntimeError):
            await ingestion.ingest(b"text", "text/plain", "a.txt", scope="shared")

    @pytest.mark.asyncio
    async def test_rejects_blank_scope(self, ingestion: IngestionService) -> None:
        with pytest.raises(ValueError):
            await ingestion.ingest(b"text", "text/plain", "a.txt", scope="  ")

    def test_default_chunker(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        service = IngestionService(tracker, knowledge_store, MockEmbeddingProvider())
        assert isinstance(service._chunker, TextChunker)
        assert service._chunker.target_chunk_size == 2000


# ======================================================================
# Batched embedding failures
# ======================================================================


class TestBatchedEmbeddingFailure:
    @pytest.mark.asyncio
    async def test_failure_in_later_batch_persists_nothing(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        first_batch = SimpleNamespace(
            data=[SimpleNamespace(index=i, embedding=[0.1] * 1536) for i in range(2)],
            usage=SimpleNamespace(total_tokens=20),
        )
        client = MagicMock()
        client.embeddings.create = AsyncMock(
            side_effect=[
                first_batch,
                openai.APIConnectionError(
                    request=httpx.Request("POST", "https://api.openai.com/v1/embeddings")
                ),
            ]
        )
        provider = OpenAIEmbeddingProvider(
            Settings(openai_api_key="sk-test", openai_base_url="", embedding_batch_size=2),
            client=client,
        )
        service = IngestionService(
            tracker,
            knowledge_store,
            provider,
            chunker=TextChunker(target_chunk_size=120, overlap_size=20),
        )
        task = await _queue(tracker, " ".join([_TEXT] * 6).encode())
        await service.process(task)

        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.FAILED
        assert status.error_kind == "EmbeddingFailed"
        assert client.embeddings.create.await_count == 2
        assert await knowledge_store.get_chunks_for_scope(None) == []
        assert await knowledge_store.list_documents(None) == []


# ======================================================================
# Recording failures
# ======================================================================


class TestFailureRecording:
    def _service(
        self, tracker: JobTracker, knowledge_store: MemoryKnowledgeStore
    ) -> IngestionService:
        return IngestionService(
            tracker,
            knowledge_store,
            MockEmbeddingProvider(fail_times=1),
            failure_write_backoff_seconds=0.0,
        )

    @pytest.mark.asyncio
    async def test_failure_write_is_retried(
        self, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        store = _FlakyJobStore(failed_writes=2)
        tracker = JobTracker(store)
        task = await _queue(tracker, _TEXT.encode())

        await self._service(tracker, knowledge_store).process(task)

        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.FAILED
        assert status.error_kind == "EmbeddingFailed"
        assert store.failed_writes == 0

    @pytest.mark.asyncio
    async def test_unrecordable_failure_is_left_to_lease_recovery(
        self, knowledge_store: MemoryKnowledgeStore
    ) -> None:
        store = _FlakyJobStore(failed_writes=100)
        tracker = JobTracker(store)
        task = await _queue(tracker, _TEXT.encode())

        # Must not raise into the worker.
        await self._service(tracker, knowledge_store).process(task)

        assert (await tracker.get_status(task.job_id)).state == JobState.PROCESSING
        assert task.job_id not in tracker.active_jobs
        assert await tracker.heartbeat() == 0

        store.failed_writes = 0
        assert await JobTracker(store, lease_seconds=0).recover_interrupted() == 1
        status = await tracker.get_status(task.job_id)
        assert status.state == JobState.FAILED
        assert status.error_kind == INTERRUPTED_KIND
