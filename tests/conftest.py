"""Shared pytest fixtures for the avatar knowledge test suite."""

from __future__ import annotations

import hashlib
import re

import pytest
import pytest_asyncio

from avatar_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from avatar_knowledge.models.knowledge import Chunk, Document
from avatar_knowledge.pipeline.worker_pool import IngestionWorkerPool
from avatar_knowledge.providers.cache.memory_cache import MemoryCacheProvider
from avatar_knowledge.providers.job_store.memory_job_store import MemoryJobStore
from avatar_knowledge.providers.knowledge_store.memory_knowledge_store import (
    MemoryKnowledgeStore,
)
from avatar_knowledge.services.ingestion.chunker import TextChunker
from avatar_knowledge.services.ingestion.ingestion_service import IngestionService
from avatar_knowledge.services.job_tracker import JobTracker
from avatar_knowledge.services.knowledge_base import KnowledgeBase
from avatar_knowledge.services.retrieval_service import RetrievalService
from avatar_knowledge.utils.errors import EmbeddingFailedError

_WORD_RE = re.compile(r"[a-z0-9]+")


# ---------------------------------------------------------------------------
# Fake embedding provider
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic bag-of-words embedder.

    Each lower-cased word is hashed into one of ``dimension`` buckets, so
    texts that share words have a higher cosine similarity.  Set
    ``fail_times`` to make the next N ``embed`` calls raise
    :class:`EmbeddingFailedError`.
    """

    def __init__(self, dimension: int = 256, fail_times: int = 0) -> None:
        self.dimension = dimension
        self.fail_times = fail_times
        self.embed_calls = 0
        self.embedded_texts: list[str] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.embed_calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise EmbeddingFailedError(
                message="simulated outage", provider_name=self.get_provider_name()
            )
        self.embedded_texts.extend(texts)
        return [self.vector_for(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self.dimension

    def get_provider_name(self) -> str:
        return "mock_embedding"

    def is_available(self) -> bool:
        return True

    def vector_for(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.sha256(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_document(document_id: str = "doc-1", scope: str = "shared", **overrides) -> Document:
    fields = {
        "document_id": document_id,
        "scope": scope,
        "filename": f"{document_id}.txt",
        "mime_type": "text/plain",
        "title": f"Title {document_id}",
    }
    fields.update(overrides)
    return Document(**fields)


def make_chunk(
    document_id: str = "doc-1",
    chunk_index: int = 0,
    text: str = "some text",
    embedding: list[float] | None = None,
) -> Chunk:
    return Chunk(
        document_id=document_id,
        chunk_index=chunk_index,
        text=text,
        embedding=embedding if embedding is not None else [1.0, 0.0, 0.0],
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def knowledge_store() -> MemoryKnowledgeStore:
    return MemoryKnowledgeStore()


@pytest.fixture
def job_store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture
def tracker(job_store: MemoryJobStore) -> JobTracker:
    return JobTracker(job_store)


@pytest.fixture
def ingestion(
    tracker: JobTracker,
    knowledge_store: MemoryKnowledgeStore,
    embedder: MockEmbeddingProvider,
) -> IngestionService:
    return IngestionService(
        job_tracker=tracker,
        knowledge_store=knowledge_store,
        embedding_provider=embedder,
        chunker=TextChunker(target_chunk_size=400, overlap_size=40),
        max_upload_bytes=64 * 1024,
        retry_backoff_seconds=0.0,
        failure_write_backoff_seconds=0.0,
    )


@pytest.fixture
def retrieval(
    knowledge_store: MemoryKnowledgeStore, embedder: MockEmbeddingProvider
) -> RetrievalService:
    return RetrievalService(
        knowledge_store=knowledge_store,
        embedding_provider=embedder,
        query_cache=MemoryCacheProvider(max_size=16, ttl=60),
    )


@pytest_asyncio.fixture
async def knowledge_base(
    ingestion: IngestionService,
    retrieval: RetrievalService,
    tracker: JobTracker,
    knowledge_store: MemoryKnowledgeStore,
    job_store: MemoryJobStore,
):
    """A started :class:`KnowledgeBase` on in-memory stores; closed after the test."""
    pool = IngestionWorkerPool(handler=ingestion.process, num_workers=2)
    kb = KnowledgeBase(
        ingestion=ingestion,
        retrieval=retrieval,
        job_tracker=tracker,
        knowledge_store=knowledge_store,
        job_store=job_store,
        worker_pool=pool,
    )
    await kb.start()
    yield kb
    await kb.close()
