"""Composition root: builds a fully wired :class:`KnowledgeBase` from settings.

Every collaborator is constructed here and injected downward; nothing in
the pipeline reaches for a module-level singleton.  Tests skip this module
and wire fakes directly.
"""

from __future__ import annotations

from avatar_knowledge.config.settings import Settings
from avatar_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from avatar_knowledge.interfaces.job_store import IJobStore
from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore
from avatar_knowledge.pipeline.worker_pool import IngestionWorkerPool
from avatar_knowledge.providers.cache.memory_cache import MemoryCacheProvider
from avatar_knowledge.services.ingestion.chunker import TextChunker
from avatar_knowledge.services.ingestion.ingestion_service import IngestionService, IngestionTask
from avatar_knowledge.services.job_tracker import JobTracker
from avatar_knowledge.services.knowledge_base import KnowledgeBase
from avatar_knowledge.services.retrieval_service import RetrievalService
from avatar_knowledge.utils.errors import ConfigurationError
from avatar_knowledge.utils.logging import get_logger

logger = get_logger(__name__)


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Select the embedding provider named by ``embedding_provider``.

    ``auto`` prefers OpenAI/OpenAI-compatible when an API key is set and
    falls back to Nomic via Ollama.

    Raises
    ------
    ConfigurationError
        If the setting names an unknown provider, or ``openai`` is chosen
        without an API key.
    """
    choice = app_settings.embedding_provider.strip().lower()

    if choice == "openai" or (choice == "auto" and app_settings.openai_api_key):
        from avatar_knowledge.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if not provider.is_available():
            raise ConfigurationError(
                message="embedding_provider=openai requires OPENAI_API_KEY",
                provider_name="config",
            )
        return provider

    if choice in ("nomic", "auto"):
        from avatar_knowledge.providers.embedding.nomic_embedding_provider import (
            NomicEmbeddingProvider,
        )

        provider = NomicEmbeddingProvider(settings=app_settings)
        if not provider.is_available():
            # Not fatal: Ollama may come up after us.  Embedding calls will
            # fail with EmbeddingFailed until it does.
            logger.warning("embedding_provider_unreachable", provider=provider.get_provider_name())
        return provider

    raise ConfigurationError(
        message=f"Unknown embedding_provider {app_settings.embedding_provider!r}",
        provider_name="config",
    )


def build_stores(app_settings: Settings) -> tuple[IKnowledgeStore, IJobStore]:
    """SQLite stores at ``knowledge_db_path``, or in-memory ones for ``:memory:``."""
    if app_settings.knowledge_db_path == ":memory:":
        from avatar_knowledge.providers.job_store.memory_job_store import MemoryJobStore
        from avatar_knowledge.providers.knowledge_store.memory_knowledge_store import (
            MemoryKnowledgeStore,
        )

        return MemoryKnowledgeStore(), MemoryJobStore()

    from avatar_knowledge.providers.job_store.sqlite_job_store import SQLiteJobStore
    from avatar_knowledge.providers.knowledge_store.sqlite_knowledge_store import (
        SQLiteKnowledgeStore,
    )

    return (
        SQLiteKnowledgeStore(app_settings.knowledge_db_path),
        SQLiteJobStore(app_settings.knowledge_db_path),
    )


def build_knowledge_base(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    knowledge_store: IKnowledgeStore | None = None,
    job_store: IJobStore | None = None,
) -> KnowledgeBase:
    """Wire every component from *app_settings*.

    Any of the three external dependencies may be passed in to override
    the settings-driven choice.  The returned object still needs
    :meth:`KnowledgeBase.start` (or ``async with``).
    """
    embedder = embedding_provider or build_embedding_provider(app_settings)
    if knowledge_store is None or job_store is None:
        default_knowledge, default_jobs = build_stores(app_settings)
        knowledge_store = knowledge_store or default_knowledge
        job_store = job_store or default_jobs

    tracker = JobTracker(job_store, lease_seconds=app_settings.job_lease_seconds)
    chunker = TextChunker(
        target_chunk_size=app_settings.chunk_target_size,
        overlap_size=app_settings.chunk_overlap_size,
    )
    ingestion = IngestionService(
        job_tracker=tracker,
        knowledge_store=knowledge_store,
        embedding_provider=embedder,
        chunker=chunker,
        max_upload_bytes=app_settings.max_upload_bytes,
        embedding_max_attempts=app_settings.ingest_embedding_max_attempts,
        retry_backoff_seconds=app_settings.ingest_retry_backoff_seconds,
    )
    pool: IngestionWorkerPool[IngestionTask] = IngestionWorkerPool(
        handler=ingestion.process,
        num_workers=app_settings.ingest_workers,
    )
    retrieval = RetrievalService(
        knowledge_store=knowledge_store,
        embedding_provider=embedder,
        query_cache=MemoryCacheProvider(
            max_size=app_settings.query_cache_size,
            ttl=app_settings.query_cache_ttl_seconds,
        ),
        default_top_k=app_settings.retrieval_default_top_k,
        min_similarity=app_settings.retrieval_min_similarity,
    )

    logger.info(
        "knowledge_base_built",
        embedding_provider=embedder.get_provider_name(),
        knowledge_store=knowledge_store.get_provider_name(),
        workers=app_settings.ingest_workers,
    )
    return KnowledgeBase(
        ingestion=ingestion,
        retrieval=retrieval,
        job_tracker=tracker,
        knowledge_store=knowledge_store,
        job_store=job_store,
        worker_pool=pool,
        job_retention_hours=app_settings.job_retention_hours,
    )
