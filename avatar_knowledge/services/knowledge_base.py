"""Caller-facing facade over ingestion, job tracking and retrieval.

:class:`KnowledgeBase` is what the chat layer (or the CLI) talks to::

    async with build_knowledge_base(settings) as kb:
        job_id = await kb.ingest(data, "application/pdf", "notes.pdf", scope="avatar-42")
        status = await kb.get_status(job_id)
        result = await kb.search("What did the patient report?", scope="avatar-42")

It owns the lifecycle of its collaborators: :meth:`start` prepares the
stores, fails jobs abandoned by a dead process, prunes old finished jobs,
starts the ingestion workers and a maintenance task that keeps this
process's job leases renewed; :meth:`close` drains the workers.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from avatar_knowledge.models.knowledge import SHARED_SCOPE, Document, is_shared_scope
from avatar_knowledge.utils.errors import KnowledgeBaseError

if TYPE_CHECKING:
    from avatar_knowledge.interfaces.job_store import IJobStore
    from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore
    from avatar_knowledge.models.job import JobStatus
    from avatar_knowledge.models.knowledge import RetrievalResult
    from avatar_knowledge.pipeline.worker_pool import IngestionWorkerPool
    from avatar_knowledge.services.ingestion.ingestion_service import (
        IngestionService,
        IngestionTask,
    )
    from avatar_knowledge.services.job_tracker import JobTracker
    from avatar_knowledge.services.retrieval_service import RetrievalService

logger = structlog.get_logger(logger_name=__name__)

_MIN_MAINTENANCE_INTERVAL = 1.0


class KnowledgeBase:
    """Public API of the knowledge pipeline.

    Parameters
    ----------
    ingestion:
        Accepts uploads and processes them on the worker pool.
    retrieval:
        Answers searches.
    job_tracker:
        Reports job status.
    knowledge_store:
        Document listing and deletion.
    job_store:
        Initialized on start; shared with *job_tracker*.
    worker_pool:
        Runs ingestion tasks in the background.
    job_retention_hours:
        Finished jobs older than this are pruned on start.
    """

    def __init__(
        self,
        ingestion: IngestionService,
        retrieval: RetrievalService,
        job_tracker: JobTracker,
        knowledge_store: IKnowledgeStore,
        job_store: IJobStore,
        worker_pool: IngestionWorkerPool[IngestionTask],
        job_retention_hours: float = 24.0,
    ) -> None:
        self._ingestion = ingestion
        self._retrieval = retrieval
        self._tracker = job_tracker
        self._store = knowledge_store
        self._job_store = job_store
        self._pool = worker_pool
        self._job_retention_hours = job_retention_hours
        self._ingestion.bind_pool(worker_pool)
        self._maintenance: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Initialize storage, recover stranded jobs and start the workers."""
        await self._store.initialize()
        await self._job_store.initialize()
        recovered = await self._tracker.recover_interrupted()
        pruned = await self._tracker.prune(self._job_retention_hours)
        await self._pool.start()
        if self._maintenance is None:
            self._maintenance = asyncio.create_task(
                self._maintain(), name="knowledge-base-maintenance"
            )
        logger.info(
            "knowledge_base_started",
            knowledge_store=self._store.get_provider_name(),
            job_store=self._job_store.get_provider_name(),
            recovered_jobs=recovered,
            pruned_jobs=pruned,
            owner_id=self._tracker.owner_id,
        )

    async def close(self, drain: bool = True) -> None:
        """Stop the workers (finishing queued work when *drain*) and release stores."""
        await self._pool.stop(drain=drain)
        if self._maintenance is not None:
            self._maintenance.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance
            self._maintenance = None
        await self._store.close()
        logger.info("knowledge_base_closed", drained=drain)

    async def _maintain(self) -> None:
        """Renew this process's job leases and fail jobs whose owner died."""
        interval = max(self._tracker.lease_seconds / 4, _MIN_MAINTENANCE_INTERVAL)
        while True:
            await asyncio.sleep(interval)
            try:
                await self._tracker.heartbeat()
                await self._tracker.recover_interrupted()
            except KnowledgeBaseError as exc:
                # Storage may be briefly locked by another process; next tick retries.
                logger.warning("job_maintenance_failed", error_kind=exc.kind, error=str(exc))

    async def __aenter__(self) -> KnowledgeBase:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def validate_upload(self, data: bytes, mime_type: str) -> str:
        """Synchronous type and size check; see :meth:`IngestionService.validate_upload`."""
        return self._ingestion.validate_upload(data, mime_type)

    async def ingest(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        scope: str = SHARED_SCOPE,
        title: str | None = None,
    ) -> str:
        """Queue a document and return its job id without waiting for processing."""
        return await self._ingestion.ingest(data, mime_type, filename, scope, title=title)

    async def get_status(self, job_id: str) -> JobStatus:
        """Return the job's current status (``NotFoundError`` if unknown)."""
        return await self._tracker.get_status(job_id)

    async def search(
        self,
        query: str,
        scope: str | None = None,
        top_k: int | None = None,
    ) -> RetrievalResult:
        return await self._retrieval.search(query, scope=scope, top_k=top_k)

    async def list_documents(self, scope: str | None = None) -> list[Document]:
        """List documents owned by *scope* (``None`` = shared pool), newest first."""
        return await self._store.list_documents(None if is_shared_scope(scope) else scope)

    async def delete_document(self, document_id: str) -> None:
        """Delete a document and its chunks (``NotFoundError`` if unknown)."""
        await self._store.delete_document(document_id)

    async def wait_for_idle(self) -> None:
        """Block until every queued ingestion has finished."""
        await self._pool.join()
