"""Ingestion job lifecycle tracking.

Every transition is validated against
:data:`~avatar_knowledge.models.job.ALLOWED_TRANSITIONS` and written to the
injected :class:`~avatar_knowledge.interfaces.job_store.IJobStore` before
the call returns, so a status poll always reflects the latest persisted
state and a restarted process can find jobs that were cut off mid-flight.

Transitions for one job are serialized by a per-job ``asyncio.Lock``; the
worker and a concurrent status poll never race on a read-modify-write.

Several processes may share one job store (a server plus CLI status polls).
Each tracker stamps the jobs it creates with its ``owner_id`` and keeps
them leased by refreshing ``updated_at`` through :meth:`JobTracker.heartbeat`.
Recovery only fails unfinished jobs that this tracker is not running and
whose lease has run out.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import structlog

from avatar_knowledge.interfaces.job_store import IJobStore
from avatar_knowledge.models.job import ALLOWED_TRANSITIONS, JobState, JobStatus, ProcessingJob
from avatar_knowledge.utils.errors import InvalidTransitionError, NotFoundError

logger = structlog.get_logger(logger_name=__name__)

INTERRUPTED_KIND = "ProcessingInterrupted"
INTERRUPTED_DETAIL = "Processing was interrupted; please upload the document again"

_UNFINISHED_STATES = {JobState.PENDING, JobState.PROCESSING}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobTracker:
    """Creates jobs and moves them through pending → processing → terminal.

    Parameters
    ----------
    store:
        Persistence for job records; the single source of truth.
    owner_id:
        Identity stamped on created jobs.  A fresh uuid when omitted.
    lease_seconds:
        How long an unfinished job may go without an update before another
        tracker treats it as abandoned.  ``0`` abandons every unfinished job
        this tracker is not running, which suits a single-process deployment.
    """

    def __init__(
        self,
        store: IJobStore,
        owner_id: str | None = None,
        lease_seconds: float = 120.0,
    ) -> None:
        if lease_seconds < 0:
            raise ValueError(f"lease_seconds must be >= 0, got {lease_seconds}")
        self._store = store
        self.owner_id = owner_id or uuid.uuid4().hex
        self.lease_seconds = lease_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        # Unfinished jobs this tracker is responsible for.
        self._active: set[str] = set()

    # ------------------------------------------------------------------
    # Creation / lookup
    # ------------------------------------------------------------------

    async def create(self, filename: str, scope: str) -> ProcessingJob:
        """Persist and return a new ``pending`` job owned by this tracker."""
        job = ProcessingJob(
            job_id=str(uuid.uuid4()),
            filename=filename,
            scope=scope,
            owner_id=self.owner_id,
            message="Queued for processing",
        )
        await self._store.save(job)
        self._active.add(job.job_id)
        logger.info("job_created", job_id=job.job_id, filename=filename, scope=scope)
        return job

    async def get(self, job_id: str) -> ProcessingJob:
        """Return the persisted job record.

        Raises
        ------
        NotFoundError
            If *job_id* is unknown.
        """
        job = await self._store.get(job_id)
        if job is None:
            raise NotFoundError(message=f"Job {job_id} not found", provider_name="job_tracker")
        return job

    async def get_status(self, job_id: str) -> JobStatus:
        """Return the caller-facing status of *job_id* (``NotFoundError`` if unknown)."""
        return (await self.get(job_id)).to_status()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, job_id: str) -> ProcessingJob:
        return await self._transition(
            job_id, JobState.PROCESSING, progress=5.0, message="Processing started"
        )

    async def update_progress(self, job_id: str, progress: float, message: str) -> ProcessingJob:
        """Record progress on a ``processing`` job.  *progress* is clamped to 0-100."""
        return await self._transition(job_id, JobState.PROCESSING, progress=progress, message=message)

    async def attach_document(self, job_id: str, document_id: str) -> ProcessingJob:
        """Record the document id assigned to a ``processing`` job."""
        return await self._transition(job_id, JobState.PROCESSING, document_id=document_id)

    async def complete(self, job_id: str, document_id: str) -> ProcessingJob:
        return await self._transition(
            job_id,
            JobState.COMPLETED,
            document_id=document_id,
            progress=100.0,
            message="Document processed successfully",
        )

    async def fail(self, job_id: str, kind: str, detail: str) -> ProcessingJob:
        """Move a job to ``failed``.

        *detail* is stored verbatim and shown to callers, so it must never
        contain exception text.
        """
        return await self._transition(
            job_id,
            JobState.FAILED,
            error_kind=kind,
            error_detail=detail,
            message="Processing failed",
        )

    async def _transition(
        self,
        job_id: str,
        new_state: JobState,
        *,
        progress: float | None = None,
        message: str | None = None,
        **fields: object,
    ) -> ProcessingJob:
        job: ProcessingJob | None = None
        saved = False
        try:
            async with self._lock_for(job_id):
                job = await self.get(job_id)
                if new_state not in ALLOWED_TRANSITIONS[job.state]:
                    raise InvalidTransitionError(
                        message=(
                            f"Job {job_id} cannot move from {job.state.value} "
                            f"to {new_state.value}"
                        ),
                        provider_name="job_tracker",
                    )

                now = _utcnow()
                update: dict[str, object] = {"state": new_state, "updated_at": now, **fields}
                if progress is not None:
                    update["progress"] = max(0.0, min(100.0, progress))
                if message is not None:
                    update["message"] = message
                if new_state.is_terminal:
                    update["completed_at"] = now

                updated = job.model_copy(update=update)
                await self._store.save(updated)
                saved = True
        finally:
            # Nothing can move a missing or finished job again.
            if job is None or job.state.is_terminal or (saved and new_state.is_terminal):
                self._locks.pop(job_id, None)
                self._active.discard(job_id)

        if new_state != job.state:
            logger.info(
                "job_state_changed",
                job_id=job_id,
                old_state=job.state.value,
                new_state=new_state.value,
                error_kind=updated.error_kind,
            )
        else:
            logger.debug(
                "job_progress", job_id=job_id, progress=updated.progress, message=updated.message
            )
        return updated

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        return self._locks.setdefault(job_id, asyncio.Lock())

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    @property
    def active_jobs(self) -> frozenset[str]:
        return frozenset(self._active)

    def release(self, job_id: str) -> None:
        """Stop renewing the lease on *job_id*.

        Used when this process can no longer record the job's outcome; once
        the lease runs out, recovery fails the job instead.
        """
        self._active.discard(job_id)
        logger.warning("job_lease_released", job_id=job_id, owner_id=self.owner_id)

    async def heartbeat(self) -> int:
        """Refresh ``updated_at`` on every unfinished job this tracker runs.

        Returns the number of jobs renewed.
        """
        renewed = 0
        for job_id in list(self._active):
            async with self._lock_for(job_id):
                job = await self._store.get(job_id)
                if job is None or job.state.is_terminal:
                    self._active.discard(job_id)
                    continue
                await self._store.save(job.model_copy(update={"updated_at": _utcnow()}))
                renewed += 1
        if renewed:
            logger.debug("job_leases_renewed", count=renewed, owner_id=self.owner_id)
        return renewed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def recover_interrupted(self) -> int:
        """Fail unfinished jobs whose owner stopped renewing them.

        Upload bytes live only in the owning process's memory, so such jobs
        can never finish.  Jobs this tracker is running, and jobs another
        tracker updated within ``lease_seconds``, are left alone.  Returns
        the number of jobs marked failed.
        """
        cutoff = _utcnow() - timedelta(seconds=self.lease_seconds)
        recovered = 0
        for job in await self._store.list_by_state(_UNFINISHED_STATES):
            if job.job_id in self._active or job.updated_at > cutoff:
                continue
            try:
                await self.fail(job.job_id, INTERRUPTED_KIND, INTERRUPTED_DETAIL)
            except InvalidTransitionError:
                # Finished by its owner after the listing.
                continue
            logger.warning(
                "interrupted_job_failed",
                job_id=job.job_id,
                previous_owner=job.owner_id,
                last_update=job.updated_at.isoformat(),
            )
            recovered += 1
        return recovered

    async def prune(self, max_age_hours: float) -> int:
        """Delete terminal jobs whose last update is older than *max_age_hours*."""
        cutoff = _utcnow() - timedelta(hours=max_age_hours)
        removed = await self._store.delete_finished_before(cutoff)
        if removed:
            logger.info("finished_jobs_pruned", removed=removed, max_age_hours=max_age_hours)
        return removed
