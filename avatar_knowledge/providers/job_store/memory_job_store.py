"""In-memory job store."""

from __future__ import annotations

import asyncio
from datetime import datetime

from avatar_knowledge.interfaces.job_store import IJobStore
from avatar_knowledge.models.job import JobState, ProcessingJob


class MemoryJobStore(IJobStore):
    """Dict-backed :class:`IJobStore`.  Jobs are lost when the process exits."""

    def __init__(self) -> None:
        self._jobs: dict[str, ProcessingJob] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        return None

    async def save(self, job: ProcessingJob) -> None:
        async with self._lock:
            self._jobs[job.job_id] = job

    async def get(self, job_id: str) -> ProcessingJob | None:
        async with self._lock:
            return self._jobs.get(job_id)

    async def list_by_state(self, states: set[JobState]) -> list[ProcessingJob]:
        async with self._lock:
            jobs = [job for job in self._jobs.values() if job.state in states]
        return sorted(jobs, key=lambda j: j.created_at)

    async def delete_finished_before(self, cutoff: datetime) -> int:
        async with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.state.is_terminal and job.updated_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)

    def get_provider_name(self) -> str:
        return "memory_jobs"
