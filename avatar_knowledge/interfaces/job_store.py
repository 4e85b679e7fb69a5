"""Abstract base class for ingestion job persistence.

The job store is the single source of truth for job state: the tracker
writes every transition here before acknowledging it, and status polls
read from here.  Nothing else caches job state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from avatar_knowledge.models.job import JobState, ProcessingJob


# Concrete implementations:
#   MemoryJobStore  - dict-backed
#   SQLiteJobStore  - aiosqlite, shares the knowledge database file
# Located in: avatar_knowledge/providers/job_store/
class IJobStore(ABC):
    """Contract for storing :class:`ProcessingJob` records."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backing storage."""

    @abstractmethod
    async def save(self, job: ProcessingJob) -> None:
        """Insert or replace the record for ``job.job_id``."""

    @abstractmethod
    async def get(self, job_id: str) -> ProcessingJob | None:
        """Return the job with *job_id*, or ``None`` when unknown."""

    @abstractmethod
    async def list_by_state(self, states: set[JobState]) -> list[ProcessingJob]:
        """Return every job whose state is in *states*, oldest first."""

    @abstractmethod
    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs last updated before *cutoff*; return the count."""

    def get_provider_name(self) -> str:
        return type(self).__name__
