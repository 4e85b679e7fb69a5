"""Ingestion job models.

A :class:`ProcessingJob` records the lifecycle of one upload.  It is frozen;
every transition produces a new instance via ``model_copy(update={...})``
which the job tracker writes to the job store, so the persisted record is
the single source of truth for a job's state.

State machine::

    PENDING ──> PROCESSING ──> COMPLETED
       │             │
       └─────────────┴───────> FAILED

COMPLETED and FAILED are terminal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):  # noqa: UP042
    """Lifecycle states of an ingestion job."""

    PENDING = "pending"          # Accepted, waiting for a worker
    PROCESSING = "processing"    # A worker is extracting / chunking / embedding
    COMPLETED = "completed"      # Document and all chunks persisted
    FAILED = "failed"            # Terminal failure; error_kind says why

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


# Allowed forward moves.  Anything not listed (including leaving a terminal
# state) is rejected by the job tracker.
ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.PROCESSING, JobState.FAILED}),
    JobState.PROCESSING: frozenset({JobState.PROCESSING, JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingJob(BaseModel):
    """Persisted record of one ingestion job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    state: JobState = JobState.PENDING
    # Set once the document id is assigned (after chunking succeeds).
    document_id: str | None = None
    filename: str = ""
    scope: str = ""
    # Tracker instance that created the job; recovery never touches a live owner's work.
    owner_id: str = ""
    # Only populated when state == FAILED.
    error_kind: str | None = None
    error_detail: str | None = None
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    def to_status(self) -> JobStatus:
        """Return the caller-facing view of this job."""
        return JobStatus(
            job_id=self.job_id,
            state=self.state,
            error_kind=self.error_kind,
            error_detail=self.error_detail,
            progress=self.progress,
            message=self.message,
            document_id=self.document_id,
        )


class JobStatus(BaseModel):
    """Caller-facing job status.  Never contains internal exception text."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    state: JobState
    error_kind: str | None = None
    error_detail: str | None = None
    progress: float = 0.0
    message: str = ""
    document_id: str | None = None
