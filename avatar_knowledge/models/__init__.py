"""Domain models -- re-exports all public model classes.

    - job.py        - ingestion job state machine and caller-facing status
    - knowledge.py  - documents, chunks and retrieval results
"""

from __future__ import annotations

from avatar_knowledge.models.job import (
    ALLOWED_TRANSITIONS,
    JobState,
    JobStatus,
    ProcessingJob,
)
from avatar_knowledge.models.knowledge import (
    SHARED_SCOPE,
    Chunk,
    Document,
    RetrievalResult,
    ScoredChunk,
    TextSegment,
    is_shared_scope,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Chunk",
    "Document",
    "JobState",
    "JobStatus",
    "ProcessingJob",
    "RetrievalResult",
    "SHARED_SCOPE",
    "ScoredChunk",
    "TextSegment",
    "is_shared_scope",
]
