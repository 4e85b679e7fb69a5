"""Job store implementations."""

from avatar_knowledge.providers.job_store.memory_job_store import MemoryJobStore
from avatar_knowledge.providers.job_store.sqlite_job_store import SQLiteJobStore

__all__ = ["MemoryJobStore", "SQLiteJobStore"]
