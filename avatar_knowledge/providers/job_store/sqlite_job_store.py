"""SQLite-backed job store.

Each job is stored as its JSON serialisation plus the few columns needed
for filtering (state, timestamps).  Uses ``aiosqlite`` for async I/O and
shares the knowledge database file by default.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from avatar_knowledge.interfaces.job_store import IJobStore
from avatar_knowledge.models.job import JobState, ProcessingJob
from avatar_knowledge.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS ingestion_jobs (
    job_id      TEXT PRIMARY KEY,
    state       TEXT NOT NULL,
    job_json    TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_ingestion_jobs_state ON ingestion_jobs(state, updated_at);"
)

_UPSERT_SQL = """\
INSERT INTO ingestion_jobs (job_id, state, job_json, created_at, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(job_id)
DO UPDATE SET state      = excluded.state,
              job_json   = excluded.job_json,
              updated_at = excluded.updated_at;
"""

_TERMINAL_STATES = (JobState.COMPLETED.value, JobState.FAILED.value)


class SQLiteJobStore(IJobStore):
    """SQLite-backed :class:`IJobStore`."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the jobs table and index if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            await db.execute(_CREATE_INDEX_SQL)
            await db.commit()
        logger.info("job_db_initialized", path=str(self._db_path))

    async def save(self, job: ProcessingJob) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _UPSERT_SQL,
                    (
                        job.job_id,
                        job.state.value,
                        job.model_dump_json(),
                        job.created_at.isoformat(),
                        job.updated_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Failed to save job {job.job_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def get(self, job_id: str) -> ProcessingJob | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT job_json FROM ingestion_jobs WHERE job_id = ?", (job_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return ProcessingJob.model_validate_json(row[0])

    async def list_by_state(self, states: set[JobState]) -> list[ProcessingJob]:
        if not states:
            return []
        placeholders = ", ".join("?" for _ in states)
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                f"SELECT job_json FROM ingestion_jobs WHERE state IN ({placeholders}) "
                "ORDER BY created_at",
                tuple(s.value for s in states),
            )
            rows = await cursor.fetchall()
        return [ProcessingJob.model_validate_json(r[0]) for r in rows]

    async def delete_finished_before(self, cutoff: datetime) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM ingestion_jobs WHERE state IN (?, ?) AND updated_at < ?",
                (*_TERMINAL_STATES, cutoff.isoformat()),
            )
            deleted = cursor.rowcount
            await db.commit()
        return deleted

    def get_provider_name(self) -> str:
        return "sqlite_jobs"
