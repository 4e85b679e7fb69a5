"""SQLite-backed knowledge store.

Persists documents and embedded chunks to a local SQLite database using
``aiosqlite`` for async I/O.  Vectors are stored as JSON arrays; ranking
happens in process (see ``avatar_knowledge.services.similarity``) so no
vector index is needed.

A document row is inserted with ``published = 0`` by :meth:`put_document`.
:meth:`put_chunks` inserts every chunk and flips ``published`` to ``1``
inside one transaction, which is what makes the two-call write atomic for
readers: every read filters on ``published = 1``.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore
from avatar_knowledge.models.knowledge import SHARED_SCOPE, Chunk, Document, is_shared_scope
from avatar_knowledge.utils.errors import NotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_CREATE_DOCUMENTS_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    document_id     TEXT    PRIMARY KEY,
    scope           TEXT    NOT NULL,
    filename        TEXT    NOT NULL,
    mime_type       TEXT    NOT NULL,
    title           TEXT    NOT NULL,
    created_at      TEXT    NOT NULL,
    chunk_count     INTEGER NOT NULL DEFAULT 0,
    size_bytes      INTEGER NOT NULL DEFAULT 0,
    summary         TEXT    NOT NULL DEFAULT '',
    embedding_model TEXT    NOT NULL DEFAULT '',
    published       INTEGER NOT NULL DEFAULT 0
);
"""

_CREATE_CHUNKS_SQL = """\
CREATE TABLE IF NOT EXISTS chunks (
    document_id    TEXT    NOT NULL REFERENCES documents(document_id) ON DELETE CASCADE,
    chunk_index    INTEGER NOT NULL,
    text           TEXT    NOT NULL,
    token_count    INTEGER NOT NULL DEFAULT 0,
    start_offset   INTEGER NOT NULL DEFAULT 0,
    end_offset     INTEGER NOT NULL DEFAULT 0,
    overlap_chars  INTEGER NOT NULL DEFAULT 0,
    total_chunks   INTEGER NOT NULL DEFAULT 0,
    embedding      TEXT    NOT NULL,
    PRIMARY KEY (document_id, chunk_index)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_scope ON documents(scope, published);",
    "CREATE INDEX IF NOT EXISTS idx_documents_created ON documents(created_at);",
]

_DOCUMENT_COLUMNS = (
    "document_id, scope, filename, mime_type, title, created_at, "
    "chunk_count, size_bytes, summary, embedding_model"
)

_INSERT_DOCUMENT_SQL = f"""\
INSERT INTO documents ({_DOCUMENT_COLUMNS}, published)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
ON CONFLICT(document_id) DO UPDATE SET
    scope           = excluded.scope,
    filename        = excluded.filename,
    mime_type       = excluded.mime_type,
    title           = excluded.title,
    created_at      = excluded.created_at,
    size_bytes      = excluded.size_bytes,
    summary         = excluded.summary,
    embedding_model = excluded.embedding_model
WHERE documents.published = 0;
"""

_INSERT_CHUNK_SQL = """\
INSERT INTO chunks (
    document_id, chunk_index, text, token_count, start_offset,
    end_offset, overlap_chars, total_chunks, embedding
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_PUBLISH_SQL = """\
UPDATE documents SET published = 1, chunk_count = ?
WHERE document_id = ? AND published = 0;
"""

_SELECT_SCOPE_CHUNKS_SQL = """\
SELECT c.document_id, c.chunk_index, c.text, c.token_count, c.start_offset,
       c.end_offset, c.overlap_chars, c.total_chunks, c.embedding
FROM chunks c
JOIN documents d ON d.document_id = c.document_id
WHERE d.published = 1 AND (d.scope = ? OR d.scope = ?)
ORDER BY c.document_id, c.chunk_index;
"""


class SQLiteKnowledgeStore(IKnowledgeStore):
    """SQLite-backed document and chunk persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute(_CREATE_DOCUMENTS_SQL)
            await db.execute(_CREATE_CHUNKS_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("knowledge_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put_document(self, document: Document) -> None:
        async with self._connect() as db:
            try:
                cursor = await db.execute(
                    _INSERT_DOCUMENT_SQL,
                    (
                        document.document_id,
                        document.scope,
                        document.filename,
                        document.mime_type,
                        document.title,
                        document.created_at.isoformat(),
                        document.chunk_count,
                        document.size_bytes,
                        document.summary,
                        document.embedding_model,
                    ),
                )
                if cursor.rowcount == 0:
                    raise StorageError(
                        message=f"Document {document.document_id} is already published",
                        provider_name=self.get_provider_name(),
                    )
                await db.commit()
            except aiosqlite.Error as exc:
                raise StorageError(
                    message=f"Failed to stage document {document.document_id}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
        logger.debug("document_staged", document_id=document.document_id)

    async def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        rows = [
            (
                document_id,
                chunk.chunk_index,
                chunk.text,
                chunk.token_count,
                chunk.start_offset,
                chunk.end_offset,
                chunk.overlap_chars,
                chunk.total_chunks,
                json.dumps(chunk.embedding),
            )
            for chunk in chunks
        ]
        foreign = [c.chunk_id for c in chunks if c.document_id != document_id]
        if foreign:
            raise StorageError(
                message=f"Chunks {foreign[:3]} do not belong to {document_id}",
                provider_name=self.get_provider_name(),
            )

        async with self._connect() as db:
            try:
                await db.execute("BEGIN IMMEDIATE")
                cursor = await db.execute(
                    "SELECT 1 FROM documents WHERE document_id = ? AND published = 0",
                    (document_id,),
                )
                if await cursor.fetchone() is None:
                    await db.rollback()
                    raise NotFoundError(
                        message=f"Document {document_id} was not staged",
                        provider_name=self.get_provider_name(),
                    )
                await db.executemany(_INSERT_CHUNK_SQL, rows)
                await db.execute(_PUBLISH_SQL, (len(rows), document_id))
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StorageError(
                    message=f"Failed to write chunks for {document_id}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

        logger.info("document_published", document_id=document_id, chunks=len(rows))

    async def delete_document(self, document_id: str) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM documents WHERE document_id = ?", (document_id,)
            )
            deleted = cursor.rowcount
            await db.commit()
        if not deleted:
            raise NotFoundError(
                message=f"Document {document_id} not found",
                provider_name=self.get_provider_name(),
            )
        logger.info("document_deleted", document_id=document_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_chunks_for_scope(self, scope: str | None) -> list[tuple[Chunk, list[float]]]:
        owner = SHARED_SCOPE if is_shared_scope(scope) else scope
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_SCOPE_CHUNKS_SQL, (SHARED_SCOPE, owner))
            rows = await cursor.fetchall()

        pairs: list[tuple[Chunk, list[float]]] = []
        for row in rows:
            vector = json.loads(row["embedding"])
            chunk = Chunk(
                document_id=row["document_id"],
                chunk_index=row["chunk_index"],
                text=row["text"],
                embedding=vector,
                token_count=row["token_count"],
                start_offset=row["start_offset"],
                end_offset=row["end_offset"],
                overlap_chars=row["overlap_chars"],
                total_chunks=row["total_chunks"],
            )
            pairs.append((chunk, vector))
        return pairs

    async def get_document(self, document_id: str) -> Document:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
                "WHERE document_id = ? AND published = 1",
                (document_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(
                message=f"Document {document_id} not found",
                provider_name=self.get_provider_name(),
            )
        return self._row_to_document(row)

    async def list_documents(self, scope: str | None = None) -> list[Document]:
        owner = SHARED_SCOPE if is_shared_scope(scope) else scope
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
                "WHERE scope = ? AND published = 1 ORDER BY created_at DESC",
                (owner,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_document(r) for r in rows]

    def get_provider_name(self) -> str:
        return "sqlite_knowledge"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _connect(self) -> _ForeignKeyConnection:
        return _ForeignKeyConnection(self._db_path)

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> Document:
        return Document(
            document_id=row["document_id"],
            scope=row["scope"],
            filename=row["filename"],
            mime_type=row["mime_type"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            chunk_count=row["chunk_count"],
            size_bytes=row["size_bytes"],
            summary=row["summary"],
            embedding_model=row["embedding_model"],
        )


class _ForeignKeyConnection:
    """``async with`` wrapper that opens a connection with foreign keys on.

    SQLite enforces ``ON DELETE CASCADE`` only when the pragma is set on
    the connection doing the delete.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def __aenter__(self) -> aiosqlite.Connection:
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.execute("PRAGMA foreign_keys = ON")
        return self._db

    async def __aexit__(self, *exc_info: object) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
