"""In-memory knowledge store.

Keeps staged and published documents in separate dicts; publishing moves a
document across and installs its chunk list under one lock acquisition, so
concurrent readers see either nothing or the complete chunk set.
"""

from __future__ import annotations

import asyncio

import structlog

from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore
from avatar_knowledge.models.knowledge import SHARED_SCOPE, Chunk, Document, is_shared_scope
from avatar_knowledge.utils.errors import NotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)


class MemoryKnowledgeStore(IKnowledgeStore):
    """Dict-backed :class:`IKnowledgeStore` for tests and single-process use."""

    def __init__(self) -> None:
        self._staged: dict[str, Document] = {}
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, list[Chunk]] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.debug("memory_knowledge_store_initialized")

    async def put_document(self, document: Document) -> None:
        async with self._lock:
            if document.document_id in self._documents:
                raise StorageError(
                    message=f"Document {document.document_id} is already published",
                    provider_name=self.get_provider_name(),
                )
            self._staged[document.document_id] = document

    async def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        async with self._lock:
            document = self._staged.get(document_id)
            if document is None:
                raise NotFoundError(
                    message=f"Document {document_id} was not staged",
                    provider_name=self.get_provider_name(),
                )
            foreign = [c.chunk_id for c in chunks if c.document_id != document_id]
            if foreign:
                raise StorageError(
                    message=f"Chunks {foreign[:3]} do not belong to {document_id}",
                    provider_name=self.get_provider_name(),
                )
            ordered = sorted(chunks, key=lambda c: c.chunk_index)
            self._chunks[document_id] = ordered
            self._documents[document_id] = document.model_copy(
                update={"chunk_count": len(ordered)}
            )
            del self._staged[document_id]

        logger.info("document_published", document_id=document_id, chunks=len(chunks))

    async def get_chunks_for_scope(self, scope: str | None) -> list[tuple[Chunk, list[float]]]:
        async with self._lock:
            visible = [
                doc_id
                for doc_id, doc in self._documents.items()
                if doc.scope == SHARED_SCOPE or (not is_shared_scope(scope) and doc.scope == scope)
            ]
            return [
                (chunk, list(chunk.embedding))
                for doc_id in visible
                for chunk in self._chunks.get(doc_id, [])
            ]

    async def get_document(self, document_id: str) -> Document:
        async with self._lock:
            document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(
                message=f"Document {document_id} not found",
                provider_name=self.get_provider_name(),
            )
        return document

    async def list_documents(self, scope: str | None = None) -> list[Document]:
        owner = SHARED_SCOPE if is_shared_scope(scope) else scope
        async with self._lock:
            documents = [doc for doc in self._documents.values() if doc.scope == owner]
        return sorted(documents, key=lambda d: d.created_at, reverse=True)

    async def delete_document(self, document_id: str) -> None:
        async with self._lock:
            staged = self._staged.pop(document_id, None)
            published = self._documents.pop(document_id, None)
            chunks = self._chunks.pop(document_id, [])
        if staged is None and published is None:
            raise NotFoundError(
                message=f"Document {document_id} not found",
                provider_name=self.get_provider_name(),
            )
        logger.info("document_deleted", document_id=document_id, chunks=len(chunks))

    def get_provider_name(self) -> str:
        return "memory_knowledge"
