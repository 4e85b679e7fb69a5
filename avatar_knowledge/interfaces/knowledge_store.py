"""Abstract base class for knowledge stores.

A knowledge store persists documents and their embedded chunks and answers
the one query retrieval needs: "every chunk (with its vector) visible to
this scope".

Write protocol
--------------
Ingestion writes in two calls::

    await store.put_document(document)          # staged, not yet visible
    await store.put_chunks(document_id, chunks) # chunks written + document published

``put_chunks`` publishes the document in the same step that writes the
chunks, so readers never observe a document without its full chunk set.
If ``put_chunks`` fails the caller deletes the staged document.

Visibility
----------
``scope=None`` or ``"shared"`` sees shared documents only.  An avatar id
sees shared documents plus the documents that avatar owns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from avatar_knowledge.models.knowledge import Chunk, Document


# Concrete implementations:
#   MemoryKnowledgeStore  - dict-backed, process lifetime (tests, demos)
#   SQLiteKnowledgeStore  - aiosqlite, single file on disk
# Located in: avatar_knowledge/providers/knowledge_store/
class IKnowledgeStore(ABC):
    """Contract for document + chunk persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backing storage (create tables, directories)."""

    @abstractmethod
    async def put_document(self, document: Document) -> None:
        """Stage *document*.  It stays invisible until :meth:`put_chunks`.

        Staging an id that already exists replaces the staged record; a
        published document with the same id is an error.

        Raises
        ------
        avatar_knowledge.utils.errors.StorageError
            If the document id is already published or the write fails.
        """

    @abstractmethod
    async def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        """Write all *chunks* of a staged document and publish it.

        Either every chunk is written and the document becomes visible, or
        nothing changes.

        Raises
        ------
        avatar_knowledge.utils.errors.NotFoundError
            If *document_id* was never staged.
        avatar_knowledge.utils.errors.StorageError
            If the write fails.
        """

    @abstractmethod
    async def get_chunks_for_scope(self, scope: str | None) -> list[tuple[Chunk, list[float]]]:
        """Return ``(chunk, vector)`` pairs of every published document visible to *scope*."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document:
        """Return a published document.

        Raises
        ------
        avatar_knowledge.utils.errors.NotFoundError
            If no published document has *document_id*.
        """

    @abstractmethod
    async def list_documents(self, scope: str | None = None) -> list[Document]:
        """Return published documents owned by exactly *scope*, newest first.

        ``None`` lists the shared pool.  Unlike
        :meth:`get_chunks_for_scope`, an avatar scope does not include
        shared documents.
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Delete a document (staged or published) and all of its chunks.

        Raises
        ------
        avatar_knowledge.utils.errors.NotFoundError
            If *document_id* is unknown.
        """

    async def close(self) -> None:  # noqa: B027
        """Release held resources.  Default: nothing to release."""

    def get_provider_name(self) -> str:
        return type(self).__name__
