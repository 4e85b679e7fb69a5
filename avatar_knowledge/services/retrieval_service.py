"""Query-time retrieval over the knowledge store.

:meth:`RetrievalService.search` embeds the query, fetches every chunk
visible to the requested scope and ranks them with the
:class:`~avatar_knowledge.services.similarity.SimilarityEngine`.

Visibility: ``scope=None`` (or ``"shared"``) searches the shared pool only;
an avatar id searches the shared pool plus that avatar's private documents.

Searches only read, so they may run concurrently with each other and with
ingestion; a document becomes searchable the moment its chunks are
published.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import structlog

from avatar_knowledge.models.knowledge import RetrievalResult, is_shared_scope
from avatar_knowledge.services.similarity import DEFAULT_TOP_K, SimilarityEngine, validate_top_k
from avatar_knowledge.utils.errors import EmptyQueryError, NotFoundError

if TYPE_CHECKING:
    from avatar_knowledge.interfaces.cache_provider import ICacheProvider
    from avatar_knowledge.interfaces.embedding_provider import IEmbeddingProvider
    from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore

logger = structlog.get_logger(logger_name=__name__)


class RetrievalService:
    """Finds the chunks most relevant to a question.

    Parameters
    ----------
    knowledge_store:
        Source of visible ``(chunk, vector)`` pairs and document titles.
    embedding_provider:
        Embeds the query; must be the provider used at ingestion time.
    similarity_engine:
        Ranks candidates; a default engine is created when omitted.
    query_cache:
        Optional cache of query embeddings keyed by provider and text.
    default_top_k:
        Result count when the caller does not pass ``top_k``.
    min_similarity:
        Results scoring at or below this are dropped.  ``-1.0`` keeps all.
    """

    def __init__(
        self,
        knowledge_store: IKnowledgeStore,
        embedding_provider: IEmbeddingProvider,
        similarity_engine: SimilarityEngine | None = None,
        query_cache: ICacheProvider | None = None,
        default_top_k: int = DEFAULT_TOP_K,
        min_similarity: float = -1.0,
    ) -> None:
        self._store = knowledge_store
        self._embedder = embedding_provider
        self._engine = similarity_engine or SimilarityEngine()
        self._cache = query_cache
        self._default_top_k = validate_top_k(default_top_k)
        self._min_similarity = min_similarity

    async def search(
        self,
        query: str,
        scope: str | None = None,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Return the *top_k* chunks most similar to *query*.

        Parameters
        ----------
        query:
            Natural-language question.
        scope:
            ``None``/``"shared"`` for the shared pool, or an avatar id.
        top_k:
            Maximum results; defaults to the configured value (5).

        Returns
        -------
        RetrievalResult
            Ranked results; empty when nothing is visible to *scope*.

        Raises
        ------
        EmptyQueryError
            If *query* is empty or whitespace.
        ValueError
            If *top_k* is not a positive int.
        EmbeddingFailedError
            If the query cannot be embedded.
        DimensionMismatchError
            If stored vectors were produced by a different model.
        """
        if query is None or not query.strip():
            raise EmptyQueryError(provider_name="retrieval")
        k = self._default_top_k if top_k is None else validate_top_k(top_k)
        query = query.strip()
        scope = None if is_shared_scope(scope) else scope

        query_vector = await self._embed_query(query)

        candidates = await self._store.get_chunks_for_scope(scope)
        if not candidates:
            logger.info("search_no_candidates", scope=scope)
            return RetrievalResult(query=query, scope=scope, top_k=k)

        titles = await self._titles_for({chunk.document_id for chunk, _ in candidates})
        ranked = self._engine.rank(query_vector, candidates, top_k=k, titles=titles)
        if self._min_similarity > -1.0:
            ranked = [r for r in ranked if r.score > self._min_similarity]

        logger.info(
            "search_completed",
            scope=scope,
            candidates=len(candidates),
            returned=len(ranked),
            top_k=k,
        )
        return RetrievalResult(query=query, scope=scope, top_k=k, results=ranked)

    async def _embed_query(self, query: str) -> list[float]:
        if self._cache is None:
            return await self._embedder.embed_single(query)

        digest = hashlib.sha256(query.encode("utf-8")).hexdigest()
        key = f"query_embedding:{self._embedder.get_provider_name()}:{digest}"
        cached = await self._cache.get(key)
        if cached is not None:
            return cached
        vector = await self._embedder.embed_single(query)
        await self._cache.set(key, vector)
        return vector

    async def _titles_for(self, document_ids: set[str]) -> dict[str, str]:
        titles: dict[str, str] = {}
        for document_id in sorted(document_ids):
            try:
                titles[document_id] = (await self._store.get_document(document_id)).title
            except NotFoundError:
                # Deleted between the chunk read and now; fall back to the id.
                titles[document_id] = document_id
        return titles
