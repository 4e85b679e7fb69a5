"""Cosine similarity and top-K ranking over candidate chunks.

The knowledge base is small enough per avatar (hundreds to low thousands
of chunks) that exact ranking in process beats running a vector database:
candidate vectors are stacked into one numpy matrix and scored with a
single matrix-vector product.

Ordering is fully deterministic.  Results sort by descending score; equal
scores fall back to ascending ``chunk_index`` and then ascending
``document_id``, so the same query over the same store always returns the
same list.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import numpy as np
import structlog

from avatar_knowledge.models.knowledge import Chunk, ScoredChunk
from avatar_knowledge.utils.errors import DimensionMismatchError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TOP_K = 5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)`` in ``[-1, 1]``.

    A zero-length or all-zero vector has no direction; its similarity to
    anything is defined as ``0.0``.

    Raises
    ------
    DimensionMismatchError
        If ``len(a) != len(b)``.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(
            message=f"Cannot compare vectors of length {len(a)} and {len(b)}",
            provider_name="similarity",
        )
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    score = float(np.dot(va, vb) / denom)
    # Rounding can push |score| a hair past 1.
    return max(-1.0, min(1.0, score))


def validate_top_k(top_k: object) -> int:
    """Return *top_k* if it is a positive ``int``, else raise ``ValueError``."""
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
        raise ValueError(f"top_k must be a positive integer, got {top_k!r}")
    return top_k


class SimilarityEngine:
    """Ranks candidate chunks against a query vector by cosine similarity.

    Stateless; one instance can be shared by concurrent searches.
    """

    def rank(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[tuple[Chunk, Sequence[float]]],
        top_k: int = DEFAULT_TOP_K,
        titles: Mapping[str, str] | None = None,
    ) -> list[ScoredChunk]:
        """Return the *top_k* candidates most similar to *query_vector*.

        Parameters
        ----------
        query_vector:
            Embedding of the query.
        candidates:
            ``(chunk, vector)`` pairs already filtered to what the caller
            may see.
        top_k:
            Maximum number of results.  Must be a positive int; if it
            exceeds the candidate count every candidate is returned.
        titles:
            Optional ``document_id -> title`` mapping used to label results.

        Returns
        -------
        list[ScoredChunk]
            Sorted by descending score, ties broken by ascending
            ``chunk_index`` then ascending ``document_id``.  Empty when there
            are no candidates.

        Raises
        ------
        ValueError
            If *top_k* is not a positive int.
        DimensionMismatchError
            If any candidate vector's length differs from the query's.
        """
        top_k = validate_top_k(top_k)
        if not candidates:
            return []

        dim = len(query_vector)
        for chunk, vector in candidates:
            if len(vector) != dim:
                raise DimensionMismatchError(
                    message=(
                        f"Chunk {chunk.chunk_id} has dimension {len(vector)}, "
                        f"query has {dim}"
                    ),
                    provider_name="similarity",
                )

        scores = self._score_matrix(query_vector, [vector for _, vector in candidates])

        ranked = sorted(
            zip(scores, (chunk for chunk, _ in candidates)),
            key=lambda pair: (-pair[0], pair[1].chunk_index, pair[1].document_id),
        )

        titles = titles or {}
        results = [
            ScoredChunk(
                chunk=chunk,
                score=score,
                document_id=chunk.document_id,
                document_title=titles.get(chunk.document_id, ""),
            )
            for score, chunk in ranked[:top_k]
        ]

        logger.debug(
            "similarity_ranked",
            candidates=len(candidates),
            returned=len(results),
            top_score=results[0].score if results else None,
        )
        return results

    @staticmethod
    def _score_matrix(
        query_vector: Sequence[float],
        vectors: Sequence[Sequence[float]],
    ) -> list[float]:
        """Cosine of *query_vector* against every row of *vectors*."""
        query = np.asarray(query_vector, dtype=np.float64)
        matrix = np.asarray(vectors, dtype=np.float64).reshape(len(vectors), len(query))

        query_norm = float(np.linalg.norm(query))
        row_norms = np.linalg.norm(matrix, axis=1)
        denom = row_norms * query_norm
        dots = matrix @ query

        with np.errstate(divide="ignore", invalid="ignore"):
            raw = np.where(denom > 0.0, dots / denom, 0.0)
        return [float(s) for s in np.clip(raw, -1.0, 1.0)]
