"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-length vectors.
Implementations wrap OpenAI ``text-embedding-3-small`` or Nomic
``nomic-embed-text`` (local via Ollama); tests inject a deterministic
hash-based provider.  The ingestion orchestrator and retrieval service
receive a provider by constructor injection, so swapping backends never
touches pipeline code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from avatar_knowledge.services.similarity import cosine_similarity


# Concrete implementations:
#   OpenAIEmbeddingProvider  - text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider   - nomic-embed-text via Ollama (local)
# Located in: avatar_knowledge/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services.

    ``embed`` is all-or-nothing: it either returns one vector per input, in
    input order, or raises
    :class:`~avatar_knowledge.utils.errors.EmbeddingFailedError`.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a list of texts.

        Parameters
        ----------
        texts:
            Texts to embed.  Implementations batch internally when the
            underlying API has a per-call limit (100 items by default).

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*.  Each inner list
            has length :meth:`get_dimension`.  An empty input returns ``[]``.

        Raises
        ------
        avatar_knowledge.utils.errors.EmbeddingFailedError
            If any batch fails or the response does not line up with the
            request.  No partial result is ever returned.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for one text (e.g. a search query).

        Raises
        ------
        avatar_knowledge.utils.errors.EmbeddingFailedError
            If the embedding call fails.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider: ``1536`` for OpenAI
        ``text-embedding-3-small``, ``768`` for ``nomic-embed-text``.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        """Return ``dot(a, b) / (|a| * |b|)``.

        Raises
        ------
        avatar_knowledge.utils.errors.DimensionMismatchError
            If the vectors have different lengths.
        """
        return cosine_similarity(a, b)
