"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers (TogetherAI,
Azure proxies, Ollama's ``/v1`` endpoint) via custom ``base_url`` and
model name settings.

Requests are split into batches of ``embedding_batch_size`` (100 by
default) and issued sequentially.  The call is all-or-nothing: the first
failing batch aborts the whole request with
:class:`~avatar_knowledge.utils.errors.EmbeddingFailedError` and the
vectors of earlier batches are discarded.
"""

from __future__ import annotations

import openai
import structlog

from avatar_knowledge.config.settings import Settings
from avatar_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from avatar_knowledge.utils.errors import EmbeddingFailedError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "text-embedding-3-small"

# Known embedding model dimensions.  Unknown models learn theirs from the
# first response.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "nomic-embed-text": 768,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  When
    ``openai_base_url`` is configured, the client points at that URL and
    uses ``openai_embedding_model`` if set.

    Parameters
    ----------
    settings:
        Application settings (API key, base URL, model, batch size).
    client:
        Optional pre-built ``AsyncOpenAI`` client, mainly for tests.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key
        self._batch_size = settings.embedding_batch_size

        if client is None:
            client_kwargs: dict = {"api_key": self._api_key or "missing"}
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

        self._model = settings.openai_embedding_model or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 0)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for *texts*, preserving order."""
        if not texts:
            return []

        inputs = [t.strip() for t in texts]
        if any(not t for t in inputs):
            raise EmbeddingFailedError(
                message="Cannot embed empty text",
                provider_name=self.get_provider_name(),
            )

        all_embeddings: list[list[float]] = []
        for start in range(0, len(inputs), self._batch_size):
            batch = inputs[start : start + self._batch_size]
            all_embeddings.extend(await self._embed_batch(batch, batch_start=start))

        return all_embeddings

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_batch(self, batch: list[str], batch_start: int) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(input=batch, model=self._model)
        except openai.APIError as exc:
            logger.warning(
                "embedding_batch_failed",
                provider=self._provider_label,
                model=self._model,
                batch_start=batch_start,
                batch_size=len(batch),
                error=str(exc),
            )
            raise EmbeddingFailedError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        data = list(response.data or [])
        if len(data) != len(batch):
            raise EmbeddingFailedError(
                message=f"Expected {len(batch)} embeddings, received {len(data)}",
                provider_name=self.get_provider_name(),
            )

        # The API reports each item's input position; never trust list order.
        data.sort(key=lambda item: item.index)
        vectors = [list(item.embedding) for item in data]
        self._check_dimensions(vectors)

        logger.info(
            "embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_start=batch_start,
            batch_size=len(batch),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return vectors

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        if not self._dimension and vectors:
            self._dimension = len(vectors[0])
        bad = [len(v) for v in vectors if len(v) != self._dimension]
        if bad:
            raise EmbeddingFailedError(
                message=f"Expected {self._dimension}-dim vectors, received length {bad[0]}",
                provider_name=self.get_provider_name(),
            )
