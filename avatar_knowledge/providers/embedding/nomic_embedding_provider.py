"""Nomic embedding provider adapter (local/free via Ollama).

Talks to the OpenAI-compatible ``/v1`` endpoint that Ollama exposes and
produces 768-dimensional ``nomic-embed-text`` vectors.  No API key needed.
Batching, ordering and error wrapping are inherited from
:class:`OpenAIEmbeddingProvider`.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from avatar_knowledge.config.settings import Settings
from avatar_knowledge.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
)

logger = structlog.get_logger(logger_name=__name__)

_NOMIC_MODEL = "nomic-embed-text"
_NOMIC_DIMENSION = 768


class NomicEmbeddingProvider(OpenAIEmbeddingProvider):
    """Embedding provider backed by ``nomic-embed-text`` served via Ollama."""

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        if client is None:
            client = openai.AsyncOpenAI(
                base_url=f"{self._base_url}/v1",
                api_key="ollama",  # Ollama ignores the key but the client requires one
            )
        super().__init__(settings, client=client)
        self._api_key = ""
        self._model = _NOMIC_MODEL
        self._dimension = _NOMIC_DIMENSION
        self._provider_label = "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server is reachable."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
        except (httpx.ConnectError, httpx.TimeoutException):
            logger.info("ollama_unreachable", base_url=self._base_url)
            return False
        return response.status_code == 200
