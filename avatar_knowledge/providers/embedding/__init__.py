"""Embedding provider implementations.

    1. OpenAIEmbeddingProvider - text-embedding-3-small (1536 dims), or any
       OpenAI-compatible endpoint via ``openai_base_url``.
    2. NomicEmbeddingProvider  - nomic-embed-text via Ollama (768 dims).
       Free and local, but requires a running Ollama server.
"""

from avatar_knowledge.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from avatar_knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
