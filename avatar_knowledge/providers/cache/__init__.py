"""Cache provider implementations."""

from avatar_knowledge.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
