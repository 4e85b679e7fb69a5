"""Abstract base class for cache providers.

The retrieval service caches query embeddings so that repeated questions
(common in a classroom of students talking to the same avatar) skip the
embedding round trip.  Implementations may be in-process or network-backed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    Operations are async so a network-backed store (e.g. Redis) can be
    dropped in without blocking the event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None`` if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* using the cache's configured TTL."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  No-op if absent."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""
