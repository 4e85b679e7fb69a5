"""Knowledge store implementations."""

from avatar_knowledge.providers.knowledge_store.memory_knowledge_store import MemoryKnowledgeStore
from avatar_knowledge.providers.knowledge_store.sqlite_knowledge_store import SQLiteKnowledgeStore

__all__ = ["MemoryKnowledgeStore", "SQLiteKnowledgeStore"]
