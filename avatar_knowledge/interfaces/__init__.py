"""Abstract interfaces for every swappable component.

Concrete adapters implement these and are injected at construction time
(see ``avatar_knowledge.main.build_knowledge_base``), so tests can pass
fakes and deployments can swap backends without touching pipeline code.

    Interface            →  Concrete implementations (in avatar_knowledge/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider   →  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IKnowledgeStore      →  MemoryKnowledgeStore, SQLiteKnowledgeStore
    IJobStore            →  MemoryJobStore, SQLiteJobStore
    ICacheProvider       →  MemoryCacheProvider
"""

from avatar_knowledge.interfaces.cache_provider import ICacheProvider
from avatar_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from avatar_knowledge.interfaces.job_store import IJobStore
from avatar_knowledge.interfaces.knowledge_store import IKnowledgeStore

__all__ = [
    "ICacheProvider",
    "IEmbeddingProvider",
    "IJobStore",
    "IKnowledgeStore",
]
