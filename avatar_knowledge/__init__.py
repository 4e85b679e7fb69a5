"""Document ingestion and retrieval that grounds avatar conversations.

Entry points:

- :func:`avatar_knowledge.main.build_knowledge_base` -- wire a
  :class:`~avatar_knowledge.services.knowledge_base.KnowledgeBase` from settings
- ``python -m avatar_knowledge.cli`` -- command-line management
"""

__version__ = "0.1.0"
