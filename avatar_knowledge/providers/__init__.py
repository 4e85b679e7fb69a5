"""Concrete adapters for the interfaces in ``avatar_knowledge.interfaces``."""
