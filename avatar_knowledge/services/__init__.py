"""Pipeline services: extraction, chunking, ingestion, ranking and retrieval.

Import from the submodules directly; this package does not re-export so
that interfaces can depend on ``services.similarity`` without a cycle.
"""
