"""Background execution for the ingestion pipeline."""

from avatar_knowledge.pipeline.worker_pool import IngestionWorkerPool

__all__ = ["IngestionWorkerPool"]
