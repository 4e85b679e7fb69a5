"""Document ingestion pipeline.

Orchestrates: **validate -> extract -> chunk -> embed -> store**.

1. **Extract** (services/extraction) -- PDF, DOCX or plain text to a string.
2. **Chunk** (chunker.py / TextChunker) -- ~2000-character overlapping
   windows cut at paragraph, sentence or word boundaries.
3. **Embed** (via IEmbeddingProvider) -- one vector per chunk.
4. **Store** (via IKnowledgeStore) -- document and chunks published together.

IngestionService runs these stages on a background worker and records each
step on the job tracker.
"""

from avatar_knowledge.services.ingestion.chunker import ChunkSequence, TextChunker
from avatar_knowledge.services.ingestion.ingestion_service import IngestionService, IngestionTask

__all__ = [
    "ChunkSequence",
    "IngestionService",
    "IngestionTask",
    "TextChunker",
]
