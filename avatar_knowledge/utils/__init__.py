"""Utility modules for the avatar knowledge pipeline.

- **errors** -- Exception hierarchy rooted at KnowledgeBaseError; every
  member carries a stable ``kind`` string that is the only part of a
  failure exposed to callers.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **text_normalizer** -- Whitespace normalization, summaries and token
  estimates for extracted document text.
"""

# -- Domain exception hierarchy --------------------------------------------
from avatar_knowledge.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingFailedError,
    EmptyQueryError,
    ExtractionFailedError,
    InvalidTransitionError,
    KnowledgeBaseError,
    NoContentError,
    NotFoundError,
    OversizeInputError,
    StorageError,
    UnsupportedTypeError,
)

# -- Structured logging setup ----------------------------------------------
from avatar_knowledge.utils.logging import configure_logging, get_logger

# -- Text normalization ----------------------------------------------------
from avatar_knowledge.utils.text_normalizer import (
    clean_text,
    estimate_tokens,
    generate_summary,
    normalize_text,
)

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "EmbeddingFailedError",
    "EmptyQueryError",
    "ExtractionFailedError",
    "InvalidTransitionError",
    "KnowledgeBaseError",
    "NoContentError",
    "NotFoundError",
    "OversizeInputError",
    "StorageError",
    "UnsupportedTypeError",
    "clean_text",
    "configure_logging",
    "estimate_tokens",
    "generate_summary",
    "get_logger",
    "normalize_text",
]
