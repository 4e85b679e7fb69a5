"""Text extraction from uploaded PDF, DOCX and plain-text bytes."""

from avatar_knowledge.services.extraction.text_extractor import (
    SUPPORTED_MIME_TYPES,
    TextExtractor,
    normalize_mime_type,
)

__all__ = ["SUPPORTED_MIME_TYPES", "TextExtractor", "normalize_mime_type"]
