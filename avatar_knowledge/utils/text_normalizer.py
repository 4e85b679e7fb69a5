"""Text normalization helpers for extracted document text.

Extraction back-ends return text with very different whitespace habits:
PyMuPDF keeps hard line wraps and trailing spaces per line, python-docx
returns one string per paragraph, and plain-text uploads arrive in
whatever shape the author saved them.  These helpers bring all three to
a common form before chunking, keeping paragraph breaks (which the
chunker prefers as cut points) while discarding layout noise.
"""

from __future__ import annotations

import math
import re

# Rough token estimation: ~4 characters per token for English prose.
CHARS_PER_TOKEN = 4

_HORIZONTAL_WS = re.compile(r"[ \t\f\v\u00a0]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0e-\x1f\x7f]")


def normalize_text(text: str) -> str:
    """Normalize whitespace while preserving paragraph structure.

    - ``\\r\\n`` and ``\\r`` become ``\\n``
    - control characters are dropped
    - runs of spaces/tabs collapse to one space and lines are trimmed
    - three or more newlines collapse to a single blank line

    Args:
        text: Raw extracted text.

    Returns:
        Normalized text with leading/trailing whitespace removed.
    """
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    lines = [_HORIZONTAL_WS.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def clean_text(text: str) -> str:
    """Collapse *all* whitespace (newlines included) into single spaces.

    Used for one-line renderings such as document summaries and CLI output.
    """
    return re.sub(r"\s+", " ", text or "").strip()


def estimate_tokens(text: str) -> int:
    """Return an approximate token count (``ceil(len / 4)``)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def generate_summary(text: str, max_length: int = 200) -> str:
    """Return a short preview of *text* for document listings.

    Breaks after the last full stop when one falls in the second half of
    the window, otherwise truncates at *max_length* and appends ``...``.

    Args:
        text: Document text.
        max_length: Maximum summary length in characters (before the ellipsis).

    Returns:
        The summary string; empty when *text* is blank.
    """
    cleaned = clean_text(text)
    if len(cleaned) <= max_length:
        return cleaned

    break_point = cleaned.rfind(".", 0, max_length + 1)
    if break_point > max_length * 0.5:
        return cleaned[: break_point + 1]

    return cleaned[:max_length] + "..."
