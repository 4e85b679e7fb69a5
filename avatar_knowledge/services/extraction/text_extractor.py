"""Plain-text extraction from uploaded document bytes.

Supports three formats:

- **PDF** via PyMuPDF (``fitz``), opened from memory, text taken page by
  page and joined with blank lines so page breaks act as paragraph breaks.
- **DOCX** via python-docx; body paragraphs followed by table cells.
- **Plain text**, decoded as UTF-8 (BOM tolerated), falling back to UTF-16
  when a UTF-16 BOM is present and to Latin-1 when the bytes are not valid
  UTF-8.  Latin-1 maps every byte, so plain text never fails to decode.

Size limits are not enforced here; the ingestion service validates the
upload before extraction runs.  Both parsers are CPU-bound and blocking,
so async callers should use :meth:`TextExtractor.extract_async`, which
runs extraction in a worker thread.
"""

from __future__ import annotations

import asyncio
import codecs
import io

import docx  # python-docx
import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from avatar_knowledge.utils.errors import ExtractionFailedError, UnsupportedTypeError

logger = structlog.get_logger(logger_name=__name__)

MIME_PDF = "application/pdf"
MIME_TEXT = "text/plain"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_MIME_TYPES: tuple[str, ...] = (MIME_PDF, MIME_TEXT, MIME_DOCX)


def normalize_mime_type(mime_type: str | None) -> str:
    """Lower-case *mime_type* and drop parameters (``; charset=utf-8``)."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


class TextExtractor:
    """Turns PDF, DOCX and plain-text bytes into a single string."""

    @staticmethod
    def supported_mime_types() -> list[str]:
        return list(SUPPORTED_MIME_TYPES)

    @staticmethod
    def is_supported(mime_type: str | None) -> bool:
        return normalize_mime_type(mime_type) in SUPPORTED_MIME_TYPES

    def extract(self, data: bytes, mime_type: str) -> str:
        """Extract plain text from *data*.

        Parameters
        ----------
        data:
            Raw upload bytes.
        mime_type:
            Declared mime type of the upload.

        Returns
        -------
        str
            The extracted text.  May be empty (e.g. an image-only PDF); the
            caller decides whether that is an error.

        Raises
        ------
        UnsupportedTypeError
            If *mime_type* is not PDF, plain text or DOCX.
        ExtractionFailedError
            If the bytes cannot be parsed as the declared format.
        """
        normalized = normalize_mime_type(mime_type)
        if normalized == MIME_PDF:
            text = self._extract_pdf(data)
        elif normalized == MIME_DOCX:
            text = self._extract_docx(data)
        elif normalized == MIME_TEXT:
            text = self._decode_text(data)
        else:
            raise UnsupportedTypeError(
                message=(
                    f"Unsupported file type: {mime_type!r}. "
                    "Supported types: PDF, TXT, DOCX"
                ),
                provider_name="text_extractor",
            )

        logger.debug(
            "text_extracted",
            mime_type=normalized,
            size_bytes=len(data),
            chars=len(text),
        )
        return text

    async def extract_async(self, data: bytes, mime_type: str) -> str:
        """Run :meth:`extract` in a worker thread."""
        return await asyncio.to_thread(self.extract, data, mime_type)

    # ------------------------------------------------------------------
    # Format handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            logger.warning("pdf_open_failed", size_bytes=len(data), error=str(exc))
            raise ExtractionFailedError(
                message=f"Failed to open PDF: {exc}",
                provider_name="pymupdf",
            ) from exc

        pages: list[str] = []
        try:
            for page_num in range(len(doc)):
                text = doc[page_num].get_text("text").strip()
                if text:
                    pages.append(text)
        except Exception as exc:
            logger.warning("pdf_page_read_failed", pages_read=len(pages), error=str(exc))
            raise ExtractionFailedError(
                message=f"Failed to read PDF text: {exc}",
                provider_name="pymupdf",
            ) from exc
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", size_bytes=len(data))
        return "\n\n".join(pages)

    @staticmethod
    def _extract_docx(data: bytes) -> str:
        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as exc:
            logger.warning("docx_open_failed", size_bytes=len(data), error=str(exc))
            raise ExtractionFailedError(
                message=f"Failed to open DOCX: {exc}",
                provider_name="python-docx",
            ) from exc

        parts = [para.text for para in document.paragraphs if para.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return "\n\n".join(parts)

    @staticmethod
    def _decode_text(data: bytes) -> str:
        if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
            try:
                return data.decode("utf-16")
            except UnicodeDecodeError as exc:
                raise ExtractionFailedError(
                    message=f"Invalid UTF-16 text: {exc}",
                    provider_name="text_extractor",
                ) from exc
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.info("text_decode_fallback", encoding="latin-1", size_bytes=len(data))
            return data.decode("latin-1")
