"""Unit tests for TextExtractor - PDF, DOCX and plain-text extraction."""

from __future__ import annotations

import codecs
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from avatar_knowledge.services.extraction.text_extractor import (
    MIME_DOCX,
    MIME_PDF,
    MIME_TEXT,
    TextExtractor,
    normalize_mime_type,
)
from avatar_knowledge.utils.errors import ExtractionFailedError, UnsupportedTypeError

_MODULE = "avatar_knowledge.services.extraction.text_extractor"


def _fake_pdf(page_texts: list[str]) -> MagicMock:
    pages = [MagicMock(**{"get_text.return_value": text}) for text in page_texts]
    doc = MagicMock()
    doc.__len__.return_value = len(pages)
    doc.__getitem__.side_effect = lambda i: pages[i]
    return doc


@pytest.fixture()
def extractor() -> TextExtractor:
    return TextExtractor()


class TestMimeTypes:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("application/pdf", MIME_PDF),
            ("TEXT/PLAIN; charset=utf-8", MIME_TEXT),
            ("  application/PDF ", MIME_PDF),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw: str | None, expected: str) -> None:
        assert normalize_mime_type(raw) == expected

    def test_supported_types(self, extractor: TextExtractor) -> None:
        assert set(extractor.supported_mime_types()) == {MIME_PDF, MIME_TEXT, MIME_DOCX}
        assert extractor.is_supported("text/plain; charset=latin-1")
        assert not extractor.is_supported("image/png")

    def test_unsupported_type_raises(self, extractor: TextExtractor) -> None:
        with pytest.raises(UnsupportedTypeError) as exc_info:
            extractor.extract(b"\x89PNG", "image/png")
        assert exc_info.value.kind == "UnsupportedType"


class TestPlainText:
    def test_utf8(self, extractor: TextExtractor) -> None:
        assert extractor.extract("Café notes".encode(), MIME_TEXT) == "Café notes"

    def test_utf8_bom_stripped(self, extractor: TextExtractor) -> None:
        data = codecs.BOM_UTF8 + b"hello"
        assert extractor.extract(data, MIME_TEXT) == "hello"

    def test_utf16_with_bom(self, extractor: TextExtractor) -> None:
        data = "hello world".encode("utf-16")
        assert extractor.extract(data, MIME_TEXT) == "hello world"

    def test_latin1_fallback(self, extractor: TextExtractor) -> None:
        data = "résumé".encode("latin-1")
        assert extractor.extract(data, MIME_TEXT) == "résumé"

    def test_empty_bytes_give_empty_text(self, extractor: TextExtractor) -> None:
        assert extractor.extract(b"", MIME_TEXT) == ""

    @pytest.mark.asyncio
    async def test_extract_async(self, extractor: TextExtractor) -> None:
        assert await extractor.extract_async(b"async text", "text/plain") == "async text"


class TestPdf:
    def test_pages_joined_with_blank_lines(self, extractor: TextExtractor) -> None:
        doc = _fake_pdf(["Page one.\n", "   ", "Page three."])
        with patch(f"{_MODULE}.fitz.open", return_value=doc) as mock_open:
            text = extractor.extract(b"%PDF-1.7", MIME_PDF)

        assert text == "Page one.\n\nPage three."
        mock_open.assert_called_once_with(stream=b"%PDF-1.7", filetype="pdf")
        doc.close.assert_called_once()

    def test_image_only_pdf_gives_empty_text(self, extractor: TextExtractor) -> None:
        with patch(f"{_MODULE}.fitz.open", return_value=_fake_pdf(["", ""])):
            assert extractor.extract(b"%PDF-1.7", MIME_PDF) == ""

    def test_corrupt_pdf_raises(self, extractor: TextExtractor) -> None:
        with patch(f"{_MODULE}.fitz.open", side_effect=RuntimeError("cannot open broken document")):
            with pytest.raises(ExtractionFailedError) as exc_info:
                extractor.extract(b"not a pdf", MIME_PDF)
        assert exc_info.value.provider_name == "pymupdf"

    def test_page_read_failure_raises_and_closes(self, extractor: TextExtractor) -> None:
        doc = _fake_pdf(["ok"])
        doc.__getitem__.side_effect = RuntimeError("bad xref")
        with patch(f"{_MODULE}.fitz.open", return_value=doc):
            with pytest.raises(ExtractionFailedError):
                extractor.extract(b"%PDF-1.7", MIME_PDF)
        doc.close.assert_called_once()


class TestDocx:
    def test_paragraphs_and_tables(self, extractor: TextExtractor) -> None:
        cell = lambda text: SimpleNamespace(text=text)  # noqa: E731
        document = SimpleNamespace(
            paragraphs=[
                SimpleNamespace(text="Heading"),
                SimpleNamespace(text="   "),
                SimpleNamespace(text="Body paragraph."),
            ],
            tables=[
                SimpleNamespace(
                    rows=[
                        SimpleNamespace(cells=[cell("Drug"), cell("Dose")]),
                        SimpleNamespace(cells=[cell("Aspirin"), cell(""), cell("81mg")]),
                    ]
                )
            ],
        )
        with patch(f"{_MODULE}.docx.Document", return_value=document):
            text = extractor.extract(b"PK\x03\x04", MIME_DOCX)

        assert text == "Heading\n\nBody paragraph.\n\nDrug | Dose\n\nAspirin | 81mg"

    def test_corrupt_docx_raises(self, extractor: TextExtractor) -> None:
        with patch(f"{_MODULE}.docx.Document", side_effect=ValueError("file is not a zip file")):
            with pytest.raises(ExtractionFailedError) as exc_info:
                extractor.extract(b"garbage", MIME_DOCX)
        assert exc_info.value.kind == "ExtractionFailed"
