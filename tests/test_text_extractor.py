"""
Tests for document text extraction.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from finlink.exceptions import TextExtractionError
from finlink.services.text_extractor import TextExtractor, extract_text


class TestTextExtractor:
    """Tests for TextExtractor."""

    @pytest.fixture
    def extractor(self) -> TextExtractor:
        return TextExtractor()

    def test_plain_text(self, extractor, temp_dir):
        path = temp_dir / "report.txt"
        path.write_text("Revenue was $100", encoding="utf-8")
        assert extractor.extract_text(path) == "Revenue was $100"

    def test_module_function(self, temp_dir):
        path = temp_dir / "notes.md"
        path.write_text("# Notes\n42 shares", encoding="utf-8")
        assert extract_text(str(path)) == "# Notes\n42 shares"

    def test_missing_file(self, extractor, temp_dir):
        with pytest.raises(TextExtractionError, match="file not found"):
            extractor.extract_text(temp_dir / "missing.txt")

    def test_unsupported_type(self, extractor, temp_dir):
        path = temp_dir / "report.xlsx"
        path.write_bytes(b"PK")
        with pytest.raises(TextExtractionError, match="unsupported"):
            extractor.extract_text(path)

    def test_undecodable_text(self, extractor, temp_dir):
        path = temp_dir / "bad.txt"
        path.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(TextExtractionError):
            extractor.extract_text(path)

    def test_pdf_pages_joined_with_form_feeds(self, extractor, temp_dir):
        path = temp_dir / "report.pdf"
        path.write_bytes(b"%PDF-1.4")
        pages = [MagicMock(), MagicMock(), MagicMock()]
        pages[0].extract_text.return_value = "Page one"
        pages[1].extract_text.return_value = None
        pages[2].extract_text.return_value = "Page three"
        pdf = MagicMock()
        pdf.pages = pages
        pdf.__enter__.return_value = pdf

        with patch("finlink.services.text_extractor.pdfplumber.open", return_value=pdf):
            text = extractor.extract_text(path)

        assert text == "Page one\f\fPage three"

    def test_corrupt_pdf(self, extractor, temp_dir):
        path = temp_dir / "broken.pdf"
        path.write_bytes(b"not a pdf at all")
        with pytest.raises(TextExtractionError):
            extractor.extract_text(path)

    def test_docx_paragraphs_then_table_rows(self, extractor, temp_dir):
        path = temp_dir / "report.docx"
        path.write_bytes(b"PK")
        row = SimpleNamespace(cells=[SimpleNamespace(text="Revenue "), SimpleNamespace(text="$1,200")])
        empty_row = SimpleNamespace(cells=[SimpleNamespace(text=""), SimpleNamespace(text=" ")])
        document = SimpleNamespace(
            paragraphs=[
                SimpleNamespace(text="Annual Report"),
                SimpleNamespace(text="   "),
                SimpleNamespace(text=" Net income grew 12% "),
            ],
            tables=[SimpleNamespace(rows=[row, empty_row])],
        )

        with patch("finlink.services.text_extractor.docx.Document", return_value=document) as opened:
            text = extractor.extract_text(path)

        opened.assert_called_once_with(str(path))
        assert text == "Annual Report\nNet income grew 12%\nRevenue\t$1,200"

    def test_corrupt_docx(self, extractor, temp_dir):
        path = temp_dir / "broken.docx"
        path.write_bytes(b"not a zip archive")
        with pytest.raises(TextExtractionError):
            extractor.extract_text(path)

    def test_legacy_doc_unsupported(self, extractor, temp_dir):
        path = temp_dir / "report.doc"
        path.write_bytes(b"\xd0\xcf\x11\xe0")
        with pytest.raises(TextExtractionError, match="unsupported"):
            extractor.extract_text(path)
