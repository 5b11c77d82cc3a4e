"""
Document text extraction.

Turns a stored document file into plain text for the extraction engine.
PDF pages are joined with form feeds so entities can report a page number.
Word documents contribute their paragraphs followed by their table rows.
"""
from pathlib import Path
from typing import Optional, Union

import docx
import pdfplumber
import structlog

from finlink.exceptions import TextExtractionError

logger = structlog.get_logger(__name__)

PAGE_BREAK = "\f"

TEXT_SUFFIXES = {".txt", ".text", ".md", ".csv", ".htm", ".html"}


class TextExtractor:
    """Plain-text extraction for PDF, Word and text documents."""

    def extract_text(self, path: Union[str, Path]) -> str:
        """
        Extract text from a document file.

        Args:
            path: Path to a PDF, DOCX or text-like file.

        Returns:
            Document text; PDF pages separated by form feeds.

        Raises:
            TextExtractionError: If the file is missing, unsupported or unreadable.
        """
        path = Path(path)
        if not path.is_file():
            raise TextExtractionError(str(path), "file not found")

        suffix = path.suffix.lower()
        if suffix == ".pdf":
            return self._extract_pdf(path)
        if suffix == ".docx":
            return self._extract_docx(path)
        if suffix in TEXT_SUFFIXES:
            return self._extract_plain(path)

        raise TextExtractionError(str(path), f"unsupported file type '{suffix or 'none'}'")

    def _extract_pdf(self, path: Path) -> str:
        logger.info("Extracting PDF text", path=str(path))
        try:
            with pdfplumber.open(path) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as e:
            # pdfminer raises a range of parser-specific errors
            raise TextExtractionError(str(path), str(e)) from e

        logger.info("PDF text extracted", path=str(path), pages=len(pages))
        return PAGE_BREAK.join(pages)

    def _extract_docx(self, path: Path) -> str:
        logger.info("Extracting DOCX text", path=str(path))
        try:
            document = docx.Document(str(path))
            lines = [p.text.strip() for p in document.paragraphs if p.text.strip()]
            for table in document.tables:
                for row in table.rows:
                    cells = [cell.text.strip() for cell in row.cells]
                    if any(cells):
                        lines.append("\t".join(cells))
        except Exception as e:
            # python-docx surfaces zip, XML and package errors alike
            raise TextExtractionError(str(path), str(e)) from e

        logger.info("DOCX text extracted", path=str(path), lines=len(lines))
        return "\n".join(lines)

    def _extract_plain(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TextExtractionError(str(path), str(e)) from e


# Singleton instance
_extractor_instance: Optional[TextExtractor] = None


def get_text_extractor() -> TextExtractor:
    """Get singleton TextExtractor instance."""
    global _extractor_instance
    if _extractor_instance is None:
        _extractor_instance = TextExtractor()
    return _extractor_instance


def extract_text(path: Union[str, Path]) -> str:
    """Extract text from a document file."""
    return get_text_extractor().extract_text(path)
