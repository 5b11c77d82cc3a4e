"""Models package."""
from finlink.models.document import Document
from finlink.models.result import ProcessingResult

__all__ = ["Document", "ProcessingResult"]
