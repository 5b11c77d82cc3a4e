"""
Custom exceptions for FinLink.

Provides a hierarchy of exceptions with error codes for consistent error handling.
Oracle errors never escape the engines; they are retried and then degrade to
the deterministic rule-based paths. Document and evaluation input errors are
surfaced to the caller.
"""
from typing import Any, Dict, Optional


class FinLinkError(Exception):
    """
    Base exception for all FinLink errors.

    Attributes:
        error_code: Unique error code (e.g., FL-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "FL-000"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for result records and logs."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Document Errors (FL-1XX)
class DocumentProcessingError(FinLinkError):
    """Error during document processing."""
    error_code = "FL-100"

    def __init__(self, message: str = "Failed to process document", **kwargs):
        super().__init__(message, **kwargs)


class DocumentNotFoundError(FinLinkError):
    """Document not found in the document store."""
    error_code = "FL-101"

    def __init__(self, document_id: str, **kwargs):
        message = f"Document {document_id} not found"
        super().__init__(message, details={"document_id": document_id}, **kwargs)


class DocumentBusyError(FinLinkError):
    """A pipeline run is already in flight for this document."""
    error_code = "FL-102"

    def __init__(self, document_id: str, **kwargs):
        message = f"Document {document_id} is already being processed"
        super().__init__(message, details={"document_id": document_id}, **kwargs)


class InvalidStatusTransitionError(FinLinkError):
    """Requested document status change is not allowed."""
    error_code = "FL-103"

    def __init__(self, document_id: str, current: str, requested: str, **kwargs):
        message = f"Cannot move document {document_id} from '{current}' to '{requested}'"
        super().__init__(
            message,
            details={"document_id": document_id, "current": current, "requested": requested},
            **kwargs,
        )


class TextExtractionError(DocumentProcessingError):
    """Text could not be read from a stored document file."""
    error_code = "FL-104"

    def __init__(self, path: str, reason: str = "unreadable file", **kwargs):
        message = f"Failed to extract text from {path}: {reason}"
        super().__init__(message, details={"path": path, "reason": reason}, **kwargs)


# Taxonomy Errors (FL-3XX)
class TaxonomyLoadError(FinLinkError):
    """Taxonomy concept dictionary could not be loaded."""
    error_code = "FL-300"

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Failed to load taxonomy from {path}: {reason}"
        super().__init__(message, details={"path": path}, **kwargs)


# Evaluation Errors (FL-7XX)
class EvaluationInputMismatchError(FinLinkError):
    """Evaluation requested for an unknown task type."""
    error_code = "FL-700"

    def __init__(self, task_type: Any, **kwargs):
        message = f"Invalid task type: {task_type!r}"
        super().__init__(message, details={"task_type": str(task_type)}, **kwargs)


class GoldStandardUnavailableError(FinLinkError):
    """No gold-standard samples are available for a task."""
    error_code = "FL-701"

    def __init__(self, task_type: str, path: str, **kwargs):
        message = f"No gold-standard samples for {task_type} at {path}"
        super().__init__(message, details={"task_type": task_type, "path": path}, **kwargs)


# Storage Errors (FL-8XX)
class StorageError(FinLinkError):
    """Store operation failed."""
    error_code = "FL-800"

    def __init__(self, message: str = "Storage operation failed", **kwargs):
        super().__init__(message, **kwargs)


# Oracle Errors (FL-9XX)
class OracleError(FinLinkError):
    """External reasoning oracle failed."""
    error_code = "FL-900"

    def __init__(self, message: str = "Oracle call failed", provider: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        super().__init__(message, details=details, **kwargs)


class OracleUnavailableError(OracleError):
    """No oracle credential is configured."""
    error_code = "FL-901"

    def __init__(self, message: str = "No oracle provider configured", **kwargs):
        super().__init__(message, **kwargs)


class OracleTransportError(OracleError):
    """Oracle request failed in transport or at the provider."""
    error_code = "FL-902"


class OracleTimeoutError(OracleError):
    """Oracle call exceeded its timeout."""
    error_code = "FL-903"

    def __init__(self, timeout_seconds: float, **kwargs):
        message = f"Oracle call timed out after {timeout_seconds}s"
        super().__init__(message, **kwargs)
        self.details["timeout_seconds"] = timeout_seconds


class MalformedOracleResponseError(OracleError):
    """Oracle output is not JSON, looks truncated, or lacks the required array."""
    error_code = "FL-904"

    def __init__(self, message: str = "Malformed oracle response", **kwargs):
        super().__init__(message, **kwargs)


class ExtractionOracleError(MalformedOracleResponseError):
    """Entity extraction response failed validation."""
    error_code = "FL-905"


class IncompleteMappingError(MalformedOracleResponseError):
    """Concept linking response covered too few batch entities."""
    error_code = "FL-906"

    def __init__(self, received: int, expected: int, **kwargs):
        message = f"Incomplete mappings: got {received}, expected at least {expected}"
        super().__init__(message, **kwargs)
        self.details.update({"received": received, "expected": expected})
