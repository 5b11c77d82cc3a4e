"""
Document and result stores.

The orchestrator talks to storage through three narrow contracts:
DocumentStore, ResultStore and TaxonomySource. Stores are constructed
explicitly and passed in; there is no module-level store instance.
"""
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Union, runtime_checkable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from finlink.exceptions import DocumentNotFoundError, StorageError
from finlink.finlink_engine.models import (
    DocumentStatus,
    Entity,
    EvaluationMetrics,
    ProcessingRecord,
    TaskType,
    TaxonomyConcept,
)
from finlink.models.document import Document
from finlink.models.result import ProcessingResult
from finlink.services.text_extractor import TextExtractor, get_text_extractor

logger = structlog.get_logger(__name__)


# =============================================================================
# Contracts
# =============================================================================

@runtime_checkable
class DocumentStore(Protocol):
    """Source of document text and owner of the status field's storage."""

    def get_document_text(self, document_id: str) -> str: ...

    def get_status(self, document_id: str) -> DocumentStatus: ...

    def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> None: ...


@runtime_checkable
class ResultStore(Protocol):
    """Append-only log of processing records keyed by document id."""

    def save_result(self, record: ProcessingRecord) -> ProcessingRecord: ...

    def get_results_for(self, document_id: str) -> List[ProcessingRecord]: ...


@runtime_checkable
class TaxonomySource(Protocol):
    """Read-only concept dictionary."""

    def list_concepts(self) -> List[TaxonomyConcept]: ...


# =============================================================================
# In-memory stores
# =============================================================================

@dataclass
class StoredDocument:
    """A document held by the in-memory store."""
    id: str
    text: Optional[str] = None
    file_path: Optional[str] = None
    filename: Optional[str] = None
    status: DocumentStatus = DocumentStatus.UPLOADED
    error_message: Optional[str] = None


class InMemoryDocumentStore:
    """Document store kept in a dict; for tests and single-process use."""

    def __init__(self, text_extractor: Optional[TextExtractor] = None):
        self._documents: Dict[str, StoredDocument] = {}
        self._text_extractor = text_extractor or get_text_extractor()

    def add_document(
        self,
        text: Optional[str] = None,
        file_path: Optional[Union[str, Path]] = None,
        filename: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> str:
        """Store a document with status ``uploaded`` and return its id."""
        if text is None and file_path is None:
            raise ValueError("A document needs text or a file path")
        document_id = document_id or str(uuid.uuid4())
        self._documents[document_id] = StoredDocument(
            id=document_id,
            text=text,
            file_path=str(file_path) if file_path is not None else None,
            filename=filename or (Path(file_path).name if file_path is not None else None),
        )
        return document_id

    def get_document(self, document_id: str) -> StoredDocument:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def get_document_text(self, document_id: str) -> str:
        document = self.get_document(document_id)
        if document.text is not None:
            return document.text
        return self._text_extractor.extract_text(document.file_path)

    def get_status(self, document_id: str) -> DocumentStatus:
        return self.get_document(document_id).status

    def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> None:
        document = self.get_document(document_id)
        document.status = DocumentStatus(status)
        document.error_message = error_message


class InMemoryResultStore:
    """Result log kept in memory."""

    def __init__(self):
        self._results: Dict[str, List[ProcessingRecord]] = {}

    def save_result(self, record: ProcessingRecord) -> ProcessingRecord:
        saved = record.with_id()
        self._results.setdefault(record.document_id, []).append(saved)
        return saved

    def get_results_for(self, document_id: str) -> List[ProcessingRecord]:
        return list(self._results.get(document_id, []))


# =============================================================================
# SQL stores
# =============================================================================

class _SqlStore:
    """Session handling shared by the SQL stores."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Database operation failed", error=str(e))
            raise StorageError(f"Database operation failed: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class SqlDocumentStore(_SqlStore):
    """Document store over the ``documents`` table."""

    def __init__(self, session_factory: sessionmaker, text_extractor: Optional[TextExtractor] = None):
        super().__init__(session_factory)
        self._text_extractor = text_extractor or get_text_extractor()

    def add_document(
        self,
        text: Optional[str] = None,
        file_path: Optional[Union[str, Path]] = None,
        filename: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> str:
        """Store a document with status ``uploaded`` and return its id."""
        if text is None and file_path is None:
            raise ValueError("A document needs text or a file path")
        document_id = document_id or str(uuid.uuid4())
        with self._session() as db:
            db.add(Document(
                id=document_id,
                text=text,
                file_path=str(file_path) if file_path is not None else None,
                filename=filename or (Path(file_path).name if file_path is not None else None),
                status=DocumentStatus.UPLOADED,
            ))
        return document_id

    def get_document_text(self, document_id: str) -> str:
        with self._session() as db:
            document = self._get(db, document_id)
            text, file_path = document.text, document.file_path
        if text is not None:
            return text
        return self._text_extractor.extract_text(file_path)

    def get_status(self, document_id: str) -> DocumentStatus:
        with self._session() as db:
            return DocumentStatus(self._get(db, document_id).status)

    def get_error_message(self, document_id: str) -> Optional[str]:
        with self._session() as db:
            return self._get(db, document_id).error_message

    def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> None:
        with self._session() as db:
            document = self._get(db, document_id)
            document.status = DocumentStatus(status)
            document.error_message = error_message

    @staticmethod
    def _get(db: Session, document_id: str) -> Document:
        document = db.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document


class SqlResultStore(_SqlStore):
    """Result log over the ``processing_results`` table."""

    def save_result(self, record: ProcessingRecord) -> ProcessingRecord:
        saved = record.with_id()
        with self._session() as db:
            db.add(ProcessingResult(
                id=saved.id,
                document_id=saved.document_id,
                model_name=saved.model_name,
                task_type=saved.task_type,
                predictions=[e.to_dict() for e in saved.predictions],
                metrics=saved.metrics.to_dict(),
                processing_time_ms=saved.processing_time_ms,
                created_at=saved.created_at,
            ))
        return saved

    def get_results_for(self, document_id: str) -> List[ProcessingRecord]:
        with self._session() as db:
            rows = (
                db.query(ProcessingResult)
                .filter(ProcessingResult.document_id == document_id)
                .order_by(ProcessingResult.created_at)
                .all()
            )
            return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: ProcessingResult) -> ProcessingRecord:
        return ProcessingRecord(
            id=row.id,
            document_id=row.document_id,
            model_name=row.model_name,
            task_type=TaskType(row.task_type),
            predictions=tuple(Entity.from_dict(p) for p in row.predictions or []),
            metrics=EvaluationMetrics.from_dict(row.metrics),
            processing_time_ms=row.processing_time_ms,
            created_at=row.created_at,
        )
