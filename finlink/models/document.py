"""
Document model for stored financial documents.

A document holds either its raw text or the path of a file the text is
extracted from, plus the processing status owned by the orchestrator.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Enum, String, Text
from sqlalchemy.orm import relationship

from finlink.database import Base
from finlink.finlink_engine.models import DocumentStatus


class Document(Base):
    """
    SQLAlchemy model for documents.

    Attributes:
        id: Unique identifier (UUID string).
        filename: Original filename, if any.
        file_path: Storage path of the source file, if any.
        text: Raw document text, if stored inline.
        status: Current processing status.
        error_message: Error message if processing failed.
        created_at: Timestamp when the document was stored.
        updated_at: Timestamp of last update.
    """

    __tablename__ = "documents"

    id: str = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )
    filename: Optional[str] = Column(String(255), nullable=True)
    file_path: Optional[str] = Column(String(500), nullable=True)
    text: Optional[str] = Column(Text, nullable=True)
    status: DocumentStatus = Column(
        Enum(DocumentStatus),
        default=DocumentStatus.UPLOADED,
        nullable=False,
    )
    error_message: Optional[str] = Column(Text, nullable=True)
    created_at: datetime = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: datetime = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    results = relationship(
        "ProcessingResult",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="ProcessingResult.created_at",
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, filename='{self.filename}', status={self.status})>"
