"""
Processing result model.

One row per pipeline stage execution; rows are appended, never updated.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import JSON, Column, DateTime, Enum, Float, ForeignKey, String
from sqlalchemy.orm import relationship

from finlink.database import Base
from finlink.finlink_engine.models import TaskType


class ProcessingResult(Base):
    """
    SQLAlchemy model for stage results.

    Attributes:
        id: Unique identifier (UUID string).
        document_id: Foreign key to the processed document.
        model_name: Model recorded for the run.
        task_type: Extraction or Linking.
        predictions: JSON list of entity dicts.
        metrics: JSON metrics dict.
        processing_time_ms: Stage duration.
        created_at: Timestamp when the result was saved.
    """

    __tablename__ = "processing_results"

    id: str = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )
    document_id: str = Column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    model_name: str = Column(String(100), nullable=False)
    task_type: TaskType = Column(Enum(TaskType), nullable=False)
    predictions: List[Dict[str, Any]] = Column(JSON, nullable=False, default=list)
    metrics: Dict[str, Any] = Column(JSON, nullable=False, default=dict)
    processing_time_ms: float = Column(Float, nullable=False, default=0.0)
    created_at: datetime = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    document = relationship("Document", back_populates="results")

    def __repr__(self) -> str:
        return f"<ProcessingResult(id={self.id}, document_id={self.document_id}, task_type={self.task_type})>"
