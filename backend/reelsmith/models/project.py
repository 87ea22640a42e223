"""Project model."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, JSON

from reelsmith.db.database import Base


class ProcessingStatus(str, enum.Enum):
    """Processing status mirrored from the highlight job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Project(Base):
    """Project record holding the durable copy of a highlight job's state."""

    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Processing mirror
    processing_type = Column(String(64), nullable=True)
    processing_job_id = Column(String(64), nullable=True)
    processing_status = Column(Enum(ProcessingStatus), nullable=True)
    processing_progress = Column(Integer, default=0, nullable=False)
    processing_message = Column(String(1024), nullable=True)
    processing_error = Column(Text, nullable=True)
    processing_data = Column(JSON, nullable=True)  # Job inputs
    processing_result = Column(JSON, nullable=True)  # Clips, description, transcript
    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Project(id={self.id}, status={self.processing_status})>"
