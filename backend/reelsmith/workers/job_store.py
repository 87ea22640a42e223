"""In-memory highlight job records."""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from reelsmith.pipeline.clip_renderer import ProcessedClip
from reelsmith.pipeline.profiles import ContentClass, OutputMode


class JobStatus(str, enum.Enum):
    """Job status enumeration."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class HighlightRequest:
    """Validated submission."""
    project_id: str
    user_id: str
    source_locator: str
    media_type: str
    content_type: str
    target_duration: int
    user_prompt: Optional[str] = None
    embedded: bool = False


@dataclass
class HighlightResult:
    """Output of a completed job."""
    clips: List[ProcessedClip]
    description: str
    transcript: str

    def to_dict(self) -> dict:
        return {
            "clips": [clip.to_dict() for clip in self.clips],
            "total_clips": len(self.clips),
            "description": self.description,
            "transcript": self.transcript,
        }


@dataclass
class HighlightJob:
    """One highlight extraction request and its progress."""
    project_id: str
    user_id: str
    source_locator: str
    media_type: str
    content_type: str
    content_class: ContentClass
    target_duration: int
    output_mode: OutputMode
    user_prompt: Optional[str] = None
    embedded: bool = False

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    message: str = "Queued for processing..."
    error: Optional[str] = None
    error_detail: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[HighlightResult] = None

    @classmethod
    def from_request(cls, request: HighlightRequest) -> "HighlightJob":
        """Create a job, fixing content class and output mode for its lifetime."""
        return cls(
            project_id=request.project_id,
            user_id=request.user_id,
            source_locator=request.source_locator,
            media_type=request.media_type,
            content_type=request.content_type,
            content_class=ContentClass.from_content_type(request.content_type),
            target_duration=request.target_duration,
            output_mode=OutputMode.for_target_duration(request.target_duration),
            user_prompt=request.user_prompt,
            embedded=request.embedded,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<HighlightJob(id={self.id}, status={self.status.value}, progress={self.progress})>"

    def to_summary(self) -> dict:
        """Status fields without the result payload."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "content_type": self.content_type,
            "content_class": self.content_class.value,
            "output_mode": self.output_mode.value,
        }

    def to_status(self) -> dict:
        """Summary plus clips, description and transcript once completed."""
        data = self.to_summary()
        if self.status == JobStatus.COMPLETED and self.result:
            data["clips"] = [clip.to_dict() for clip in self.result.clips]
            data["description"] = self.result.description
            data["transcript"] = self.result.transcript
        return data


class JobStore:
    """Job map owned by the orchestrator. Iteration follows submission order."""

    def __init__(self):
        self._jobs: Dict[str, HighlightJob] = {}

    def __len__(self):
        return len(self._jobs)

    def __contains__(self, job_id: str):
        return job_id in self._jobs

    def add(self, job: HighlightJob):
        if job.id in self._jobs:
            raise ValueError(f"Job {job.id} already exists")
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[HighlightJob]:
        return self._jobs.get(job_id)

    def all(self) -> List[HighlightJob]:
        return list(self._jobs.values())

    def next_queued(self, exclude: Iterable[str] = ()) -> Optional[HighlightJob]:
        """Oldest queued job not in ``exclude``."""
        excluded = set(exclude)
        for job in self._jobs.values():
            if job.status == JobStatus.QUEUED and job.id not in excluded:
                return job
        return None

    def list_for_user(self, user_id: str) -> List[HighlightJob]:
        return [job for job in self._jobs.values() if job.user_id == user_id]

    def purge_expired(self, retention: timedelta, now: Optional[datetime] = None) -> List[str]:
        """Remove terminal jobs created before ``now - retention``."""
        cutoff = (now or datetime.utcnow()) - retention
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.is_terminal and job.created_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return expired
