"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field

from reelsmith.config import settings


# =============================================================================
# Highlight Job Schemas
# =============================================================================

class HighlightJobCreate(BaseModel):
    """Request to extract highlights from a stored source."""
    project_id: str = Field(..., min_length=1, description="Project the clips belong to")
    source_locator: str = Field(..., min_length=1, description="Storage key or gs://bucket/key URI of the source")
    media_type: str = Field("video/mp4", description="MIME type of the source")
    content_type: str = Field(..., min_length=1, description="Content type, e.g. podcast or talking_video")
    target_duration: int = Field(
        ...,
        ge=settings.min_target_duration,
        le=settings.max_target_duration,
        description="Requested total highlight length in seconds",
    )
    user_prompt: Optional[str] = Field(
        None,
        max_length=settings.max_user_prompt_length,
        description="Optional guidance for segment selection",
    )
    embedded: bool = Field(False, description="Submitted from an editing session that already paid")


class HighlightJobCreated(BaseModel):
    """Response after a job is queued."""
    job_id: str
    message: str


class ProcessedClipResponse(BaseModel):
    """One rendered clip."""
    id: str
    title: str
    description: str
    start_time: float
    end_time: float
    duration: float
    significance: float
    narrative_role: str
    transition_note: str
    download_url: str
    preview_url: str
    thumbnail_url: Optional[str] = None
    storage_key: str
    thumbnail_key: Optional[str] = None
    format: str
    aspect_ratio: str
    render_tier: int
    segments: List[dict] = []


class HighlightJobSummary(BaseModel):
    """Job status without the result payload."""
    id: str
    project_id: str
    status: str
    progress: int
    message: str
    error: Optional[str] = None
    created_at: datetime
    content_type: str
    content_class: str
    output_mode: str


class HighlightJobStatus(HighlightJobSummary):
    """Job status; result fields are present only once completed."""
    clips: Optional[List[ProcessedClipResponse]] = None
    description: Optional[str] = None
    transcript: Optional[str] = None


class ProjectHighlightsResponse(BaseModel):
    """Last highlight run recorded on a project."""
    project_id: str
    job_id: Optional[str] = None
    status: Optional[str] = None
    progress: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None
    result: Optional[dict[str, Any]] = None


# =============================================================================
# Credit Schemas
# =============================================================================

class CreditBalanceResponse(BaseModel):
    """Current balance."""
    user_id: str
    credits: int


class CreditUsageResponse(BaseModel):
    """One audit log row."""
    id: int
    feature_name: str
    credits_consumed: int
    remaining_credits: int
    details: Optional[dict] = None
    created_at: Optional[datetime] = None


# =============================================================================
# Health Check
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    gemini_configured: bool
    active_jobs: int
    message: Optional[str] = None
