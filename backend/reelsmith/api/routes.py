"""API routes."""
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse

from reelsmith.config import settings
from reelsmith.services.credit_service import CreditLedger, InsufficientCreditsError
from reelsmith.services.highlight_service import HighlightService
from reelsmith.services.project_service import ProjectMirror, ProjectNotFoundError
from reelsmith.services.storage_service import LocalObjectStore, SourceNotFoundError, StorageError
from reelsmith.utils.ffmpeg import FFmpegError, check_ffmpeg_available, check_ffprobe_available
from reelsmith.workers.job_store import HighlightRequest
from reelsmith.workers.orchestrator import HighlightOrchestrator
from reelsmith.api.schemas import (
    HighlightJobCreate,
    HighlightJobCreated,
    HighlightJobStatus,
    HighlightJobSummary,
    ProjectHighlightsResponse,
    CreditBalanceResponse,
    CreditUsageResponse,
    HealthResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the upstream auth proxy."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_orchestrator(request: Request) -> HighlightOrchestrator:
    return request.app.state.orchestrator


def get_highlight_service(request: Request) -> HighlightService:
    return request.app.state.highlight_service


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_storage(request: Request) -> LocalObjectStore:
    return request.app.state.storage


def get_mirror(request: Request) -> ProjectMirror:
    return request.app.state.mirror


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: HighlightOrchestrator = Depends(get_orchestrator)):
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    gemini_ok = bool(settings.gemini_api_key)

    all_ok = ffmpeg_ok and ffprobe_ok and gemini_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        if not gemini_ok:
            missing.append("GEMINI_API_KEY")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        gemini_configured=gemini_ok,
        active_jobs=orchestrator.active_count,
        message=message,
    )


# =============================================================================
# Highlight Jobs
# =============================================================================

@router.post("/highlights/jobs", response_model=HighlightJobCreated, status_code=202)
async def create_highlight_job(
    data: HighlightJobCreate,
    user_id: str = Depends(get_current_user),
    service: HighlightService = Depends(get_highlight_service),
):
    """Price, debit and queue a highlight extraction job."""
    request = HighlightRequest(
        project_id=data.project_id,
        user_id=user_id,
        source_locator=data.source_locator,
        media_type=data.media_type,
        content_type=data.content_type,
        target_duration=data.target_duration,
        user_prompt=data.user_prompt,
        embedded=data.embedded,
    )
    try:
        job_id = await service.start_job(request)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=402, detail=str(e))
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FFmpegError as e:
        raise HTTPException(status_code=422, detail=f"Could not read source media: {e}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return HighlightJobCreated(job_id=job_id, message="Highlight extraction started")


@router.get("/highlights/jobs", response_model=List[HighlightJobSummary])
async def list_highlight_jobs(
    user_id: str = Depends(get_current_user),
    orchestrator: HighlightOrchestrator = Depends(get_orchestrator),
):
    """List the caller's jobs."""
    return [job.to_summary() for job in orchestrator.list_jobs_for_user(user_id)]


@router.get("/highlights/jobs/{job_id}", response_model=HighlightJobStatus, response_model_exclude_none=True)
async def get_highlight_job(
    job_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: HighlightOrchestrator = Depends(get_orchestrator),
):
    """Get job status; clips, description and transcript once completed."""
    job = orchestrator.get_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.user_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return job.to_status()


@router.websocket("/highlights/events")
async def highlight_events(websocket: WebSocket, job_id: Optional[str] = None):
    """Stream progress events, optionally for one job."""
    events = websocket.app.state.events

    async with events.subscription() as queue:
        await websocket.accept()

        async def forward():
            while True:
                event = await queue.get()
                if job_id and event.job_id != job_id:
                    continue
                await websocket.send_json(event.to_dict())

        sender = asyncio.create_task(forward())
        try:
            # Inbound messages are ignored; receiving only detects the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Progress subscriber disconnected")
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)


@router.get("/projects/{project_id}/highlights", response_model=ProjectHighlightsResponse)
async def get_project_highlights(
    project_id: str,
    user_id: str = Depends(get_current_user),
    mirror: ProjectMirror = Depends(get_mirror),
):
    """Last highlight run stored on the project, available after the job is purged."""
    record = await mirror.get_result(project_id)
    if not record:
        raise HTTPException(status_code=404, detail="Project not found")
    if record["user_id"] and record["user_id"] != user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    record.pop("user_id")
    return ProjectHighlightsResponse(project_id=project_id, **record)


# =============================================================================
# Credits
# =============================================================================

@router.get("/credits", response_model=CreditBalanceResponse)
async def get_credits(
    user_id: str = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Current credit balance."""
    return CreditBalanceResponse(user_id=user_id, credits=await ledger.get_balance(user_id))


@router.get("/credits/usage", response_model=List[CreditUsageResponse])
async def get_credit_usage(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Recent credit usage, newest first."""
    rows = await ledger.usage_history(user_id, limit)
    return [row.to_dict() for row in rows]


# =============================================================================
# Storage
# =============================================================================

@router.get("/storage/{key:path}")
async def read_stored_object(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: LocalObjectStore = Depends(get_storage),
):
    """Serve an object behind a signed URL."""
    try:
        if not storage.verify_signature(key, expires, signature):
            raise HTTPException(status_code=403, detail="Invalid or expired signature")
        path = storage.path_for(key)
    except StorageError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not path.is_file():
        raise HTTPException(status_code=404, detail="Object not found")
    return FileResponse(path)
