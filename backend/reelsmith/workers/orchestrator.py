"""Background highlight job orchestration using asyncio."""
import asyncio
import logging
import time
import traceback
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from reelsmith.config import settings
from reelsmith.services.project_service import ProjectMirror
from reelsmith.workers.events import EventBroadcaster, ProgressEvent
from reelsmith.workers.job_store import (
    HighlightJob,
    HighlightRequest,
    HighlightResult,
    JobStatus,
    JobStore,
)

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[int, str, str], Awaitable[None]]
JobHandler = Callable[[HighlightJob, ProgressReporter], Awaitable[HighlightResult]]


class HighlightOrchestrator:
    """
    Runs highlight jobs with a concurrency cap.

    Queued jobs are admitted in submission order whenever a slot frees, on
    every submit, and on a fallback tick so no job is stranded. All state
    changes happen on the event loop, so the store and the active set need no
    lock.
    """

    def __init__(
        self,
        store: JobStore,
        handler: JobHandler,
        events: Optional[EventBroadcaster] = None,
        mirror: Optional[ProjectMirror] = None,
        max_concurrent_jobs: Optional[int] = None,
        tick_interval: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        retention: Optional[timedelta] = None,
    ):
        self.store = store
        self.handler = handler
        self.events = events or EventBroadcaster()
        self.mirror = mirror
        self.max_concurrent_jobs = max_concurrent_jobs or settings.max_concurrent_jobs
        self.tick_interval = tick_interval or settings.admission_tick_seconds
        self.sweep_interval = sweep_interval or settings.job_sweep_interval_seconds
        self.retention = retention or timedelta(hours=settings.job_retention_hours)

        self._active: Dict[str, asyncio.Task] = {}
        self._ticker: Optional[asyncio.Task] = None
        self._last_sweep = time.monotonic()
        self._closing = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def submit(self, request: HighlightRequest) -> str:
        """Queue a job whose credits are already settled. Returns its id."""
        job = HighlightJob.from_request(request)
        self.store.add(job)

        if not job.embedded and self.mirror:
            await self.mirror.job_queued(job)

        logger.info(
            f"Job {job.id} queued for project {job.project_id} "
            f"({job.output_mode.value}, {job.content_class.value})"
        )
        self._schedule()
        return job.id

    def get_status(self, job_id: str) -> Optional[HighlightJob]:
        return self.store.get(job_id)

    def list_jobs_for_user(self, user_id: str) -> List[HighlightJob]:
        return self.store.list_for_user(user_id)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_job_running(self, job_id: str) -> bool:
        return job_id in self._active

    async def start(self):
        """Start the admission/retention ticker."""
        if self._ticker is None:
            self._ticker = asyncio.create_task(self._tick_loop())

    async def shutdown(self):
        """Stop the ticker and interrupt running jobs."""
        self._closing = True
        if self._ticker:
            self._ticker.cancel()
            await asyncio.gather(self._ticker, return_exceptions=True)
            self._ticker = None

        for task in self._active.values():
            task.cancel()

        if self._active:
            await asyncio.gather(*self._active.values(), return_exceptions=True)

        self._active.clear()

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _schedule(self):
        """Admit queued jobs while under the cap."""
        if self._closing:
            return
        while len(self._active) < self.max_concurrent_jobs:
            job = self.store.next_queued(exclude=self._active)
            if job is None:
                return
            self._active[job.id] = asyncio.create_task(self._run_job(job))
            logger.debug(f"Admitted job {job.id} ({len(self._active)}/{self.max_concurrent_jobs})")

        if self.store.next_queued(exclude=self._active):
            logger.debug(f"At capacity ({len(self._active)}/{self.max_concurrent_jobs})")

    async def _tick_loop(self):
        while True:
            await asyncio.sleep(self.tick_interval)
            try:
                self._schedule()
                if time.monotonic() - self._last_sweep >= self.sweep_interval:
                    self.sweep()
            except Exception:
                logger.exception("Orchestrator tick failed")

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Drop terminal jobs past the retention window."""
        self._last_sweep = time.monotonic()
        expired = self.store.purge_expired(self.retention, now=now)
        for job_id in expired:
            logger.info(f"Cleaned up old job {job_id}")
        return expired

    # -------------------------------------------------------------------------
    # Job execution
    # -------------------------------------------------------------------------

    async def _update(self, job: HighlightJob, progress: int, message: str, state: str):
        job.progress = max(job.progress, min(100, int(progress)))
        job.message = message
        if not job.embedded and self.mirror:
            await self.mirror.job_progress(job)
        self.events.publish(ProgressEvent(job.id, state, message, job.progress))

    async def _run_job(self, job: HighlightJob):
        """Run a job with error handling and status updates."""
        try:
            job.status = JobStatus.PROCESSING
            job.started_at = datetime.utcnow()
            await self._update(job, 5, "Starting...", "admitted")

            async def report(progress: int, message: str, state: str):
                await self._update(job, progress, message, state)

            result = await self.handler(job, report)

            job.result = result
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.message = "Highlights extracted successfully!"
            job.completed_at = datetime.utcnow()
            if not job.embedded and self.mirror:
                await self.mirror.job_completed(job)
            self.events.publish(ProgressEvent(job.id, "completed", job.message, 100))

            logger.info(f"Job {job.id} completed successfully with {len(result.clips)} clips")

        except asyncio.CancelledError:
            self._mark_failed(job, "Interrupted by server shutdown", None)
            if not job.embedded and self.mirror:
                await asyncio.shield(self.mirror.job_failed(job))
            raise

        except Exception as e:
            error_trace = traceback.format_exc()
            logger.error(f"Job {job.id} failed: {e}\n{error_trace}")

            self._mark_failed(job, str(e) or e.__class__.__name__, error_trace)
            if not job.embedded and self.mirror:
                await self.mirror.job_failed(job)
            self.events.publish(ProgressEvent(job.id, "error", job.message, job.progress))

        finally:
            self._active.pop(job.id, None)
            self._schedule()

    def _mark_failed(self, job: HighlightJob, error: str, detail: Optional[str]):
        job.status = JobStatus.FAILED
        job.error = error
        job.error_detail = detail
        job.message = f"Processing failed: {error}"
        job.completed_at = datetime.utcnow()
