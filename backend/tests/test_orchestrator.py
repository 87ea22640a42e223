"""Tests for job admission, lifecycle and retention."""
import asyncio
from datetime import datetime, timedelta

import pytest

from reelsmith.services.project_service import ProjectMirror
from reelsmith.workers.events import EventBroadcaster
from reelsmith.workers.job_store import HighlightJob, HighlightRequest, HighlightResult, JobStatus, JobStore
from reelsmith.workers.orchestrator import HighlightOrchestrator


def _request(project_id="proj", embedded=False, target=60):
    return HighlightRequest(
        project_id=project_id,
        user_id="user-1",
        source_locator=f"uploads/{project_id}.mp4",
        media_type="video/mp4",
        content_type="podcast",
        target_duration=target,
        embedded=embedded,
    )


def _result():
    return HighlightResult(clips=[], description="desc", transcript="text")


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class GatedHandler:
    """Blocks every job until released and records concurrency."""

    def __init__(self):
        self.release = asyncio.Event()
        self.running = 0
        self.max_running = 0
        self.started = []

    async def __call__(self, job, progress):
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        self.started.append(job.project_id)
        try:
            await progress(10, "Analyzing video content and structure...", "analyzing")
            await self.release.wait()
            return _result()
        finally:
            self.running -= 1


@pytest.mark.asyncio
async def test_never_exceeds_concurrency_cap():
    handler = GatedHandler()
    orchestrator = HighlightOrchestrator(JobStore(), handler, max_concurrent_jobs=2)

    ids = [await orchestrator.submit(_request(f"p{i}")) for i in range(5)]
    await _wait_for(lambda: handler.running == 2)
    await asyncio.sleep(0.05)

    statuses = [orchestrator.get_status(job_id).status for job_id in ids]
    assert statuses.count(JobStatus.PROCESSING) == 2
    assert statuses.count(JobStatus.QUEUED) == 3

    handler.release.set()
    await _wait_for(lambda: all(orchestrator.get_status(i).is_terminal for i in ids))

    assert handler.max_running == 2
    assert all(orchestrator.get_status(i).status == JobStatus.COMPLETED for i in ids)
    assert orchestrator.active_count == 0


@pytest.mark.asyncio
async def test_admission_follows_submission_order():
    handler = GatedHandler()
    handler.release.set()
    orchestrator = HighlightOrchestrator(JobStore(), handler, max_concurrent_jobs=1)

    ids = [await orchestrator.submit(_request(f"p{i}")) for i in range(4)]
    await _wait_for(lambda: all(orchestrator.get_status(i).is_terminal for i in ids))

    assert handler.started == ["p0", "p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_failure_is_isolated_to_its_job():
    events = EventBroadcaster()
    queue = events.subscribe()

    async def handler(job, progress):
        if job.project_id == "bad":
            await progress(30, "Generating highlights...", "generating")
            raise ValueError("Failed to parse model output")
        await progress(60, "Generating video description...", "processing")
        return _result()

    orchestrator = HighlightOrchestrator(JobStore(), handler, events=events, max_concurrent_jobs=2)
    bad = await orchestrator.submit(_request("bad"))
    good = await orchestrator.submit(_request("good"))
    await _wait_for(lambda: orchestrator.get_status(bad).is_terminal and orchestrator.get_status(good).is_terminal)

    failed = orchestrator.get_status(bad)
    assert failed.status == JobStatus.FAILED
    assert failed.error == "Failed to parse model output"
    assert "Traceback" in failed.error_detail
    assert failed.message.startswith("Processing failed")

    assert orchestrator.get_status(good).status == JobStatus.COMPLETED
    assert orchestrator.get_status(good).progress == 100

    received = []
    while not queue.empty():
        received.append(queue.get_nowait())
    error_events = [e for e in received if e.job_id == bad and e.state == "error"]
    assert len(error_events) == 1
    assert error_events[0].progress == 30 == failed.progress
    assert any(e.job_id == good and e.state == "completed" for e in received)


@pytest.mark.asyncio
async def test_progress_is_monotonic():
    events = EventBroadcaster()
    queue = events.subscribe()

    async def handler(job, progress):
        await progress(30, "AI is identifying key narrative segments...", "generating")
        await progress(10, "late update", "analyzing")
        await progress(75, "Extracting video segments...", "processing")
        return _result()

    orchestrator = HighlightOrchestrator(JobStore(), handler, events=events)
    job_id = await orchestrator.submit(_request())
    await _wait_for(lambda: orchestrator.get_status(job_id).is_terminal)

    values = []
    while not queue.empty():
        values.append(queue.get_nowait().progress)
    assert values == sorted(values)
    assert values[0] == 5
    assert values[-1] == 100


@pytest.mark.asyncio
async def test_sweep_removes_only_old_terminal_jobs():
    handler = GatedHandler()
    handler.release.set()
    store = JobStore()
    orchestrator = HighlightOrchestrator(store, handler, max_concurrent_jobs=1, retention=timedelta(hours=24))

    done = await orchestrator.submit(_request("done"))
    await _wait_for(lambda: orchestrator.get_status(done).is_terminal)

    handler.release.clear()
    running = await orchestrator.submit(_request("running"))
    queued = await orchestrator.submit(_request("queued"))
    await _wait_for(lambda: handler.running == 1)
    assert orchestrator.is_job_running(running)

    later = datetime.utcnow() + timedelta(hours=25)
    assert orchestrator.sweep(now=later) == [done]
    assert done not in store
    assert running in store
    assert queued in store

    handler.release.set()
    await _wait_for(lambda: orchestrator.get_status(queued).is_terminal)


@pytest.mark.asyncio
async def test_shutdown_marks_running_jobs_failed():
    handler = GatedHandler()
    orchestrator = HighlightOrchestrator(JobStore(), handler, max_concurrent_jobs=1)
    await orchestrator.start()

    running = await orchestrator.submit(_request("running"))
    queued = await orchestrator.submit(_request("queued"))
    await _wait_for(lambda: handler.running == 1)
    assert orchestrator.is_job_running(running)

    await orchestrator.shutdown()

    job = orchestrator.get_status(running)
    assert job.status == JobStatus.FAILED
    assert job.error == "Interrupted by server shutdown"
    assert orchestrator.get_status(queued).status == JobStatus.QUEUED
    assert orchestrator.active_count == 0


@pytest.mark.asyncio
async def test_ticker_admits_jobs_added_directly_to_store():
    handler = GatedHandler()
    handler.release.set()
    store = JobStore()
    orchestrator = HighlightOrchestrator(store, handler, tick_interval=0.01)
    await orchestrator.start()

    job = HighlightJob.from_request(_request("stray"))
    store.add(job)

    await _wait_for(lambda: job.is_terminal)
    assert job.status == JobStatus.COMPLETED
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_project_mirror_skips_embedded_jobs(session_maker):
    async def handler(job, progress):
        return _result()

    mirror = ProjectMirror(session_maker)
    orchestrator = HighlightOrchestrator(JobStore(), handler, mirror=mirror)

    normal = await orchestrator.submit(_request("normal"))
    embedded = await orchestrator.submit(_request("embedded", embedded=True))
    await _wait_for(lambda: orchestrator.get_status(normal).is_terminal and orchestrator.get_status(embedded).is_terminal)

    record = await mirror.get_result("normal")
    assert record["job_id"] == normal
    assert record["status"] == "completed"
    assert record["progress"] == 100
    assert record["result"]["description"] == "desc"
    assert record["result"]["output_mode"] == "individual-clips"

    assert await mirror.get_result("embedded") is None
