"""Tests for the HTTP and websocket surface."""
import asyncio
import time
from datetime import datetime
from urllib.parse import urlparse

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from reelsmith.api import routes
from reelsmith.api.routes import router
from reelsmith.models.credits import CreditUsageLog
from reelsmith.pipeline.clip_renderer import ProcessedClip
from reelsmith.services.credit_service import HIGHLIGHTS_FEATURE
from reelsmith.services.highlight_service import HighlightService
from reelsmith.workers.events import EventBroadcaster
from reelsmith.workers.job_store import HighlightResult, JobStore
from reelsmith.workers.orchestrator import HighlightOrchestrator

USER = {"X-User-Id": "user-1"}


class FakeLedger:
    """In-memory ledger with a fixed job price."""

    def __init__(self, balance=100, price=40):
        self.balances = {"user-1": balance}
        self.price = price
        self.log = []

    async def estimate_cost(self, source_path, content_class):
        return self.price

    async def consume(self, user_id, credits, reason=HIGHLIGHTS_FEATURE, metadata=None):
        balance = self.balances.get(user_id, 0)
        if balance < credits:
            return False
        self.balances[user_id] = balance - credits
        self.log.append(CreditUsageLog(
            id=len(self.log) + 1,
            user_id=user_id,
            feature_name=reason,
            credits_consumed=credits,
            remaining_credits=self.balances[user_id],
            details=metadata,
            created_at=datetime.utcnow(),
        ))
        return True

    async def get_balance(self, user_id):
        return self.balances.get(user_id, 0)

    async def usage_history(self, user_id, limit=50):
        return [row for row in reversed(self.log) if row.user_id == user_id][:limit]


def _clip(job_id):
    return ProcessedClip(
        id=f"clip_{job_id}_0",
        title="Hook",
        description="Opener",
        start_time=10,
        end_time=50,
        duration=40,
        significance=8,
        narrative_role="introduction",
        transition_note="",
        download_url="http://testserver/api/storage/x",
        preview_url="http://testserver/api/storage/x",
        thumbnail_url="http://testserver/api/storage/y",
        storage_key=f"projects/p1/clips/clip_{job_id}_0.mp4",
        thumbnail_key=f"projects/p1/thumbnails/clip_{job_id}_0.jpg",
        format="individual-clips",
        aspect_ratio="9:16",
    )


async def _instant_handler(job, progress):
    await progress(50, "Generating video description...", "processing")
    return HighlightResult(clips=[_clip(job.id)], description="A great talk.", transcript="[00:00] Hi")


@pytest.fixture
def api(storage):
    storage.path_for("uploads/talk.mp4").parent.mkdir(parents=True, exist_ok=True)
    storage.path_for("uploads/talk.mp4").write_bytes(b"video")

    events = EventBroadcaster()
    orchestrator = HighlightOrchestrator(JobStore(), _instant_handler, events=events)
    ledger = FakeLedger()

    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.state.storage = storage
    app.state.events = events
    app.state.mirror = None
    app.state.orchestrator = orchestrator
    app.state.ledger = ledger
    app.state.highlight_service = HighlightService(orchestrator, ledger, storage)

    with TestClient(app) as client:
        client.ledger = ledger
        client.orchestrator = orchestrator
        yield client


def _body(**overrides):
    body = {
        "project_id": "p1",
        "source_locator": "gs://test-bucket/uploads/talk.mp4",
        "media_type": "video/mp4",
        "content_type": "talking_video",
        "target_duration": 60,
    }
    body.update(overrides)
    return body


def _wait_completed(client, job_id, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/highlights/jobs/{job_id}", headers=USER).json()
        if data["status"] in ("completed", "failed"):
            return data
        time.sleep(0.01)
    raise AssertionError("job did not finish")


def test_create_job_and_fetch_result(api):
    response = api.post("/api/highlights/jobs", json=_body(user_prompt="Keep the jokes"), headers=USER)
    assert response.status_code == 202
    job_id = response.json()["job_id"]

    data = _wait_completed(api, job_id)
    assert data["status"] == "completed"
    assert data["progress"] == 100
    assert data["output_mode"] == "individual-clips"
    assert data["clips"][0]["title"] == "Hook"
    assert data["description"] == "A great talk."
    assert data["transcript"] == "[00:00] Hi"
    assert api.ledger.balances["user-1"] == 60

    listing = api.get("/api/highlights/jobs", headers=USER).json()
    assert [job["id"] for job in listing] == [job_id]
    assert "clips" not in listing[0]


def test_insufficient_credits_returns_402_without_job(api):
    api.ledger.balances["user-1"] = 10

    response = api.post("/api/highlights/jobs", json=_body(), headers=USER)

    assert response.status_code == 402
    assert len(api.orchestrator.store) == 0
    assert api.ledger.balances["user-1"] == 10


def test_missing_source_returns_404(api):
    response = api.post("/api/highlights/jobs", json=_body(source_locator="uploads/nope.mp4"), headers=USER)
    assert response.status_code == 404


def test_bad_locator_returns_400(api):
    response = api.post("/api/highlights/jobs", json=_body(source_locator="../secrets"), headers=USER)
    assert response.status_code == 400


@pytest.mark.parametrize("overrides", [
    {"target_duration": 19},
    {"target_duration": 1801},
    {"user_prompt": "x" * 501},
    {"content_type": ""},
])
def test_malformed_input_returns_422(api, overrides):
    response = api.post("/api/highlights/jobs", json=_body(**overrides), headers=USER)
    assert response.status_code == 422
    assert len(api.orchestrator.store) == 0


def test_requires_user_header(api):
    assert api.post("/api/highlights/jobs", json=_body()).status_code == 401
    assert api.get("/api/credits").status_code == 401


def test_job_access_control(api):
    job_id = api.post("/api/highlights/jobs", json=_body(), headers=USER).json()["job_id"]

    assert api.get(f"/api/highlights/jobs/{job_id}", headers={"X-User-Id": "someone-else"}).status_code == 403
    assert api.get("/api/highlights/jobs/unknown", headers=USER).status_code == 404


def test_embedded_job_is_not_charged(api):
    api.ledger.balances["user-1"] = 0
    response = api.post("/api/highlights/jobs", json=_body(embedded=True), headers=USER)
    assert response.status_code == 202
    assert _wait_completed(api, response.json()["job_id"])["status"] == "completed"


def test_credits_endpoints(api):
    api.post("/api/highlights/jobs", json=_body(), headers=USER)

    balance = api.get("/api/credits", headers=USER).json()
    assert balance == {"user_id": "user-1", "credits": 60}

    usage = api.get("/api/credits/usage", headers=USER).json()
    assert len(usage) == 1
    assert usage[0]["credits_consumed"] == 40
    assert usage[0]["details"]["project_id"] == "p1"


def test_signed_storage_url(api, storage):
    handle = asyncio.run(storage.signed_handle("uploads/talk.mp4", 60))
    url = urlparse(handle.url)

    response = api.get(f"{url.path}?{url.query}")
    assert response.status_code == 200
    assert response.content == b"video"

    tampered = url.query.replace("signature=", "signature=0")
    assert api.get(f"{url.path}?{tampered}").status_code == 403


def test_health_reports_missing_dependencies(api, monkeypatch):
    monkeypatch.setattr(routes, "check_ffmpeg_available", lambda: True)
    monkeypatch.setattr(routes, "check_ffprobe_available", lambda: False)
    monkeypatch.setattr(routes.settings, "gemini_api_key", "key")

    data = api.get("/api/health").json()
    assert data["status"] == "degraded"
    assert data["ffprobe_available"] is False
    assert data["gemini_configured"] is True
    assert "ffprobe" in data["message"]


def test_progress_events_stream(api):
    with api.websocket_connect("/api/highlights/events") as websocket:
        job_id = api.post("/api/highlights/jobs", json=_body(), headers=USER).json()["job_id"]

        states = []
        while True:
            event = websocket.receive_json()
            assert event["job_id"] == job_id
            states.append(event["state"])
            if event["state"] in ("completed", "error"):
                break

    assert states[0] == "admitted"
    assert states[-1] == "completed"


def test_foreign_project_returns_404_without_charge(api):
    class OwnedElsewhere:
        async def get_owner(self, project_id):
            return "someone-else"

    api.app.state.highlight_service.mirror = OwnedElsewhere()

    response = api.post("/api/highlights/jobs", json=_body(), headers=USER)

    assert response.status_code == 404
    assert api.ledger.balances["user-1"] == 100
    assert len(api.orchestrator.store) == 0
