"""Tests for the Gemini client wrapper, using a fake SDK client."""
from pathlib import Path
from types import SimpleNamespace

import pytest

from reelsmith.config import settings
from reelsmith.pipeline.profiles import (
    ContentClass,
    OutputMode,
    get_content_profile,
    get_format_profile,
)
from reelsmith.pipeline.segment_parser import Segment
from reelsmith.services.genai_client import (
    TRANSCRIPT_UNAVAILABLE,
    GenAIClient,
    ModelError,
    ModelTimeoutError,
    UploadedMedia,
    build_extraction_prompt,
)


def _file(state, name="files/abc"):
    return SimpleNamespace(name=name, uri=f"https://genai.test/{name}", state=SimpleNamespace(name=state))


class _FakeFiles:
    def __init__(self, upload_state="ACTIVE", poll_states=(), upload_error=None, delete_error=None):
        self.upload_state = upload_state
        self.poll_states = list(poll_states)
        self.upload_error = upload_error
        self.delete_error = delete_error
        self.get_calls = 0
        self.deleted = []

    async def upload(self, file, config=None):
        if self.upload_error:
            raise self.upload_error
        return _file(self.upload_state)

    async def get(self, name):
        self.get_calls += 1
        state = self.poll_states.pop(0) if self.poll_states else "PROCESSING"
        return _file(state, name)

    async def delete(self, name):
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(name)


class _FakeModels:
    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    async def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.responses.pop(0) if self.responses else "")


def _client(files=None, models=None, **kwargs):
    fake = SimpleNamespace(aio=SimpleNamespace(files=files or _FakeFiles(), models=models or _FakeModels()))
    return GenAIClient(client=fake, model_name="test-model", poll_interval=0, **kwargs), fake


def _media():
    return UploadedMedia(name="files/abc", uri="u", mime_type="video/mp4", file=_file("ACTIVE"))


def _segments():
    return [
        Segment(title="Hook", description="d", start_time=0, end_time=40),
        Segment(title="Payoff", description="d", start_time=60, end_time=100),
    ]


# =============================================================================
# Upload and readiness
# =============================================================================

@pytest.mark.asyncio
async def test_prepare_returns_when_active():
    client, fake = _client()
    media = await client.prepare(Path("/tmp/src.mp4"), "video/mp4")
    assert media.name == "files/abc"
    assert media.mime_type == "video/mp4"
    assert fake.aio.files.get_calls == 0


@pytest.mark.asyncio
async def test_prepare_polls_until_active():
    files = _FakeFiles(upload_state="PROCESSING", poll_states=["PROCESSING", "ACTIVE"])
    client, _ = _client(files=files)
    media = await client.prepare(Path("/tmp/src.mp4"), "video/mp4")
    assert media.file.state.name == "ACTIVE"
    assert files.get_calls == 2


@pytest.mark.asyncio
async def test_prepare_times_out_after_poll_bound():
    files = _FakeFiles(upload_state="PROCESSING")
    client, _ = _client(files=files, poll_attempts=3)
    with pytest.raises(ModelTimeoutError):
        await client.prepare(Path("/tmp/src.mp4"), "video/mp4")
    assert files.get_calls == 3


@pytest.mark.asyncio
async def test_prepare_failed_state():
    files = _FakeFiles(upload_state="PROCESSING", poll_states=["FAILED"])
    client, _ = _client(files=files)
    with pytest.raises(ModelError):
        await client.prepare(Path("/tmp/src.mp4"), "video/mp4")


@pytest.mark.asyncio
async def test_prepare_wraps_upload_errors():
    client, _ = _client(files=_FakeFiles(upload_error=RuntimeError("quota")))
    with pytest.raises(ModelError) as exc_info:
        await client.prepare(Path("/tmp/src.mp4"), "video/mp4")
    assert "quota" in str(exc_info.value)


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "gemini_api_key", None)
    with pytest.raises(ModelError):
        GenAIClient().client


# =============================================================================
# Generation
# =============================================================================

@pytest.mark.asyncio
async def test_transcribe_returns_sentinel_on_failure():
    client, _ = _client(models=_FakeModels(error=RuntimeError("blocked")))
    assert await client.transcribe(_media()) == TRANSCRIPT_UNAVAILABLE


@pytest.mark.asyncio
async def test_transcribe_returns_sentinel_on_empty_text():
    client, _ = _client(models=_FakeModels(responses=["   "]))
    assert await client.transcribe(_media()) == TRANSCRIPT_UNAVAILABLE


@pytest.mark.asyncio
async def test_extract_segments_sends_media_and_prompt():
    models = _FakeModels(responses=['[{"title": "x"}]'])
    client, _ = _client(models=models)
    media = _media()

    raw = await client.extract_segments(
        media,
        get_format_profile(OutputMode.INDIVIDUAL_CLIPS),
        get_content_profile("podcast"),
        ContentClass.VISUAL,
        60,
        "Focus on the jokes",
    )

    assert raw == '[{"title": "x"}]'
    call = models.calls[0]
    assert call["model"] == "test-model"
    assert call["contents"][0] is media.file
    assert "Focus on the jokes" in call["contents"][1]
    assert call["config"].temperature == 0.2
    assert call["config"].max_output_tokens == 4096


@pytest.mark.asyncio
async def test_extract_segments_propagates_model_errors():
    client, _ = _client(models=_FakeModels(error=RuntimeError("500")))
    with pytest.raises(ModelError):
        await client.extract_segments(
            _media(),
            get_format_profile(OutputMode.COMBINED_VIDEO),
            get_content_profile("podcast"),
            ContentClass.VISUAL,
            300,
        )


@pytest.mark.asyncio
async def test_describe_falls_back_on_failure():
    client, _ = _client(models=_FakeModels(error=RuntimeError("down")))
    description = await client.describe(
        _media(), _segments(), get_format_profile(OutputMode.INDIVIDUAL_CLIPS), get_content_profile("podcast")
    )
    assert "Hook" in description
    assert "2 highlight segments" in description


@pytest.mark.asyncio
async def test_release_swallows_errors():
    files = _FakeFiles(delete_error=RuntimeError("gone"))
    client, _ = _client(files=files)
    await client.release(_media())

    files = _FakeFiles()
    client, _ = _client(files=files)
    await client.release(_media())
    assert files.deleted == ["files/abc"]


def test_extraction_prompt_reflects_profile():
    short = build_extraction_prompt(
        get_format_profile(OutputMode.INDIVIDUAL_CLIPS),
        get_content_profile("podcast"),
        ContentClass.VISUAL,
        60,
    )
    assert "9:16" in short
    assert "±15" in short

    long = build_extraction_prompt(
        get_format_profile(OutputMode.COMBINED_VIDEO),
        get_content_profile("talking_video"),
        ContentClass.SPEECH_DOMINANT,
        600,
    )
    assert "16:9" in long
    assert "flexible" in long
