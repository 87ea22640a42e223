"""Shared fixtures."""
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from reelsmith.config import settings
from reelsmith.db.database import init_db
from reelsmith.pipeline import clip_renderer
from reelsmith.services.storage_service import LocalObjectStore
from reelsmith.utils.ffmpeg import FFmpegError, MediaInfo


class FakeFFmpeg:
    """Stands in for the ffmpeg helpers imported by the renderer."""

    def __init__(self, fail_reencode=False, fail_canvas_at=None, width=1920, height=1080):
        self.fail_reencode = fail_reencode
        self.fail_canvas_at = fail_canvas_at
        self.width = width
        self.height = height
        self.encoded = []
        self.canvases = []
        self.concats = []
        self.thumbnails = []

    def install(self, monkeypatch):
        monkeypatch.setattr(clip_renderer, "encode_segment", self.encode_segment)
        monkeypatch.setattr(clip_renderer, "render_black_canvas_segment", self.render_black_canvas_segment)
        monkeypatch.setattr(clip_renderer, "concat_segments", self.concat_segments)
        monkeypatch.setattr(clip_renderer, "generate_thumbnail", self.generate_thumbnail)
        monkeypatch.setattr(clip_renderer, "probe_media", self.probe_media)
        return self

    async def encode_segment(self, source, output, start, end):
        if self.fail_reencode:
            raise FFmpegError("Segment encode failed: Stream map '0:v:0' matches no streams")
        self.encoded.append((start, end))
        Path(output).write_bytes(b"clip")
        return Path(output)

    async def render_black_canvas_segment(self, source, output, start, end, width, height):
        if self.fail_canvas_at is not None and len(self.canvases) >= self.fail_canvas_at:
            raise FFmpegError("Black canvas render failed: no audio")
        self.canvases.append({"start": start, "duration": end - start, "size": (width, height)})
        Path(output).write_bytes(b"canvas")
        return Path(output)

    async def concat_segments(self, paths, output):
        self.concats.append([Path(p).name for p in paths])
        Path(output).write_bytes(b"combined")
        return Path(output)

    async def generate_thumbnail(self, video, output, timestamp):
        self.thumbnails.append(timestamp)
        Path(output).write_bytes(b"jpg")
        return Path(output)

    async def probe_media(self, source):
        has_video = self.width is not None
        return MediaInfo(
            duration=600.0,
            width=self.width,
            height=self.height,
            fps=30.0 if has_video else None,
            video_codec="h264" if has_video else None,
            audio_codec="aac",
            format_name="mp4",
            bit_rate=None,
        )


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep scratch and storage writes inside the test's tmp dir."""
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.setattr(settings, "work_dir", work_dir)
    monkeypatch.setattr(settings, "storage_dir", tmp_path / "storage")
    return tmp_path


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    """Install a FakeFFmpeg into the renderer; keyword arguments configure failures."""
    def install(**kwargs) -> FakeFFmpeg:
        return FakeFFmpeg(**kwargs).install(monkeypatch)
    return install


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStore(
        root=tmp_path / "storage",
        bucket="test-bucket",
        signing_key="test-signing-key",
        base_url="http://testserver",
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
