"""Choose what media the model sees for a job.

Speech-dominant video is reduced to a small mono audio track before upload,
which costs a fraction of full video analysis. Visual content is analyzed
from the original file.
"""
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from reelsmith.config import settings
from reelsmith.pipeline.profiles import ContentClass
from reelsmith.services.storage_service import LocalObjectStore, ReadHandle, StorageError
from reelsmith.utils.ffmpeg import FFmpegError, extract_audio_track

logger = logging.getLogger(__name__)

AUDIO_MIME_TYPE = "audio/mpeg"


@dataclass
class AnalysisInput:
    """Media to send to the content-understanding model."""
    path: Path
    mime_type: str
    audio_only: bool = False
    temp_key: Optional[str] = None


class Analyzer:
    """Selects the media representation used for analysis."""

    async def prepare(self, job_id: str, source: ReadHandle, media_type: str) -> AnalysisInput:
        raise NotImplementedError


class VisualAnalyzer(Analyzer):
    """Full video frames plus audio."""

    async def prepare(self, job_id: str, source: ReadHandle, media_type: str) -> AnalysisInput:
        return AnalysisInput(path=source.path, mime_type=media_type)


class SpeechAnalyzer(Analyzer):
    """Audio-only analysis for talking-head style content."""

    def __init__(self, storage: LocalObjectStore, fallback: Optional[Analyzer] = None):
        self.storage = storage
        self.fallback = fallback or VisualAnalyzer()

    async def prepare(self, job_id: str, source: ReadHandle, media_type: str) -> AnalysisInput:
        if not media_type.startswith("video/"):
            # Already audio; nothing to strip
            return AnalysisInput(path=source.path, mime_type=media_type, audio_only=True)

        try:
            handle = await self.extract_audio(job_id, source)
        except (FFmpegError, StorageError) as e:
            logger.warning(f"Audio extraction failed for job {job_id}, analyzing full video instead: {e}")
            return await self.fallback.prepare(job_id, source, media_type)

        return AnalysisInput(
            path=handle.path,
            mime_type=AUDIO_MIME_TYPE,
            audio_only=True,
            temp_key=handle.key,
        )

    async def extract_audio(self, job_id: str, source: ReadHandle) -> ReadHandle:
        """
        Extract the audio track into the temp namespace.

        The stored copy is deleted after a grace period whether or not the
        job finishes, so a failing job never orphans it.
        """
        key = f"tmp/audio/{job_id}.mp3"
        with tempfile.TemporaryDirectory(dir=settings.work_dir) as tmp:
            local = Path(tmp) / "audio.mp3"
            await extract_audio_track(source.path, local)
            await self.storage.upload(local, key)

        self.storage.schedule_delete(key, settings.temp_audio_grace_seconds)
        handle = await self.storage.signed_handle(key, settings.temp_audio_handle_ttl_seconds)
        logger.info(f"Extracted audio track for job {job_id} ({handle.path.stat().st_size} bytes)")
        return handle


def analyzer_for(content_class: ContentClass, storage: LocalObjectStore) -> Analyzer:
    if content_class == ContentClass.SPEECH_DOMINANT:
        return SpeechAnalyzer(storage)
    return VisualAnalyzer()
