"""Cut highlight segments out of the source and publish them.

Each segment is rendered with a full re-encode first. If that fails (odd
source encodings, missing or corrupt video stream) a black canvas of the
source's dimensions is rendered with the source's audio instead, so the
output always carries the complete audio of the segment.
"""
import logging
import shutil
import tempfile
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from reelsmith.config import settings
from reelsmith.pipeline.profiles import OutputMode, get_format_profile
from reelsmith.pipeline.segment_parser import Segment
from reelsmith.services.storage_service import LocalObjectStore
from reelsmith.utils.ffmpeg import (
    FFmpegError,
    concat_segments,
    encode_segment,
    generate_thumbnail,
    probe_media,
    render_black_canvas_segment,
)

logger = logging.getLogger(__name__)

TIER_REENCODE = 1
TIER_BLACK_CANVAS = 2

ProgressCallback = Callable[[float, str], Awaitable[None]]


class ClipRenderError(Exception):
    """Every rendering tier failed for a segment."""
    pass


@dataclass
class RenderResult:
    """Outcome of one rendering tier."""
    ok: bool
    tier: int
    path: Optional[Path] = None
    error: Optional[str] = None


@dataclass
class ProcessedClip:
    """A published clip or combined video."""
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
    thumbnail_url: str
    storage_key: str
    thumbnail_key: str
    format: str
    aspect_ratio: str
    render_tier: int = TIER_REENCODE
    segments: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ClipRenderer:
    """Renders segments with ffmpeg and uploads the results."""

    def __init__(self, storage: LocalObjectStore):
        self.storage = storage

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    async def _render_reencode(self, source: Path, segment: Segment, output: Path) -> RenderResult:
        try:
            path = await encode_segment(source, output, segment.start_time, segment.end_time)
        except FFmpegError as e:
            return RenderResult(ok=False, tier=TIER_REENCODE, error=str(e))
        return RenderResult(ok=True, tier=TIER_REENCODE, path=path)

    async def _render_black_canvas(
        self,
        source: Path,
        segment: Segment,
        output: Path,
        canvas_size: Tuple[int, int],
    ) -> RenderResult:
        width, height = canvas_size
        try:
            path = await render_black_canvas_segment(
                source, output, segment.start_time, segment.end_time, width, height
            )
        except FFmpegError as e:
            return RenderResult(ok=False, tier=TIER_BLACK_CANVAS, error=str(e))
        return RenderResult(ok=True, tier=TIER_BLACK_CANVAS, path=path)

    async def probe_canvas_size(self, source: Path) -> Tuple[int, int]:
        """Source video dimensions, or the configured fallback when there is no usable video."""
        try:
            info = await probe_media(source)
        except FFmpegError as e:
            logger.warning(f"Could not probe {source.name} for canvas size: {e}")
            info = None

        if info and info.width and info.height:
            return info.width, info.height
        return settings.fallback_canvas_width, settings.fallback_canvas_height

    async def extract_clip(
        self,
        source: Path,
        segment: Segment,
        output: Path,
        canvas_size: Optional[Tuple[int, int]] = None,
    ) -> RenderResult:
        """
        Render one segment, falling back to the black canvas tier.

        Returns:
            The successful RenderResult

        Raises:
            ClipRenderError: If both tiers fail
        """
        first = await self._render_reencode(source, segment, output)
        if first.ok:
            return first

        logger.warning(f"Re-encode failed for {segment!r}, falling back to black canvas: {first.error}")
        output.unlink(missing_ok=True)

        if canvas_size is None:
            canvas_size = await self.probe_canvas_size(source)
        second = await self._render_black_canvas(source, segment, output, canvas_size)
        if second.ok:
            return second

        output.unlink(missing_ok=True)
        raise ClipRenderError(
            f"Failed to render segment '{segment.title}' "
            f"({segment.start_time:g}s-{segment.end_time:g}s): "
            f"re-encode: {first.error}; black canvas: {second.error}"
        )

    async def concatenate(self, paths: List[Path], output: Path) -> Path:
        """Join rendered segments in order with a stream copy."""
        return await concat_segments(paths, output)

    async def thumbnail(self, video: Path, output: Path) -> Path:
        return await generate_thumbnail(video, output, settings.thumbnail_offset_seconds)

    # -------------------------------------------------------------------------
    # Job-level rendering
    # -------------------------------------------------------------------------

    async def render(
        self,
        job_id: str,
        project_id: str,
        output_mode: OutputMode,
        source: Path,
        segments: List[Segment],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[ProcessedClip]:
        """
        Render and publish all clips for a job.

        Either every clip is published or none is: on failure, artifacts
        already uploaded for this job are deleted again. The local working
        directory is removed on every exit path.
        """
        if not segments:
            raise ClipRenderError("No segments to render")

        work_dir = Path(tempfile.mkdtemp(prefix=f"job_{job_id}_", dir=settings.work_dir))
        uploaded: List[str] = []
        try:
            if output_mode == OutputMode.COMBINED_VIDEO:
                clips = await self._render_combined(
                    job_id, project_id, source, segments, work_dir, uploaded, progress_callback
                )
            else:
                clips = await self._render_individual(
                    job_id, project_id, source, segments, work_dir, uploaded, progress_callback
                )
        except Exception:
            await self._discard(uploaded)
            raise
        finally:
            _remove_dir(work_dir)

        return clips

    async def _render_individual(
        self,
        job_id: str,
        project_id: str,
        source: Path,
        segments: List[Segment],
        work_dir: Path,
        uploaded: List[str],
        progress_callback: Optional[ProgressCallback],
    ) -> List[ProcessedClip]:
        profile = get_format_profile(OutputMode.INDIVIDUAL_CLIPS)
        clips = []

        for i, segment in enumerate(segments):
            if progress_callback:
                await progress_callback(i / len(segments), f"Extracting clip {i + 1}/{len(segments)}...")

            clip_path = work_dir / f"clip_{i}.mp4"
            thumb_path = work_dir / f"thumb_{i}.jpg"

            result = await self.extract_clip(source, segment, clip_path)
            await self.thumbnail(result.path, thumb_path)

            clip_key, thumb_key = await self._publish(
                project_id, f"clip_{job_id}_{i}", clip_path, thumb_path, uploaded
            )
            clip_url = await self._url(clip_key)

            clips.append(ProcessedClip(
                id=f"clip_{job_id}_{i}",
                title=segment.title,
                description=segment.description,
                start_time=segment.start_time,
                end_time=segment.end_time,
                duration=segment.duration,
                significance=segment.significance,
                narrative_role=segment.narrative_role,
                transition_note=segment.transition_note,
                download_url=clip_url,
                preview_url=clip_url,
                thumbnail_url=await self._url(thumb_key),
                storage_key=clip_key,
                thumbnail_key=thumb_key,
                format=OutputMode.INDIVIDUAL_CLIPS.value,
                aspect_ratio=profile.aspect_ratio,
                render_tier=result.tier,
            ))
            logger.info(f"Processed clip {i + 1}/{len(segments)} for job {job_id} (tier {result.tier})")

        return clips

    async def _render_combined(
        self,
        job_id: str,
        project_id: str,
        source: Path,
        segments: List[Segment],
        work_dir: Path,
        uploaded: List[str],
        progress_callback: Optional[ProgressCallback],
    ) -> List[ProcessedClip]:
        profile = get_format_profile(OutputMode.COMBINED_VIDEO)
        parts: List[Path] = []
        tiers: List[int] = []

        # Sequential on purpose: one ffmpeg process per job against the same source
        for i, segment in enumerate(segments):
            if progress_callback:
                await progress_callback(i / (len(segments) + 1), f"Extracting segment {i + 1}/{len(segments)}...")
            result = await self.extract_clip(source, segment, work_dir / f"segment_{i}.mp4")
            parts.append(result.path)
            tiers.append(result.tier)

        if progress_callback:
            await progress_callback(len(segments) / (len(segments) + 1), "Combining segments...")

        combined_path = work_dir / "combined.mp4"
        thumb_path = work_dir / "combined_thumb.jpg"
        await self.concatenate(parts, combined_path)
        for part in parts:
            part.unlink(missing_ok=True)
        await self.thumbnail(combined_path, thumb_path)

        clip_key, thumb_key = await self._publish(
            project_id, f"combined_{job_id}", combined_path, thumb_path, uploaded
        )
        clip_url = await self._url(clip_key)
        total_duration = sum(s.duration for s in segments)

        logger.info(f"Combined {len(segments)} segments ({total_duration:.1f}s) for job {job_id}")

        return [ProcessedClip(
            id=f"combined_{job_id}",
            title="Combined Highlights",
            description=" → ".join(s.title for s in segments),
            start_time=segments[0].start_time,
            end_time=segments[-1].end_time,
            duration=total_duration,
            significance=9.0,
            narrative_role="complete",
            transition_note="Combined segments for long-form viewing",
            download_url=clip_url,
            preview_url=clip_url,
            thumbnail_url=await self._url(thumb_key),
            storage_key=clip_key,
            thumbnail_key=thumb_key,
            format=OutputMode.COMBINED_VIDEO.value,
            aspect_ratio=profile.aspect_ratio,
            render_tier=max(tiers),
            segments=[s.to_dict() for s in segments],
        )]

    async def _publish(
        self,
        project_id: str,
        name: str,
        clip_path: Path,
        thumb_path: Path,
        uploaded: List[str],
    ) -> Tuple[str, str]:
        clip_key = await self.storage.upload(clip_path, f"projects/{project_id}/clips/{name}.mp4")
        uploaded.append(clip_key)
        thumb_key = await self.storage.upload(thumb_path, f"projects/{project_id}/thumbnails/{name}.jpg")
        uploaded.append(thumb_key)
        return clip_key, thumb_key

    async def _url(self, key: str) -> str:
        handle = await self.storage.signed_handle(key, settings.artifact_handle_ttl_seconds)
        return handle.url

    async def _discard(self, keys: List[str]):
        for key in keys:
            try:
                await self.storage.delete(key)
            except OSError as e:
                logger.warning(f"Failed to discard {key}: {e}")


def _remove_dir(path: Path):
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Cleanup of {path} failed: {e}")
