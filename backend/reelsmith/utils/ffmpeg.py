"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from reelsmith.config import settings


@dataclass
class MediaInfo:
    """Media metadata container."""
    duration: float
    width: Optional[int]
    height: Optional[int]
    fps: Optional[float]
    video_codec: Optional[str]
    audio_codec: Optional[str]
    format_name: str
    bit_rate: Optional[int]

    @property
    def has_video(self) -> bool:
        return self.video_codec is not None

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None


class FFmpegError(Exception):
    """FFmpeg related error."""
    pass


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


def _round_even(value: int) -> int:
    """Round down to an even number, as libx264 with yuv420p requires."""
    value = int(value)
    return max(2, value - (value % 2))


def _parse_frame_rate(value: str) -> Optional[float]:
    if not value:
        return None
    if "/" in value:
        num, den = value.split("/")
        return float(num) / float(den) if float(den) > 0 else None
    return float(value)


async def _run(cmd: List[str], error_prefix: str) -> bytes:
    """Run a command to completion, raising FFmpegError on a non-zero exit."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise FFmpegError(f"{error_prefix}: {e}")

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Do not leave an orphaned ffmpeg behind a cancelled job
        proc.kill()
        await proc.wait()
        raise

    if proc.returncode != 0:
        tail = stderr.decode("utf-8", errors="ignore")[-2000:]
        raise FFmpegError(f"{error_prefix}: {tail}")

    return stdout


async def probe_media(media_path: str | Path) -> MediaInfo:
    """
    Get media metadata using ffprobe.

    Unlike a video-only probe, a missing video stream is not an error: audio
    sources and damaged videos still report their duration and audio codec.

    Args:
        media_path: Path to media file

    Returns:
        MediaInfo with media metadata

    Raises:
        FFmpegError: If ffprobe fails
    """
    media_path = Path(media_path)
    if not media_path.exists():
        raise FFmpegError(f"Media file not found: {media_path}")

    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(media_path)
    ]

    stdout = await _run(cmd, "ffprobe failed")

    try:
        data = json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise FFmpegError(f"Failed to parse ffprobe output: {e}")

    video_stream = None
    audio_stream = None
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    fmt = data.get("format", {})

    # Get duration
    duration = float(fmt.get("duration", 0) or 0)
    if duration == 0:
        for stream in (video_stream, audio_stream):
            if stream and stream.get("duration"):
                duration = float(stream["duration"])
                break

    if video_stream:
        width = int(video_stream.get("width", 0)) or None
        height = int(video_stream.get("height", 0)) or None
        fps = _parse_frame_rate(video_stream.get("r_frame_rate", ""))
    else:
        width = height = fps = None

    return MediaInfo(
        duration=duration,
        width=width,
        height=height,
        fps=fps,
        video_codec=video_stream.get("codec_name", "unknown") if video_stream else None,
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        format_name=fmt.get("format_name", "unknown"),
        bit_rate=int(fmt.get("bit_rate", 0) or 0) or None
    )


def _encoding_args() -> List[str]:
    """Output codec settings shared by both render tiers so outputs concat cleanly."""
    return [
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-profile:v", settings.export_video_profile,
        "-pix_fmt", "yuv420p",
        "-crf", str(settings.export_video_crf),
        "-maxrate", settings.export_video_maxrate,
        "-bufsize", settings.export_video_bufsize,
        "-r", str(settings.export_video_fps),
        "-g", str(settings.export_video_gop),
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-ar", str(settings.export_audio_sample_rate),
        "-ac", "2",
        "-movflags", "+faststart",
    ]


def _build_segment_encode_command(
    source: str,
    output_path: Path,
    start_time: float,
    duration: float,
) -> List[str]:
    """Tier 1: re-encode the window at the source's own dimensions."""
    return [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_time:.3f}",
        "-i", source,
        "-t", f"{duration:.3f}",
        "-map", "0:v:0",
        "-map", "0:a:0?",
        "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2,setsar=1",
        *_encoding_args(),
        str(output_path),
    ]


def _build_black_canvas_command(
    source: str,
    output_path: Path,
    start_time: float,
    duration: float,
    width: int,
    height: int,
) -> List[str]:
    """Tier 2: black canvas of the given size with the source's audio muxed on."""
    canvas = (
        f"color=c=black:s={_round_even(width)}x{_round_even(height)}"
        f":r={settings.export_video_fps}:d={duration:.3f}"
    )
    return [
        settings.ffmpeg_path,
        "-y",
        "-f", "lavfi",
        "-i", canvas,
        "-ss", f"{start_time:.3f}",
        "-t", f"{duration:.3f}",
        "-i", source,
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-t", f"{duration:.3f}",
        *_encoding_args(),
        str(output_path),
    ]


def _build_audio_extract_command(source: str, output_path: Path) -> List[str]:
    return [
        settings.ffmpeg_path,
        "-y",
        "-i", source,
        "-vn",
        "-ac", "1",
        "-ar", str(settings.audio_extract_sample_rate),
        "-c:a", "libmp3lame",
        "-b:a", settings.audio_extract_bitrate,
        str(output_path),
    ]


def _build_concat_command(list_path: Path, output_path: Path) -> List[str]:
    return [
        settings.ffmpeg_path,
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
        "-c", "copy",
        "-movflags", "+faststart",
        str(output_path),
    ]


def _write_concat_list(segment_paths: List[Path], list_path: Path) -> None:
    lines = []
    for path in segment_paths:
        escaped = str(Path(path).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


async def encode_segment(
    source: str | Path,
    output_path: str | Path,
    start_time: float,
    end_time: float,
) -> Path:
    """
    Re-encode one time window of the source.

    Args:
        source: Path (or URL) of the source media
        output_path: Path for output file
        start_time: Start time in seconds
        end_time: End time in seconds

    Returns:
        Path to the encoded clip
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = _build_segment_encode_command(str(source), output_path, start_time, end_time - start_time)
    await _run(cmd, "Segment encode failed")

    _ensure_non_empty(output_path)
    return output_path


async def render_black_canvas_segment(
    source: str | Path,
    output_path: str | Path,
    start_time: float,
    end_time: float,
    width: int,
    height: int,
) -> Path:
    """Render a black video of the given size carrying the source's audio window."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = _build_black_canvas_command(
        str(source), output_path, start_time, end_time - start_time, width, height
    )
    await _run(cmd, "Black canvas render failed")

    _ensure_non_empty(output_path)
    return output_path


async def extract_audio_track(source: str | Path, output_path: str | Path) -> Path:
    """Extract a mono, low sample-rate MP3 track suitable for speech analysis."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    await _run(_build_audio_extract_command(str(source), output_path), "Audio extraction failed")

    _ensure_non_empty(output_path)
    return output_path


async def concat_segments(segment_paths: List[Path], output_path: str | Path) -> Path:
    """
    Concatenate already-encoded segments without re-encoding.

    All inputs must share codec parameters, which holds for files produced by
    encode_segment and render_black_canvas_segment.
    """
    if not segment_paths:
        raise FFmpegError("No segments to concatenate")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    list_path = output_path.with_suffix(".txt")
    _write_concat_list(segment_paths, list_path)
    try:
        await _run(_build_concat_command(list_path, output_path), "Concatenation failed")
    finally:
        list_path.unlink(missing_ok=True)

    _ensure_non_empty(output_path)
    return output_path


async def generate_thumbnail(
    video_path: str | Path,
    output_path: str | Path,
    timestamp: float,
    width: int = None,
    height: int = None
) -> Path:
    """
    Generate a thumbnail from a video at a specific timestamp.

    Args:
        video_path: Path to video file
        output_path: Path to save thumbnail
        timestamp: Time in seconds to capture
        width: Optional thumbnail width
        height: Optional thumbnail height

    Returns:
        Path to generated thumbnail
    """
    video_path = Path(video_path)
    output_path = Path(output_path)

    width = width or settings.thumbnail_width
    height = height or settings.thumbnail_height

    # Ensure output directory exists
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",  # Overwrite
        "-ss", str(timestamp),
        "-i", str(video_path),
        "-vframes", "1",
        "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        "-q:v", "2",
        str(output_path)
    ]

    await _run(cmd, "Thumbnail generation failed")

    return output_path


def _ensure_non_empty(path: Path) -> None:
    if not path.exists() or path.stat().st_size == 0:
        raise FFmpegError(f"Output file is empty: {path.name}")
