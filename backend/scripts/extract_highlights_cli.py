#!/usr/bin/env python3
"""
CLI tool to run the highlight pipeline on a local file and emit the result as JSON.

Usage:
    python scripts/extract_highlights_cli.py <video_path> [--target 60] [--content-type podcast]

Example:
    python scripts/extract_highlights_cli.py ~/Videos/episode.mp4 --target 45 --output-dir ./output
"""
import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reelsmith.config import settings
from reelsmith.pipeline.profiles import CONTENT_PROFILES
from reelsmith.services.genai_client import GenAIClient
from reelsmith.services.storage_service import LocalObjectStore
from reelsmith.utils.ffmpeg import probe_media
from reelsmith.workers.handlers import HighlightPipeline
from reelsmith.workers.job_store import HighlightJob, HighlightRequest


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


async def extract_highlights(
    video_path: Path,
    output_dir: Path,
    target_duration: int,
    content_type: str,
    user_prompt: str = None,
):
    """
    Run one highlight job against a local file.

    Args:
        video_path: Path to the source media
        output_dir: Directory for the local object store and the result JSON
        target_duration: Requested highlight length in seconds
        content_type: Content type used for prompting and audio routing
        user_prompt: Optional selection guidance
    """
    if not video_path.exists():
        raise FileNotFoundError(f"Video not found: {video_path}")

    output_dir.mkdir(parents=True, exist_ok=True)

    info = await probe_media(video_path)
    resolution = f"{info.width}x{info.height}" if info.has_video else "audio only"
    logger.info(f"Analyzing: {video_path} ({info.duration:.1f}s, {resolution})")

    storage = LocalObjectStore(root=output_dir / "storage")
    source_key = await storage.upload(video_path, f"sources/{video_path.name}")
    media_type = mimetypes.guess_type(video_path.name)[0] or "video/mp4"

    job = HighlightJob.from_request(HighlightRequest(
        project_id="cli",
        user_id="cli",
        source_locator=source_key,
        media_type=media_type,
        content_type=content_type,
        target_duration=target_duration,
        user_prompt=user_prompt,
        embedded=True,
    ))
    logger.info(f"Mode: {job.output_mode.value}, class: {job.content_class.value}")

    async def progress(pct, msg, state):
        logger.info(f"[{pct:>3}%] {state}: {msg}")

    pipeline = HighlightPipeline(storage=storage, genai_client=GenAIClient())
    try:
        result = await pipeline(job, progress)
    finally:
        await storage.close()

    output_file = output_dir / "highlights.json"
    with open(output_file, 'w') as f:
        json.dump({
            "video_path": str(video_path),
            "duration": info.duration,
            "output_mode": job.output_mode.value,
            "content_class": job.content_class.value,
            **result.to_dict(),
        }, f, indent=2)

    logger.info(f"Result written to: {output_file}")
    for i, clip in enumerate(result.clips):
        logger.info(
            f"  {i+1}. {clip.title}: {clip.start_time:.1f}s - {clip.end_time:.1f}s "
            f"(tier {clip.render_tier}) -> {storage.path_for(clip.storage_key)}"
        )


def main():
    parser = argparse.ArgumentParser(
        description="Extract highlight clips from a local video with Reelsmith",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Short vertical clips from a podcast
    python scripts/extract_highlights_cli.py episode.mp4 --target 45 --content-type podcast

    # One combined video from a lecture
    python scripts/extract_highlights_cli.py lecture.mp4 --target 300 --content-type educational_video
        """
    )

    parser.add_argument(
        "video_path",
        type=Path,
        help="Path to video file to analyze"
    )

    parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Output directory (default: ./reelsmith_output)"
    )

    parser.add_argument(
        "--target", "-t",
        type=int,
        default=60,
        help=f"Target highlight duration in seconds ({settings.min_target_duration}-{settings.max_target_duration})"
    )

    parser.add_argument(
        "--content-type", "-c",
        default="talking_video",
        help=f"Content type (known: {', '.join(sorted(CONTENT_PROFILES))})"
    )

    parser.add_argument(
        "--prompt", "-p",
        default=None,
        help="Optional guidance for segment selection"
    )

    args = parser.parse_args()

    if not settings.min_target_duration <= args.target <= settings.max_target_duration:
        parser.error(
            f"--target must be between {settings.min_target_duration} and {settings.max_target_duration}"
        )

    if args.output_dir is None:
        args.output_dir = Path("./reelsmith_output")

    try:
        asyncio.run(extract_highlights(
            video_path=args.video_path,
            output_dir=args.output_dir,
            target_duration=args.target,
            content_type=args.content_type,
            user_prompt=args.prompt,
        ))
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
