"""Highlight job pipeline run inside an orchestrator slot."""
import logging
from typing import Callable, Optional

from reelsmith.config import settings
from reelsmith.pipeline.analyzers import Analyzer, analyzer_for
from reelsmith.pipeline.clip_renderer import ClipRenderer
from reelsmith.pipeline.profiles import ContentClass, get_content_profile, get_format_profile
from reelsmith.pipeline.segment_parser import check_segment_plan, parse_segments
from reelsmith.services.genai_client import GenAIClient
from reelsmith.services.storage_service import LocalObjectStore, SourceNotFoundError
from reelsmith.workers.job_store import HighlightJob, HighlightResult
from reelsmith.workers.orchestrator import ProgressReporter

logger = logging.getLogger(__name__)


class HighlightPipeline:
    """
    Stages, strictly in order:

    1. verify the source exists and get a read handle
    2. pick the analysis media (audio track for speech-dominant video)
    3. upload to the model, transcribe, extract segments
    4. parse and validate segments
    5. describe the result
    6. render and publish clips
    """

    def __init__(
        self,
        storage: LocalObjectStore,
        genai_client: GenAIClient,
        renderer: Optional[ClipRenderer] = None,
        analyzer_factory: Optional[Callable[[ContentClass, LocalObjectStore], Analyzer]] = None,
    ):
        self.storage = storage
        self.genai_client = genai_client
        self.renderer = renderer or ClipRenderer(storage)
        self.analyzer_factory = analyzer_factory or analyzer_for

    async def __call__(self, job: HighlightJob, progress: ProgressReporter) -> HighlightResult:
        format_profile = get_format_profile(job.output_mode)
        content_profile = get_content_profile(job.content_type)

        await progress(10, "Analyzing video content and structure...", "analyzing")

        if not await self.storage.exists(job.source_locator):
            raise SourceNotFoundError(f"File not found in storage: {job.source_locator}")
        source = await self.storage.signed_handle(job.source_locator, settings.source_handle_ttl_seconds)

        analyzer = self.analyzer_factory(job.content_class, self.storage)
        analysis_input = await analyzer.prepare(job.id, source, job.media_type)
        logger.info(
            f"Job {job.id}: analyzing {'audio track' if analysis_input.audio_only else 'full video'} "
            f"({analysis_input.mime_type})"
        )

        await progress(30, "AI is identifying key narrative segments...", "generating")

        media = await self.genai_client.prepare(analysis_input.path, analysis_input.mime_type)
        try:
            transcript = await self.genai_client.transcribe(media)
            raw = await self.genai_client.extract_segments(
                media,
                format_profile,
                content_profile,
                job.content_class,
                job.target_duration,
                job.user_prompt,
            )
            segments = parse_segments(raw, format_profile)
            for warning in check_segment_plan(segments, format_profile, job.target_duration):
                logger.warning(f"Job {job.id}: {warning}. Continuing anyway.")

            total = sum(s.duration for s in segments)
            logger.info(f"Job {job.id}: {len(segments)} segments, {total:.1f}s total")

            await progress(60, "Generating video description...", "processing")
            description = await self.genai_client.describe(media, segments, format_profile, content_profile)
        finally:
            await self.genai_client.release(media)

        await progress(75, "Extracting video segments...", "processing")

        async def render_progress(fraction: float, message: str):
            await progress(75 + int(fraction * 20), message, "processing")

        clips = await self.renderer.render(
            job.id,
            job.project_id,
            job.output_mode,
            source.path,
            segments,
            progress_callback=render_progress,
        )

        await progress(95, "Finalizing clips...", "finalizing")

        return HighlightResult(clips=clips, description=description, transcript=transcript)
