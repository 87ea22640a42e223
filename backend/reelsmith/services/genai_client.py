"""Gemini content-understanding client.

Media is uploaded once per job with ``prepare`` and the returned handle is
reused for transcription, segment extraction and description.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from google import genai
from google.genai import types

from reelsmith.config import settings
from reelsmith.pipeline.profiles import ContentClass, ContentProfile, FormatProfile
from reelsmith.pipeline.segment_parser import Segment

logger = logging.getLogger(__name__)

TRANSCRIPT_UNAVAILABLE = "Transcript unavailable"


class ModelError(Exception):
    """Upload, processing or generation failure on the model side."""
    pass


class ModelTimeoutError(ModelError):
    """Uploaded media did not become ready within the polling bound."""
    pass


@dataclass
class UploadedMedia:
    """Media file that the model can reference."""
    name: str
    uri: str
    mime_type: str
    file: object  # google.genai File, passed straight back into contents


def build_extraction_prompt(
    profile: FormatProfile,
    content: ContentProfile,
    content_class: ContentClass,
    target_duration: float,
    user_prompt: Optional[str] = None,
) -> str:
    """Prompt asking for a bare JSON array of narrative segments."""
    combined = profile.total_tolerance is None
    if profile.total_tolerance is not None:
        total_line = f"~{target_duration:g} seconds (±{profile.total_tolerance:g}s)"
    else:
        total_line = f"~{target_duration:g} seconds (flexible)"

    if profile.segment_length:
        length_line = (
            f"{profile.segment_length.target:g}s "
            f"({profile.segment_length.min:g}-{profile.segment_length.max:g}s)"
        )
    else:
        length_line = "variable - based on natural content breaks"

    if combined:
        mode_guidance = f"""LONG FORMAT APPROACH:
- Focus on natural content breaks and meaningful story progression
- Each segment should represent a complete thought or topic
- Prioritize narrative flow over exact timing constraints
- Aim for approximately {target_duration:g} seconds total, but content quality is more important than exact timing"""
    else:
        bounds = profile.total_duration_bounds(target_duration)
        mode_guidance = f"""SHORT FORMAT APPROACH:
- Target total duration {bounds.min:g} to {bounds.max:g} seconds
- Focus on high-impact, standalone moments
- Do not cut mid-thought"""

    source_line = (
        "You are given the AUDIO TRACK of the video. Base segment boundaries on speech."
        if content_class == ContentClass.SPEECH_DOMINANT
        else "You are given the full video. Use both visuals and audio."
    )

    instructions = ""
    if user_prompt:
        instructions = f"\nUSER INSTRUCTIONS (follow when compatible with the rules below):\n{user_prompt.strip()}\n"

    return f"""You are an expert video editor trained to extract the most meaningful and coherent segments from long-form videos. Your goal is to select sequences that best represent the overall narrative, emotion, or information in the source material.

{source_line}

CONTENT TYPE: {content.name}
EDITORIAL APPROACH: {content.approach}
CONTENT CHARACTERISTICS: {content.characteristics}

SEGMENT GUIDELINES:
- Target total duration: {total_line}
- For {profile.name}:
  * Number of segments: {profile.segment_count.min:g}-{profile.segment_count.max:g}
  * Segment length: {length_line}
  * Aspect ratio: {profile.aspect_ratio}
  * {'Segments will be combined into a single video' if combined else 'Each segment will be a standalone clip'}
  * MINIMUM: Each segment must be at least {profile.min_segment_seconds:g} seconds (anything shorter will be filtered out)

{mode_guidance}
{instructions}
NARRATIVE STRATEGY: {profile.approach}

OUTPUT FORMAT:
Return ONLY a valid JSON array with NO additional text, no Markdown, no code fences:

[
  {{
    "title": "Opening Statement",
    "start_time": 15,
    "end_time": 65,
    "significance": 8.2,
    "description": "Speaker introduces main theme with personal anecdote",
    "narrative_role": "introduction",
    "transition_note": "Natural pause before topic shift"
  }}
]

FIELD REQUIREMENTS:
- title, description, narrative_role, transition_note: strings
- start_time, end_time: numbers, exact timestamps in seconds from the start of the source
- significance: number from 1 to 10, importance to the overall message
- narrative_role: one of introduction, development, climax, resolution, supporting
- NO overlapping timestamps
- Order segments chronologically (by start_time)"""


def build_description_prompt(
    profile: FormatProfile,
    content: ContentProfile,
    segments: List[Segment],
) -> str:
    clip_summary = "\n".join(
        f"- {s.title}: {s.description} ({s.start_time:g}s-{s.end_time:g}s)" for s in segments
    )
    return f"""You are an expert content analyzer. Based on the video content and the key segments extracted, write a compelling description for this video.

CONTENT TYPE: {content.name}
VIDEO FORMAT: {profile.name} ({profile.aspect_ratio})
CONTENT CHARACTERISTICS: {content.characteristics}

EXTRACTED SEGMENTS:
{clip_summary}

TASK: Write a 2-3 sentence description that:
1. Captures the main theme or message of the video
2. Highlights what makes it valuable to viewers
3. Uses engaging language appropriate for the content type
4. Mentions key topics or insights covered

Return ONLY the description text, no extra formatting or quotes."""


TRANSCRIPT_PROMPT = (
    "Listen to this content, detect the language being spoken, and transcribe it accurately "
    "in the original language (do not translate). Prefix each paragraph with a [mm:ss] timestamp. "
    "Return only the transcript."
)


def fallback_description(content: ContentProfile, segments: List[Segment]) -> str:
    main_topics = ", ".join(s.title for s in segments[:3])
    return (
        f"This {content.name.lower()} covers {main_topics} and other key insights "
        f"in {len(segments)} highlight segments."
    )


class GenAIClient:
    """Async wrapper around the Gemini files and generation APIs."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        client: Optional[genai.Client] = None,
        poll_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.model_name = model_name or settings.gemini_model
        self.poll_attempts = poll_attempts or settings.genai_poll_attempts
        self.poll_interval = settings.genai_poll_interval_seconds if poll_interval is None else poll_interval
        self._client = client
        self._api_key = api_key or settings.gemini_api_key

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ModelError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def prepare(self, path: Path, mime_type: str) -> UploadedMedia:
        """
        Upload media and wait until the model can use it.

        Raises:
            ModelError: If the upload fails or processing fails
            ModelTimeoutError: If the file is still processing after the polling bound
        """
        try:
            uploaded = await self.client.aio.files.upload(
                file=str(path),
                config=types.UploadFileConfig(mime_type=mime_type),
            )
        except ModelError:
            raise
        except Exception as e:
            raise ModelError(f"Media upload failed: {e}")

        if not uploaded.name:
            raise ModelError("Media upload failed - no file name returned")

        logger.info(f"Uploaded {path.name} as {uploaded.name}, waiting for processing")

        file = uploaded
        polls = 0
        while True:
            state = file.state.name if file.state else "ACTIVE"
            if state == "ACTIVE":
                return UploadedMedia(
                    name=file.name,
                    uri=file.uri or "",
                    mime_type=mime_type,
                    file=file,
                )
            if state == "FAILED":
                raise ModelError(f"Model failed to process {uploaded.name}")
            if polls >= self.poll_attempts:
                raise ModelTimeoutError(
                    f"File {uploaded.name} not ready after {self.poll_attempts} polls"
                )

            polls += 1
            logger.debug(f"File {uploaded.name} still {state} (poll {polls}/{self.poll_attempts})")
            await asyncio.sleep(self.poll_interval)
            try:
                file = await self.client.aio.files.get(name=uploaded.name)
            except Exception as e:
                raise ModelError(f"Polling {uploaded.name} failed: {e}")

    async def _generate(self, media: UploadedMedia, prompt: str, config: types.GenerateContentConfig) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=[media.file, prompt],
                config=config,
            )
        except Exception as e:
            raise ModelError(f"Content generation failed: {e}")
        return response.text or ""

    async def transcribe(self, media: UploadedMedia) -> str:
        """Best-effort transcript; returns TRANSCRIPT_UNAVAILABLE on any failure."""
        try:
            text = await self._generate(
                media,
                TRANSCRIPT_PROMPT,
                types.GenerateContentConfig(temperature=0.1, max_output_tokens=8192),
            )
        except ModelError as e:
            logger.warning(f"Transcription failed: {e}")
            return TRANSCRIPT_UNAVAILABLE
        return text.strip() or TRANSCRIPT_UNAVAILABLE

    async def extract_segments(
        self,
        media: UploadedMedia,
        profile: FormatProfile,
        content: ContentProfile,
        content_class: ContentClass,
        target_duration: float,
        user_prompt: Optional[str] = None,
    ) -> str:
        """Ask the model for highlight segments and return its raw text."""
        prompt = build_extraction_prompt(profile, content, content_class, target_duration, user_prompt)
        text = await self._generate(
            media,
            prompt,
            types.GenerateContentConfig(temperature=0.2, top_p=0.8, max_output_tokens=4096),
        )
        logger.debug(f"Raw model response: {text[:500]}")
        return text

    async def describe(
        self,
        media: UploadedMedia,
        segments: List[Segment],
        profile: FormatProfile,
        content: ContentProfile,
    ) -> str:
        """Short description of the source; falls back to a summary of segment titles."""
        try:
            text = await self._generate(
                media,
                build_description_prompt(profile, content, segments),
                types.GenerateContentConfig(temperature=0.7, top_p=0.9, max_output_tokens=200),
            )
        except ModelError as e:
            logger.warning(f"Description generation failed: {e}")
            return fallback_description(content, segments)
        return text.strip() or fallback_description(content, segments)

    async def release(self, media: UploadedMedia):
        """Delete the remote upload."""
        try:
            await self.client.aio.files.delete(name=media.name)
        except Exception as e:
            logger.warning(f"Failed to delete uploaded file {media.name}: {e}")
