"""Output modes, content classes and the format/content profiles that drive prompting and validation."""
import enum
from dataclasses import dataclass
from typing import Dict, Optional

from reelsmith.config import settings


class OutputMode(str, enum.Enum):
    """How extracted segments are delivered."""
    INDIVIDUAL_CLIPS = "individual-clips"
    COMBINED_VIDEO = "combined-video"

    @classmethod
    def for_target_duration(cls, target_duration: float, threshold: Optional[float] = None) -> "OutputMode":
        """Below the threshold the user gets standalone clips, at or above it one combined video."""
        if threshold is None:
            threshold = settings.combined_video_threshold_seconds
        if target_duration < threshold:
            return cls.INDIVIDUAL_CLIPS
        return cls.COMBINED_VIDEO


class ContentClass(str, enum.Enum):
    """Whether the source can be understood from its audio alone."""
    SPEECH_DOMINANT = "speech-dominant"
    VISUAL = "visual"

    @classmethod
    def from_content_type(cls, content_type: str) -> "ContentClass":
        if content_type.strip().lower() in settings.speech_content_types:
            return cls.SPEECH_DOMINANT
        return cls.VISUAL


@dataclass(frozen=True)
class Range:
    min: float
    max: float
    target: Optional[float] = None


@dataclass(frozen=True)
class FormatProfile:
    """Segment bounds and narrative strategy for one output mode."""
    name: str
    aspect_ratio: str
    segment_count: Range
    segment_length: Optional[Range]
    total_tolerance: Optional[float]
    min_segment_seconds: float
    approach: str

    def total_duration_bounds(self, target_duration: float) -> Optional[Range]:
        if self.total_tolerance is None:
            return None
        return Range(
            min=target_duration - self.total_tolerance,
            max=target_duration + self.total_tolerance,
            target=target_duration,
        )


FORMAT_PROFILES: Dict[OutputMode, FormatProfile] = {
    OutputMode.INDIVIDUAL_CLIPS: FormatProfile(
        name="Short Format",
        aspect_ratio="9:16",
        segment_count=Range(2, 10),
        segment_length=Range(30, 90, target=45),
        total_tolerance=15,
        min_segment_seconds=5.0,
        approach=(
            "Create a concise narrative arc with clear beginning, development, and conclusion. "
            "Each segment should build upon the previous one."
        ),
    ),
    OutputMode.COMBINED_VIDEO: FormatProfile(
        name="Long Format",
        aspect_ratio="16:9",
        segment_count=Range(2, 20),
        segment_length=None,
        total_tolerance=None,
        min_segment_seconds=3.0,
        approach=(
            "Develop a comprehensive narrative that explores themes in depth while maintaining viewer "
            "engagement throughout. Segments will be combined into a single cohesive video. Focus on "
            "natural content breaks and meaningful storytelling."
        ),
    ),
}


def get_format_profile(mode: OutputMode) -> FormatProfile:
    return FORMAT_PROFILES[mode]


@dataclass(frozen=True)
class ContentProfile:
    """Editorial guidance for a kind of source material."""
    name: str
    approach: str
    characteristics: str


CONTENT_PROFILES: Dict[str, ContentProfile] = {
    "podcast": ContentProfile(
        name="Podcast",
        approach=(
            "Focus on key insights, compelling stories, emotional moments, and quotable statements "
            "that capture the essence of the conversation"
        ),
        characteristics="dialogue-driven, conversational flow, key ideas and revelations",
    ),
    "professional_meeting": ContentProfile(
        name="Professional Meeting",
        approach=(
            "Extract decisions, action items, key discussions, and important announcements that "
            "represent the meeting's core outcomes"
        ),
        characteristics="business context, decisions, actionable information",
    ),
    "educational_video": ContentProfile(
        name="Educational Video",
        approach=(
            "Select clear explanations, demonstrations, key concepts, and learning moments that "
            "maintain educational continuity"
        ),
        characteristics="instructional flow, concept building, clear explanations",
    ),
    "talking_video": ContentProfile(
        name="Talking Video",
        approach=(
            "Choose meaningful statements, personal stories, insights, and expressive moments that "
            "convey the speaker's main message"
        ),
        characteristics="personal expression, key messages, emotional authenticity",
    ),
}


def get_content_profile(content_type: str) -> ContentProfile:
    """Known content types map to curated guidance; anything else gets a generic profile."""
    profile = CONTENT_PROFILES.get(content_type.strip().lower())
    if profile:
        return profile
    return ContentProfile(
        name=content_type,
        approach=(
            f"Focus on the most engaging and meaningful segments that capture the essence "
            f"of this {content_type} content"
        ),
        characteristics=f"content-specific elements, key messages, and engaging moments typical of {content_type}",
    )
