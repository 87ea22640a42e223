"""Recover highlight segments from model output.

The model is asked for a bare JSON array but frequently wraps it in Markdown,
adds commentary, or emits slightly broken JSON. Each attempt below is a pure
function from raw text to a list of candidate dicts; the first attempt that
yields anything wins, and the candidates are then validated and normalized.
"""
import json
import logging
import math
import re
from dataclasses import dataclass, asdict
from typing import Any, Callable, List, Optional, Sequence, Tuple

from reelsmith.pipeline.profiles import FormatProfile

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Generated clip"
DEFAULT_SIGNIFICANCE = 7.0
DEFAULT_NARRATIVE_ROLE = "supporting"
MANUAL_SIGNIFICANCE = 8.0

_FENCE_RE = re.compile(r"```(?:json|JSON)?")
_ARRAY_RE = re.compile(r"\[\s*\{[\s\S]*?\}\s*\]")
_OBJECT_RE = re.compile(r'\{\s*"title"[\s\S]*?"end_time"\s*:\s*"?\d+(?:\.\d+)?"?[\s\S]*?\}')
_TITLE_RE = re.compile(r'"title"\s*:\s*"([^"]+)"')
_START_RE = re.compile(r'"start_time"\s*:\s*"?(\d+(?:\.\d+)?)')
_END_RE = re.compile(r'"end_time"\s*:\s*"?(\d+(?:\.\d+)?)')
_DESCRIPTION_RE = re.compile(r'"description"\s*:\s*"([^"]+)"')


class NoValidSegmentsError(Exception):
    """No usable segment could be recovered from the model response."""
    pass


@dataclass
class Segment:
    """A validated time range in the source."""
    title: str
    description: str
    start_time: float
    end_time: float
    significance: float = DEFAULT_SIGNIFICANCE
    narrative_role: str = DEFAULT_NARRATIVE_ROLE
    transition_note: str = ""

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return asdict(self)

    def __repr__(self):
        return f"Segment({self.start_time:.2f}-{self.end_time:.2f}, dur={self.duration:.2f}s, {self.title!r})"


# =============================================================================
# Attempts
# =============================================================================

def _as_candidates(data: Any) -> List[dict]:
    if isinstance(data, dict):
        for key in ("segments", "clips", "highlights"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
        else:
            data = [data]
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _loads(text: str) -> List[dict]:
    try:
        return _as_candidates(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return []


def parse_direct(raw: str) -> List[dict]:
    """Whole response is JSON."""
    return _loads(raw.strip())


def parse_fenced(raw: str) -> List[dict]:
    """JSON wrapped in Markdown code fences."""
    if "```" not in raw:
        return []
    return _loads(_FENCE_RE.sub("", raw).strip())


def parse_embedded_array(raw: str) -> List[dict]:
    """First array of objects embedded in prose."""
    match = _ARRAY_RE.search(raw)
    if match:
        candidates = _loads(match.group(0))
        if candidates:
            return candidates

    # The lazy match stops at the first "}]" inside a string; retry with the widest span
    start, end = raw.find("["), raw.rfind("]")
    if 0 <= start < end:
        return _loads(raw[start:end + 1])
    return []


def parse_object_fragments(raw: str) -> List[dict]:
    """Individual objects with at least a title and an end time, each parsed alone."""
    candidates = []
    for fragment in _OBJECT_RE.findall(raw):
        try:
            obj = json.loads(fragment)
        except (json.JSONDecodeError, ValueError):
            logger.debug(f"Skipping unparseable object: {fragment[:100]}...")
            continue
        if isinstance(obj, dict):
            candidates.append(obj)
    return candidates


def parse_manual_fields(raw: str) -> List[dict]:
    """Last resort: pull fields out independently and pair them up by position."""
    titles = _TITLE_RE.findall(raw)
    starts = _START_RE.findall(raw)
    ends = _END_RE.findall(raw)
    if not (titles and starts and ends):
        return []

    descriptions = _DESCRIPTION_RE.findall(raw)
    candidates = []
    for i, (title, start, end) in enumerate(zip(titles, starts, ends)):
        candidates.append({
            "title": title,
            "start_time": float(start),
            "end_time": float(end),
            "description": descriptions[i] if i < len(descriptions) else DEFAULT_DESCRIPTION,
            "significance": MANUAL_SIGNIFICANCE,
            "narrative_role": DEFAULT_NARRATIVE_ROLE,
            "transition_note": "",
        })
    return candidates


ParseAttempt = Callable[[str], List[dict]]

PARSE_ATTEMPTS: Tuple[Tuple[str, ParseAttempt], ...] = (
    ("direct", parse_direct),
    ("fenced", parse_fenced),
    ("embedded_array", parse_embedded_array),
    ("object_fragments", parse_object_fragments),
    ("manual_fields", parse_manual_fields),
)


# =============================================================================
# Normalization
# =============================================================================

def _parse_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip().rstrip("s")
        try:
            if ":" in text:
                seconds = 0.0
                for part in text.split(":"):
                    seconds = seconds * 60 + float(part)
                return seconds
            return float(text)
        except ValueError:
            return None
    return None


def _coerce_seconds(value: Any) -> Optional[float]:
    """Accept numbers, numeric strings and "mm:ss" / "hh:mm:ss" timestamps. NaN and infinities are rejected."""
    seconds = _parse_seconds(value)
    if seconds is None or not math.isfinite(seconds):
        return None
    return seconds


def _coerce_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _to_segment(candidate: dict) -> Optional[Segment]:
    title = candidate.get("title")
    start = _coerce_seconds(candidate.get("start_time", candidate.get("start")))
    end = _coerce_seconds(candidate.get("end_time", candidate.get("end")))
    if not title or start is None or end is None:
        return None

    return Segment(
        title=str(title).strip(),
        description=str(candidate.get("description") or DEFAULT_DESCRIPTION).strip(),
        start_time=start,
        end_time=end,
        significance=_coerce_float(candidate.get("significance"), DEFAULT_SIGNIFICANCE),
        narrative_role=str(candidate.get("narrative_role") or DEFAULT_NARRATIVE_ROLE),
        transition_note=str(candidate.get("transition_note") or ""),
    )


def resolve_overlaps(segments: List[Segment], min_duration: float) -> List[Segment]:
    """
    Trim each segment so it starts no earlier than the previous one ends.

    Segments must already be sorted by start. A segment left shorter than
    ``min_duration`` after trimming is dropped.
    """
    resolved: List[Segment] = []
    for segment in segments:
        if resolved and segment.start_time < resolved[-1].end_time:
            trimmed_start = resolved[-1].end_time
            if segment.end_time - trimmed_start < min_duration:
                logger.warning(f"Dropping segment {segment.title!r}: overlaps {resolved[-1].title!r}")
                continue
            logger.info(f"Trimming segment {segment.title!r} to start at {trimmed_start:.2f}s")
            segment.start_time = trimmed_start
        resolved.append(segment)
    return resolved


def normalize_segments(candidates: Sequence[dict], min_duration: float) -> List[Segment]:
    """Validate, coerce, sort and de-overlap candidate dicts."""
    segments = []
    for candidate in candidates:
        segment = _to_segment(candidate)
        if segment is None:
            continue
        if segment.start_time < 0 or segment.end_time <= segment.start_time:
            logger.warning(f"Dropping segment with invalid range: {candidate}")
            continue
        if segment.duration < min_duration:
            logger.warning(
                f"Filtering out segment {segment.title!r} - too short ({segment.duration:.1f}s)"
            )
            continue
        segments.append(segment)

    segments.sort(key=lambda s: (s.start_time, s.end_time))
    return resolve_overlaps(segments, min_duration)


def parse_segments(raw_text: str, profile: FormatProfile) -> List[Segment]:
    """
    Turn the model's raw response into validated segments.

    Args:
        raw_text: Model output
        profile: Format profile supplying the minimum segment length

    Returns:
        Non-empty list of segments sorted by start time

    Raises:
        NoValidSegmentsError: If no attempt produced a usable segment
    """
    raw_text = raw_text or ""
    for name, attempt in PARSE_ATTEMPTS:
        candidates = attempt(raw_text)
        if not candidates:
            continue
        logger.info(f"Recovered {len(candidates)} candidate segments using '{name}' parsing")
        segments = normalize_segments(candidates, profile.min_segment_seconds)
        if segments:
            return segments
        logger.warning(f"'{name}' parsing produced no valid segments after validation")
        break

    preview = raw_text[:200]
    raise NoValidSegmentsError(
        f"Failed to parse model output: no valid segments found. Response preview: {preview}..."
    )


def check_segment_plan(segments: List[Segment], profile: FormatProfile, target_duration: float) -> List[str]:
    """Warnings for segment plans outside the profile's soft bounds. Never fatal."""
    warnings = []

    count = len(segments)
    if count < profile.segment_count.min or count > profile.segment_count.max:
        warnings.append(
            f"{count} segments generated, expected {profile.segment_count.min:g}-{profile.segment_count.max:g}"
        )

    if profile.segment_length:
        for i, segment in enumerate(segments):
            if not profile.segment_length.min <= segment.duration <= profile.segment_length.max:
                warnings.append(
                    f"Segment {i + 1} duration {segment.duration:.1f}s is outside expected range "
                    f"{profile.segment_length.min:g}-{profile.segment_length.max:g}s"
                )

    bounds = profile.total_duration_bounds(target_duration)
    if bounds:
        total = sum(s.duration for s in segments)
        if not bounds.min <= total <= bounds.max:
            warnings.append(
                f"Total duration {total:.1f}s is outside target range {bounds.min:g}-{bounds.max:g}s"
            )

    return warnings
