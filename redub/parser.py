"""Parse WebVTT/SRT timed text into segments and derive the silences between them."""

import logging
import re

from redub.constants import (
    ABBREVIATIONS,
    CHARS_PER_SECOND,
    MAX_SEGMENT_DURATION,
    MIN_NATURAL_DURATION,
    TARGET_TAIL_PADDING,
    TEXT_FIT_ATTEMPTS,
    TEXT_FIT_TOLERANCE,
    TOO_LONG_MIN_CHARS,
    TOO_LONG_RATIO,
    WORD_PAUSE_SECONDS,
)
from redub.errors import StructuralError
from redub.models import Segment, SilenceSpan, Transcript
from redub.silence import classify

logger = logging.getLogger(__name__)

# 00:01:02.345 --> 00:01:04.000 [cue settings]
_TIMING_RE = re.compile(
    r"^\s*((?:\d+:)?\d{1,2}:\d{2}(?:[.,]\d{1,3})?)\s*-->\s*"
    r"((?:\d+:)?\d{1,2}:\d{2}(?:[.,]\d{1,3})?)"
)

# Caption markup that is never spoken
_MARKUP_PATTERNS = [
    re.compile(r"\[\s*music\s*\]", re.IGNORECASE),
    re.compile(r"\[\s*sound[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[\s*inaudible\s*\]", re.IGNORECASE),
    re.compile(r"\[\s*\*[^\]]*\*\s*\]"),
    re.compile(r"♪[^♪]*♪"),
    re.compile(r"<[^>]+>"),
]
_URL_RE = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)

_INTENSIFIERS_RE = re.compile(r"\b(?:very|really|quite|pretty|rather)\s+", re.IGNORECASE)
_FILLERS_RE = re.compile(r"\b(?:actually|basically|essentially|literally),?\s*", re.IGNORECASE)
_ASIDE_RE = re.compile(r"\s*[(\[](?:note|explanation):[^)\]]*[)\]]", re.IGNORECASE)
_REPLACEMENTS = [
    (re.compile(r"\s+and/or\s+", re.IGNORECASE), " & "),
    (re.compile(r"\bthat\s+", re.IGNORECASE), ""),
    (re.compile(r"\bin order to\b", re.IGNORECASE), "to"),
    (re.compile(r"\bbecause of\b", re.IGNORECASE), "due to"),
    (re.compile(r"\s+going to\b", re.IGNORECASE), "'ll"),
]


def parse_timestamp(value: str) -> float:
    """Convert "HH:MM:SS.mmm", "H:MM:SS,mmm" or "MM:SS.mmm" to seconds."""
    value = value.strip().replace(",", ".")
    parts = value.split(":")
    if len(parts) == 2:
        hours, minutes, seconds = "0", parts[0], parts[1]
    elif len(parts) == 3:
        hours, minutes, seconds = parts
    else:
        raise ValueError(f"Bad timestamp: {value!r}")
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def normalize_text(text: str, abbreviations: dict[str, str] | None = None) -> str:
    """Strip caption markup and prepare text for synthesis.

    Returns "" when nothing speakable is left.
    """
    if abbreviations is None:
        abbreviations = ABBREVIATIONS

    for pattern in _MARKUP_PATTERNS:
        text = pattern.sub(" ", text)
    text = _URL_RE.sub("link", text)

    for abbr, expansion in abbreviations.items():
        # Word-boundary match; abbreviations ending in "." cannot use a trailing \b
        tail = "" if abbr.endswith(".") else r"\b"
        text = re.sub(rf"(?<![\w.]){re.escape(abbr)}{tail}", expansion, text)

    text = re.sub(r"\s+", " ", text).strip()
    if not text:
        return ""
    if text[-1] not in ".!?":
        text += "."
    return text


def estimate_natural_duration(text: str) -> float:
    """Rough seconds needed to speak text at a natural rate."""
    if not text:
        return MIN_NATURAL_DURATION
    words = len(text.split())
    estimate = len(text) / CHARS_PER_SECOND + words * WORD_PAUSE_SECONDS
    return max(MIN_NATURAL_DURATION, estimate)


def is_text_too_long(text: str, duration: float) -> bool:
    return (
        estimate_natural_duration(text) > duration * TOO_LONG_RATIO
        and len(text) > TOO_LONG_MIN_CHARS
    )


def simplify_text(text: str) -> str:
    """Rule-based shortening. Returns the original text when nothing shrinks."""
    if not text:
        return text
    simplified = _INTENSIFIERS_RE.sub("", text)
    simplified = _FILLERS_RE.sub("", simplified)
    for pattern, replacement in _REPLACEMENTS:
        simplified = pattern.sub(replacement, simplified)
    simplified = _ASIDE_RE.sub("", simplified)
    simplified = re.sub(r"\s+", " ", simplified).strip()

    # Still long: drop more aggressively
    if len(simplified) > len(text) * 0.8:
        simplified = re.sub(r"\byou\s+", "", simplified, flags=re.IGNORECASE)
        simplified = re.sub(r"\s+the\s+", " ", simplified, flags=re.IGNORECASE)
        simplified = re.sub(r"\s*,\s*", ", ", simplified)
        simplified = re.sub(r"\s+", " ", simplified).strip()

    if simplified and len(simplified) < len(text):
        return simplified
    return text


def fit_text_to_span(
    text: str,
    duration: float,
    tolerance: float = TEXT_FIT_TOLERANCE,
    max_attempts: int = TEXT_FIT_ATTEMPTS,
) -> str:
    """Simplify text until its estimate fits duration * (1 + tolerance)."""
    limit = duration * (1.0 + tolerance)
    for _ in range(max_attempts):
        if estimate_natural_duration(text) <= limit:
            break
        shorter = simplify_text(text)
        if shorter == text:
            break
        text = shorter
    return text


def _iter_cues(text: str):
    """Yield (start, end, raw_text) for each cue block."""
    blocks = re.split(r"\n\s*\n", text.replace("\r\n", "\n").replace("\r", "\n"))
    for block in blocks:
        lines = [line for line in block.split("\n") if line.strip()]
        if not lines:
            continue
        head = lines[0].strip()
        if head.startswith("WEBVTT") and not any(_TIMING_RE.match(line) for line in lines):
            continue
        if head.startswith(("NOTE", "STYLE", "REGION")):
            continue

        timing_idx = None
        for i, line in enumerate(lines):
            if _TIMING_RE.match(line):
                timing_idx = i
                break
        if timing_idx is None:
            continue

        match = _TIMING_RE.match(lines[timing_idx])
        try:
            start = parse_timestamp(match.group(1))
            end = parse_timestamp(match.group(2))
        except ValueError:
            logger.warning("Skipping cue with malformed timing: %r", lines[timing_idx])
            continue
        body = " ".join(line.strip() for line in lines[timing_idx + 1:])
        yield start, end, body


def parse_timed_text(text: str, abbreviations: dict[str, str] | None = None) -> list[Segment]:
    """Parse WebVTT or SRT text into chronologically ordered, non-overlapping segments."""
    cues = sorted(_iter_cues(text), key=lambda c: (c[0], c[1]))

    segments: list[Segment] = []
    prev_end = 0.0
    for start, end, body in cues:
        if segments and start < prev_end:
            start = prev_end
        duration = end - start
        if duration <= 0 or duration > MAX_SEGMENT_DURATION:
            logger.warning(
                "Dropping cue [%.3fs-%.3fs]: duration %.3fs out of range", start, end, duration
            )
            continue
        spoken = normalize_text(body, abbreviations)
        if not spoken:
            continue
        segments.append(Segment(
            index=len(segments),
            start=start,
            end=end,
            original_text=body,
            synthesis_text=spoken,
        ))
        prev_end = end

    return segments


def derive_silences(segments: list[Segment], total_duration: float) -> list[SilenceSpan]:
    """Gaps before the first segment, between segments and after the last one."""
    silences = []
    cursor = 0.0
    for seg in segments:
        if seg.start > cursor:
            gap = seg.start - cursor
            silences.append(SilenceSpan(cursor, seg.start, classify(gap)))
        cursor = max(cursor, seg.end)
    if total_duration > cursor:
        silences.append(SilenceSpan(cursor, total_duration, classify(total_duration - cursor)))
    return silences


def estimate_target_duration(segments: list[Segment]) -> float:
    if not segments:
        return 0.0
    return segments[-1].end + TARGET_TAIL_PADDING


def load_transcript(
    path: str,
    target_duration: float | None = None,
    reference_audio: str | None = None,
    oracle=None,
    abbreviations: dict[str, str] | None = None,
) -> Transcript:
    """Read a timed-text file and build a Transcript.

    The target duration comes from the argument, then from the reference
    audio (measured with the oracle), then from the last cue plus padding.
    A reference the oracle cannot measure falls through to the estimate.
    """
    try:
        with open(path, encoding="utf-8-sig") as f:
            segments = parse_timed_text(f.read(), abbreviations)
    except (OSError, UnicodeDecodeError) as e:
        raise StructuralError(f"Cannot read transcript {path}: {e}") from e
    if not segments:
        raise StructuralError(f"No usable transcript segments in {path}")

    if target_duration is None and reference_audio and oracle is not None:
        anomalies = oracle.anomalies
        measured = oracle.measure(reference_audio)
        if oracle.anomalies == anomalies:
            target_duration = measured
        else:
            logger.warning("Reference audio %s could not be measured; estimating the target "
                           "from the transcript", reference_audio)
    if target_duration is None:
        target_duration = estimate_target_duration(segments)
    if target_duration <= 0:
        raise StructuralError(f"Cannot derive a target duration for {path}")
    last_end = max(seg.end for seg in segments)
    if target_duration < last_end:
        raise StructuralError(
            f"Target duration {target_duration:.3f}s ends before the last cue "
            f"({last_end:.3f}s) in {path}"
        )

    return Transcript(
        segments=segments,
        silences=derive_silences(segments, target_duration),
        target_duration=target_duration,
        source=path,
    )
