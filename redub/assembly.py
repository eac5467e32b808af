"""Rebuild the final track: exact transcript gaps, measured speech, tail to the target."""

import logging
import os
import shutil
from dataclasses import dataclass

from redub.constants import MIN_GAP_SECONDS, SAMPLE_TOLERANCE
from redub.models import Segment, SilenceSpan
from redub.silence import plan_compression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineEntry:
    kind: str               # "silence", "speech" or "tail"
    duration: float
    path: str = ""
    segment: int | None = None


def build_timeline(segments: list[Segment], silences: list[SilenceSpan],
                   target: float) -> list[TimelineEntry]:
    """Lay out silence and speech in transcript order.

    Every gap keeps its transcript duration; speech advances by its measured
    duration; the tail absorbs whatever is left up to the target. When speech
    runs past the target the tail is dropped and long pauses give up time.
    """
    last_end = max((seg.end for seg in segments), default=0.0)
    gaps = [s for s in silences if s.start < last_end]

    events = [(s.start, 0, s) for s in gaps] + [(seg.start, 1, seg) for seg in segments]
    events.sort(key=lambda e: (e[0], e[1]))

    entries: list[TimelineEntry] = []
    elapsed = 0.0
    for _, kind, item in events:
        if kind == 0:
            entries.append(TimelineEntry("silence", item.duration))
            elapsed += item.duration
        else:
            entries.append(TimelineEntry("speech", item.final_duration, item.final_path, item.index))
            elapsed += item.final_duration

    tail = target - elapsed
    if tail >= 0:
        entries.append(TimelineEntry("tail", tail))
    else:
        entries = _absorb_overflow(entries, -tail)

    return [e for e in entries if e.kind == "speech" or e.duration >= MIN_GAP_SECONDS]


def _absorb_overflow(entries: list[TimelineEntry], overflow: float) -> list[TimelineEntry]:
    silence_idx = [i for i, e in enumerate(entries) if e.kind == "silence"]
    durations = plan_compression([entries[i].duration for i in silence_idx], overflow)
    absorbed = sum(entries[i].duration for i in silence_idx) - sum(durations)
    logger.warning(
        "Speech overflows the target by %.3fs; long pauses absorb %.3fs, %.3fs is cut",
        overflow, absorbed, max(0.0, overflow - absorbed),
    )
    result = list(entries)
    for i, duration in zip(silence_idx, durations):
        result[i] = TimelineEntry("silence", duration)
    return result


def timeline_duration(entries: list[TimelineEntry]) -> float:
    return sum(e.duration for e in entries)


def render_timeline(entries: list[TimelineEntry], ctx) -> list[str]:
    """Materialize entries as working-format files, silences cached by sample count."""
    silence_dir = ctx.subdir("silence")
    conformed_dir = ctx.subdir(os.path.join("segments", "conformed"))
    paths = []
    for entry in entries:
        if entry.kind == "speech":
            dst = os.path.join(conformed_dir, f"seg_{entry.segment:03d}.wav")
            paths.append(ctx.toolkit.conform(entry.path, dst))
        else:
            paths.append(ctx.toolkit.cached_silence(entry.duration, silence_dir))
    return paths


def correct_length(src: str, target: float, dst: str, ctx) -> str:
    """Truncate or zero-pad so the file holds exactly round(target * rate) frames."""
    expected = round(target * ctx.toolkit.sample_rate)
    actual = ctx.oracle.measure_samples(src)
    if abs(actual - expected) > SAMPLE_TOLERANCE:
        logger.info("Correcting assembled length: %d -> %d samples", actual, expected)
        ctx.toolkit.fit_to_samples(src, expected, dst)
        if src != dst:
            os.remove(src)
    elif src != dst:
        shutil.move(src, dst)
    return dst


def assemble(segments: list[Segment], silences: list[SilenceSpan], target: float,
             ctx, output_path: str) -> str:
    """Build, render, concatenate and length-correct the full track."""
    entries = build_timeline(segments, silences, target)
    paths = render_timeline(entries, ctx)
    joined = output_path + ".concat.wav"
    ctx.toolkit.concat(paths, joined)
    return correct_length(joined, target, output_path, ctx)
