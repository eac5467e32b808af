"""Per-segment synthesis state machine: synthesize, measure, accept or retry, degrade.

PENDING -> SYNTHESIZING -> ACCEPTED | RETRY | FALLBACK_SILENCE
"""

import itertools
import logging
import os
import shutil
import time
from dataclasses import dataclass, field

from redub.audio import AudioToolkit
from redub.constants import (
    ADAPTIVE_FACTOR_BASE,
    ADAPTIVE_FACTOR_MIN,
    ADAPTIVE_FACTOR_STEP,
    COMPLEMENT_MARGIN,
    COMPLEMENT_MAX_SILENCE,
    COMPLEMENT_MIN_SILENCE,
    NATURAL_SCALE,
    OVERRUN_REPROCESS_RATIO,
    PRECISION_BUCKETS,
    SPARE_TIME_NUDGE,
    SPARE_TIME_RATIO,
    TIGHT_TIME_NUDGE,
    TIGHT_TIME_RATIO,
    UNUSABLE_SCALE_STEP,
)
from redub.errors import BudgetExceeded, TransientBackendError
from redub.models import (
    CalibrationState,
    Segment,
    SegmentState,
    SynthesisAttempt,
    precision_percent,
)
from redub.oracle import DurationOracle
from redub.parser import estimate_natural_duration, fit_text_to_span, is_text_too_long
from redub.settings import SyncSettings
from redub.stretch import plan_fit, wants_complement
from redub.tts import SynthesisBackend, SynthesisCache

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything one video's synchronization run needs, passed explicitly."""

    project_dir: str
    backend: SynthesisBackend
    toolkit: AudioToolkit
    oracle: DurationOracle
    settings: SyncSettings = field(default_factory=SyncSettings)
    calibration: CalibrationState = field(default_factory=CalibrationState)
    cache: SynthesisCache = field(default_factory=SynthesisCache)
    deadline: float | None = None       # time.monotonic() value
    iteration: int = 1
    quiet: bool = False
    serial: itertools.count = field(default_factory=itertools.count)

    def subdir(self, name: str) -> str:
        path = os.path.join(self.project_dir, name)
        os.makedirs(path, exist_ok=True)
        return path

    def raw_path(self, segment: Segment, attempt: int, suffix: str = ".wav") -> str:
        directory = self.subdir(os.path.join("raw", f"iter_{self.iteration}"))
        return os.path.join(directory, f"seg_{segment.index:03d}_a{attempt}{suffix}")

    def segment_path(self, segment: Segment) -> str:
        return os.path.join(self.subdir("segments"), f"seg_{segment.index:03d}.wav")

    def check_budget(self, stage: str) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise BudgetExceeded(f"Wall-clock budget exceeded during {stage}")


# --- pure decisions ---

def precision_threshold(span: float) -> float:
    """Required precision (percent) for a span, stricter for longer spans."""
    for upper, required in PRECISION_BUCKETS:
        if span <= upper:
            return required
    return PRECISION_BUCKETS[-1][1]


def clamp_scale(scale: float, settings: SyncSettings) -> float:
    return max(settings.length_scale_min, min(settings.length_scale_max, scale))


def initial_scale(segment: Segment, calibration: CalibrationState, settings: SyncSettings) -> float:
    """Start from the calibrated global scale, nudged by how much room the text has."""
    scale = calibration.global_length_scale
    ratio = segment.target_duration / estimate_natural_duration(segment.synthesis_text)
    if ratio > SPARE_TIME_RATIO:
        scale *= SPARE_TIME_NUDGE
    elif ratio < TIGHT_TIME_RATIO:
        scale *= TIGHT_TIME_NUDGE
    return clamp_scale(scale, settings)


def next_scale(scale: float, duration: float | None, target: float,
               history: list[float], settings: SyncSettings) -> float:
    """Damped proportional correction of the length scale.

    history holds the scales already tried, the current one included.
    """
    if not duration or duration <= 0:
        return clamp_scale(scale * UNUSABLE_SCALE_STEP, settings)
    adaptive = max(ADAPTIVE_FACTOR_MIN, ADAPTIVE_FACTOR_BASE - ADAPTIVE_FACTOR_STEP * len(history))
    proposed = scale * (1.0 + (target / duration - 1.0) * adaptive)
    if len(history) >= 2:
        proposed = (proposed + sum(history) / len(history)) / 2.0
    return clamp_scale(proposed, settings)


def accept(attempt: SynthesisAttempt, target: float, settings: SyncSettings) -> bool:
    """Ordered acceptance rules; the first that matches decides."""
    if not attempt.has_voice:
        return False
    if attempt.mean_volume < settings.volume_floor:
        return False
    if attempt.precision >= precision_threshold(target):
        return True
    tempo = attempt.duration / target
    if settings.speed_factor_min <= tempo <= settings.speed_factor_max \
            and attempt.spectral_quality >= settings.quality_floor:
        return True
    return False


def complement_padding(natural: float, target: float, compensation: float) -> float:
    """Silence appended after natural-speed speech, never more than the slack."""
    slack = target - natural
    if slack <= 0:
        return 0.0
    pad = min(COMPLEMENT_MAX_SILENCE, max(0.0, (slack - COMPLEMENT_MARGIN) * compensation))
    return min(pad, slack)


# --- file-producing steps ---

def _measure(segment: Segment, ctx: SyncContext, source: str, attempt_no: int,
             scale: float) -> tuple[str, SynthesisAttempt, bool]:
    """Conform a synthesized file and measure it. Returns (wav, attempt, usable)."""
    wav = ctx.raw_path(segment, attempt_no)
    ctx.toolkit.conform(source, wav)
    anomalies = ctx.oracle.anomalies
    duration = ctx.oracle.measure(wav)
    usable = ctx.oracle.anomalies == anomalies
    quality = ctx.toolkit.analyze(wav)
    attempt = SynthesisAttempt(
        scale=scale,
        duration=duration,
        mean_volume=quality.mean_volume,
        spectral_quality=quality.spectral_quality,
        has_voice=quality.has_voice,
        precision=precision_percent(duration, segment.target_duration),
    )
    return wav, attempt, usable


def _synthesize(segment: Segment, ctx: SyncContext, scale: float, attempt_no: int) -> str:
    # Unique per call: cached entries keep pointing at their own file
    suffix = f"_tts{next(ctx.serial)}{ctx.backend.extension}"
    source = ctx.raw_path(segment, attempt_no, suffix=suffix)
    with ctx.backend.session():
        return ctx.cache.synthesize(ctx.backend, segment.synthesis_text, scale, source)


def _finish(segment: Segment, ctx: SyncContext, path: str, strategy: str) -> Segment:
    final = ctx.segment_path(segment)
    boost = ctx.calibration.dynamic_boost_level
    if boost:
        ctx.toolkit.apply_gain(path, boost, final)
    elif path != final:
        shutil.copyfile(path, final)
    segment.final_path = final
    segment.final_duration = ctx.oracle.measure(final)
    segment.strategy = strategy
    segment.state = SegmentState.ACCEPTED
    return segment


def _complement(segment: Segment, ctx: SyncContext, attempt_no: int) -> bool:
    """Natural-speed speech followed by silence. Returns False when it cannot be used."""
    try:
        source = _synthesize(segment, ctx, NATURAL_SCALE, attempt_no)
        wav, attempt, usable = _measure(segment, ctx, source, attempt_no, NATURAL_SCALE)
    except TransientBackendError as e:
        logger.warning("%s: natural-speed synthesis failed: %s", segment.describe(), e)
        return False
    segment.attempts.append(attempt)
    if not usable or not attempt.has_voice or attempt.duration > segment.target_duration:
        ctx.cache.discard(ctx.backend, segment.synthesis_text, NATURAL_SCALE)
        return False

    pad = complement_padding(attempt.duration, segment.target_duration,
                             ctx.calibration.silence_compensation)
    if pad >= COMPLEMENT_MIN_SILENCE:
        padded = ctx.raw_path(segment, attempt_no, suffix="_padded.wav")
        ctx.toolkit.append_silence(wav, pad, padded)
        wav = padded
    else:
        pad = 0.0
    segment.scale = NATURAL_SCALE
    segment.silence_padding = pad
    _finish(segment, ctx, wav, "natural+silence")
    return True


def _fit_accepted(segment: Segment, ctx: SyncContext, wav: str, attempt: SynthesisAttempt,
                  attempt_no: int) -> Segment:
    """Land an accepted attempt in its slot: complement, raw copy or in-band stretch."""
    fit = plan_fit(attempt.duration, segment.target_duration,
                   ctx.settings.speed_factor_min, ctx.settings.speed_factor_max)
    if fit.complement and _complement(segment, ctx, attempt_no + 1):
        return segment

    if fit.skip:
        return _finish(segment, ctx, wav, "raw")

    stretched = ctx.raw_path(segment, attempt_no, suffix="_stretched.wav")
    try:
        ctx.toolkit.stretch(wav, stretched, fit.chain)
        quality = ctx.toolkit.analyze(stretched)
    except TransientBackendError as e:
        logger.warning("%s: stretch failed, keeping raw audio: %s", segment.describe(), e)
        return _finish(segment, ctx, wav, "raw")
    if not quality.has_voice:
        logger.warning("%s: stretched audio lost its voice, keeping raw audio", segment.describe())
        return _finish(segment, ctx, wav, "raw")
    segment.stretch_factor = fit.tempo
    return _finish(segment, ctx, stretched, "stretched")


def _fallback_silence(segment: Segment, ctx: SyncContext) -> Segment:
    final = ctx.segment_path(segment)
    ctx.toolkit.generate_silence(segment.target_duration, final)
    segment.final_path = final
    segment.final_duration = segment.target_duration
    segment.strategy = "silence"
    segment.state = SegmentState.FALLBACK_SILENCE
    logger.warning(
        "%s: no acceptable speech after %d attempts, replaced with silence (quality loss)",
        segment.describe(), len(segment.attempts),
    )
    return segment


def synthesize_segment(segment: Segment, ctx: SyncContext) -> Segment:
    """Run the retry loop for one segment until it is ACCEPTED or FALLBACK_SILENCE."""
    settings = ctx.settings
    target = segment.target_duration

    if is_text_too_long(segment.synthesis_text, target):
        if segment.simplify(fit_text_to_span(segment.synthesis_text, target)):
            logger.info("%s: text simplified to fit its span", segment.describe())

    scale = initial_scale(segment, ctx.calibration, settings)
    history: list[float] = []

    for attempt_no in range(1, settings.max_attempts + 1):
        segment.state = SegmentState.SYNTHESIZING
        segment.scale = scale
        history.append(scale)
        try:
            source = _synthesize(segment, ctx, scale, attempt_no)
            wav, attempt, usable = _measure(segment, ctx, source, attempt_no, scale)
        except TransientBackendError as e:
            logger.warning("%s: attempt %d failed: %s", segment.describe(), attempt_no, e)
            segment.state = SegmentState.RETRY
            scale = next_scale(scale, None, target, history, settings)
            continue

        segment.attempts.append(attempt)
        if usable and accept(attempt, target, settings):
            return _fit_accepted(segment, ctx, wav, attempt, attempt_no)

        ctx.cache.discard(ctx.backend, segment.synthesis_text, scale)
        segment.state = SegmentState.RETRY
        scale = next_scale(scale, attempt.duration if usable else None, target, history, settings)

    voiced_short = [
        a for a in segment.attempts
        if a.has_voice and a.mean_volume >= settings.volume_floor and a.duration < target
    ]
    if voiced_short:
        shortest = min(voiced_short, key=lambda a: a.duration)
        if wants_complement(shortest.duration / target, target - shortest.duration) \
                and _complement(segment, ctx, settings.max_attempts + 1):
            return segment
    return _fallback_silence(segment, ctx)


def _overruns(segment: Segment) -> bool:
    return segment.state == SegmentState.ACCEPTED and \
        segment.final_duration > segment.target_duration * (1.0 + OVERRUN_REPROCESS_RATIO)


def process_segments(segments: list[Segment], ctx: SyncContext) -> list[Segment]:
    """Synthesize every segment, then re-run overrunning ones with simplified text."""
    total = len(segments)
    for i, seg in enumerate(segments):
        ctx.check_budget("synthesis")
        if not ctx.quiet:
            print(f"  Segment {i + 1}/{total}: {seg.synthesis_text[:50]}")
        synthesize_segment(seg, ctx)

    if not ctx.settings.reprocess_overruns:
        return segments

    for seg in segments:
        if not _overruns(seg):
            continue
        shorter = fit_text_to_span(seg.synthesis_text, seg.target_duration)
        if not seg.simplify(shorter):
            continue
        ctx.check_budget("reprocessing")
        logger.info("%s: overran its span by more than %d%%, re-running with simplified text",
                    seg.describe(), int(OVERRUN_REPROCESS_RATIO * 100))
        seg.reset()
        synthesize_segment(seg, ctx)
    return segments
