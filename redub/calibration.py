"""Global calibration: repeat synthesize-and-assemble, adapting shared parameters."""

import copy
import json
import logging
import os
from dataclasses import dataclass, field

from redub.assembly import assemble
from redub.constants import (
    CALIBRATION_CACHE_FILE,
    DYNAMIC_BOOST_STEP_DOWN,
    DYNAMIC_BOOST_STEP_UP,
    LOUD_VOLUME,
    MIN_AUDIBLE_VOLUME,
    RATIO_DEADBAND,
    SCALE_ADAPT_GAIN,
    SCALE_ADAPT_MAX_DOWN,
    SCALE_ADAPT_MAX_UP,
    SILENCE_COMPENSATION_MAX,
    SILENCE_COMPENSATION_MIN,
    SILENCE_COMPENSATION_STEP,
)
from redub.controller import SyncContext, process_segments
from redub.models import (
    CalibrationResult,
    CalibrationState,
    Segment,
    SegmentState,
    Transcript,
    precision_percent,
)
from redub.settings import SyncSettings

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Best iteration of a calibration run and everything needed to report on it."""

    best: CalibrationResult
    track_path: str
    segments: list[Segment]
    history: list[CalibrationResult] = field(default_factory=list)
    state: dict = field(default_factory=dict)
    target: float = 0.0
    track_duration: float = 0.0
    converged: bool = False
    anomalies: int = 0


def load_calibration(cache_dir: str, settings: SyncSettings | None = None) -> CalibrationState:
    """Read persisted parameters. Missing or unreadable caches give the defaults."""
    state = CalibrationState()
    path = os.path.join(cache_dir, CALIBRATION_CACHE_FILE)
    if not os.path.exists(path):
        return state
    try:
        with open(path) as f:
            data = json.load(f)
        state.global_length_scale = float(data.get("global_length_scale", state.global_length_scale))
        state.silence_compensation = float(data.get("silence_compensation", state.silence_compensation))
        state.dynamic_boost_level = float(data.get("dynamic_boost_level", state.dynamic_boost_level))
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Ignoring unreadable calibration cache %s: %s", path, e)
        return CalibrationState()
    return _clamp_state(state, settings or SyncSettings())


def save_calibration(cache_dir: str, state: CalibrationState | dict) -> str:
    os.makedirs(cache_dir, exist_ok=True)
    path = os.path.join(cache_dir, CALIBRATION_CACHE_FILE)
    data = state.to_dict() if isinstance(state, CalibrationState) else state
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    return path


def _clamp_state(state: CalibrationState, settings: SyncSettings) -> CalibrationState:
    state.global_length_scale = max(settings.length_scale_min,
                                    min(settings.length_scale_max, state.global_length_scale))
    state.silence_compensation = max(SILENCE_COMPENSATION_MIN,
                                     min(SILENCE_COMPENSATION_MAX, state.silence_compensation))
    state.dynamic_boost_level = max(0.0, min(settings.dynamic_boost_max, state.dynamic_boost_level))
    return state


def adapt(state: CalibrationState, actual: float, target: float, mean_volume: float,
          settings: SyncSettings) -> CalibrationState:
    """Move the shared parameters toward the target duration and an audible level."""
    if actual > 0:
        ratio = target / actual
        if ratio > 1.0 + RATIO_DEADBAND:
            state.global_length_scale *= min(SCALE_ADAPT_MAX_UP, 1.0 + (ratio - 1.0) * SCALE_ADAPT_GAIN)
            state.silence_compensation *= 1.0 + SILENCE_COMPENSATION_STEP
        elif ratio < 1.0 - RATIO_DEADBAND:
            state.global_length_scale *= max(SCALE_ADAPT_MAX_DOWN, 1.0 - (1.0 - ratio) * SCALE_ADAPT_GAIN)
            state.silence_compensation *= 1.0 - SILENCE_COMPENSATION_STEP

    if mean_volume < MIN_AUDIBLE_VOLUME:
        state.dynamic_boost_level += DYNAMIC_BOOST_STEP_UP
    elif mean_volume > LOUD_VOLUME:
        state.dynamic_boost_level -= DYNAMIC_BOOST_STEP_DOWN

    return _clamp_state(state, settings)


def quality_score(voice_ratio: float, mean_volume: float, precision: float) -> float:
    volume_score = max(0.0, min(1.0, (mean_volume + 40.0) / 40.0))
    return (voice_ratio * 0.4 + volume_score * 0.3 + precision / 100.0 * 0.3) * 100.0


def is_converged(result: CalibrationResult, settings: SyncSettings) -> bool:
    return (
        result.precision >= settings.target_precision
        and result.quality_score >= settings.target_quality
        and result.mean_volume >= settings.min_audible_volume
        and result.voice_segments >= settings.min_voice_fraction * result.total_segments
    )


def speech_duration(segments: list[Segment], target: float) -> float:
    """Track length if every gap and tail kept its transcript length.

    The assembler always sizes the file to the target, so drift is measured
    from the segments themselves.
    """
    drift = sum(seg.final_duration - seg.target_duration for seg in segments)
    return target + drift


def calibrate(transcript: Transcript, ctx: SyncContext, cache_dir: str | None = None) -> SyncResult:
    """Run up to max_iterations passes and return the best one.

    Each pass synthesizes every segment, assembles a track and scores it. The
    loop stops early on convergence. Ties in score keep the earlier pass.
    """
    settings = ctx.settings
    state = ctx.calibration
    target = transcript.target_duration
    segments = transcript.segments
    best: SyncResult | None = None

    for iteration in range(1, settings.max_iterations + 1):
        ctx.check_budget("calibration")
        ctx.iteration = iteration
        params = state.to_dict()
        if not ctx.quiet:
            print(f"Calibration iteration {iteration}/{settings.max_iterations} "
                  f"(scale {state.global_length_scale:.3f})")

        for seg in segments:
            seg.reset()
        process_segments(segments, ctx)

        track = os.path.join(ctx.subdir("iterations"), f"iter_{iteration}.wav")
        assemble(segments, transcript.silences, target, ctx, track)

        measured = speech_duration(segments, target)
        quality = ctx.toolkit.analyze(track)
        voiced = sum(1 for seg in segments if seg.has_voice)
        precision = precision_percent(measured, target)
        result = CalibrationResult(
            iteration=iteration,
            global_scale=params["global_length_scale"],
            duration=measured,
            target=target,
            precision=precision,
            mean_volume=quality.mean_volume,
            voice_segments=voiced,
            total_segments=len(segments),
            fallback_count=sum(1 for s in segments if s.state == SegmentState.FALLBACK_SILENCE),
            quality_score=quality_score(voiced / len(segments) if segments else 0.0,
                                        quality.mean_volume, precision),
        )
        state.history.append(result)
        logger.info(
            "Iteration %d: precision %.1f%%, quality %.1f, volume %.1fdB, voiced %d/%d",
            iteration, precision, result.quality_score, quality.mean_volume,
            voiced, len(segments),
        )

        if best is None or result.quality_score > best.best.quality_score:
            best = SyncResult(
                best=result,
                track_path=track,
                segments=copy.deepcopy(segments),
                state=params,
                target=target,
            )

        if is_converged(result, settings):
            best.converged = best.best is result
            break
        if iteration < settings.max_iterations:
            adapt(state, measured, target, quality.mean_volume, settings)

    best.history = list(state.history)
    best.track_duration = ctx.oracle.measure(best.track_path)
    best.anomalies = ctx.oracle.anomalies
    if cache_dir:
        save_calibration(cache_dir, best.state)
    return best
