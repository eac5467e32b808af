"""Plan pitch-preserving time-stretch operations within the atempo quality range."""

from dataclasses import dataclass

from redub.constants import (
    BACKEND_STRETCH_MAX,
    BACKEND_STRETCH_MIN,
    COMPLEMENT_FORCE_SLACK,
    COMPLEMENT_MIN_SLACK,
    COMPLEMENT_TEMPO_THRESHOLD,
    SPEED_FACTOR_MAX,
    SPEED_FACTOR_MIN,
    STRETCH_SKIP_DELTA,
)


@dataclass(frozen=True)
class StretchPlan:
    requested: float        # raw / target; > 1 speeds up
    tempo: float            # clamped to the natural band
    chain: list[float]
    rejected: bool          # requested tempo fell outside the band
    complement: bool        # pad with silence instead of slowing down
    slack: float            # target - raw, seconds

    @property
    def skip(self) -> bool:
        return abs(self.tempo - 1.0) < STRETCH_SKIP_DELTA


def plan(factor: float) -> list[float]:
    """Decompose factor into steps each inside [0.5, 2.0] whose product is factor.

    plan(3.2) -> [2.0, 1.6]
    """
    if factor <= 0:
        raise ValueError(f"Stretch factor must be positive, got {factor}")
    steps = []
    while factor > BACKEND_STRETCH_MAX:
        steps.append(BACKEND_STRETCH_MAX)
        factor /= BACKEND_STRETCH_MAX
    while factor < BACKEND_STRETCH_MIN:
        steps.append(BACKEND_STRETCH_MIN)
        factor /= BACKEND_STRETCH_MIN
    steps.append(factor)
    return steps


def clamp(factor: float, low: float = SPEED_FACTOR_MIN,
          high: float = SPEED_FACTOR_MAX) -> tuple[float, bool]:
    """Clamp to the natural band. Returns (clamped, was_within_band)."""
    if factor < low:
        return low, False
    if factor > high:
        return high, False
    return factor, True


def wants_complement(tempo: float, slack: float) -> bool:
    """Natural speed plus trailing silence sounds better than heavy slow-down."""
    return (tempo < COMPLEMENT_TEMPO_THRESHOLD and slack > COMPLEMENT_MIN_SLACK) \
        or slack > COMPLEMENT_FORCE_SLACK


def plan_fit(raw_duration: float, target_duration: float,
             low: float = SPEED_FACTOR_MIN, high: float = SPEED_FACTOR_MAX) -> StretchPlan:
    """Plan how raw audio of raw_duration is fitted into target_duration."""
    if raw_duration <= 0 or target_duration <= 0:
        raise ValueError("Durations must be positive")
    requested = raw_duration / target_duration
    tempo, within = clamp(requested, low, high)
    slack = target_duration - raw_duration
    return StretchPlan(
        requested=requested,
        tempo=tempo,
        chain=plan(tempo),
        rejected=not within,
        complement=wants_complement(requested, slack),
        slack=slack,
    )


def atempo_filter(chain: list[float]) -> str:
    """Render a chain as an ffmpeg filter string."""
    return ",".join(f"atempo={step:.6f}" for step in chain)
