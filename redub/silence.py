"""Classify gaps between speech and plan how an overflow is absorbed by them."""

from redub.constants import COMPRESSIBLE_WEIGHT_MAX, SILENCE_CLASSES
from redub.models import SilenceClass


def classify(duration: float) -> SilenceClass:
    """Map a gap duration to its silence class."""
    for upper, name, _ in SILENCE_CLASSES:
        if duration < upper:
            return SilenceClass(name)
    return SilenceClass.LONG_PAUSE


def compressible(duration: float, cls: SilenceClass | None = None,
                 max_weight: float = COMPRESSIBLE_WEIGHT_MAX) -> float:
    """Seconds a gap may give up under compression.

    Only classes whose preservation weight is at or below max_weight give up
    time, and never more than (1 - weight) of their duration.
    """
    if duration <= 0:
        return 0.0
    cls = cls or classify(duration)
    if cls.weight > max_weight:
        return 0.0
    return (1.0 - cls.weight) * duration


def plan_compression(gaps: list[float], overflow: float,
                     max_weight: float = COMPRESSIBLE_WEIGHT_MAX) -> list[float]:
    """Distribute an overflow over compressible gaps.

    Returns new gap durations in the input order. Gaps are shortened lowest
    weight first, longest first within a weight. Whatever cannot be absorbed
    is left for the caller to cut.
    """
    result = list(gaps)
    remaining = max(0.0, overflow)
    if remaining == 0:
        return result

    order = sorted(
        range(len(gaps)),
        key=lambda i: (classify(gaps[i]).weight, -gaps[i]),
    )
    for i in order:
        if remaining <= 0:
            break
        give = min(compressible(gaps[i], max_weight=max_weight), remaining)
        if give <= 0:
            continue
        result[i] = gaps[i] - give
        remaining -= give
    return result
