"""Tests for data models."""

import pytest

from redub.models import (
    AudioQuality,
    CalibrationState,
    Segment,
    SegmentState,
    SilenceClass,
    SilenceSpan,
    SynthesisAttempt,
    precision_percent,
)


def _attempt(has_voice=True, volume=-15.0):
    return SynthesisAttempt(scale=1.0, duration=1.0, mean_volume=volume,
                            spectral_quality=80.0, has_voice=has_voice, precision=90.0)


def test_segment_target_duration():
    seg = Segment(0, 1.25, 3.75, "Hi.", "Hi.")
    assert seg.target_duration == pytest.approx(2.5)
    assert seg.state == SegmentState.PENDING


def test_segment_simplify_only_once():
    seg = Segment(0, 0.0, 1.0, "a b c", "a b c")
    assert seg.simplify("a b") is True
    assert seg.synthesis_text == "a b"
    assert seg.simplify("a") is False
    assert seg.synthesis_text == "a b"
    assert seg.original_text == "a b c"


def test_segment_simplify_ignores_same_text():
    seg = Segment(0, 0.0, 1.0, "same", "same")
    assert seg.simplify("same") is False
    assert seg.simplified is False


def test_segment_reset_keeps_identity_and_text():
    seg = Segment(3, 1.0, 2.0, "orig", "orig")
    seg.simplify("short")
    seg.state = SegmentState.ACCEPTED
    seg.attempts.append(_attempt())
    seg.final_duration = 1.2
    seg.reset()
    assert seg.state == SegmentState.PENDING
    assert seg.attempts == []
    assert seg.final_duration == 0.0
    assert (seg.index, seg.start, seg.end) == (3, 1.0, 2.0)
    assert seg.synthesis_text == "short"


def test_segment_has_voice_requires_acceptance():
    seg = Segment(0, 0.0, 1.0, "x", "x")
    seg.attempts.append(_attempt())
    assert seg.has_voice is False
    seg.state = SegmentState.ACCEPTED
    assert seg.has_voice is True
    seg.state = SegmentState.FALLBACK_SILENCE
    assert seg.has_voice is False


def test_silence_class_weights():
    assert SilenceClass.INTER_WORD.weight == 0.9
    assert SilenceClass.PAUSE.weight == 0.7
    assert SilenceClass.BREATH.weight == 0.8
    assert SilenceClass.LONG_PAUSE.weight == 0.6


def test_silence_span_duration():
    span = SilenceSpan(2.0, 3.5, SilenceClass.LONG_PAUSE)
    assert span.duration == pytest.approx(1.5)


def test_attempt_is_frozen():
    attempt = _attempt()
    with pytest.raises(Exception):
        attempt.scale = 2.0


def test_precision_percent():
    assert precision_percent(10.0, 10.0) == pytest.approx(100.0)
    assert precision_percent(15.0, 10.0) == pytest.approx(50.0)
    assert precision_percent(5.0, 10.0) == pytest.approx(50.0)
    assert precision_percent(30.0, 10.0) == 0.0
    assert precision_percent(1.0, 0.0) == 0.0


def test_audio_quality_overall_score_bounds():
    best = AudioQuality(-10.0, -1.5, 20.0, True, True, 100.0, False)
    worst = AudioQuality(-90.0, -90.0, 0.0, False, False, 0.0, True)
    assert best.overall_score() == pytest.approx(100.0)
    assert worst.overall_score() == pytest.approx(12.0)


def test_calibration_state_defaults():
    state = CalibrationState()
    assert state.global_length_scale == 1.15
    assert state.silence_compensation == 1.1
    assert state.dynamic_boost_level == 0.0
    assert state.to_dict() == {
        "global_length_scale": 1.15,
        "silence_compensation": 1.1,
        "dynamic_boost_level": 0.0,
    }
