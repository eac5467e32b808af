"""Tests for the duration oracle."""

from unittest.mock import MagicMock

import pytest

from redub.errors import TransientBackendError
from redub.oracle import DurationOracle


@pytest.fixture
def big_file(tmp_path):
    path = tmp_path / "audio.wav"
    path.write_bytes(b"\0" * 4096)
    return str(path)


def test_measure_returns_probe_value(big_file):
    oracle = DurationOracle(lambda p: 3.25)
    assert oracle.measure(big_file) == 3.25
    assert oracle.anomalies == 0


def test_missing_file_falls_back(tmp_path):
    probe = MagicMock()
    oracle = DurationOracle(probe)
    assert oracle.measure(str(tmp_path / "nope.wav")) == 1.0
    assert oracle.anomalies == 1
    probe.assert_not_called()


def test_small_file_falls_back(tmp_path):
    path = tmp_path / "tiny.wav"
    path.write_bytes(b"\0" * 100)
    oracle = DurationOracle(lambda p: 5.0)
    assert oracle.measure(str(path)) == 1.0


def test_probe_failure_retried_then_succeeds(big_file):
    probe = MagicMock(side_effect=[TransientBackendError("timeout"), 2.0])
    oracle = DurationOracle(probe, retries=2)
    assert oracle.measure(big_file) == 2.0
    assert probe.call_count == 2


def test_persistent_failure_degrades(big_file, caplog):
    probe = MagicMock(side_effect=TransientBackendError("exit 1"))
    oracle = DurationOracle(probe, retries=2)
    assert oracle.measure(big_file) == 1.0
    assert probe.call_count == 3
    assert oracle.anomalies == 1
    assert "Duration of" in caplog.text


@pytest.mark.parametrize("value", [0.0, -2.0, None])
def test_non_positive_values_degrade(big_file, value):
    oracle = DurationOracle(lambda p: value, retries=0)
    assert oracle.measure(big_file) == 1.0


def test_measure_samples_uses_frame_counter():
    oracle = DurationOracle(lambda p: 1.0, frame_counter=lambda p: 48000)
    assert oracle.measure_samples("x.wav") == 48000


def test_measure_samples_without_counter_raises():
    with pytest.raises(TransientBackendError):
        DurationOracle(lambda p: 1.0).measure_samples("x.wav")
