"""Tests for the audio toolkit."""

import shutil
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from pydub import AudioSegment

from redub.audio import AudioToolkit, quality_from_levels, run_command
from redub.errors import TransientBackendError

from conftest import TEST_RATE, silence, tone, write_wav

needs_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg not installed",
)


def test_quality_from_levels_voice():
    q = quality_from_levels(-18.0, -6.0)
    assert q.has_content and q.has_voice
    assert q.dynamic_range == pytest.approx(12.0)
    assert q.spectral_quality == pytest.approx(min(100.0, 75 + 12 * 0.8 + 12 * 1.2))
    assert q.is_clipped is False


def test_quality_from_levels_relaxed_voice_needs_dynamics():
    assert quality_from_levels(-32.0, -20.0).has_voice is True
    assert quality_from_levels(-32.0, -29.0).has_voice is False


def test_quality_from_levels_silence():
    q = quality_from_levels(-90.0, -90.0)
    assert q.has_content is False
    assert q.has_voice is False
    assert q.spectral_quality == 50.0


def test_quality_from_levels_clipping():
    assert quality_from_levels(-10.0, -0.5).is_clipped is True


def test_run_command_timeout_is_transient():
    with patch("redub.audio.subprocess.run",
               side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=1)):
        with pytest.raises(TransientBackendError, match="timed out"):
            run_command(["ffmpeg", "-version"], timeout=1)


def test_run_command_nonzero_exit_is_transient():
    result = MagicMock(returncode=1, stderr=b"boom\nInvalid data")
    with patch("redub.audio.subprocess.run", return_value=result):
        with pytest.raises(TransientBackendError, match="Invalid data"):
            run_command(["ffmpeg"], timeout=1)


def test_run_command_missing_binary_is_transient():
    with patch("redub.audio.subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(TransientBackendError):
            run_command(["ffmpeg"], timeout=1)


def test_probe_parses_ffprobe_output():
    toolkit = AudioToolkit(ffmpeg="ffmpeg", ffprobe="ffprobe")
    with patch("redub.audio.run_command", return_value=MagicMock(stdout=b"12.345000\n")):
        assert toolkit.probe_duration("a.wav") == pytest.approx(12.345)
    with patch("redub.audio.run_command", return_value=MagicMock(stdout=b"N/A\n")):
        with pytest.raises(TransientBackendError):
            toolkit.probe_duration("a.wav")


def test_stretch_command_uses_atempo_chain():
    toolkit = AudioToolkit(sample_rate=48000, ffmpeg="ffmpeg", ffprobe="ffprobe")
    with patch("redub.audio.run_command") as mock_run:
        toolkit.stretch("in.wav", "out.wav", [2.0, 1.6])
    cmd = mock_run.call_args[0][0]
    assert "atempo=2.000000,atempo=1.600000" in cmd
    assert cmd[cmd.index("-ar") + 1] == "48000"
    assert cmd[cmd.index("-c:a") + 1] == "pcm_s16le"


@pytest.mark.parametrize("seconds", [0.001, 0.3337, 1.0, 2.71828])
def test_generate_silence_is_sample_exact(tmp_path, seconds):
    toolkit = AudioToolkit(sample_rate=TEST_RATE, ffmpeg="ffmpeg", ffprobe="ffprobe")
    path = toolkit.generate_silence(seconds, str(tmp_path / "s.wav"))
    assert toolkit.frame_count(path) == round(seconds * TEST_RATE)
    assert abs(toolkit.frame_count(path) / TEST_RATE - seconds) <= 1 / TEST_RATE


def test_cached_silence_reuses_file(tmp_path):
    toolkit = AudioToolkit(sample_rate=TEST_RATE, ffmpeg="ffmpeg", ffprobe="ffprobe")
    first = toolkit.cached_silence(0.5, str(tmp_path))
    second = toolkit.cached_silence(0.50001, str(tmp_path))
    third = toolkit.cached_silence(0.6, str(tmp_path))
    assert first == second
    assert first != third


def test_fit_to_samples_truncates_and_pads(tmp_path):
    toolkit = AudioToolkit(sample_rate=TEST_RATE, ffmpeg="ffmpeg", ffprobe="ffprobe")
    src = write_wav(tmp_path / "t.wav", tone(1.0))
    toolkit.fit_to_samples(src, 4000, str(tmp_path / "short.wav"))
    toolkit.fit_to_samples(src, 12000, str(tmp_path / "long.wav"))
    assert toolkit.frame_count(str(tmp_path / "short.wav")) == 4000
    assert toolkit.frame_count(str(tmp_path / "long.wav")) == 12000


def test_append_silence_adds_exact_frames(tmp_path):
    toolkit = AudioToolkit(sample_rate=TEST_RATE, ffmpeg="ffmpeg", ffprobe="ffprobe")
    src = write_wav(tmp_path / "t.wav", tone(1.0))
    out = toolkit.append_silence(src, 0.25, str(tmp_path / "padded.wav"))
    assert toolkit.frame_count(out) == TEST_RATE + 2000


def test_analyze_tone_and_silence(tmp_path):
    toolkit = AudioToolkit(sample_rate=TEST_RATE, ffmpeg="ffmpeg", ffprobe="ffprobe")
    voiced = toolkit.analyze(write_wav(tmp_path / "t.wav", tone(0.5)))
    quiet = toolkit.analyze(write_wav(tmp_path / "s.wav", silence(0.5)))
    assert voiced.has_voice is True
    assert quiet.has_voice is False
    assert quiet.mean_volume == -90.0


def test_apply_gain(tmp_path):
    toolkit = AudioToolkit(sample_rate=TEST_RATE, ffmpeg="ffmpeg", ffprobe="ffprobe")
    src = write_wav(tmp_path / "t.wav", tone(0.5, volume=-20.0))
    out = toolkit.apply_gain(src, 6.0, str(tmp_path / "g.wav"))
    before = AudioSegment.from_wav(src).dBFS
    after = AudioSegment.from_wav(out).dBFS
    assert after - before == pytest.approx(6.0, abs=0.1)


@needs_ffmpeg
def test_real_ffmpeg_stretch_and_concat(tmp_path):
    toolkit = AudioToolkit(sample_rate=TEST_RATE)
    src = write_wav(tmp_path / "t.wav", tone(2.0))
    stretched = toolkit.stretch(src, str(tmp_path / "fast.wav"), [1.25])
    assert toolkit.probe_duration(stretched) == pytest.approx(1.6, abs=0.05)

    gap = toolkit.generate_silence(0.5, str(tmp_path / "gap.wav"))
    joined = toolkit.concat([stretched, gap, stretched], str(tmp_path / "joined.wav"))
    expected = 2 * toolkit.frame_count(stretched) + 4000
    assert toolkit.frame_count(joined) == expected
