"""Shared fixtures for redub tests.

The fakes below stand in for ffmpeg and the TTS service: everything is mono
16-bit WAV handled with pydub and numpy.
"""

import numpy as np
import pytest
from pydub import AudioSegment
from pydub.generators import Sine

from redub.audio import AudioToolkit
from redub.controller import SyncContext
from redub.errors import TransientBackendError
from redub.models import Segment
from redub.oracle import DurationOracle
from redub.settings import SyncSettings
from redub.tts import SynthesisBackend

TEST_RATE = 8000


def tone(seconds: float, rate: int = TEST_RATE, volume: float = -10.0) -> AudioSegment:
    """A mono sine tone loud enough to count as voice."""
    audio = Sine(440, sample_rate=rate).to_audio_segment(duration=seconds * 1000, volume=volume)
    return audio.set_channels(1).set_sample_width(2)


def silence(seconds: float, rate: int = TEST_RATE) -> AudioSegment:
    return AudioSegment(
        data=np.zeros(round(seconds * rate), dtype=np.int16).tobytes(),
        sample_width=2, frame_rate=rate, channels=1,
    )


def write_wav(path, audio: AudioSegment) -> str:
    audio.export(str(path), format="wav")
    return str(path)


class FakeToolkit(AudioToolkit):
    """AudioToolkit whose ffmpeg operations are done in numpy on WAV files."""

    def __init__(self, sample_rate: int = TEST_RATE):
        super().__init__(sample_rate=sample_rate, channels=1, ffmpeg="ffmpeg", ffprobe="ffprobe")
        self.stretch_calls = []
        self.concat_calls = 0

    def _samples(self, path):
        audio = AudioSegment.from_wav(path).set_frame_rate(self.sample_rate).set_channels(1)
        return np.array(audio.get_array_of_samples(), dtype=np.int16)

    def probe_duration(self, path):
        audio = AudioSegment.from_wav(path)
        return audio.frame_count() / audio.frame_rate

    def conform(self, src, dst):
        return self._export(self._samples(src), dst)

    def stretch(self, src, dst, chain):
        self.stretch_calls.append(list(chain))
        factor = float(np.prod(chain))
        samples = self._samples(src)
        frames = max(1, round(len(samples) / factor))
        index = np.linspace(0, len(samples) - 1, frames).astype(int)
        return self._export(samples[index], dst)

    def concat(self, paths, dst):
        self.concat_calls += 1
        parts = [self._samples(p) for p in paths]
        return self._export(np.concatenate(parts) if parts else np.zeros(0, dtype=np.int16), dst)

    def extract_audio(self, media, dst):
        raise TransientBackendError("no audio stream")


class FakeBackend(SynthesisBackend):
    """Writes a tone whose length comes from duration_fn(text, scale)."""

    name = "fake"
    extension = ".wav"

    def __init__(self, duration_fn=None, volume: float | None = -10.0, rate: int = TEST_RATE,
                 fail_times: int = 0):
        super().__init__(voice="fake-voice", retries=1, base_delay=0)
        self.duration_fn = duration_fn or (lambda text, scale: 1.0 * scale)
        self.volume = volume
        self.rate = rate
        self.fail_times = fail_times
        self.calls = []

    def _synthesize_once(self, text, scale, output_path):
        self.calls.append((text, scale))
        if len(self.calls) <= self.fail_times:
            raise TransientBackendError("service unavailable")
        seconds = self.duration_fn(text, scale)
        audio = silence(seconds, self.rate) if self.volume is None else tone(seconds, self.rate, self.volume)
        audio.export(output_path, format="wav")


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def make_ctx(tmp_path, toolkit):
    """Build a SyncContext around a FakeBackend."""
    def factory(duration_fn=None, volume=-10.0, fail_times=0, **settings):
        backend = FakeBackend(duration_fn, volume=volume, fail_times=fail_times)
        return SyncContext(
            project_dir=str(tmp_path / "project"),
            backend=backend,
            toolkit=toolkit,
            oracle=DurationOracle(toolkit.probe_duration, toolkit.frame_count, min_bytes=64),
            settings=SyncSettings(sample_rate=TEST_RATE, **settings),
            quiet=True,
        )
    return factory


@pytest.fixture
def sample_segments():
    """Three cues with gaps of 0.5s, 0.2s and 1.5s."""
    return [
        Segment(0, 0.5, 2.5, "Hello there.", "Hello there."),
        Segment(1, 2.7, 4.0, "How are you?", "How are you?"),
        Segment(2, 5.5, 8.0, "Fine, thanks.", "Fine, thanks."),
    ]


@pytest.fixture
def sample_vtt(tmp_path):
    path = tmp_path / "talk.vtt"
    path.write_text(
        "WEBVTT\n\n"
        "NOTE generated\n\n"
        "1\n00:00:00.500 --> 00:00:02.500 align:start\nHello there.\n\n"
        "2\n00:00:02.700 --> 00:00:04.000\nHow are\nyou?\n\n"
        "3\n00:00:05.500 --> 00:00:08.000\nFine, thanks.\n"
    )
    return path
