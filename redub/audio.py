"""Audio toolkit: ffmpeg/ffprobe subprocess calls plus pydub/numpy sample work.

Every file that reaches the concat step is mono pcm_s16le WAV at the working
sample rate, so concatenation can stream-copy.
"""

import logging
import os
import subprocess

import numpy as np
from pydub import AudioSegment
from pydub.utils import get_encoder_name, get_prober_name

from redub.constants import (
    CLIP_THRESHOLD,
    CONCAT_TIMEOUT,
    CONTENT_THRESHOLD,
    EXTRACT_TIMEOUT,
    FILTER_TIMEOUT,
    PROBE_TIMEOUT,
    SILENT_DB,
    VOICE_DETECTION_THRESHOLD,
    VOICE_MIN_DYNAMIC_RANGE,
    VOICE_RELAXED_THRESHOLD,
    WORK_CHANNELS,
    WORK_CODEC,
    WORK_SAMPLE_RATE,
    WORK_SAMPLE_WIDTH,
)
from redub.errors import TransientBackendError
from redub.models import AudioQuality
from redub.stretch import atempo_filter

logger = logging.getLogger(__name__)


def run_command(cmd: list[str], timeout: float) -> subprocess.CompletedProcess:
    """Run an external command. Timeouts and non-zero exits raise TransientBackendError."""
    try:
        result = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout, check=False
        )
    except subprocess.TimeoutExpired as e:
        raise TransientBackendError(f"{os.path.basename(cmd[0])} timed out after {timeout}s") from e
    except OSError as e:
        raise TransientBackendError(f"Cannot run {cmd[0]}: {e}") from e
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip().splitlines()
        tail = stderr[-1] if stderr else ""
        raise TransientBackendError(
            f"{os.path.basename(cmd[0])} exited with {result.returncode}: {tail}"
        )
    return result


def _to_db(value: float) -> float:
    return value if value != float("-inf") else SILENT_DB


def quality_from_levels(mean_volume: float, max_volume: float) -> AudioQuality:
    """Derive voice/content/spectral flags from mean and peak loudness."""
    dynamic_range = max(0.0, max_volume - mean_volume)
    has_content = mean_volume > CONTENT_THRESHOLD
    has_voice = has_content and (
        mean_volume > VOICE_DETECTION_THRESHOLD
        or (mean_volume > VOICE_RELAXED_THRESHOLD and dynamic_range > VOICE_MIN_DYNAMIC_RANGE)
    )
    if has_voice:
        spectral = 75.0 + (mean_volume + 30.0) * 0.8 + dynamic_range * 1.2
        spectral = max(50.0, min(100.0, spectral))
    else:
        spectral = 50.0
    return AudioQuality(
        mean_volume=mean_volume,
        max_volume=max_volume,
        dynamic_range=dynamic_range,
        has_content=has_content,
        has_voice=has_voice,
        spectral_quality=spectral,
        is_clipped=max_volume > CLIP_THRESHOLD,
    )


class AudioToolkit:
    """Audio operations used by the engine, bound to one working format."""

    def __init__(
        self,
        sample_rate: int = WORK_SAMPLE_RATE,
        channels: int = WORK_CHANNELS,
        ffmpeg: str | None = None,
        ffprobe: str | None = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.ffmpeg = ffmpeg or get_encoder_name()
        self.ffprobe = ffprobe or get_prober_name()
        self._silence_cache: dict[int, str] = {}

    # --- ffprobe / ffmpeg ---

    def probe_duration(self, path: str) -> float:
        """Container duration in seconds. Raises TransientBackendError on bad output."""
        result = run_command(
            [self.ffprobe, "-v", "error", "-show_entries", "format=duration",
             "-of", "csv=p=0", path],
            timeout=PROBE_TIMEOUT,
        )
        text = result.stdout.decode("utf-8", errors="replace").strip()
        try:
            return float(text)
        except ValueError as e:
            raise TransientBackendError(f"Malformed ffprobe output for {path}: {text!r}") from e

    def _format_args(self) -> list[str]:
        return ["-ar", str(self.sample_rate), "-ac", str(self.channels), "-c:a", WORK_CODEC]

    def conform(self, src: str, dst: str) -> str:
        """Re-encode any input to the working WAV format."""
        run_command(
            [self.ffmpeg, "-y", "-v", "error", "-i", src, "-vn", *self._format_args(), dst],
            timeout=FILTER_TIMEOUT,
        )
        return dst

    def stretch(self, src: str, dst: str, chain: list[float]) -> str:
        """Apply a chain of atempo steps, pitch preserved."""
        run_command(
            [self.ffmpeg, "-y", "-v", "error", "-i", src,
             "-filter:a", atempo_filter(chain), *self._format_args(), dst],
            timeout=FILTER_TIMEOUT,
        )
        return dst

    def concat(self, paths: list[str], dst: str) -> str:
        """Losslessly join working-format files with the concat demuxer."""
        list_path = dst + ".txt"
        with open(list_path, "w") as f:
            for path in paths:
                escaped = os.path.abspath(path).replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")
        try:
            run_command(
                [self.ffmpeg, "-y", "-v", "error", "-f", "concat", "-safe", "0",
                 "-i", list_path, "-c", "copy", dst],
                timeout=CONCAT_TIMEOUT,
            )
        finally:
            if os.path.exists(list_path):
                os.remove(list_path)
        return dst

    def extract_audio(self, media: str, dst: str) -> str:
        """Pull the audio stream out of a video into the working format."""
        run_command(
            [self.ffmpeg, "-y", "-v", "error", "-i", media, "-vn", *self._format_args(), dst],
            timeout=EXTRACT_TIMEOUT,
        )
        return dst

    # --- pydub / numpy ---

    def load(self, path: str) -> AudioSegment:
        return AudioSegment.from_file(path)

    def _export(self, samples: np.ndarray, dst: str) -> str:
        audio = AudioSegment(
            data=samples.astype(np.int16).tobytes(),
            sample_width=WORK_SAMPLE_WIDTH,
            frame_rate=self.sample_rate,
            channels=self.channels,
        )
        audio.export(dst, format="wav")
        return dst

    def analyze(self, path: str) -> AudioQuality:
        """Loudness-based quality analysis of one file."""
        audio = self.load(path)
        if len(audio) == 0:
            return quality_from_levels(SILENT_DB, SILENT_DB)
        return quality_from_levels(_to_db(audio.dBFS), _to_db(audio.max_dBFS))

    def generate_silence(self, duration: float, dst: str) -> str:
        """Write exactly round(duration * sample_rate) frames of silence."""
        frames = max(0, round(duration * self.sample_rate))
        return self._export(np.zeros(frames * self.channels, dtype=np.int16), dst)

    def cached_silence(self, duration: float, directory: str) -> str:
        """Sample-exact silence reused by frame count."""
        frames = max(0, round(duration * self.sample_rate))
        path = self._silence_cache.get(frames)
        if path and os.path.exists(path):
            return path
        path = os.path.join(directory, f"silence_{frames}.wav")
        if not os.path.exists(path):
            self.generate_silence(frames / self.sample_rate, path)
        self._silence_cache[frames] = path
        return path

    def frame_count(self, path: str) -> int:
        return int(self.load(path).frame_count())

    def append_silence(self, src: str, seconds: float, dst: str) -> str:
        """Copy src to dst followed by an exact amount of silence."""
        audio = self.load(src).set_frame_rate(self.sample_rate).set_channels(self.channels)
        pad = round(seconds * self.sample_rate)
        samples = np.array(audio.get_array_of_samples(), dtype=np.int16)
        samples = np.concatenate([samples, np.zeros(pad * self.channels, dtype=np.int16)])
        return self._export(samples, dst)

    def fit_to_samples(self, src: str, frames: int, dst: str) -> str:
        """Truncate or zero-pad a file to an exact frame count."""
        audio = self.load(src)
        samples = np.array(audio.get_array_of_samples(), dtype=np.int16)
        wanted = frames * self.channels
        if len(samples) > wanted:
            samples = samples[:wanted]
        elif len(samples) < wanted:
            samples = np.concatenate([samples, np.zeros(wanted - len(samples), dtype=np.int16)])
        return self._export(samples, dst)

    def apply_gain(self, src: str, gain_db: float, dst: str) -> str:
        audio = self.load(src)
        (audio + gain_db).export(dst, format="wav")
        return dst
