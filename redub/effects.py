"""Final-track enhancement: band-limiting, gentle gain and a limiter."""

import logging

import numpy as np
from pydub import AudioSegment

from redub.constants import (
    ENHANCE_HIGHPASS_HZ,
    ENHANCE_LIMITER_DB,
    ENHANCE_LOWPASS_HZ,
    ENHANCE_MAX_GAIN_DB,
    ENHANCE_QUALITY_THRESHOLD,
    ENHANCE_VOLUME_THRESHOLD,
)
from redub.models import AudioQuality

logger = logging.getLogger(__name__)

# Optional: enhancement is skipped without pedalboard
try:
    import pedalboard
    PEDALBOARD_AVAILABLE = True
except ImportError:
    PEDALBOARD_AVAILABLE = False

ENHANCE_TARGET_DBFS = -20.0


def needs_enhancement(quality: AudioQuality) -> bool:
    return (
        quality.mean_volume < ENHANCE_VOLUME_THRESHOLD
        or quality.overall_score() < ENHANCE_QUALITY_THRESHOLD
    )


def enhancement_gain(mean_volume: float) -> float:
    """Boost toward the target level, capped, never an attenuation."""
    return max(0.0, min(ENHANCE_MAX_GAIN_DB, ENHANCE_TARGET_DBFS - mean_volume))


def enhance(audio: AudioSegment, gain_db: float = 0.0) -> AudioSegment:
    """Run the enhancement chain over an AudioSegment.

    Returns processed audio if pedalboard is available, otherwise returns
    the original audio unchanged. The sample count is preserved.
    """
    if not PEDALBOARD_AVAILABLE or len(audio) == 0:
        return audio

    samples = np.array(audio.get_array_of_samples(), dtype=np.float32)
    sample_rate = audio.frame_rate

    if audio.channels > 1:
        samples = samples.reshape((-1, audio.channels)).T
    else:
        samples = samples.reshape((1, -1))
    samples = samples / 32768.0

    board = pedalboard.Pedalboard([
        pedalboard.HighpassFilter(cutoff_frequency_hz=ENHANCE_HIGHPASS_HZ),
        pedalboard.LowpassFilter(cutoff_frequency_hz=min(ENHANCE_LOWPASS_HZ, sample_rate / 2 - 1)),
        pedalboard.Gain(gain_db=gain_db),
        pedalboard.Limiter(threshold_db=ENHANCE_LIMITER_DB),
    ])
    processed = board(samples, sample_rate)

    processed = np.clip(processed * 32768.0, -32768, 32767).astype(np.int16)
    if audio.channels > 1:
        processed = processed.T.flatten()
    else:
        processed = processed.flatten()

    return AudioSegment(
        data=processed.tobytes(),
        sample_width=2,
        frame_rate=sample_rate,
        channels=audio.channels,
    )


def enhance_file(path: str, quality: AudioQuality) -> bool:
    """Enhance a WAV track in place when its quality calls for it.

    Returns True if the file was rewritten.
    """
    if not needs_enhancement(quality):
        return False
    if not PEDALBOARD_AVAILABLE:
        logger.warning("pedalboard not installed; skipping enhancement of %s", path)
        return False
    audio = AudioSegment.from_file(path)
    enhanced = enhance(audio, enhancement_gain(quality.mean_volume))
    enhanced.export(path, format="wav")
    return True
