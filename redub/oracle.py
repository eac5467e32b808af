"""Trustworthy duration measurement for any produced audio file."""

import logging
import os
import threading

from redub.constants import FALLBACK_DURATION, PROBE_MIN_BYTES, PROBE_RETRIES
from redub.errors import TransientBackendError

logger = logging.getLogger(__name__)


class DurationOracle:
    """Measures files with a probe callable and never raises.

    The probe takes a path and returns seconds, raising TransientBackendError
    (or ValueError) when it cannot. Failures are retried, then replaced by the
    fallback duration and counted as anomalies.
    """

    def __init__(self, probe, frame_counter=None, min_bytes: int = PROBE_MIN_BYTES,
                 retries: int = PROBE_RETRIES, fallback: float = FALLBACK_DURATION):
        self.probe = probe
        self.frame_counter = frame_counter
        self.min_bytes = min_bytes
        self.retries = retries
        self.fallback = fallback
        self.anomalies = 0
        self._lock = threading.Lock()

    def _degrade(self, path: str, reason: str) -> float:
        with self._lock:
            self.anomalies += 1
        logger.warning("Duration of %s unknown (%s); using %.1fs", path, reason, self.fallback)
        return self.fallback

    def measure(self, path: str) -> float:
        if not os.path.exists(path):
            return self._degrade(path, "missing file")
        if os.path.getsize(path) < self.min_bytes:
            return self._degrade(path, "file too small")

        last_error = None
        for _ in range(self.retries + 1):
            try:
                value = self.probe(path)
            except (TransientBackendError, ValueError) as e:
                last_error = e
                continue
            if value is not None and value > 0:
                return float(value)
            last_error = f"non-positive duration {value!r}"
        return self._degrade(path, str(last_error))

    def measure_samples(self, path: str) -> int:
        """Exact frame count of a PCM WAV file."""
        if self.frame_counter is None:
            raise TransientBackendError("No frame counter configured")
        return self.frame_counter(path)
