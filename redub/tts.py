"""Speech synthesis backends (edge-tts, piper) with retry, sessions and a result cache."""

import asyncio
import logging
import os
import shutil
import subprocess
import threading
import time
from contextlib import contextmanager

import edge_tts

from redub.constants import (
    DEFAULT_VOICE,
    MAX_CONCURRENT_SYNTHESIS,
    SYNTHESIS_TIMEOUT,
    TTS_MIN_BYTES,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
)
from redub.errors import StructuralError, TransientBackendError

logger = logging.getLogger(__name__)


def scale_to_rate(scale: float) -> str:
    """Map a length scale (>1 slower) to an edge-tts rate string like "-13%"."""
    percent = round((1.0 / scale - 1.0) * 100)
    return f"{percent:+d}%"


def _valid_output(path: str, min_bytes: int = TTS_MIN_BYTES) -> bool:
    return os.path.exists(path) and os.path.getsize(path) >= min_bytes


class SynthesisBackend:
    """Base backend: a bounded session plus retrying synthesize()."""

    name = "base"
    extension = ".wav"

    def __init__(self, voice: str = DEFAULT_VOICE, max_concurrent: int = MAX_CONCURRENT_SYNTHESIS,
                 retries: int = TTS_RETRY_COUNT, base_delay: float = TTS_RETRY_BASE_DELAY):
        self.voice = voice
        self.retries = retries
        self.base_delay = base_delay
        self._semaphore = threading.BoundedSemaphore(max(1, max_concurrent))

    @contextmanager
    def session(self):
        """Hold one synthesis permit for the duration of the block."""
        self._semaphore.acquire()
        try:
            yield self
        finally:
            self._semaphore.release()

    def _synthesize_once(self, text: str, scale: float, output_path: str) -> None:
        raise NotImplementedError

    def synthesize(self, text: str, scale: float, output_path: str) -> str:
        """Synthesize text at a length scale with retry logic.

        Retries on backend errors and undersized output with exponential
        backoff. Raises TransientBackendError once retries run out.
        """
        last_error = None
        for attempt in range(self.retries):
            try:
                self._synthesize_once(text, scale, output_path)
                if _valid_output(output_path):
                    return output_path
                last_error = TransientBackendError(
                    f"{self.name} produced an empty file for: {text[:50]}..."
                )
            except TransientBackendError as e:
                last_error = e
            except Exception as e:  # network and service errors from the backend library
                last_error = TransientBackendError(f"{self.name}: {e}")

            if attempt < self.retries - 1:
                time.sleep(self.base_delay * (2 ** attempt))

        raise last_error


class EdgeTTSBackend(SynthesisBackend):
    name = "edge"
    extension = ".mp3"

    def _synthesize_once(self, text: str, scale: float, output_path: str) -> None:
        communicate = edge_tts.Communicate(text, self.voice, rate=scale_to_rate(scale))
        asyncio.run(communicate.save(output_path))


class PiperBackend(SynthesisBackend):
    name = "piper"
    extension = ".wav"

    def __init__(self, model: str, executable: str = "piper", **kwargs):
        super().__init__(voice=model, **kwargs)
        self.model = model
        self.executable = executable

    def _synthesize_once(self, text: str, scale: float, output_path: str) -> None:
        cmd = [self.executable, "--model", self.model, "--length_scale", f"{scale:.4f}",
               "--output_file", output_path]
        try:
            result = subprocess.run(
                cmd, input=text.encode("utf-8"), stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                timeout=SYNTHESIS_TIMEOUT, check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise TransientBackendError(f"piper timed out after {SYNTHESIS_TIMEOUT}s") from e
        if result.returncode != 0:
            raise TransientBackendError(f"piper exited with {result.returncode}")


def create_backend(settings) -> SynthesisBackend:
    """Build the configured backend. Unknown or unavailable backends are fatal."""
    if settings.backend == "edge":
        return EdgeTTSBackend(voice=settings.voice,
                              max_concurrent=settings.max_concurrent_synthesis)
    if settings.backend == "piper":
        if not settings.piper_model:
            raise StructuralError("piper backend needs a piper_model setting")
        if shutil.which("piper") is None:
            raise StructuralError("piper executable not found")
        return PiperBackend(settings.piper_model,
                            max_concurrent=settings.max_concurrent_synthesis)
    raise StructuralError(f"Unknown synthesis backend: {settings.backend}")


class SynthesisCache:
    """Maps (backend, voice, text, scale) to a raw synthesis file already on disk."""

    def __init__(self):
        self._entries: dict[tuple, str] = {}
        self._lock = threading.Lock()
        self.hits = 0

    @staticmethod
    def key(backend: SynthesisBackend, text: str, scale: float) -> tuple:
        return (backend.name, backend.voice, " ".join(text.split()).lower(), round(scale, 3))

    def get(self, key: tuple) -> str | None:
        with self._lock:
            path = self._entries.get(key)
            if path and os.path.exists(path):
                self.hits += 1
                return path
            return None

    def put(self, key: tuple, path: str) -> None:
        with self._lock:
            self._entries[key] = path

    def discard(self, backend: SynthesisBackend, text: str, scale: float) -> None:
        """Forget a rejected result so the next request synthesizes again."""
        with self._lock:
            self._entries.pop(self.key(backend, text, scale), None)

    def synthesize(self, backend: SynthesisBackend, text: str, scale: float,
                   output_path: str) -> str:
        """Return a cached file for the same request, or synthesize and remember it."""
        key = self.key(backend, text, scale)
        cached = self.get(key)
        if cached:
            return cached
        path = backend.synthesize(text, scale, output_path)
        self.put(key, path)
        return path
