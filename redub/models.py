"""Data models for duration-synchronized re-dubbing."""

from dataclasses import dataclass, field
from enum import Enum

from redub.constants import (
    DEFAULT_DYNAMIC_BOOST,
    DEFAULT_GLOBAL_LENGTH_SCALE,
    DEFAULT_SILENCE_COMPENSATION,
    SILENCE_CLASSES,
)


class SegmentState(str, Enum):
    PENDING = "pending"
    SYNTHESIZING = "synthesizing"
    RETRY = "retry"
    ACCEPTED = "accepted"
    FALLBACK_SILENCE = "fallback_silence"


class SilenceClass(str, Enum):
    INTER_WORD = "inter-word"
    PAUSE = "pause"
    BREATH = "breath"
    LONG_PAUSE = "long-pause"

    @property
    def weight(self) -> float:
        """Preservation weight: higher means the gap matters more to rhythm."""
        for _, name, weight in SILENCE_CLASSES:
            if name == self.value:
                return weight
        raise ValueError(self.value)


@dataclass(frozen=True)
class SynthesisAttempt:
    scale: float
    duration: float
    mean_volume: float
    spectral_quality: float
    has_voice: bool
    precision: float      # percent, 0-100


@dataclass(frozen=True)
class AudioQuality:
    mean_volume: float
    max_volume: float
    dynamic_range: float
    has_content: bool
    has_voice: bool
    spectral_quality: float
    is_clipped: bool

    def overall_score(self) -> float:
        """Weighted 0-100 score used to compare whole tracks."""
        voice = 1.0 if self.has_voice else 0.0
        volume = max(0.0, min(1.0, (self.mean_volume + 50.0) / 40.0))
        spectral = self.spectral_quality / 100.0
        clip = 0.8 if self.is_clipped else 1.0
        dynamics = max(0.0, min(1.0, self.dynamic_range / 20.0))
        return (voice * 0.3 + volume * 0.25 + spectral * 0.2 + clip * 0.15 + dynamics * 0.1) * 100.0


@dataclass
class Segment:
    index: int
    start: float
    end: float
    original_text: str
    synthesis_text: str

    # Runtime state, owned by the controller
    state: SegmentState = SegmentState.PENDING
    scale: float = 1.0
    attempts: list[SynthesisAttempt] = field(default_factory=list)
    final_path: str = ""
    final_duration: float = 0.0
    stretch_factor: float = 1.0
    strategy: str = ""      # "raw", "stretched", "natural+silence" or "silence"
    silence_padding: float = 0.0
    simplified: bool = False

    @property
    def target_duration(self) -> float:
        return self.end - self.start

    @property
    def has_voice(self) -> bool:
        return self.state == SegmentState.ACCEPTED and any(a.has_voice for a in self.attempts)

    @property
    def mean_volume(self) -> float:
        """Volume of the last recorded attempt, -90 dB when nothing was heard."""
        if self.state != SegmentState.ACCEPTED or not self.attempts:
            return -90.0
        return self.attempts[-1].mean_volume

    def simplify(self, text: str) -> bool:
        """Replace synthesis_text once. Returns True if the text changed."""
        if self.simplified or not text or text == self.synthesis_text:
            return False
        self.synthesis_text = text
        self.simplified = True
        return True

    def reset(self) -> None:
        """Return runtime fields to PENDING for a new calibration iteration."""
        self.state = SegmentState.PENDING
        self.scale = 1.0
        self.attempts = []
        self.final_path = ""
        self.final_duration = 0.0
        self.stretch_factor = 1.0
        self.strategy = ""
        self.silence_padding = 0.0

    def describe(self) -> str:
        return f"segment {self.index} [{self.start:.3f}s-{self.end:.3f}s]"


@dataclass(frozen=True)
class SilenceSpan:
    start: float
    end: float
    classification: SilenceClass

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class Transcript:
    segments: list[Segment]
    silences: list[SilenceSpan]
    target_duration: float
    source: str = ""


@dataclass
class CalibrationResult:
    iteration: int
    global_scale: float
    duration: float
    target: float
    precision: float
    mean_volume: float
    voice_segments: int
    total_segments: int
    fallback_count: int
    quality_score: float

    @property
    def voice_fraction(self) -> float:
        return self.voice_segments / self.total_segments if self.total_segments else 0.0


@dataclass
class CalibrationState:
    global_length_scale: float = DEFAULT_GLOBAL_LENGTH_SCALE
    silence_compensation: float = DEFAULT_SILENCE_COMPENSATION
    dynamic_boost_level: float = DEFAULT_DYNAMIC_BOOST
    history: list[CalibrationResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "global_length_scale": round(self.global_length_scale, 6),
            "silence_compensation": round(self.silence_compensation, 6),
            "dynamic_boost_level": round(self.dynamic_boost_level, 6),
        }


def precision_percent(actual: float, target: float) -> float:
    """1 - |actual - target| / target, as a percentage floored at zero."""
    if target <= 0:
        return 0.0
    error = abs(actual - target) / target
    return max(0.0, (1.0 - error) * 100.0)
