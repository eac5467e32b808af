"""All magic numbers and configuration constants."""

# Working audio format for every file that reaches the concat step
WORK_SAMPLE_RATE = 48000            # Hz
WORK_CHANNELS = 1
WORK_SAMPLE_WIDTH = 2               # bytes, pcm_s16le
WORK_CODEC = "pcm_s16le"

# Timed-text parsing
MAX_SEGMENT_DURATION = 120.0        # seconds, longer cues are dropped
TARGET_TAIL_PADDING = 2.0           # seconds added after the last cue when no reference audio exists
CHARS_PER_SECOND = 15.0             # natural speech rate estimate
WORD_PAUSE_SECONDS = 0.08           # per-word pause in the estimate
MIN_NATURAL_DURATION = 0.5          # seconds, floor of the estimate
TOO_LONG_RATIO = 2.0                # estimate > span * ratio => simplify
TOO_LONG_MIN_CHARS = 100            # only simplify texts longer than this
TEXT_FIT_TOLERANCE = 0.50           # ±50% before pre-synthesis simplification
TEXT_FIT_ATTEMPTS = 3

# Duration oracle
PROBE_MIN_BYTES = 1024              # files smaller than this are not probed
PROBE_RETRIES = 2
PROBE_TIMEOUT = 10                  # seconds
FALLBACK_DURATION = 1.0             # seconds, returned when probing fails

# Time-stretch planner
BACKEND_STRETCH_MIN = 0.5           # atempo quality range per application
BACKEND_STRETCH_MAX = 2.0
SPEED_FACTOR_MIN = 0.75             # natural-sounding global band
SPEED_FACTOR_MAX = 1.35
STRETCH_SKIP_DELTA = 0.03           # |tempo - 1| below this => copy raw audio

# Segment synthesis controller
LENGTH_SCALE_MIN = 0.75
LENGTH_SCALE_MAX = 1.35
NATURAL_SCALE = 1.0
MAX_SYNTHESIS_ATTEMPTS = 3
ADAPTIVE_FACTOR_BASE = 0.5          # damping of the proportional correction
ADAPTIVE_FACTOR_STEP = 0.1          # shrink per attempt
ADAPTIVE_FACTOR_MIN = 0.2
UNUSABLE_SCALE_STEP = 1.05          # scale nudge when no duration was measured
SPARE_TIME_RATIO = 1.3              # span/estimate above this => speed up slightly
TIGHT_TIME_RATIO = 0.85             # span/estimate below this => slow down slightly
SPARE_TIME_NUDGE = 1.05
TIGHT_TIME_NUDGE = 0.98
PRECISION_BUCKETS = (               # (max span seconds, required precision %)
    (1.0, 30.0),
    (3.0, 40.0),
    (6.0, 50.0),
    (float("inf"), 60.0),
)
VOLUME_FLOOR_DB = -50.0             # quieter attempts are rejected
QUALITY_FLOOR = 40.0                # spectral quality needed for stretch-rescue acceptance
COMPLEMENT_TEMPO_THRESHOLD = 0.9    # stretch would be "too slow" below this
COMPLEMENT_MIN_SLACK = 2.0          # seconds
COMPLEMENT_FORCE_SLACK = 5.0        # seconds, complement regardless of tempo
COMPLEMENT_MAX_SILENCE = 1.0        # seconds, cap on the added silence
COMPLEMENT_MARGIN = 0.1             # seconds left unpadded
COMPLEMENT_MIN_SILENCE = 0.05       # seconds, smaller pads are skipped
OVERRUN_REPROCESS_RATIO = 0.5       # final > span * (1 + ratio) => simplify and re-run

# Audio quality analysis
VOICE_DETECTION_THRESHOLD = -28.0   # dBFS mean volume
VOICE_RELAXED_THRESHOLD = -35.0     # dBFS, with enough dynamics
VOICE_MIN_DYNAMIC_RANGE = 5.0       # dB
CONTENT_THRESHOLD = -80.0           # dBFS, below this the file is empty
CLIP_THRESHOLD = -1.0               # dBFS peak
SILENT_DB = -90.0                   # stand-in for -inf

# Silence classification: (upper bound seconds, name, preservation weight)
SILENCE_CLASSES = (
    (0.1, "inter-word", 0.9),
    (0.3, "pause", 0.7),
    (1.0, "breath", 0.8),
    (float("inf"), "long-pause", 0.6),
)
COMPRESSIBLE_WEIGHT_MAX = 0.6       # only classes at or below this weight give up time

# Global calibration loop
DEFAULT_GLOBAL_LENGTH_SCALE = 1.15
DEFAULT_SILENCE_COMPENSATION = 1.1
DEFAULT_DYNAMIC_BOOST = 0.0
MAX_CALIBRATION_ITERATIONS = 4
TARGET_PRECISION = 92.0             # percent
TARGET_QUALITY = 75.0
MIN_AUDIBLE_VOLUME = -40.0          # dBFS
MIN_VOICE_FRACTION = 0.8
LOUD_VOLUME = -15.0                 # dBFS, above this the boost is reduced
DYNAMIC_BOOST_MAX = 0.0             # dB, boost ceiling
DYNAMIC_BOOST_STEP_UP = 3.0
DYNAMIC_BOOST_STEP_DOWN = 1.0
RATIO_DEADBAND = 0.02               # target/actual within ±2% => no scale change
SCALE_ADAPT_GAIN = 0.7
SCALE_ADAPT_MAX_UP = 1.3
SCALE_ADAPT_MAX_DOWN = 0.7
SILENCE_COMPENSATION_STEP = 0.03
SILENCE_COMPENSATION_MIN = 0.8
SILENCE_COMPENSATION_MAX = 1.3
CALIBRATION_CACHE_FILE = "calibration.json"

# Timeline assembly
MIN_GAP_SECONDS = 0.001             # gaps below this are not materialized
SAMPLE_TOLERANCE = 1                # samples allowed between assembled and target length

# Enhancement
ENHANCE_VOLUME_THRESHOLD = -35.0    # dBFS mean volume below which the track is enhanced
ENHANCE_QUALITY_THRESHOLD = 60.0
ENHANCE_HIGHPASS_HZ = 60.0
ENHANCE_LOWPASS_HZ = 8000.0
ENHANCE_MAX_GAIN_DB = 4.0
ENHANCE_LIMITER_DB = -0.5

# Subprocess timeouts (seconds)
SYNTHESIS_TIMEOUT = 90
FILTER_TIMEOUT = 60
CONCAT_TIMEOUT = 120
EXTRACT_TIMEOUT = 300

# Synthesis backends
TTS_RETRY_COUNT = 3                 # transient retries per backend call
TTS_RETRY_BASE_DELAY = 1.0          # seconds, base delay for exponential backoff
TTS_MIN_BYTES = 256                 # smaller outputs count as failures
DEFAULT_VOICE = "en-US-GuyNeural"
MAX_CONCURRENT_SYNTHESIS = 1

# Pipeline
VIDEO_BUDGET_SECONDS = 3 * 60 * 60  # per-video wall-clock budget
OUTPUT_DIR = "output"
CACHE_DIRNAME = "cache"
VERSION = "0.1.0"

# Text normalization
ABBREVIATIONS = {
    "e.g.": "for example",
    "i.e.": "that is",
    "etc.": "et cetera",
    "vs.": "versus",
    "API": "A P I",
    "JS": "JavaScript",
    "URL": "U R L",
}
