"""Project directory layout, JSON artifacts, status and resumability."""

import json
import os
import re
import shutil

from redub.constants import CACHE_DIRNAME, OUTPUT_DIR

PROJECT_FILE = "project.json"
TRANSCRIPT_FILE = "transcript.json"

SUBDIRS = ["raw", "segments", "silence", "iterations", "final"]

# Setting key → subdirs to delete when it changes
_SYNTHESIS = ["raw", "segments", "silence", "iterations", "final"]
INVALIDATION_MAP = {
    "backend": _SYNTHESIS,
    "voice": _SYNTHESIS,
    "piper_model": _SYNTHESIS,
    "sample_rate": _SYNTHESIS,
    "channels": _SYNTHESIS,
    "length_scale_min": _SYNTHESIS,
    "length_scale_max": _SYNTHESIS,
    "max_attempts": _SYNTHESIS,
    "volume_floor": _SYNTHESIS,
    "quality_floor": _SYNTHESIS,
    "speed_factor_min": _SYNTHESIS,
    "speed_factor_max": _SYNTHESIS,
    "reprocess_overruns": _SYNTHESIS,
    "max_iterations": ["iterations", "final"],
    "target_precision": ["iterations", "final"],
    "target_quality": ["iterations", "final"],
    "min_audible_volume": ["iterations", "final"],
    "min_voice_fraction": ["iterations", "final"],
    "dynamic_boost_max": ["iterations", "final"],
    "enhance": ["final"],
}


def slug_from_path(media_path: str) -> str:
    """Convert a media filename to an output directory slug.

    "My Talk (2024).mp4" → "my_talk_2024"
    """
    basename = os.path.splitext(os.path.basename(media_path))[0]
    slug = re.sub(r"[^a-zA-Z0-9]+", "_", basename).strip("_").lower()
    return slug


def init_output_dir(media_path: str, output_base: str = OUTPUT_DIR) -> str:
    """Create output/<slug>/ and all subdirectories.

    Returns the project directory path.
    """
    project_dir = os.path.join(output_base, slug_from_path(media_path))
    for subdir in SUBDIRS:
        os.makedirs(os.path.join(project_dir, subdir), exist_ok=True)
    return project_dir


def cache_dir(output_base: str = OUTPUT_DIR) -> str:
    path = os.path.join(output_base, CACHE_DIRNAME)
    os.makedirs(path, exist_ok=True)
    return path


def write_artifact(project_dir: str, filename: str, data: dict) -> str:
    """Write JSON artifact to project_dir/filename.

    Returns path to the written file.
    """
    path = os.path.join(project_dir, filename)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    return path


def load_artifact(project_dir: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(project_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


def invalidate_downstream(project_dir: str, setting_key: str) -> list[str]:
    """Empty the subdirectories a setting change makes stale.

    Returns list of cleared subdirectory names.
    """
    deleted = []
    for subdir in INVALIDATION_MAP.get(setting_key.replace("-", "_"), []):
        path = os.path.join(project_dir, subdir)
        if os.path.exists(path):
            shutil.rmtree(path)
            os.makedirs(path, exist_ok=True)
            deleted.append(subdir)
    return deleted


def _wav_count(path: str) -> int:
    if not os.path.isdir(path):
        return 0
    return len([f for f in os.listdir(path) if f.endswith(".wav")])


def get_project_status(project_dir: str) -> dict:
    """Return dict describing current state of each pipeline step."""
    status = {}

    transcript = load_artifact(project_dir, TRANSCRIPT_FILE)
    if transcript:
        status["transcript"] = {"state": "done", "segments": len(transcript.get("segments", []))}
    else:
        status["transcript"] = {"state": "pending"}

    expected = status["transcript"].get("segments", 0)
    made = _wav_count(os.path.join(project_dir, "segments"))
    if not made:
        status["synthesis"] = {"state": "pending"}
    elif expected and made >= expected:
        status["synthesis"] = {"state": "done", "files": made}
    else:
        status["synthesis"] = {"state": "partial", "files": made, "expected": expected}

    iterations = _wav_count(os.path.join(project_dir, "iterations"))
    status["calibration"] = (
        {"state": "done", "iterations": iterations} if iterations else {"state": "pending"}
    )

    report = os.path.join(project_dir, "final", "report.json")
    status["export"] = {"state": "done" if os.path.exists(report) else "pending"}
    return status


def list_projects(output_base: str = OUTPUT_DIR) -> list[str]:
    """List all project slugs under the output directory.

    Returns sorted list of directory names that contain a project.json.
    """
    if not os.path.exists(output_base):
        return []
    projects = []
    for name in os.listdir(output_base):
        if os.path.exists(os.path.join(output_base, name, PROJECT_FILE)):
            projects.append(name)
    return sorted(projects)


def check_step_fresh(project_dir: str, input_paths: list[str] | None = None) -> bool:
    """Is the exported report newer than every input?"""
    report = os.path.join(project_dir, "final", "report.json")
    if not os.path.exists(report):
        return False
    output_mtime = os.path.getmtime(report)
    for input_path in input_paths or []:
        if os.path.exists(input_path) and os.path.getmtime(input_path) > output_mtime:
            return False
    return True
