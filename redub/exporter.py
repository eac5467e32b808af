"""Export the final track with an end-of-run synchronization report."""

import json
import os
import shutil
from datetime import datetime, timezone

from redub.constants import VERSION
from redub.models import SegmentState


def build_report(result, slug: str = "", settings: dict | None = None) -> dict:
    """Summarize a SyncResult: precision, voiced fraction, fallbacks and per-segment rows."""
    best = result.best
    rows = []
    for seg in result.segments:
        rows.append({
            "index": seg.index,
            "start": round(seg.start, 3),
            "end": round(seg.end, 3),
            "target": round(seg.target_duration, 3),
            "final": round(seg.final_duration, 3),
            "state": seg.state.value,
            "strategy": seg.strategy,
            "attempts": len(seg.attempts),
            "scale": round(seg.scale, 4),
            "stretch": round(seg.stretch_factor, 4),
            "padding": round(seg.silence_padding, 3),
            "simplified": seg.simplified,
            "text": seg.synthesis_text,
        })

    return {
        "project": slug,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "redub_version": VERSION,
        "settings": settings or {},
        "calibration": result.state,
        "stats": {
            "target_duration": round(result.target, 3),
            "track_duration": round(result.track_duration, 3),
            "speech_duration": round(best.duration, 3),
            "precision": round(best.precision, 2),
            "quality_score": round(best.quality_score, 2),
            "mean_volume": round(best.mean_volume, 2),
            "segments": best.total_segments,
            "voiced": best.voice_segments,
            "voiced_fraction": round(best.voice_fraction, 3),
            "fallbacks": sum(1 for s in result.segments if s.state == SegmentState.FALLBACK_SILENCE),
            "iterations": len(result.history),
            "best_iteration": best.iteration,
            "converged": result.converged,
            "duration_anomalies": result.anomalies,
        },
        "segments": rows,
    }


def format_report(report: dict) -> str:
    stats = report["stats"]
    lines = [
        f"Target:    {stats['target_duration']:.3f}s",
        f"Track:     {stats['track_duration']:.3f}s",
        f"Precision: {stats['precision']:.2f}% (speech {stats['speech_duration']:.3f}s)",
        f"Quality:   {stats['quality_score']:.1f} (mean {stats['mean_volume']:.1f} dBFS)",
        f"Voiced:    {stats['voiced']}/{stats['segments']}",
        f"Fallbacks: {stats['fallbacks']}",
        f"Iteration: {stats['best_iteration']} of {stats['iterations']}"
        + (" (converged)" if stats["converged"] else ""),
    ]
    if stats["duration_anomalies"]:
        lines.append(f"Duration anomalies: {stats['duration_anomalies']}")
    for row in report["segments"]:
        if row["state"] == SegmentState.FALLBACK_SILENCE.value:
            lines.append(f"  silence: segment {row['index']} [{row['start']:.3f}s-{row['end']:.3f}s]")
    return "\n".join(lines)


def export(result, project_dir: str, slug: str, settings: dict | None = None) -> str:
    """Copy the best track and write the report.

    Creates:
      - output/<slug>/final/<slug>.wav
      - output/<slug>/final/report.json

    Returns path to the final WAV file.
    """
    final_dir = os.path.join(project_dir, "final")
    os.makedirs(final_dir, exist_ok=True)

    output_path = os.path.join(final_dir, f"{slug}.wav")
    if os.path.abspath(result.track_path) != os.path.abspath(output_path):
        shutil.copyfile(result.track_path, output_path)

    report = build_report(result, slug, settings)
    with open(os.path.join(final_dir, "report.json"), "w") as f:
        json.dump(report, f, indent=2)

    return output_path
