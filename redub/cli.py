"""CLI interface with subcommand routing."""

import argparse
import logging
import os
import shutil
import sys

from redub.artifacts import (
    PROJECT_FILE,
    SUBDIRS,
    TRANSCRIPT_FILE,
    check_step_fresh,
    get_project_status,
    init_output_dir,
    invalidate_downstream,
    list_projects,
    load_artifact,
    slug_from_path,
    write_artifact,
)
from redub.constants import OUTPUT_DIR, VERSION
from redub.errors import RedubError
from redub.parser import load_transcript
from redub.pipeline import Job, SidecarTranscriber, run_batch, run_video
from redub.settings import SyncSettings, load_settings, save_override
from redub.stretch import atempo_filter, clamp, plan


def _check_ffmpeg():
    """Verify ffmpeg and ffprobe are installed."""
    for binary in ("ffmpeg", "ffprobe"):
        if not shutil.which(binary):
            print(f"Error: {binary} is required but not found.", file=sys.stderr)
            print("Install with: brew install ffmpeg", file=sys.stderr)
            raise SystemExit(1)


def _configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _get_project_dir(slug: str) -> str:
    """Get project directory path, verify it exists."""
    project_dir = os.path.join(OUTPUT_DIR, slug)
    if not os.path.isdir(project_dir):
        print(f"Error: Project '{slug}' not found.", file=sys.stderr)
        print("Run 'redub new <media>' to create a project.", file=sys.stderr)
        raise SystemExit(1)
    if not os.path.exists(os.path.join(project_dir, PROJECT_FILE)):
        print(f"Error: Project '{slug}' is incomplete (no {PROJECT_FILE}).", file=sys.stderr)
        raise SystemExit(1)
    return project_dir


def cmd_new(args):
    """Create a new project from a media file and its timed text."""
    media = args.media
    if not os.path.exists(media):
        print(f"Error: File not found: {media}", file=sys.stderr)
        raise SystemExit(1)

    subtitles = args.subtitles
    if subtitles is None:
        try:
            subtitles = SidecarTranscriber().transcribe(media)
        except RedubError as e:
            print(f"Error: {e}", file=sys.stderr)
            print("Pass --subtitles <file.vtt|file.srt>.", file=sys.stderr)
            raise SystemExit(1)
    if not os.path.exists(subtitles):
        print(f"Error: File not found: {subtitles}", file=sys.stderr)
        raise SystemExit(1)

    slug = slug_from_path(media)
    if os.path.exists(os.path.join(OUTPUT_DIR, slug, PROJECT_FILE)):
        print(f"Error: Project '{slug}' already exists.", file=sys.stderr)
        print(f"Use 'redub run {slug}' to dub it, or 'redub set {slug} ...' to adjust.", file=sys.stderr)
        raise SystemExit(1)

    try:
        transcript = load_transcript(subtitles, target_duration=args.target_duration)
    except RedubError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    project_dir = init_output_dir(media, output_base=OUTPUT_DIR)
    write_artifact(project_dir, PROJECT_FILE, {
        "media": os.path.abspath(media),
        "subtitles": os.path.abspath(subtitles),
        "target_duration": args.target_duration,
    })
    write_artifact(project_dir, TRANSCRIPT_FILE, {
        "source": os.path.abspath(subtitles),
        "target_duration": transcript.target_duration,
        "segments": [
            {"index": s.index, "start": s.start, "end": s.end,
             "text": s.original_text, "synthesis_text": s.synthesis_text}
            for s in transcript.segments
        ],
    })

    print(f"Created project: {slug}")
    print(f"Parsed {len(transcript.segments)} segments, {len(transcript.silences)} silences")
    print(f"Run 'redub status {slug}' to review, or 'redub run {slug}' to dub.")


def cmd_run(args):
    """Run the dubbing pipeline for one project."""
    _configure_logging(args.verbose)
    project_dir = _get_project_dir(args.slug)
    _check_ffmpeg()

    project = load_artifact(project_dir, PROJECT_FILE)
    inputs = [project["subtitles"], os.path.join(project_dir, "settings.json")]
    if not args.force and check_step_fresh(project_dir, inputs):
        print(f"Project '{args.slug}' is up to date. Use --force to re-run.")
        return

    if args.force:
        for subdir in SUBDIRS:
            path = os.path.join(project_dir, subdir)
            if os.path.exists(path):
                shutil.rmtree(path)

    job = Job(
        media=project["media"],
        subtitles=project["subtitles"],
        target_duration=project.get("target_duration"),
        output_base=OUTPUT_DIR,
    )
    try:
        run_video(job, settings=load_settings(project_dir))
    except RedubError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


def cmd_status(args):
    """Show project status."""
    project_dir = _get_project_dir(args.slug)
    project = load_artifact(project_dir, PROJECT_FILE)
    status = get_project_status(project_dir)

    print(f"Project:   {args.slug}")
    print(f"Media:     {project.get('media', 'unknown')}")
    print(f"Subtitles: {project.get('subtitles', 'unknown')}")
    report = load_artifact(os.path.join(project_dir, "final"), "report.json")
    if report:
        stats = report["stats"]
        print(f"Precision: {stats['precision']:.2f}%  "
              f"voiced {stats['voiced']}/{stats['segments']}  "
              f"fallbacks {stats['fallbacks']}")

    print("Steps:")
    for step in ("transcript", "synthesis", "calibration", "export"):
        info = status.get(step, {"state": "pending"})
        state = info["state"]
        marker = "[done]" if state == "done" else "[part]" if state == "partial" else "[----]"
        details = ""
        if state == "done" and "segments" in info:
            details = f" ({info['segments']} segments)"
        elif state == "done" and "files" in info:
            details = f" ({info['files']} files)"
        elif state == "done" and "iterations" in info:
            details = f" ({info['iterations']} iterations)"
        elif state == "partial":
            details = f" ({info['files']}/{info.get('expected', '?')} files)"
        print(f"  {marker} {step:<12}{details}")


def cmd_set(args):
    """Update one project setting."""
    project_dir = _get_project_dir(args.slug)
    try:
        overrides = save_override(project_dir, args.key, args.value)
    except KeyError:
        valid = ", ".join(sorted(SyncSettings().to_dict()))
        print(f"Error: Invalid setting key: {args.key}", file=sys.stderr)
        print(f"Valid keys: {valid}", file=sys.stderr)
        raise SystemExit(1)
    except ValueError:
        print(f"Error: Invalid value for {args.key}: {args.value}", file=sys.stderr)
        raise SystemExit(1)

    name = args.key.replace("-", "_")
    print(f"Updated: {name} → {overrides[name]}")
    deleted = invalidate_downstream(project_dir, name)
    if deleted:
        print(f"Invalidated: {', '.join(deleted)} (will regenerate on next run)")


def cmd_list(args):
    """List all projects."""
    projects = list_projects(output_base=OUTPUT_DIR)
    if not projects:
        print("No projects found.")
        return
    print("Projects:")
    for name in projects:
        status = get_project_status(os.path.join(OUTPUT_DIR, name))
        marker = "[done]" if status["export"]["state"] == "done" else "[----]"
        print(f"  {marker} {name}")


def cmd_batch(args):
    """Dub several media files in parallel, each with a sidecar transcript."""
    _configure_logging(args.verbose)
    _check_ffmpeg()
    missing = [m for m in args.media if not os.path.exists(m)]
    if missing:
        print(f"Error: File not found: {', '.join(missing)}", file=sys.stderr)
        raise SystemExit(1)

    jobs = [Job(media=m, output_base=OUTPUT_DIR) for m in args.media]
    try:
        results = run_batch(jobs, workers=args.workers)
    except RedubError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    failed = [m for m, path in results.items() if path is None]
    print(f"Finished {len(results) - len(failed)}/{len(results)} videos")
    for media in failed:
        print(f"  [fail] {media}")
    if failed:
        raise SystemExit(1)


def cmd_plan(args):
    """Show how a stretch factor is decomposed."""
    try:
        chain = plan(args.factor)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    clamped, within = clamp(args.factor)
    print(f"Chain:   {' x '.join(f'{step:.4f}' for step in chain)}")
    print(f"Filter:  {atempo_filter(chain)}")
    print(f"Natural band: {clamped:.4f}" + ("" if within else " (clamped)"))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="redub",
        description="Re-dub a video's speech with a track that matches the original timing",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # new
    new_parser = subparsers.add_parser("new", help="Create a project from a media file")
    new_parser.add_argument("media", help="Path to the video or audio file")
    new_parser.add_argument("--subtitles", help="WebVTT/SRT file (default: sidecar next to media)")
    new_parser.add_argument("--target-duration", type=float, help="Output duration in seconds")
    new_parser.set_defaults(func=cmd_new)

    # run
    run_parser = subparsers.add_parser("run", help="Run the dubbing pipeline")
    run_parser.add_argument("slug", help="Project slug (from filename)")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Log degradations and iterations")
    run_parser.add_argument("--force", action="store_true", help="Force re-run (delete generated artifacts)")
    run_parser.set_defaults(func=cmd_run)

    # status
    status_parser = subparsers.add_parser("status", help="Show project status")
    status_parser.add_argument("slug", help="Project slug")
    status_parser.set_defaults(func=cmd_status)

    # set
    set_parser = subparsers.add_parser("set", help="Override a project setting")
    set_parser.add_argument("slug", help="Project slug")
    set_parser.add_argument("key", help="Setting key")
    set_parser.add_argument("value", help="Setting value")
    set_parser.set_defaults(func=cmd_set)

    # list
    list_parser = subparsers.add_parser("list", help="List all projects")
    list_parser.set_defaults(func=cmd_list)

    # batch
    batch_parser = subparsers.add_parser("batch", help="Dub several media files in parallel")
    batch_parser.add_argument("media", nargs="+", help="Media files with sidecar .vtt/.srt")
    batch_parser.add_argument("--workers", type=int, help="Parallel videos (default: CPU count)")
    batch_parser.add_argument("-v", "--verbose", action="store_true", help="Log degradations")
    batch_parser.set_defaults(func=cmd_batch)

    # plan
    plan_parser = subparsers.add_parser("plan", help="Show the atempo chain for a stretch factor")
    plan_parser.add_argument("factor", type=float, help="Stretch factor (>1 speeds up)")
    plan_parser.set_defaults(func=cmd_plan)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
