"""Per-video pipeline stages and bounded-parallel batch processing."""

import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from redub.artifacts import cache_dir, init_output_dir, slug_from_path, write_artifact, TRANSCRIPT_FILE
from redub.audio import AudioToolkit
from redub.calibration import calibrate, load_calibration
from redub.constants import OUTPUT_DIR
from redub.controller import SyncContext
from redub.effects import enhance_file
from redub.errors import RedubError, StructuralError, TransientBackendError
from redub.exporter import export, build_report, format_report
from redub.models import Transcript
from redub.oracle import DurationOracle
from redub.parser import load_transcript, normalize_text
from redub.settings import SyncSettings, load_settings
from redub.tts import SynthesisBackend, SynthesisCache, create_backend

logger = logging.getLogger(__name__)

SUBTITLE_EXTENSIONS = (".vtt", ".srt")


class Transcriber:
    """Produces a timed-text file for a media file."""

    def transcribe(self, media_path: str) -> str:
        raise NotImplementedError


class SidecarTranscriber(Transcriber):
    """Uses a .vtt or .srt file sitting next to the media file."""

    def transcribe(self, media_path: str) -> str:
        base = os.path.splitext(media_path)[0]
        for ext in SUBTITLE_EXTENSIONS:
            if os.path.exists(base + ext):
                return base + ext
        raise StructuralError(f"No usable transcript for {media_path}")


class Translator:
    """Injected into run_video to translate synthesis text; none means no translation."""

    def translate(self, text: str) -> str:
        raise NotImplementedError


class Separator:
    """Isolates the voice from a reference audio file."""

    def separate(self, audio_path: str, output_path: str) -> str:
        raise NotImplementedError


class PassThroughSeparator(Separator):
    def separate(self, audio_path: str, output_path: str) -> str:
        return audio_path


@dataclass
class Job:
    media: str
    subtitles: str | None = None
    target_duration: float | None = None
    output_base: str = OUTPUT_DIR


def translate_segments(transcript: Transcript, translator: Translator) -> None:
    """Translate synthesis text in place, keeping the original text on failure."""
    for seg in transcript.segments:
        try:
            translated = translator.translate(seg.synthesis_text)
        except Exception as e:  # translation services fail in many ways
            logger.warning("%s: translation failed, keeping source text: %s", seg.describe(), e)
            continue
        spoken = normalize_text(translated or "")
        if spoken:
            seg.synthesis_text = spoken


def extract_reference(media: str, project_dir: str, toolkit: AudioToolkit,
                      separator: Separator) -> str | None:
    """Extract and isolate the original voice track. None when the media has no usable audio."""
    reference = os.path.join(project_dir, "raw", "reference.wav")
    try:
        toolkit.extract_audio(media, reference)
        return separator.separate(reference, os.path.join(project_dir, "raw", "reference_voice.wav"))
    except TransientBackendError as e:
        logger.warning("Cannot extract reference audio from %s: %s", media, e)
        return None


def run_video(
    job: Job,
    settings: SyncSettings | None = None,
    backend: SynthesisBackend | None = None,
    toolkit: AudioToolkit | None = None,
    transcriber: Transcriber | None = None,
    translator: Translator | None = None,
    separator: Separator | None = None,
    cache: SynthesisCache | None = None,
    quiet: bool = False,
) -> str:
    """Run every stage for one video. Returns the path of the exported track.

    Raises StructuralError or BudgetExceeded; partial artifacts are kept.
    """
    started = time.monotonic()
    project_dir = init_output_dir(job.media, job.output_base)
    slug = slug_from_path(job.media)
    settings = settings or load_settings(project_dir)
    deadline = started + settings.video_budget

    toolkit = toolkit or AudioToolkit(settings.sample_rate, settings.channels)
    oracle = DurationOracle(toolkit.probe_duration, toolkit.frame_count)

    # Stage 1: reference audio
    reference = None
    if job.target_duration is None:
        reference = extract_reference(job.media, project_dir, toolkit,
                                      separator or PassThroughSeparator())

    # Stage 2: transcript
    subtitles = job.subtitles or (transcriber or SidecarTranscriber()).transcribe(job.media)
    transcript = load_transcript(subtitles, job.target_duration, reference, oracle)
    if translator is not None:
        translate_segments(transcript, translator)
    write_artifact(project_dir, TRANSCRIPT_FILE, {
        "source": transcript.source,
        "target_duration": transcript.target_duration,
        "segments": [
            {"index": s.index, "start": s.start, "end": s.end,
             "text": s.original_text, "synthesis_text": s.synthesis_text}
            for s in transcript.segments
        ],
    })
    if not quiet:
        print(f"Transcript: {len(transcript.segments)} segments, "
              f"target {transcript.target_duration:.3f}s")

    # Stage 3: synthesis and calibration
    shared_cache = cache_dir(job.output_base)
    ctx = SyncContext(
        project_dir=project_dir,
        backend=backend or create_backend(settings),
        toolkit=toolkit,
        oracle=oracle,
        settings=settings,
        calibration=load_calibration(shared_cache, settings),
        cache=cache or SynthesisCache(),
        deadline=deadline,
        quiet=quiet,
    )
    result = calibrate(transcript, ctx, shared_cache)

    # Stage 4: enhancement
    if settings.enhance:
        quality = toolkit.analyze(result.track_path)
        enhanced = os.path.join(project_dir, "iterations", "enhanced.wav")
        shutil.copyfile(result.track_path, enhanced)
        if enhance_file(enhanced, quality):
            result.track_path = enhanced
        else:
            os.remove(enhanced)

    # Stage 5: export
    output_path = export(result, project_dir, slug, settings.to_dict())
    if not quiet:
        print(format_report(build_report(result, slug)))
        print(f"Done in {time.monotonic() - started:.1f}s: {output_path}")
    return output_path


def run_batch(jobs: list[Job], workers: int | None = None, settings: SyncSettings | None = None,
              backend: SynthesisBackend | None = None, **kwargs) -> dict[str, str | None]:
    """Process several videos in parallel.

    One backend and one synthesis cache are shared so the session permits
    bound synthesis across all videos. A failing video is logged and mapped to
    None; the others continue.
    """
    if not jobs:
        return {}
    workers = max(1, min(workers or os.cpu_count() or 1, len(jobs)))
    settings = settings or SyncSettings()
    backend = backend or create_backend(settings)
    cache = kwargs.pop("cache", None) or SynthesisCache()

    results: dict[str, str | None] = {}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(run_video, job, settings=settings, backend=backend, cache=cache,
                        quiet=True, **kwargs): job
            for job in jobs
        }
        for future in as_completed(futures):
            job = futures[future]
            try:
                results[job.media] = future.result()
                print(f"  [done] {job.media}")
            except RedubError as e:
                logger.error("Video %s aborted: %s", job.media, e)
                results[job.media] = None
            except Exception:
                logger.exception("Video %s failed unexpectedly", job.media)
                results[job.media] = None
    return results
