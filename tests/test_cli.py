"""Tests for CLI module."""

import json
import os
from unittest.mock import patch

import pytest

from redub.cli import main
from redub.errors import StructuralError


# --- Helpers ---

@pytest.fixture
def output_dir(tmp_path, monkeypatch):
    path = str(tmp_path / "output")
    monkeypatch.setattr("redub.cli.OUTPUT_DIR", path)
    return path


def _create_media(tmp_path, sample_vtt, name="talk"):
    """A media file with a sidecar transcript next to it."""
    media = tmp_path / f"{name}.mp4"
    media.write_bytes(b"\x00" * 16)
    (tmp_path / f"{name}.vtt").write_text(sample_vtt.read_text())
    return str(media)


def _new(media, *extra):
    with patch("sys.argv", ["redub", "new", media, *extra]):
        main()


# --- new ---

def test_cli_new_creates_project(tmp_path, sample_vtt, output_dir, capsys):
    media = _create_media(tmp_path, sample_vtt)
    _new(media)

    project = os.path.join(output_dir, "talk")
    with open(os.path.join(project, "project.json")) as f:
        data = json.load(f)
    assert data["media"] == os.path.abspath(media)
    assert data["subtitles"].endswith("talk.vtt")
    with open(os.path.join(project, "transcript.json")) as f:
        transcript = json.load(f)
    assert len(transcript["segments"]) == 3
    assert transcript["target_duration"] == pytest.approx(10.0)
    assert "Parsed 3 segments" in capsys.readouterr().out


def test_cli_new_with_explicit_subtitles(tmp_path, sample_vtt, output_dir):
    media = tmp_path / "clip.mp4"
    media.write_bytes(b"\x00")
    _new(str(media), "--subtitles", str(sample_vtt), "--target-duration", "12.5")
    with open(os.path.join(output_dir, "clip", "transcript.json")) as f:
        assert json.load(f)["target_duration"] == 12.5


def test_cli_new_already_exists(tmp_path, sample_vtt, output_dir):
    media = _create_media(tmp_path, sample_vtt)
    _new(media)
    with pytest.raises(SystemExit):
        _new(media)


def test_cli_new_without_transcript(tmp_path, output_dir, capsys):
    media = tmp_path / "silent.mp4"
    media.write_bytes(b"\x00")
    with pytest.raises(SystemExit):
        _new(str(media))
    assert "--subtitles" in capsys.readouterr().err


def test_cli_new_missing_media(tmp_path, output_dir):
    with pytest.raises(SystemExit):
        _new(str(tmp_path / "nope.mp4"))


# --- run ---

@patch("redub.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_cli_run_builds_job(mock_which, tmp_path, sample_vtt, output_dir):
    media = _create_media(tmp_path, sample_vtt)
    _new(media, "--target-duration", "9")
    with patch("redub.cli.run_video") as mock_run:
        with patch("sys.argv", ["redub", "run", "talk"]):
            main()
    job = mock_run.call_args[0][0]
    assert job.media == os.path.abspath(media)
    assert job.target_duration == 9.0
    assert job.output_base == output_dir


@patch("redub.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_cli_run_error_exits(mock_which, tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    with patch("redub.cli.run_video", side_effect=StructuralError("No usable transcript")):
        with pytest.raises(SystemExit):
            with patch("sys.argv", ["redub", "run", "talk"]):
                main()
    assert "No usable transcript" in capsys.readouterr().err


@patch("redub.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_cli_run_skips_fresh_project(mock_which, tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    final = os.path.join(output_dir, "talk", "final")
    past = os.path.getmtime(str(tmp_path / "talk.vtt")) + 100
    with open(os.path.join(final, "report.json"), "w") as f:
        json.dump({}, f)
    os.utime(os.path.join(final, "report.json"), (past, past))

    with patch("redub.cli.run_video") as mock_run:
        with patch("sys.argv", ["redub", "run", "talk"]):
            main()
    mock_run.assert_not_called()
    assert "up to date" in capsys.readouterr().out

    with patch("redub.cli.run_video") as mock_run:
        with patch("sys.argv", ["redub", "run", "talk", "--force"]):
            main()
    mock_run.assert_called_once()
    assert not os.path.exists(os.path.join(final, "report.json"))


def test_cli_run_nonexistent_project(output_dir):
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["redub", "run", "nonexistent"]):
            main()


@patch("redub.cli.shutil.which", return_value=None)
def test_cli_run_requires_ffmpeg(mock_which, tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["redub", "run", "talk"]):
            main()
    assert "ffmpeg is required" in capsys.readouterr().err


# --- status / set / list ---

def test_cli_status_shows_state(tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    capsys.readouterr()
    with patch("sys.argv", ["redub", "status", "talk"]):
        main()
    out = capsys.readouterr().out
    assert "Project:   talk" in out
    assert "[done] transcript" in out
    assert "(3 segments)" in out
    assert "[----] export" in out


def test_cli_status_nonexistent(output_dir):
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["redub", "status", "nonexistent"]):
            main()


def test_cli_set_voice_invalidates(tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    segment = os.path.join(output_dir, "talk", "segments", "seg_000.wav")
    open(segment, "w").close()
    with patch("sys.argv", ["redub", "set", "talk", "voice", "en-GB-RyanNeural"]):
        main()
    out = capsys.readouterr().out
    assert "en-GB-RyanNeural" in out
    assert "Invalidated" in out
    assert not os.path.exists(segment)
    with open(os.path.join(output_dir, "talk", "settings.json")) as f:
        assert json.load(f) == {"voice": "en-GB-RyanNeural"}


def test_cli_set_invalid_key(tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["redub", "set", "talk", "music", "off"]):
            main()
    assert "Invalid setting key" in capsys.readouterr().err


def test_cli_set_invalid_value(tmp_path, sample_vtt, output_dir, capsys):
    _new(_create_media(tmp_path, sample_vtt))
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["redub", "set", "talk", "max_attempts", "many"]):
            main()
    assert "Invalid value" in capsys.readouterr().err


def test_cli_list(tmp_path, sample_vtt, output_dir, capsys):
    with patch("sys.argv", ["redub", "list"]):
        main()
    assert "No projects found." in capsys.readouterr().out

    _new(_create_media(tmp_path, sample_vtt, "talk"))
    _new(_create_media(tmp_path, sample_vtt, "lecture"))
    capsys.readouterr()
    with patch("sys.argv", ["redub", "list"]):
        main()
    out = capsys.readouterr().out
    assert out.index("lecture") < out.index("talk")


# --- batch / plan ---

@patch("redub.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_cli_batch_reports_failures(mock_which, tmp_path, sample_vtt, output_dir, capsys):
    good = _create_media(tmp_path, sample_vtt, "talk")
    bad = tmp_path / "other.mp4"
    bad.write_bytes(b"\x00")
    results = {good: "output/talk/final/talk.wav", str(bad): None}
    with patch("redub.cli.run_batch", return_value=results) as mock_batch:
        with pytest.raises(SystemExit):
            with patch("sys.argv", ["redub", "batch", good, str(bad), "--workers", "2"]):
                main()
    assert mock_batch.call_args[1]["workers"] == 2
    assert len(mock_batch.call_args[0][0]) == 2
    out = capsys.readouterr().out
    assert "Finished 1/2 videos" in out
    assert f"[fail] {bad}" in out


def test_cli_plan(capsys):
    with patch("sys.argv", ["redub", "plan", "3.2"]):
        main()
    out = capsys.readouterr().out
    assert "2.0000 x 1.6000" in out
    assert "atempo=2.000000,atempo=1.600000" in out
    assert "(clamped)" in out


def test_cli_plan_rejects_zero(capsys):
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["redub", "plan", "0"]):
            main()


def test_cli_no_command(capsys):
    with patch("sys.argv", ["redub"]):
        main()
    assert "usage" in capsys.readouterr().out.lower()
