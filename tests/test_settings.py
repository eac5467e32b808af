"""Tests for settings and per-project overrides."""

import json

import pytest

from redub.settings import SyncSettings, apply_overrides, load_settings, save_override


def test_defaults():
    settings = SyncSettings()
    assert settings.length_scale_min == 0.75
    assert settings.length_scale_max == 1.35
    assert settings.max_attempts == 3
    assert settings.max_iterations == 4
    assert settings.dynamic_boost_max == 0.0
    assert settings.to_dict()["voice"] == "en-US-GuyNeural"


def test_apply_overrides_coerces_types():
    settings = apply_overrides(SyncSettings(), {
        "max-iterations": "2",
        "target_precision": "95",
        "enhance": "off",
        "voice": "en-GB-RyanNeural",
    })
    assert settings.max_iterations == 2
    assert settings.target_precision == 95.0
    assert settings.enhance is False
    assert settings.voice == "en-GB-RyanNeural"


def test_apply_overrides_ignores_unknown(caplog):
    settings = apply_overrides(SyncSettings(), {"bitrate": "192k"})
    assert not hasattr(settings, "bitrate")
    assert "Ignoring unknown setting" in caplog.text


def test_load_settings_without_project():
    assert load_settings(None) == SyncSettings()


def test_save_and_load_override(tmp_path):
    save_override(str(tmp_path), "max_attempts", "5")
    stored = save_override(str(tmp_path), "reprocess-overruns", "false")
    assert stored == {"max_attempts": 5, "reprocess_overruns": False}
    assert json.loads((tmp_path / "settings.json").read_text()) == stored
    settings = load_settings(str(tmp_path))
    assert settings.max_attempts == 5
    assert settings.reprocess_overruns is False


def test_save_override_rejects_unknown(tmp_path):
    with pytest.raises(KeyError):
        save_override(str(tmp_path), "music", "true")
