from __future__ import annotations

from knowpack.config import DEFAULT_SEPARATOR, get_settings


def test_defaults_ranking_options():
    settings = get_settings({})
    assert settings.stale_days == 365
    assert settings.freshness_half_life_days == 180
    assert settings.max_candidates_scanned == 500


def test_separator_is_configurable():
    settings = get_settings({"separator": "\n--- custom-magic-00ff ---\n"})
    assert settings.separator == "\n--- custom-magic-00ff ---\n"
    assert settings.separator_bytes == len("\n--- custom-magic-00ff ---\n")
    assert "magic" in DEFAULT_SEPARATOR


def test_environment_override(monkeypatch):
    monkeypatch.setenv("KNOWPACK_STALE_DAYS", "30")
    settings = get_settings({"environment": "test"})
    assert settings.stale_days == 30
    assert settings.is_test
