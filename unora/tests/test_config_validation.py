"""Tests for startup configuration validation."""

import logging

import pytest

from unora.core.config import Settings, cors_origins, validate_config


def make_settings(**overrides):
    defaults = dict(DATABASE_URL=None, ADMIN_KEY=None, GROQ_API_KEY=None)
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def test_complete_config_passes():
    cfg = make_settings(DATABASE_URL="postgresql://u:p@localhost:5432/unora", ADMIN_KEY="k", GROQ_API_KEY="gsk")
    assert validate_config(strict=True, settings_obj=cfg)


def test_missing_keys_raise_in_strict_mode():
    cfg = make_settings(ADMIN_KEY="k")
    with pytest.raises(RuntimeError) as excinfo:
        validate_config(strict=True, settings_obj=cfg)
    assert "DATABASE_URL" in str(excinfo.value)


def test_missing_keys_only_warn_when_lenient(caplog):
    cfg = make_settings()
    with caplog.at_level(logging.WARNING, logger="unora"):
        assert validate_config(strict=False, settings_obj=cfg)
    assert any("ADMIN_KEY" in r.getMessage() for r in caplog.records)


def test_streak_economics_defaults():
    cfg = make_settings()
    assert cfg.RECOVERY_WINDOW_HOURS == 24
    assert cfg.RECOVERY_BASE_COST == 20
    assert cfg.RECOVERY_COST_PER_DAY == 5
    assert cfg.STREAK_MAX_RESETS == 1


def test_cors_origins_split():
    cfg = make_settings(CORS_ORIGINS="https://a.example, https://b.example,")
    assert cors_origins(cfg) == ["https://a.example", "https://b.example"]


def test_env_is_the_only_environment_selector(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("ENVIRONMENT", "prod")
    cfg = make_settings()
    assert cfg.ENV == "production"
    assert "ENVIRONMENT" not in Settings.model_fields
    assert not hasattr(cfg, "ENVIRONMENT")
