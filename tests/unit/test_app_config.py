from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from app.config import AppConfig, load_config, setup_logging
from app.domain.exceptions import ConfigurationError

ENV_VARS = (
    "CAREPLAN_ENV",
    "CAREPLAN_PUBLIC_BASE_URL",
    "COMPLETION_TOKEN_DAYS",
    "TASK_ANALYSIS_CACHE_HOURS",
    "REMINDER_LEAD_MINUTES",
    "PLAN_GENERATION_TIMEOUT",
    "AUTO_REFRESH_ON_RESOLVE",
    "SMTP_USE_TLS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config()
    assert config.environment == "development"
    assert config.completion_token_expiry == timedelta(days=7)
    assert config.task_analysis_cache_ttl == timedelta(hours=24)
    assert config.reminder_lead_minutes == 15
    assert config.auto_refresh_on_resolve is True
    assert config.smtp_use_tls is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("COMPLETION_TOKEN_DAYS", "3")
    monkeypatch.setenv("TASK_ANALYSIS_CACHE_HOURS", "6")
    monkeypatch.setenv("PLAN_GENERATION_TIMEOUT", "12.5")
    monkeypatch.setenv("AUTO_REFRESH_ON_RESOLVE", "off")

    config = AppConfig()

    assert config.completion_token_expiry == timedelta(days=3)
    assert config.task_analysis_cache_ttl == timedelta(hours=6)
    assert config.plan_generation_timeout == 12.5
    assert config.auto_refresh_on_resolve is False


@pytest.mark.parametrize(
    "name, value",
    [("COMPLETION_TOKEN_DAYS", "seven"), ("PLAN_GENERATION_TIMEOUT", "fast"), ("REMINDER_LEAD_MINUTES", "0")],
)
def test_invalid_environment_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigurationError):
        AppConfig()


def test_production_needs_public_base_url(monkeypatch):
    monkeypatch.setenv("CAREPLAN_ENV", "production")
    with pytest.raises(ConfigurationError):
        AppConfig()

    monkeypatch.setenv("CAREPLAN_PUBLIC_BASE_URL", "https://grow.example.com")
    assert AppConfig().public_base_url == "https://grow.example.com"


def test_setup_logging_is_idempotent(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    log_file = str(tmp_path / "logs" / "careplan.log")
    try:
        setup_logging(debug=True, log_file=log_file)
        setup_logging(debug=True, log_file=log_file)
        names = [getattr(h, "name", "") for h in root.handlers]
        assert names.count("careplan_console") == 1
        assert names.count("careplan_file") == 1
        assert (tmp_path / "logs").is_dir()
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
