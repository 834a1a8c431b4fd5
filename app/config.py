"""
Configuration for the GreenGrow care plan engine
================================================
Runtime settings for persistence, text generation, weather, completion
links and the background jobs. Every field defaults from an environment
variable. Also sets up logging.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import timedelta

from app.domain.exceptions import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("CAREPLAN_ENV", "development"))
    database_path: str = field(default_factory=lambda: os.getenv("CAREPLAN_DATABASE_PATH", "database/careplan.db"))
    log_level: str = field(default_factory=lambda: os.getenv("CAREPLAN_LOG_LEVEL", "INFO"))
    log_file: str = field(default_factory=lambda: os.getenv("CAREPLAN_LOG_FILE", "logs/careplan.log"))
    audit_log_path: str = field(default_factory=lambda: os.getenv("CAREPLAN_AUDIT_LOG", "logs/audit.log"))

    # Text generation
    llm_provider: str = field(default_factory=lambda: os.getenv("LLM_PROVIDER", "openai"))
    llm_api_key: str | None = field(default_factory=lambda: os.getenv("LLM_API_KEY"))
    llm_model: str | None = field(default_factory=lambda: os.getenv("LLM_MODEL"))
    llm_base_url: str | None = field(default_factory=lambda: os.getenv("LLM_BASE_URL"))
    llm_temperature: float = field(default_factory=lambda: _env_float("LLM_TEMPERATURE", 0.4))
    plan_generation_timeout: float = field(default_factory=lambda: _env_float("PLAN_GENERATION_TIMEOUT", 45.0))
    plan_max_tokens: int = field(default_factory=lambda: _env_int("PLAN_MAX_TOKENS", 4096))
    task_analysis_timeout: float = field(default_factory=lambda: _env_float("TASK_ANALYSIS_TIMEOUT", 20.0))
    task_analysis_max_tokens: int = field(default_factory=lambda: _env_int("TASK_ANALYSIS_MAX_TOKENS", 1500))
    task_analysis_cache_hours: int = field(default_factory=lambda: _env_int("TASK_ANALYSIS_CACHE_HOURS", 24))

    # Weather
    weather_base_url: str | None = field(default_factory=lambda: os.getenv("WEATHER_BASE_URL"))
    weather_timeout: float = field(default_factory=lambda: _env_float("WEATHER_TIMEOUT", 10.0))

    # Completion links and notifications
    public_base_url: str = field(default_factory=lambda: os.getenv("CAREPLAN_PUBLIC_BASE_URL", "http://localhost:5000"))
    completion_token_days: int = field(default_factory=lambda: _env_int("COMPLETION_TOKEN_DAYS", 7))
    default_timezone: str = field(default_factory=lambda: os.getenv("CAREPLAN_DEFAULT_TIMEZONE", "Asia/Ho_Chi_Minh"))
    smtp_host: str | None = field(default_factory=lambda: os.getenv("SMTP_HOST"))
    smtp_port: int = field(default_factory=lambda: _env_int("SMTP_PORT", 587))
    smtp_username: str | None = field(default_factory=lambda: os.getenv("SMTP_USERNAME"))
    smtp_password: str | None = field(default_factory=lambda: os.getenv("SMTP_PASSWORD"))
    smtp_use_tls: bool = field(default_factory=lambda: _env_bool("SMTP_USE_TLS", True))
    smtp_from: str | None = field(default_factory=lambda: os.getenv("SMTP_FROM"))

    # Background jobs
    reminder_lead_minutes: int = field(default_factory=lambda: _env_int("REMINDER_LEAD_MINUTES", 15))
    missed_task_grace_minutes: int = field(default_factory=lambda: _env_int("MISSED_TASK_GRACE_MINUTES", 60))
    missed_task_interval_minutes: int = field(default_factory=lambda: _env_int("MISSED_TASK_INTERVAL_MINUTES", 60))
    plan_max_age_hours: int = field(default_factory=lambda: _env_int("PLAN_MAX_AGE_HOURS", 24))
    auto_refresh_on_resolve: bool = field(default_factory=lambda: _env_bool("AUTO_REFRESH_ON_RESOLVE", True))

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        for name in ("plan_generation_timeout", "task_analysis_timeout", "weather_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        for name in (
            "completion_token_days",
            "task_analysis_cache_hours",
            "reminder_lead_minutes",
            "missed_task_interval_minutes",
            "plan_max_age_hours",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.environment == "production" and "localhost" in (self.public_base_url or "localhost"):
            raise ConfigurationError(
                "CAREPLAN_PUBLIC_BASE_URL must point at the public host in production; "
                "completion links in emails would not work otherwise."
            )

    @property
    def completion_token_expiry(self) -> timedelta:
        return timedelta(days=self.completion_token_days)

    @property
    def task_analysis_cache_ttl(self) -> timedelta:
        return timedelta(hours=self.task_analysis_cache_hours)


def setup_logging(debug: bool = False, log_file: str = "logs/careplan.log") -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid duplicate handlers when called more than once
    has_console = any(getattr(h, "name", "") == "careplan_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "careplan_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "careplan_console"
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file and log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "careplan_file"
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"careplan_console", "careplan_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    # SDK request logs are noisy at INFO
    for noisy in ("httpx", "openai", "anthropic", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    return AppConfig()
