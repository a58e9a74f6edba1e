"""
Configuration for DripSim
=========================
Runtime settings for the simulator, its scheduler and the HTTP API, loaded
from ``DRIPSIM_*`` environment variables. Sets up logging as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from dripsim.domain.exceptions import ConfigurationError


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

    environment: str = field(default_factory=lambda: os.getenv("DRIPSIM_ENV", "development"))
    secret_key: str = field(default_factory=lambda: os.getenv("DRIPSIM_SECRET_KEY", "DripSimDevSecretKey"))
    database_path: str = field(default_factory=lambda: os.getenv("DRIPSIM_DATABASE_PATH", "database/dripsim.db"))

    # Simulation cadence
    tick_interval_seconds: int = field(default_factory=lambda: _env_int("DRIPSIM_TICK_INTERVAL_SECONDS", 60))
    display_refresh_seconds: int = field(default_factory=lambda: _env_int("DRIPSIM_DISPLAY_REFRESH_SECONDS", 15))
    max_tick_minutes: float = field(default_factory=lambda: _env_float("DRIPSIM_MAX_TICK_MINUTES", 60.0))
    schedule_debounce_minutes: float = field(
        default_factory=lambda: _env_float("DRIPSIM_SCHEDULE_DEBOUNCE_MINUTES", 2.0)
    )
    wet_skip_threshold: float = field(default_factory=lambda: _env_float("DRIPSIM_WET_SKIP_THRESHOLD", 35.0))
    event_log_max_entries: int = field(default_factory=lambda: _env_int("DRIPSIM_EVENT_LOG_MAX_ENTRIES", 100))

    # Weather feed (OpenWeatherMap); an empty key means fallback only
    weather_api_key: str = field(default_factory=lambda: os.getenv("DRIPSIM_WEATHER_API_KEY", ""))
    weather_api_url: str = field(
        default_factory=lambda: os.getenv(
            "DRIPSIM_WEATHER_API_URL", "https://api.openweathermap.org/data/2.5/weather"
        )
    )
    weather_latitude: float = field(default_factory=lambda: _env_float("DRIPSIM_WEATHER_LAT", -5.1477))
    weather_longitude: float = field(default_factory=lambda: _env_float("DRIPSIM_WEATHER_LON", 119.4327))
    weather_poll_seconds: int = field(default_factory=lambda: _env_int("DRIPSIM_WEATHER_POLL_SECONDS", 600))
    weather_failure_threshold: int = field(default_factory=lambda: _env_int("DRIPSIM_WEATHER_FAILURE_THRESHOLD", 3))
    weather_stale_minutes: int = field(default_factory=lambda: _env_int("DRIPSIM_WEATHER_STALE_MINUTES", 30))
    weather_enabled: bool = field(default_factory=lambda: _env_bool("DRIPSIM_WEATHER_ENABLED", True))

    # Scheduler runtime
    scheduler_enabled: bool = field(default_factory=lambda: _env_bool("DRIPSIM_SCHEDULER_ENABLED", True))
    scheduler_max_workers: int = field(default_factory=lambda: _env_int("DRIPSIM_SCHEDULER_MAX_WORKERS", 2))

    eventbus_queue_size: int = field(default_factory=lambda: _env_int("DRIPSIM_EVENTBUS_QUEUE_SIZE", 1024))
    eventbus_worker_count: int = field(default_factory=lambda: _env_int("DRIPSIM_EVENTBUS_WORKER_COUNT", 2))

    DEBUG: bool = field(default_factory=lambda: _env_bool("DRIPSIM_DEBUG", False))
    audit_log_path: str = field(default_factory=lambda: os.getenv("DRIPSIM_AUDIT_LOG_PATH", "logs/audit.log"))
    log_level: str = field(default_factory=lambda: os.getenv("DRIPSIM_LOG_LEVEL", "INFO"))
    log_dir: str = field(default_factory=lambda: os.getenv("DRIPSIM_LOG_DIR", "logs"))

    _DEFAULT_SECRET_KEY: str = field(default="DripSimDevSecretKey", init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        if self.environment == "production" and self.secret_key == self._DEFAULT_SECRET_KEY:
            raise ConfigurationError(
                "Cannot use default secret key in production. Set DRIPSIM_SECRET_KEY to a secure random value."
            )
        for name in ("tick_interval_seconds", "display_refresh_seconds", "weather_poll_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.max_tick_minutes <= 0:
            raise ConfigurationError("max_tick_minutes must be positive")
        if self.event_log_max_entries <= 0:
            raise ConfigurationError("event_log_max_entries must be positive")
        if self.weather_failure_threshold <= 0:
            raise ConfigurationError("weather_failure_threshold must be positive")
        if not 0 <= self.wet_skip_threshold <= 100:
            raise ConfigurationError("wet_skip_threshold must be between 0 and 100")

    def as_flask_config(self) -> dict[str, Any]:
        """Render configuration values for Flask application."""
        return {
            "ENV": self.environment,
            "SECRET_KEY": self.secret_key,
            "DATABASE_PATH": self.database_path,
            "AUDIT_LOG_PATH": self.audit_log_path,
            "DEBUG": self.DEBUG,
        }


def setup_logging(debug: bool = False, *, level: str | None = None, log_dir: str = "logs") -> None:
    """Setup logging configuration (idempotent across repeated app creation)."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid adding duplicates when create_app is called multiple times
    has_console = any(getattr(h, "name", "") == "dripsim_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "dripsim_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "dripsim_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "dripsim.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "dripsim_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"dripsim_console", "dripsim_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    if _env_bool("DRIPSIM_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
    # urllib3 logs every weather poll connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    return AppConfig()
