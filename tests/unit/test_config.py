import json

import pytest

from dripsim.config import AppConfig, load_config
from dripsim.domain.exceptions import ConfigurationError
from infrastructure.logging.audit import AuditLogger


def test_defaults(monkeypatch):
    monkeypatch.delenv("DRIPSIM_TICK_INTERVAL_SECONDS", raising=False)
    monkeypatch.delenv("DRIPSIM_WET_SKIP_THRESHOLD", raising=False)
    config = load_config()
    assert config.tick_interval_seconds == 60
    assert config.wet_skip_threshold == 35.0
    assert config.as_flask_config()["DATABASE_PATH"] == config.database_path


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DRIPSIM_TICK_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("DRIPSIM_WEATHER_ENABLED", "off")
    config = AppConfig()
    assert config.tick_interval_seconds == 30
    assert config.weather_enabled is False


def test_bad_integer_env(monkeypatch):
    monkeypatch.setenv("DRIPSIM_TICK_INTERVAL_SECONDS", "soon")
    with pytest.raises(ConfigurationError):
        AppConfig()


def test_default_secret_rejected_in_production(monkeypatch):
    monkeypatch.setenv("DRIPSIM_ENV", "production")
    monkeypatch.delenv("DRIPSIM_SECRET_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        AppConfig()


def test_non_positive_interval_rejected(monkeypatch):
    monkeypatch.setenv("DRIPSIM_DISPLAY_REFRESH_SECONDS", "0")
    with pytest.raises(ConfigurationError):
        AppConfig()


def test_audit_logger_writes_json_lines(tmp_path):
    audit = AuditLogger(str(tmp_path / "audit.log"))
    audit.log_event("operator", "refill_tank", "tank", "ok", level=90.0)
    audit.close()

    line = (tmp_path / "audit.log").read_text(encoding="utf-8").strip()
    record = json.loads(line.split(" | ", 2)[2])
    assert record == {
        "actor": "operator",
        "action": "refill_tank",
        "resource": "tank",
        "outcome": "ok",
        "meta": {"level": 90.0},
    }
