"""
Irrigation API Tests
====================
End-to-end tests of the /api/irrigation blueprint against a file-backed
SQLite database in a temp directory. The background scheduler is never
started and events are delivered inline.
"""

import pytest

from dripsim import create_app

BASE = "/api/irrigation"


def _overrides(tmp_path):
    return {
        "database_path": str(tmp_path / "dripsim.db"),
        "audit_log_path": str(tmp_path / "audit.log"),
        "log_dir": str(tmp_path / "logs"),
        "eventbus_worker_count": 0,
        "weather_api_key": "",
    }


@pytest.fixture()
def app(tmp_path, clock):
    flask_app = create_app(_overrides(tmp_path), clock=clock)
    flask_app.config["TESTING"] = True
    yield flask_app
    flask_app.config["SHUTDOWN"]("test teardown")


@pytest.fixture()
def client(app):
    return app.test_client()


def _data(response):
    body = response.get_json()
    assert body["ok"] is True, body
    return body["data"]


# ==================== Status ====================


def test_status_snapshot(client):
    response = client.get(f"{BASE}/status")
    assert response.status_code == 200
    data = _data(response)
    assert data["moisture"] == 45.0
    assert data["tank_level"] == 72.0
    assert data["next_schedule"] == "07:00"
    assert data["weather"] == "clear"


# ==================== Trigger ====================


def test_trigger_starts_then_reports_already_irrigating(client):
    first = _data(client.post(f"{BASE}/trigger"))
    assert first["started"] is True
    assert first["event"]["volume_consumed"] == 7.0
    assert first["event"]["remaining_level"] == 65.0

    response = client.post(f"{BASE}/trigger")
    assert response.status_code == 200
    second = _data(response)
    assert second["started"] is False
    assert second["outcome"] == "already_irrigating"
    assert response.get_json()["message"] == "Irrigation already in progress"


def test_trigger_with_empty_tank(client):
    client.post(f"{BASE}/tank/empty")
    data = _data(client.post(f"{BASE}/trigger"))
    assert data["outcome"] == "insufficient_water"
    assert _data(client.get(f"{BASE}/status"))["is_irrigating"] is False


# ==================== Weather ====================


def test_weather_rain_saturates_soil(client):
    data = _data(client.post(f"{BASE}/weather", json={"condition": "RAIN"}))
    assert data["condition"] == "rain"

    status = _data(client.get(f"{BASE}/status"))
    assert status["moisture"] >= 75.0
    assert status["band"] == "saturated"


@pytest.mark.parametrize("body", [{"condition": "hail"}, {}, None])
def test_weather_rejects_bad_input(client, body):
    response = client.post(f"{BASE}/weather", json=body) if body is not None else client.post(f"{BASE}/weather")
    assert response.status_code == 400
    assert response.get_json()["ok"] is False


# ==================== Manual commands ====================


def test_tank_refill_and_soil_empty(client):
    client.post(f"{BASE}/trigger")
    assert _data(client.post(f"{BASE}/tank/refill"))["current_level"] == 90.0
    assert _data(client.post(f"{BASE}/soil/empty"))["moisture"] == 0.0


# ==================== Config ====================


def test_config_update(client):
    response = client.put(
        f"{BASE}/config",
        json={"capacity": 100, "irrigation_volume": 10, "schedules": [{"time": "06:30"}]},
    )
    assert response.status_code == 200
    data = _data(response)
    assert data["tank"]["capacity"] == 100.0
    assert data["tank"]["schedules"] == [{"time": "06:30", "enabled": True}]
    assert data["next_schedule"] == "06:30"


@pytest.mark.parametrize(
    "body",
    [
        {"bogus": 1},
        {"capacity": 0},
        {"capacity": 50, "irrigation_volume": 60},
        {"irrigation_volume": 200},
        {"schedules": [{"time": "7am"}]},
        {"irrigation_duration": 2},
        {"moisture_thresholds": {"min": 80, "max": 40, "optimal": 60}},
    ],
)
def test_config_rejects_invalid_update(client, body):
    response = client.put(f"{BASE}/config", json=body)
    assert response.status_code == 400
    assert response.get_json()["ok"] is False

    status = _data(client.get(f"{BASE}/status"))
    assert status["tank"]["capacity"] == 90.0
    assert status["tank"]["irrigation_volume"] == 7.0


# ==================== Events and scheduler ====================


def test_events_listing(client):
    client.post(f"{BASE}/trigger")
    client.post(f"{BASE}/soil/empty")

    irrigation = _data(client.get(f"{BASE}/events?category=irrigation"))
    assert irrigation["total"] == 1
    assert irrigation["events"][0]["trigger_source"] == "manual"

    everything = _data(client.get(f"{BASE}/events?limit=10"))
    assert everything["events"][0]["kind"] == "manual_empty"


@pytest.mark.parametrize("query", ["category=rainfall", "limit=0", "limit=500"])
def test_events_rejects_bad_query(client, query):
    response = client.get(f"{BASE}/events?{query}")
    assert response.status_code == 400


def test_scheduler_status(client):
    data = _data(client.get(f"{BASE}/scheduler"))
    job_ids = {job["job_id"] for job in data["scheduler"]["jobs"]}
    assert {"simulation_tick", "display_refresh", "weather_poll"} <= job_ids
    assert data["scheduler"]["running"] is False
    assert data["weather"]["using_fallback"] is True
    assert data["event_bus"]["workers"] == 0
    assert data["history"][0]["job_id"].startswith("display.refresh_immediate")
    assert data["history"][0]["success"] is True


# ==================== Persistence ====================


def test_state_survives_restart(tmp_path, clock):
    first = create_app(_overrides(tmp_path), clock=clock)
    first.test_client().post(f"{BASE}/trigger")
    first.config["SHUTDOWN"]("restart")

    clock.advance(minutes=5)
    second = create_app(_overrides(tmp_path), clock=clock)
    try:
        status = _data(second.test_client().get(f"{BASE}/status"))
        assert status["tank_level"] == 65.0
        assert status["is_irrigating"] is True

        container = second.config["CONTAINER"]
        assert container.scheduler.get_job("soil_auto_stop") is not None
    finally:
        second.config["SHUTDOWN"]("test teardown")
