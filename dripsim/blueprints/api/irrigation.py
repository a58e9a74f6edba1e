"""
Irrigation Simulator API Blueprint
==================================

REST endpoints for the drip-irrigation simulator. Every mutation goes through
the IrrigationCoordinator, so manual commands obey the same gates as the
scheduler.

Endpoints:
- GET  /api/irrigation/status       - Display snapshot
- POST /api/irrigation/trigger      - Manual irrigation request
- POST /api/irrigation/weather      - Override the weather condition
- POST /api/irrigation/tank/refill  - Refill the reservoir
- POST /api/irrigation/tank/empty   - Drain the reservoir
- POST /api/irrigation/soil/empty   - Reset soil moisture to 0%
- PUT  /api/irrigation/config       - Update schedules, volumes, thresholds
- GET  /api/irrigation/events       - Recent irrigation / moisture log
- GET  /api/irrigation/scheduler    - Background scheduler status and health
"""

from __future__ import annotations

from flask import Blueprint, Response, request
from pydantic import ValidationError

from dripsim.blueprints.api._common import fail, get_container, get_coordinator, get_json, success
from dripsim.schemas.irrigation import EventLogQuery, IrrigationConfigUpdate, WeatherUpdateRequest
from dripsim.utils.http import safe_route

irrigation_bp = Blueprint("irrigation", __name__)


@irrigation_bp.route("/status", methods=["GET"])
@safe_route("Failed to read simulation status")
def get_status() -> Response:
    return success(get_coordinator().get_status())


@irrigation_bp.route("/trigger", methods=["POST"])
@safe_route("Failed to trigger irrigation")
def trigger_irrigation() -> Response:
    """
    Manually request one drip cycle.

    Refusals (already irrigating, not enough water) are reported as an
    outcome with ``started: false``, not as an error.
    """
    result = get_coordinator().trigger_irrigation()
    return success(result.to_dict(), message=result.message)


@irrigation_bp.route("/weather", methods=["POST"])
@safe_route("Failed to update weather")
def set_weather() -> Response:
    """
    Request body:
    - condition: 'clear', 'overcast' or 'rain'
    """
    try:
        body = WeatherUpdateRequest(**get_json())
    except ValidationError as ve:
        return fail("Invalid request", details=ve.errors(include_url=False, include_context=False))

    weather = get_coordinator().set_weather(body.condition)
    return success(weather, message=f"Weather set to {body.condition.value}")


@irrigation_bp.route("/tank/refill", methods=["POST"])
@safe_route("Failed to refill tank")
def refill_tank() -> Response:
    return success(get_coordinator().refill_tank(), message="Tank refilled")


@irrigation_bp.route("/tank/empty", methods=["POST"])
@safe_route("Failed to empty tank")
def empty_tank() -> Response:
    return success(get_coordinator().empty_tank(), message="Tank emptied")


@irrigation_bp.route("/soil/empty", methods=["POST"])
@safe_route("Failed to reset soil moisture")
def empty_soil() -> Response:
    return success(get_coordinator().empty_soil(), message="Soil moisture reset")


@irrigation_bp.route("/config", methods=["PUT"])
@safe_route("Failed to update configuration")
def update_config() -> Response:
    """
    Partial update; omitted fields keep their current value.

    Request body (all optional):
    - schedules: [{"time": "HH:MM", "enabled": bool}, ...]
    - capacity, irrigation_volume, low_level_threshold
    - irrigation_duration: minutes, at least 5
    - moisture_thresholds: {"min", "max", "optimal"}
    - auto_irrigation: bool
    """
    try:
        body = IrrigationConfigUpdate(**get_json())
    except ValidationError as ve:
        return fail("Invalid configuration", details=ve.errors(include_url=False, include_context=False))

    status = get_coordinator().update_config(body.to_changes())
    return success(status, message="Configuration updated")


@irrigation_bp.route("/events", methods=["GET"])
@safe_route("Failed to load event log")
def list_events() -> Response:
    """
    Query parameters:
        category (str, optional) - 'irrigation' or 'moisture'
        limit    (int, optional) - max entries, 1-100 (default 20)
    """
    try:
        query = EventLogQuery(**request.args.to_dict())
    except ValidationError as ve:
        return fail("Invalid query", details=ve.errors(include_url=False, include_context=False))

    events = get_coordinator().recent_events(query.category, limit=query.limit)
    return success({"events": events, "total": len(events)})


@irrigation_bp.route("/scheduler", methods=["GET"])
@safe_route("Failed to read scheduler status")
def scheduler_status() -> Response:
    container = get_container()
    return success(
        {
            "scheduler": container.scheduler.get_status(),
            "health": container.scheduler.health_check(),
            "history": [result.to_dict() for result in container.scheduler.get_history(limit=20)],
            "simulation": container.simulation_driver.status(),
            "weather": container.weather_service.status(),
            "event_bus": container.event_bus.get_metrics(),
        }
    )
