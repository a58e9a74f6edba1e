from enum import Enum


class SimulationEvent(str, Enum):
    """Event bus topics published by the simulation core."""

    # Driver
    TICK_COMPLETED = "simulation.tick_completed"
    DISPLAY_REFRESHED = "display.refreshed"

    # Weather
    WEATHER_CHANGED = "weather.changed"

    # Irrigation lifecycle
    IRRIGATION_STARTED = "irrigation.started"
    IRRIGATION_COMPLETED = "irrigation.completed"
    IRRIGATION_REFUSED = "irrigation.refused"

    # Scheduling
    SCHEDULE_FIRED = "schedule.fired"
    SCHEDULES_RECONCILED = "schedule.reconciled"

    # Entity changes
    RAIN_APPLIED = "soil.rain_applied"
    SOIL_EMPTIED = "soil.emptied"
    TANK_REFILLED = "tank.refilled"
    TANK_EMPTIED = "tank.emptied"
    CONFIG_UPDATED = "config.updated"
    STATE_RECOVERED = "state.recovered"


class TriggerSource(str, Enum):
    """Who asked for irrigation."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"


class IrrigationOutcome(str, Enum):
    """Typed result of an irrigation request. Refusals are not errors."""

    STARTED = "started"
    ALREADY_IRRIGATING = "already_irrigating"
    INSUFFICIENT_WATER = "insufficient_water"
    AUTO_IRRIGATION_DISABLED = "auto_irrigation_disabled"
    SOIL_ALREADY_WET = "soil_already_wet"


class LogCategory(str, Enum):
    """Categories of the capped event log."""

    IRRIGATION = "irrigation"
    MOISTURE = "moisture"


class MoistureLogKind(str, Enum):
    IRRIGATION_COMPLETE = "irrigation_complete"
    RAIN_EVENT = "rain_event"
    MANUAL_EMPTY = "manual_empty"
    STATE_RECOVERED = "state_recovered"
