import logging
from typing import Any, Callable, List

from dripsim.enums import SimulationEvent

logger = logging.getLogger("dripsim.events")


class EventLogger:
    """Listens for simulation events and logs them."""

    def __init__(self, event_bus: Any) -> None:
        self.event_bus = event_bus
        self._unsubscribers: List[Callable[[], None]] = [
            event_bus.subscribe(SimulationEvent.IRRIGATION_STARTED, self.log_irrigation_started),
            event_bus.subscribe(SimulationEvent.IRRIGATION_COMPLETED, self.log_irrigation_completed),
            event_bus.subscribe(SimulationEvent.IRRIGATION_REFUSED, self.log_irrigation_refused),
            event_bus.subscribe(SimulationEvent.WEATHER_CHANGED, self.log_weather_changed),
            event_bus.subscribe(SimulationEvent.SCHEDULE_FIRED, self.log_schedule_fired),
            event_bus.subscribe(SimulationEvent.SCHEDULES_RECONCILED, self.log_schedules_reconciled),
            event_bus.subscribe(SimulationEvent.STATE_RECOVERED, self.log_state_recovered),
            event_bus.subscribe(SimulationEvent.TANK_REFILLED, self.log_tank_change),
            event_bus.subscribe(SimulationEvent.TANK_EMPTIED, self.log_tank_change),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def log_irrigation_started(self, data: dict) -> None:
        logger.info(
            "💧 Irrigation started (%s): -%s L, moisture %s%%",
            data.get("trigger_source"),
            data.get("volume_consumed"),
            data.get("moisture_before"),
        )

    def log_irrigation_completed(self, data: dict) -> None:
        logger.info("✅ Irrigation completed at %s%% moisture", data.get("moisture"))

    def log_irrigation_refused(self, data: dict) -> None:
        logger.info("⏭️ Irrigation not started (%s): %s", data.get("source"), data.get("outcome"))

    def log_weather_changed(self, data: dict) -> None:
        logger.info("🌦️ Weather %s -> %s (%s)", data.get("previous"), data.get("condition"), data.get("source"))

    def log_schedule_fired(self, data: dict) -> None:
        logger.info("⏰ Schedule slot %s fired", data.get("slot"))

    def log_schedules_reconciled(self, data: dict) -> None:
        logger.info("🗓️ Schedules reconciled: %s", data.get("schedules"))

    def log_state_recovered(self, data: dict) -> None:
        logger.warning(
            "⚠️ Recovered corrupted state %s.%s (%s)",
            data.get("entity"),
            data.get("field"),
            data.get("reason"),
        )

    def log_tank_change(self, data: dict) -> None:
        logger.info("🛢️ Tank level now %s L", data.get("current_level"))
