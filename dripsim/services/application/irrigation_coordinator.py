"""
Irrigation Coordinator
======================

Single owner of the soil, tank and weather entities. Every mutation goes
through one re-entrant lock held here, so that "check the tank, consume water,
start the drip cycle" is atomic with respect to ticks and manual commands.

Responsibilities:
    * gate irrigation requests and emit one ``IrrigationEvent`` per start
    * keep the three schedule copies (tank, soil, scheduler) identical
    * advance the moisture model and fire due schedule slots
    * persist every entity snapshot after each mutation and restore on startup
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional

from dripsim.domain.exceptions import CorruptedStateError, ValidationError
from dripsim.domain.irrigation import IrrigationEvent, IrrigationResult
from dripsim.domain.schedules import ScheduleEntry, normalize_schedules
from dripsim.domain.soil import (
    MIN_IRRIGATION_DURATION,
    SoilMoistureState,
    moisture_band,
    thresholds_field,
)
from dripsim.domain.tank import TankState
from dripsim.enums import (
    IrrigationOutcome,
    LogCategory,
    MoistureLogKind,
    SimulationEvent,
    TriggerSource,
    WeatherCondition,
    WeatherSource,
)
from dripsim.utils.concurrency import synchronized
from dripsim.utils.time import Clock, SystemClock, to_iso
from dripsim.utils.validation import enum_member, finite_number, optional_timestamp, restore_fields

if TYPE_CHECKING:
    from dripsim.domain.schedules import IrrigationScheduler
    from dripsim.domain.soil import SoilMoistureEngine
    from dripsim.domain.tank import TankEngine
    from dripsim.domain.weather import WeatherState
    from dripsim.utils.event_bus import EventBus
    from infrastructure.database.repositories.event_log import EventLogRepository
    from infrastructure.database.repositories.state import StateRepository
    from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_WET_SKIP_THRESHOLD = 35.0

SOIL_ENTITY = "soil"
TANK_ENTITY = "tank"
WEATHER_ENTITY = "weather"

_CONFIG_KEYS = frozenset(
    {
        "schedules",
        "capacity",
        "irrigation_volume",
        "low_level_threshold",
        "auto_irrigation",
        "irrigation_duration",
        "moisture_thresholds",
    }
)


@dataclass(frozen=True)
class TickReport:
    """What one simulation tick did."""

    elapsed_minutes: float
    moisture: float
    moisture_changed: bool
    schedules_reconciled: bool
    fired_slot: Optional[str] = None
    result: Optional[IrrigationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "elapsed_minutes": self.elapsed_minutes,
            "moisture": round(self.moisture, 1),
            "moisture_changed": self.moisture_changed,
            "schedules_reconciled": self.schedules_reconciled,
            "fired_slot": self.fired_slot,
            "result": self.result.to_dict() if self.result else None,
        }


class IrrigationCoordinator:
    """Mediates every cross-entity operation of the simulator."""

    def __init__(
        self,
        *,
        soil: "SoilMoistureEngine",
        tank: "TankEngine",
        weather: "WeatherState",
        scheduler: "IrrigationScheduler",
        state_repo: "StateRepository",
        event_log: "EventLogRepository",
        event_bus: "EventBus",
        clock: Optional[Clock] = None,
        audit_logger: Optional["AuditLogger"] = None,
        stop_timer: Optional[Callable[[float], None]] = None,
        wet_skip_threshold: float = DEFAULT_WET_SKIP_THRESHOLD,
    ) -> None:
        self._soil = soil
        self._tank = tank
        self._weather = weather
        self._scheduler = scheduler
        self._state_repo = state_repo
        self._event_log = event_log
        self._event_bus = event_bus
        self._clock = clock or SystemClock()
        self._audit_logger = audit_logger
        self._stop_timer = stop_timer
        self.wet_skip_threshold = wet_skip_threshold
        self._lock = threading.RLock()

        self._soil.set_log_sink(self._record_moisture)
        self._soil.set_stop_timer(stop_timer)
        self._unsubscribe_weather = event_bus.subscribe(SimulationEvent.WEATHER_CHANGED, self._on_weather_changed)

    @property
    def soil(self) -> "SoilMoistureEngine":
        return self._soil

    @property
    def tank(self) -> "TankEngine":
        return self._tank

    @property
    def weather(self) -> "WeatherState":
        return self._weather

    @property
    def scheduler(self) -> "IrrigationScheduler":
        return self._scheduler

    def set_stop_timer(self, stop_timer: Optional[Callable[[float], None]]) -> None:
        with self._lock:
            self._stop_timer = stop_timer
            self._soil.set_stop_timer(stop_timer)

    def close(self) -> None:
        self._unsubscribe_weather()

    # ── Irrigation ───────────────────────────────────────────────

    @synchronized
    def request_irrigation(
        self,
        source: TriggerSource | str = TriggerSource.MANUAL,
        *,
        slot: Optional[str] = None,
    ) -> IrrigationResult:
        """
        Gate and, when allowed, start one drip cycle.

        Refusals are returned as outcomes, never raised.

        Args:
            source: ``manual`` bypasses the auto-irrigation and wet-soil gates
            slot: Schedule slot that fired, for the event log

        Returns:
            IrrigationResult with the outcome and, on start, the event
        """
        source = TriggerSource(source)
        scheduled = source == TriggerSource.SCHEDULED
        soil_state = self._soil.state
        tank_state = self._tank.state

        if scheduled and not tank_state.auto_irrigation:
            return self._refuse(IrrigationOutcome.AUTO_IRRIGATION_DISABLED, source, slot)
        if soil_state.is_irrigating:
            return self._refuse(IrrigationOutcome.ALREADY_IRRIGATING, source, slot)

        volume = tank_state.irrigation_volume
        if tank_state.current_level < volume:
            return self._refuse(IrrigationOutcome.INSUFFICIENT_WATER, source, slot)
        if scheduled and soil_state.moisture >= self.wet_skip_threshold:
            return self._refuse(IrrigationOutcome.SOIL_ALREADY_WET, source, slot)

        moisture_before = soil_state.moisture
        if not self._tank.consume(volume):
            return self._refuse(IrrigationOutcome.INSUFFICIENT_WATER, source, slot)
        self._soil.start_irrigation(soil_state.irrigation_duration)

        event = IrrigationEvent(
            timestamp=to_iso(self._clock.now()),
            trigger_source=source,
            volume_consumed=volume,
            moisture_delta=round(self._soil.state.irrigation_target_moisture - moisture_before, 1),
            moisture_before=round(moisture_before, 1),
            remaining_level=round(self._tank.state.current_level, 2),
            slot=slot,
        )
        payload = event.to_dict()
        self._event_log.append(LogCategory.IRRIGATION, payload, created_at=event.timestamp)
        self._persist()
        self._event_bus.publish(SimulationEvent.IRRIGATION_STARTED, payload)
        return IrrigationResult(IrrigationOutcome.STARTED, source, event)

    def trigger_irrigation(self) -> IrrigationResult:
        """Manual trigger from the API or CLI."""
        result = self.request_irrigation(TriggerSource.MANUAL)
        self._audit("trigger_irrigation", "soil", result.outcome.value)
        return result

    @synchronized
    def stop_irrigation(self) -> bool:
        """End the running cycle. Called by the auto-stop job."""
        if not self._soil.stop_irrigation():
            return False
        self._persist()
        self._event_bus.publish(
            SimulationEvent.IRRIGATION_COMPLETED,
            {"moisture": round(self._soil.state.moisture, 1), "timestamp": to_iso(self._clock.now())},
        )
        return True

    def _refuse(self, outcome: IrrigationOutcome, source: TriggerSource, slot: Optional[str]) -> IrrigationResult:
        logger.info("Irrigation request (%s) refused: %s", source.value, outcome.value)
        self._event_bus.publish(
            SimulationEvent.IRRIGATION_REFUSED,
            {"outcome": outcome.value, "source": source.value, "slot": slot},
        )
        return IrrigationResult(outcome, source)

    # ── Schedules and ticks ──────────────────────────────────────

    @synchronized
    def reconcile_schedules(self, entries: Iterable[ScheduleEntry | Dict[str, Any]]) -> bool:
        """Make the tank, soil and scheduler copies equal to ``entries``.

        Returns True when any copy changed; an identical list is a no-op and
        persists nothing.
        """
        normalized = normalize_schedules(entries)
        tank_changed = self._tank.set_schedules(normalized)
        soil_changed = self._soil.set_schedules(normalized)
        scheduler_changed = self._scheduler.set_entries(normalized)
        if not (tank_changed or soil_changed or scheduler_changed):
            return False

        self._persist()
        self._event_bus.publish(
            SimulationEvent.SCHEDULES_RECONCILED,
            {"schedules": [entry.to_dict() for entry in normalized]},
        )
        return True

    @synchronized
    def advance(self, elapsed_minutes: float) -> bool:
        """Advance the moisture model only. Returns True if moisture changed."""
        changed = self._soil.tick(elapsed_minutes, self._weather.current())
        self._persist()
        return changed

    @synchronized
    def tick(self, elapsed_minutes: float, now: Optional[datetime] = None) -> TickReport:
        """One driver tick: reconcile, advance the model, fire a due slot."""
        now = now or self._clock.now()
        reconciled = self.reconcile_schedules(self._tank.state.schedules)
        changed = self.advance(elapsed_minutes)

        fired = self._scheduler.check_tick(now)
        result = None
        if fired is not None:
            logger.info("Schedule slot %s due", fired.time_of_day)
            self._event_bus.publish(
                SimulationEvent.SCHEDULE_FIRED,
                {"slot": fired.time_of_day, "timestamp": to_iso(now)},
            )
            result = self.request_irrigation(TriggerSource.SCHEDULED, slot=fired.time_of_day)

        return TickReport(
            elapsed_minutes=elapsed_minutes,
            moisture=self._soil.state.moisture,
            moisture_changed=changed,
            schedules_reconciled=reconciled,
            fired_slot=fired.time_of_day if fired else None,
            result=result,
        )

    def minutes_since_last_update(self, now: Optional[datetime] = None) -> float:
        last = self._soil.state.last_update
        if last is None:
            return 0.0
        now = now or self._clock.now()
        return max(0.0, (now - last).total_seconds() / 60.0)

    # ── Weather ──────────────────────────────────────────────────

    @synchronized
    def set_weather(
        self,
        condition: WeatherCondition | str,
        *,
        source: WeatherSource = WeatherSource.MANUAL,
    ) -> Dict[str, Any]:
        """Change the weather; moving into Rain saturates the soil once."""
        try:
            parsed = WeatherCondition.parse(condition)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None

        self._weather.set(parsed, source=source)
        # The bus subscription applies it too; this covers the unchanged-weather
        # case and worker-thread buses that have not delivered yet.
        self._apply_weather(parsed)
        if source == WeatherSource.MANUAL:
            self._audit("set_weather", WEATHER_ENTITY, "ok", condition=parsed.value)
        return self._weather.to_dict()

    def _on_weather_changed(self, payload: Dict[str, Any]) -> None:
        try:
            condition = WeatherCondition.parse(payload.get("condition"))
        except ValueError:
            logger.warning("Ignoring weather change with bad condition: %r", payload)
            return
        with self._lock:
            # A later change may already have superseded this one.
            if condition != self._weather.current():
                return
            self._apply_weather(condition)

    def _apply_weather(self, condition: WeatherCondition) -> None:
        if self._soil.state.weather == condition:
            return
        rained = self._soil.set_weather(condition)
        self._persist()
        if rained:
            self._event_bus.publish(
                SimulationEvent.RAIN_APPLIED,
                {"moisture": round(self._soil.state.moisture, 1), "timestamp": to_iso(self._clock.now())},
            )

    # ── Manual commands ──────────────────────────────────────────

    @synchronized
    def refill_tank(self) -> Dict[str, Any]:
        self._tank.refill()
        self._persist()
        status = self._tank.to_status_dict()
        self._event_bus.publish(SimulationEvent.TANK_REFILLED, status)
        self._audit("refill_tank", TANK_ENTITY, "ok", level=status["current_level"])
        return status

    @synchronized
    def empty_tank(self) -> Dict[str, Any]:
        self._tank.empty()
        self._persist()
        status = self._tank.to_status_dict()
        self._event_bus.publish(SimulationEvent.TANK_EMPTIED, status)
        self._audit("empty_tank", TANK_ENTITY, "ok")
        return status

    @synchronized
    def empty_soil(self) -> Dict[str, Any]:
        self._soil.empty()
        self._persist()
        status = self._soil.detailed_status()
        self._event_bus.publish(SimulationEvent.SOIL_EMPTIED, {"moisture": status["moisture"]})
        self._audit("empty_soil", SOIL_ENTITY, "ok")
        return status

    @synchronized
    def update_config(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate and apply a partial configuration update.

        Every value is checked before anything is mutated, so a rejected
        update leaves all entities untouched.

        Raises:
            ValidationError: on unknown keys or invalid values
        """
        unknown = set(changes) - _CONFIG_KEYS
        if unknown:
            raise ValidationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        tank_state = self._tank.state
        tank_kwargs: Dict[str, Any] = {}
        soil_kwargs: Dict[str, Any] = {}

        try:
            capacity = tank_state.capacity
            if changes.get("capacity") is not None:
                capacity = finite_number(changes["capacity"], "capacity", minimum=0, exclusive_minimum=True)
                tank_kwargs["capacity"] = capacity

            volume = tank_state.irrigation_volume
            if changes.get("irrigation_volume") is not None:
                volume = finite_number(
                    changes["irrigation_volume"], "irrigation_volume", minimum=0, exclusive_minimum=True
                )
                tank_kwargs["irrigation_volume"] = volume
            if volume > capacity:
                raise ValidationError(
                    "irrigation_volume must not exceed capacity",
                    detail={"irrigation_volume": volume, "capacity": capacity},
                )

            if changes.get("low_level_threshold") is not None:
                tank_kwargs["low_level_threshold"] = finite_number(
                    changes["low_level_threshold"],
                    "low_level_threshold",
                    minimum=0,
                    maximum=100,
                    exclusive_minimum=True,
                )

            if changes.get("irrigation_duration") is not None:
                soil_kwargs["irrigation_duration"] = finite_number(
                    changes["irrigation_duration"], "irrigation_duration", minimum=MIN_IRRIGATION_DURATION
                )

            if changes.get("moisture_thresholds") is not None:
                raw = changes["moisture_thresholds"]
                if hasattr(raw, "to_dict"):
                    raw = raw.to_dict()
                soil_kwargs["moisture_thresholds"] = thresholds_field(raw, "moisture_thresholds")
        except CorruptedStateError as exc:
            raise ValidationError(f"Invalid {exc.field}: {exc.reason}", detail={"field": exc.field}) from None

        auto = changes.get("auto_irrigation")
        if auto is not None:
            if not isinstance(auto, bool):
                raise ValidationError("auto_irrigation must be a boolean")
            tank_kwargs["auto_irrigation"] = auto
            soil_kwargs["auto_irrigation"] = auto

        schedules: Optional[List[ScheduleEntry]] = None
        if changes.get("schedules") is not None:
            schedules = normalize_schedules(changes["schedules"])

        self._tank.update_settings(**tank_kwargs)
        self._soil.update_settings(**soil_kwargs)
        self.reconcile_schedules(schedules if schedules is not None else self._tank.state.schedules)
        self._persist()

        applied = sorted(k for k in changes if changes[k] is not None)
        self._event_bus.publish(SimulationEvent.CONFIG_UPDATED, {"keys": applied})
        self._audit("update_config", "config", "ok", keys=applied)
        return self.get_status()

    # ── Queries ──────────────────────────────────────────────────

    @synchronized
    def get_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Read-only snapshot for displays, the API and the CLI."""
        now = now or self._clock.now()
        soil_state = self._soil.state
        tank_state = self._tank.state
        upcoming = self._scheduler.next_slot(now)
        return {
            "moisture": round(soil_state.moisture, 1),
            "band": moisture_band(soil_state.moisture).value,
            "is_irrigating": soil_state.is_irrigating,
            "weather": self._weather.current().value,
            "tank_level": round(tank_state.current_level, 2),
            "tank_percentage": round(tank_state.percentage, 1),
            "tank_status": self._tank.status().value,
            "next_schedule": upcoming.time_of_day if upcoming else None,
            "eta": upcoming.to_dict() if upcoming else None,
            "estimated_empty_at": to_iso(tank_state.estimated_empty_at),
            "should_irrigate": self._soil.should_trigger_irrigation(),
            "effectiveness": self._soil.irrigation_effectiveness(),
            "soil": self._soil.detailed_status(),
            "tank": self._tank.to_status_dict(),
            "weather_detail": self._weather.to_dict(),
            "timestamp": to_iso(now),
        }

    def recent_events(self, category: LogCategory | str | None = None, limit: int = 20) -> List[Dict[str, Any]]:
        if category is not None:
            try:
                category = LogCategory(category)
            except ValueError:
                raise ValidationError(f"Unknown event category {category!r}") from None
        return self._event_log.recent(category, limit=limit)

    # ── Persistence ──────────────────────────────────────────────

    @synchronized
    def restore(self) -> List[Dict[str, Any]]:
        """
        Load soil, tank and weather from storage.

        Invalid fields fall back to defaults; each one is logged, appended to
        the moisture log and published as ``state.recovered``. Startup never
        fails on bad stored data.

        Returns:
            List of recovered fields as ``{entity, field, reason}`` dicts
        """
        recovered: List[Dict[str, Any]] = []

        soil_state, soil_errors = SoilMoistureState.from_snapshot(self._load(SOIL_ENTITY, recovered))
        tank_state, tank_errors = TankState.from_snapshot(self._load(TANK_ENTITY, recovered))
        weather_values, weather_errors = restore_fields(
            self._load(WEATHER_ENTITY, recovered),
            {
                "condition": (soil_state.weather, enum_member(WeatherCondition)),
                "updated_at": (None, optional_timestamp),
            },
            entity=WEATHER_ENTITY,
        )
        for entity, errors in ((SOIL_ENTITY, soil_errors), (TANK_ENTITY, tank_errors), (WEATHER_ENTITY, weather_errors)):
            recovered.extend(self._describe(entity, exc) for exc in errors)

        # Weather is the authority; the soil copy follows without raining.
        soil_state.weather = weather_values["condition"]
        self._soil.replace_state(soil_state)
        self._tank.replace_state(tank_state)
        self._weather.restore(weather_values["condition"], weather_values["updated_at"])
        self.reconcile_schedules(tank_state.schedules)

        for entry in recovered:
            self._event_log.append(
                LogCategory.MOISTURE,
                {"kind": MoistureLogKind.STATE_RECOVERED.value, **entry},
                created_at=to_iso(self._clock.now()),
            )
            self._event_bus.publish(SimulationEvent.STATE_RECOVERED, entry)

        self._persist()
        self.resume_pending_irrigation()
        logger.info(
            "State restored: moisture %.1f%%, tank %.1f L, weather %s (%d field(s) recovered)",
            soil_state.moisture,
            tank_state.current_level,
            weather_values["condition"].value,
            len(recovered),
        )
        return recovered

    @synchronized
    def resume_pending_irrigation(self, now: Optional[datetime] = None) -> Optional[float]:
        """Re-arm the auto-stop of a cycle that was running at shutdown.

        Returns:
            Remaining minutes, 0.0 if it was overdue and stopped, None if idle
        """
        state = self._soil.state
        if not state.is_irrigating or state.irrigation_start_time is None:
            return None
        now = now or self._clock.now()
        elapsed = (now - state.irrigation_start_time).total_seconds() / 60.0
        remaining = state.irrigation_cycle_minutes - elapsed
        if remaining <= 0:
            logger.info("Irrigation overdue by %.1f min at startup; stopping", -remaining)
            self.stop_irrigation()
            return 0.0
        if self._stop_timer is not None:
            self._stop_timer(remaining)
        logger.info("Resumed irrigation; auto-stop in %.1f min", remaining)
        return remaining

    @synchronized
    def persist(self) -> None:
        self._persist()

    def _persist(self) -> None:
        updated_at = to_iso(self._clock.now())
        self._state_repo.save(SOIL_ENTITY, self._soil.state.to_snapshot(), updated_at=updated_at)
        self._state_repo.save(TANK_ENTITY, self._tank.state.to_snapshot(), updated_at=updated_at)
        self._state_repo.save(
            WEATHER_ENTITY,
            {
                "condition": self._weather.current().value,
                "source": self._weather.source.value,
                "updated_at": to_iso(self._weather.updated_at),
            },
            updated_at=updated_at,
        )

    def _load(self, entity: str, recovered: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        try:
            return self._state_repo.load(entity)
        except CorruptedStateError as exc:
            logger.warning("Discarding unreadable %s snapshot: %s", entity, exc.reason)
            recovered.append({"entity": entity, "field": "*", "reason": exc.reason})
            return None

    @staticmethod
    def _describe(entity: str, exc: CorruptedStateError) -> Dict[str, Any]:
        return {"entity": entity, "field": exc.field, "reason": exc.reason, "value": repr(exc.value)}

    # ── Logging ──────────────────────────────────────────────────

    def _record_moisture(self, entry: Dict[str, Any]) -> None:
        self._event_log.append(LogCategory.MOISTURE, entry, created_at=entry.get("timestamp"))

    def _audit(self, action: str, resource: str, outcome: str, **metadata: Any) -> None:
        if self._audit_logger is None:
            return
        try:
            self._audit_logger.log_event("operator", action, resource, outcome, **metadata)
        except OSError as exc:
            logger.warning("Audit log write failed for %s: %s", action, exc)
