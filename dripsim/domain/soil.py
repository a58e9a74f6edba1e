"""
Soil Moisture Engine
====================

Discrete-time model of soil moisture under a drip emitter.

Between observations moisture either ramps up (while irrigating) or
evaporates at a rate set by the weather. Rain is not gradual: it jumps
moisture straight into the saturated band.

Evaporation is accumulated in simulated minutes so that the total loss over a
window only depends on the window length, never on how it was sliced into
ticks.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from dripsim.domain.exceptions import CorruptedStateError
from dripsim.domain.schedules import ScheduleEntry, default_schedules, normalize_schedules, schedules_field
from dripsim.domain.weather import EVAPORATION_PROFILES, evaporation_profile
from dripsim.enums import MoistureBand, MoistureLogKind, WeatherCondition
from dripsim.utils.time import Clock, SystemClock, to_iso
from dripsim.utils.validation import (
    enum_member,
    finite_number,
    number_in,
    optional_timestamp,
    restore_fields,
    strict_bool,
)

logger = logging.getLogger(__name__)

DEFAULT_MOISTURE = 45.0
DEFAULT_IRRIGATION_DURATION = 15.0
MIN_IRRIGATION_DURATION = 5.0

# Drip irrigation only aims for the optimal band; it never saturates the soil.
DRIP_BAND_LOW = 25.0
DRIP_BAND_HIGH = 40.0
START_TARGET_STEP = 12.0
TICK_TARGET_STEP = 15.0

RAIN_MOISTURE_RANGE = (75.0, 90.0)

# A carried evaporation remainder is always shorter than the longest interval.
MAX_EVAPORATION_INTERVAL = max(profile.interval_minutes for profile in EVAPORATION_PROFILES.values())


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def moisture_band(moisture: float) -> MoistureBand:
    if moisture <= 15:
        return MoistureBand.VERY_DRY
    if moisture < 25:
        return MoistureBand.DRY
    if moisture <= 40:
        return MoistureBand.OPTIMAL
    if moisture < 70:
        return MoistureBand.MOIST
    return MoistureBand.SATURATED


@dataclass
class MoistureThresholds:
    """User-facing thresholds; ``minimum`` drives :meth:`should_trigger_irrigation`."""

    minimum: float = 40.0
    maximum: float = 80.0
    optimal: float = 65.0

    def to_dict(self) -> Dict[str, float]:
        return {"min": self.minimum, "max": self.maximum, "optimal": self.optimal}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "MoistureThresholds":
        return MoistureThresholds(
            minimum=float(data.get("min", 40.0)),
            maximum=float(data.get("max", 80.0)),
            optimal=float(data.get("optimal", 65.0)),
        )


def accumulator_field(value: Any, field_name: str) -> float:
    minutes = finite_number(value, field_name, minimum=0)
    if minutes >= MAX_EVAPORATION_INTERVAL:
        raise CorruptedStateError(field_name, value, f"not below {MAX_EVAPORATION_INTERVAL} min")
    return minutes


def thresholds_field(value: Any, field_name: str) -> MoistureThresholds:
    if not isinstance(value, dict):
        raise CorruptedStateError(field_name, value, "not an object")
    low = finite_number(value.get("min"), f"{field_name}.min", minimum=0, maximum=100)
    high = finite_number(value.get("max"), f"{field_name}.max", minimum=0, maximum=100)
    optimal = finite_number(value.get("optimal"), f"{field_name}.optimal", minimum=0, maximum=100)
    if not (low < high and low <= optimal <= high):
        raise CorruptedStateError(field_name, value, "thresholds out of order")
    return MoistureThresholds(minimum=low, maximum=high, optimal=optimal)


@dataclass
class SoilMoistureState:
    moisture: float = DEFAULT_MOISTURE
    irrigation_duration: float = DEFAULT_IRRIGATION_DURATION
    weather: WeatherCondition = WeatherCondition.CLEAR
    is_irrigating: bool = False
    irrigation_start_time: Optional[datetime] = None
    irrigation_target_moisture: float = DRIP_BAND_HIGH
    irrigation_cycle_minutes: float = DEFAULT_IRRIGATION_DURATION
    irrigation_elapsed_minutes: float = 0.0
    evaporation_accumulator: float = 0.0
    schedules: List[ScheduleEntry] = field(default_factory=default_schedules)
    moisture_thresholds: MoistureThresholds = field(default_factory=MoistureThresholds)
    auto_irrigation: bool = True
    last_update: Optional[datetime] = None

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "moisture": self.moisture,
            "irrigation_duration": self.irrigation_duration,
            "weather": self.weather.value,
            "is_irrigating": self.is_irrigating,
            "irrigation_start_time": to_iso(self.irrigation_start_time),
            "irrigation_target_moisture": self.irrigation_target_moisture,
            "irrigation_cycle_minutes": self.irrigation_cycle_minutes,
            "irrigation_elapsed_minutes": self.irrigation_elapsed_minutes,
            "evaporation_accumulator": self.evaporation_accumulator,
            "schedules": [entry.to_dict() for entry in self.schedules],
            "moisture_thresholds": self.moisture_thresholds.to_dict(),
            "auto_irrigation": self.auto_irrigation,
            "last_update": to_iso(self.last_update),
        }

    @classmethod
    def from_snapshot(cls, payload: Optional[Dict[str, Any]]) -> Tuple["SoilMoistureState", List[CorruptedStateError]]:
        """Rebuild state from storage, resetting any invalid field to its default."""
        values, recovered = restore_fields(
            payload,
            {
                "moisture": (DEFAULT_MOISTURE, number_in(0, 100)),
                "irrigation_duration": (DEFAULT_IRRIGATION_DURATION, number_in(MIN_IRRIGATION_DURATION)),
                "weather": (WeatherCondition.CLEAR, enum_member(WeatherCondition)),
                "is_irrigating": (False, strict_bool),
                "irrigation_start_time": (None, optional_timestamp),
                "irrigation_target_moisture": (DRIP_BAND_HIGH, number_in(DRIP_BAND_LOW, DRIP_BAND_HIGH)),
                "irrigation_cycle_minutes": (DEFAULT_IRRIGATION_DURATION, number_in(MIN_IRRIGATION_DURATION)),
                "irrigation_elapsed_minutes": (0.0, number_in(0)),
                "evaporation_accumulator": (0.0, accumulator_field),
                "schedules": (default_schedules, schedules_field),
                "moisture_thresholds": (MoistureThresholds, thresholds_field),
                "auto_irrigation": (True, strict_bool),
                "last_update": (None, optional_timestamp),
            },
            entity="soil",
        )
        state = cls(**values)
        if payload and "irrigation_cycle_minutes" not in payload:
            state.irrigation_cycle_minutes = state.irrigation_duration
        if state.is_irrigating and state.irrigation_start_time is None:
            logger.warning("Soil snapshot marked irrigating without a start time; clearing")
            recovered.append(CorruptedStateError("is_irrigating", True, "irrigating without start time"))
            state.is_irrigating = False
            state.irrigation_elapsed_minutes = 0.0
        return state, recovered


class SoilMoistureEngine:
    """Owns a :class:`SoilMoistureState` and applies the moisture model to it.

    Args:
        state: Initial state (defaults to a fresh one)
        clock: Wall clock for timestamps
        rng: Random source for rain saturation
        stop_timer: Called with a duration in minutes when irrigation starts;
            expected to arrange a later call to :meth:`stop_irrigation`
        log_sink: Receives moisture log entries (completion, rain, resets)
    """

    def __init__(
        self,
        state: Optional[SoilMoistureState] = None,
        *,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        stop_timer: Optional[Callable[[float], None]] = None,
        log_sink: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        self._state = state or SoilMoistureState()
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._stop_timer = stop_timer
        self._log_sink = log_sink

    @property
    def state(self) -> SoilMoistureState:
        return self._state

    def replace_state(self, state: SoilMoistureState) -> None:
        self._state = state

    def set_stop_timer(self, stop_timer: Optional[Callable[[float], None]]) -> None:
        self._stop_timer = stop_timer

    def set_log_sink(self, log_sink: Optional[Callable[[Dict[str, Any]], None]]) -> None:
        self._log_sink = log_sink

    # ==================== Simulation ====================

    def tick(self, elapsed_minutes: float, weather: Optional[WeatherCondition] = None) -> bool:
        """Advance the model by ``elapsed_minutes``. Returns True if moisture changed."""
        if elapsed_minutes <= 0:
            return False

        condition = weather or self._state.weather
        before = self._state.moisture

        if self._state.is_irrigating:
            self._process_irrigation_increase(elapsed_minutes)
        elif condition != WeatherCondition.RAIN:
            self._process_evaporation(elapsed_minutes, condition)

        self._state.moisture = clamp(self._state.moisture, 0.0, 100.0)
        self._state.last_update = self._clock.now()
        return self._state.moisture != before

    def _process_irrigation_increase(self, elapsed_minutes: float) -> None:
        state = self._state
        duration = state.irrigation_cycle_minutes
        remaining = max(0.0, duration - state.irrigation_elapsed_minutes)
        effective = min(elapsed_minutes, remaining)
        state.irrigation_elapsed_minutes += elapsed_minutes
        if effective <= 0:
            return

        # The target follows the current reading rather than staying fixed at
        # the value computed on start.
        current = state.moisture
        target = clamp(current + TICK_TARGET_STEP, DRIP_BAND_LOW, DRIP_BAND_HIGH)
        state.irrigation_target_moisture = target

        rate_per_minute = (target - current) / duration
        updated = min(target, current + rate_per_minute * effective)
        state.moisture = min(updated, DRIP_BAND_HIGH)

    def _process_evaporation(self, elapsed_minutes: float, condition: WeatherCondition) -> None:
        profile = evaporation_profile(condition)
        if not profile.evaporates:
            return
        state = self._state
        state.evaporation_accumulator += elapsed_minutes
        steps, state.evaporation_accumulator = divmod(state.evaporation_accumulator, profile.interval_minutes)
        if steps:
            state.moisture -= steps * profile.rate_percent
            logger.debug(
                "Evaporation: -%.1f%% (%s, %d interval(s))", steps * profile.rate_percent, condition.value, steps
            )

    # ==================== Irrigation ====================

    def start_irrigation(self, duration_minutes: Optional[float] = None) -> bool:
        """Begin a drip cycle. No-op (returns False) if one is already running."""
        state = self._state
        if state.is_irrigating:
            return False

        duration = float(duration_minutes or state.irrigation_duration)
        now = self._clock.now()
        state.is_irrigating = True
        state.irrigation_start_time = now
        state.irrigation_target_moisture = clamp(state.moisture + START_TARGET_STEP, DRIP_BAND_LOW, DRIP_BAND_HIGH)
        state.irrigation_cycle_minutes = duration
        state.irrigation_elapsed_minutes = 0.0
        state.evaporation_accumulator = 0.0
        state.last_update = now

        logger.info(
            "Drip irrigation started: %.1f%% -> %.1f%% over %.0f min",
            state.moisture,
            state.irrigation_target_moisture,
            duration,
        )
        if self._stop_timer is not None:
            self._stop_timer(duration)
        return True

    def stop_irrigation(self) -> bool:
        state = self._state
        if not state.is_irrigating:
            return False

        state.is_irrigating = False
        state.irrigation_start_time = None
        state.irrigation_elapsed_minutes = 0.0
        state.evaporation_accumulator = 0.0
        state.last_update = self._clock.now()

        logger.info("Drip irrigation completed at %.1f%%", state.moisture)
        self._record(MoistureLogKind.IRRIGATION_COMPLETE)
        return True

    # ==================== Weather ====================

    def apply_rain(self) -> float:
        """Saturate the soil. Always applies, irrigating or not."""
        low, high = RAIN_MOISTURE_RANGE
        self._state.moisture = self._rng.uniform(low, high)
        self._state.evaporation_accumulator = 0.0
        self._state.last_update = self._clock.now()
        logger.info("Rain event: soil moisture now %.1f%%", self._state.moisture)
        self._record(MoistureLogKind.RAIN_EVENT)
        return self._state.moisture

    def set_weather(self, condition: WeatherCondition) -> bool:
        """Record the condition; returns True when this transition brought rain."""
        previous = self._state.weather
        self._state.weather = condition
        if condition == WeatherCondition.RAIN and previous != WeatherCondition.RAIN:
            self.apply_rain()
            return True
        return False

    # ==================== Manual / settings ====================

    def empty(self) -> None:
        self._state.moisture = 0.0
        self._state.evaporation_accumulator = 0.0
        self._state.last_update = self._clock.now()
        logger.info("Soil moisture manually reset to 0%")
        self._record(MoistureLogKind.MANUAL_EMPTY)

    def set_schedules(self, entries: List[ScheduleEntry]) -> bool:
        normalized = normalize_schedules(entries)
        if normalized == self._state.schedules:
            return False
        self._state.schedules = normalized
        return True

    def update_settings(
        self,
        *,
        irrigation_duration: Optional[float] = None,
        moisture_thresholds: Optional[MoistureThresholds] = None,
        auto_irrigation: Optional[bool] = None,
    ) -> None:
        if irrigation_duration is not None:
            if irrigation_duration >= MIN_IRRIGATION_DURATION:
                self._state.irrigation_duration = float(irrigation_duration)
            else:
                logger.warning("Ignoring irrigation duration %.1f (< %.0f min)", irrigation_duration, MIN_IRRIGATION_DURATION)
        if moisture_thresholds is not None:
            self._state.moisture_thresholds = moisture_thresholds
        if auto_irrigation is not None:
            self._state.auto_irrigation = bool(auto_irrigation)

    # ==================== Queries ====================

    def should_trigger_irrigation(self) -> bool:
        state = self._state
        return (
            state.auto_irrigation
            and not state.is_irrigating
            and state.moisture < state.moisture_thresholds.minimum
        )

    def irrigation_effectiveness(self) -> Dict[str, float]:
        current = self._state.moisture
        target = clamp(current + START_TARGET_STEP, DRIP_BAND_LOW, DRIP_BAND_HIGH)
        return {
            "current": round(current, 1),
            "target": round(target, 1),
            "increase": round(target - current, 1),
            "duration": self._state.irrigation_duration,
        }

    def minutes_until_next_decrease(self) -> Optional[float]:
        state = self._state
        if state.is_irrigating:
            return None
        profile = evaporation_profile(state.weather)
        if not profile.evaporates:
            return None
        return round(profile.interval_minutes - state.evaporation_accumulator, 2)

    def detailed_status(self) -> Dict[str, Any]:
        state = self._state
        profile = evaporation_profile(state.weather)
        return {
            "moisture": round(state.moisture, 1),
            "band": moisture_band(state.moisture).value,
            "weather": state.weather.value,
            "is_irrigating": state.is_irrigating,
            "irrigation_start_time": to_iso(state.irrigation_start_time),
            "irrigation_target_moisture": state.irrigation_target_moisture,
            "irrigation_duration": state.irrigation_duration,
            "irrigation_cycle_minutes": state.irrigation_cycle_minutes if state.is_irrigating else None,
            "evaporation_rate_percent": profile.rate_percent,
            "evaporation_interval_minutes": profile.interval_minutes,
            "evaporation_accumulator": round(state.evaporation_accumulator, 2),
            "minutes_until_next_decrease": self.minutes_until_next_decrease(),
            "moisture_thresholds": state.moisture_thresholds.to_dict(),
            "auto_irrigation": state.auto_irrigation,
            "last_update": to_iso(state.last_update),
        }

    def _record(self, kind: MoistureLogKind) -> None:
        if self._log_sink is None:
            return
        self._log_sink(
            {
                "kind": kind.value,
                "moisture": round(self._state.moisture, 1),
                "weather": self._state.weather.value,
                "timestamp": to_iso(self._clock.now()),
            }
        )
