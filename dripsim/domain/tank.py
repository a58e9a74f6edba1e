"""Reservoir volume model and its consumption estimate."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from dripsim.domain.exceptions import CorruptedStateError
from dripsim.domain.schedules import ScheduleEntry, default_schedules, normalize_schedules, schedules_field
from dripsim.enums import TankStatus
from dripsim.utils.time import Clock, SystemClock, to_iso
from dripsim.utils.validation import number_in, optional_timestamp, restore_fields, strict_bool

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 90.0
DEFAULT_LEVEL = 72.0
DEFAULT_IRRIGATION_VOLUME = 7.0
DEFAULT_LOW_LEVEL_THRESHOLD = 20.0
MEDIUM_LEVEL_PERCENT = 50.0
OVERFLOW_RESET_FRACTION = 0.8


@dataclass
class TankState:
    capacity: float = DEFAULT_CAPACITY
    current_level: float = DEFAULT_LEVEL
    irrigation_volume: float = DEFAULT_IRRIGATION_VOLUME
    low_level_threshold: float = DEFAULT_LOW_LEVEL_THRESHOLD
    schedules: List[ScheduleEntry] = field(default_factory=default_schedules)
    auto_irrigation: bool = True
    last_refill: Optional[datetime] = None
    estimated_empty_at: Optional[datetime] = None

    @property
    def percentage(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return self.current_level / self.capacity * 100.0

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "current_level": self.current_level,
            "irrigation_volume": self.irrigation_volume,
            "low_level_threshold": self.low_level_threshold,
            "schedules": [entry.to_dict() for entry in self.schedules],
            "auto_irrigation": self.auto_irrigation,
            "last_refill": to_iso(self.last_refill),
            "estimated_empty_at": to_iso(self.estimated_empty_at),
        }

    @classmethod
    def from_snapshot(cls, payload: Optional[Dict[str, Any]]) -> Tuple["TankState", List[CorruptedStateError]]:
        values, recovered = restore_fields(
            payload,
            {
                "capacity": (DEFAULT_CAPACITY, number_in(0, exclusive_minimum=True)),
                "current_level": (DEFAULT_LEVEL, number_in(0)),
                "irrigation_volume": (DEFAULT_IRRIGATION_VOLUME, number_in(0, exclusive_minimum=True)),
                "low_level_threshold": (DEFAULT_LOW_LEVEL_THRESHOLD, number_in(0, 100, exclusive_minimum=True)),
                "schedules": (default_schedules, schedules_field),
                "auto_irrigation": (True, strict_bool),
                "last_refill": (None, optional_timestamp),
                "estimated_empty_at": (None, optional_timestamp),
            },
            entity="tank",
        )
        state = cls(**values)

        # Cross-field invariants, checked after each field is individually sane.
        if state.current_level > state.capacity:
            recovered.append(CorruptedStateError("current_level", state.current_level, "exceeds capacity"))
            state.current_level = min(DEFAULT_LEVEL, state.capacity)
        if state.irrigation_volume > state.capacity:
            recovered.append(CorruptedStateError("irrigation_volume", state.irrigation_volume, "exceeds capacity"))
            state.irrigation_volume = min(DEFAULT_IRRIGATION_VOLUME, state.capacity)
        return state, recovered


class TankEngine:
    """Owns a :class:`TankState`; every mutation refreshes the empty-time estimate."""

    def __init__(self, state: Optional[TankState] = None, *, clock: Optional[Clock] = None) -> None:
        self._state = state or TankState()
        self._clock = clock or SystemClock()

    @property
    def state(self) -> TankState:
        return self._state

    def replace_state(self, state: TankState) -> None:
        self._state = state
        self._refresh_estimate()

    def consume(self, volume: float) -> bool:
        """Draw ``volume`` litres. Fails without mutating if not enough water."""
        if volume <= 0 or self._state.current_level < volume:
            logger.warning(
                "Cannot consume %.1f L (level %.1f L)", volume, self._state.current_level
            )
            return False
        self._state.current_level -= volume
        self._refresh_estimate()
        logger.info("Consumed %.1f L, %.1f L remaining", volume, self._state.current_level)
        return True

    def refill(self) -> None:
        self._state.current_level = self._state.capacity
        self._state.last_refill = self._clock.now()
        self._refresh_estimate()
        logger.info("Tank refilled to %.1f L", self._state.capacity)

    def empty(self) -> None:
        self._state.current_level = 0.0
        self._refresh_estimate()
        logger.info("Tank emptied")

    def set_schedules(self, entries: List[ScheduleEntry]) -> bool:
        normalized = normalize_schedules(entries)
        if normalized == self._state.schedules:
            return False
        self._state.schedules = normalized
        self._refresh_estimate()
        return True

    def update_settings(
        self,
        *,
        capacity: Optional[float] = None,
        irrigation_volume: Optional[float] = None,
        low_level_threshold: Optional[float] = None,
        auto_irrigation: Optional[bool] = None,
    ) -> None:
        """Apply already-validated settings."""
        state = self._state
        if capacity is not None:
            state.capacity = float(capacity)
        if irrigation_volume is not None:
            state.irrigation_volume = float(irrigation_volume)
        if low_level_threshold is not None:
            state.low_level_threshold = float(low_level_threshold)
        if auto_irrigation is not None:
            state.auto_irrigation = bool(auto_irrigation)

        if state.current_level > state.capacity:
            state.current_level = state.capacity * OVERFLOW_RESET_FRACTION
            logger.info("Level exceeded new capacity; reset to %.1f L", state.current_level)
        self._refresh_estimate()

    # ==================== Queries ====================

    def daily_consumption(self) -> float:
        enabled = sum(1 for entry in self._state.schedules if entry.enabled)
        return self._state.irrigation_volume * enabled

    def estimate_empty_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if not self._state.auto_irrigation:
            return None
        daily = self.daily_consumption()
        if daily <= 0:
            return None
        now = now or self._clock.now()
        return now + timedelta(days=self._state.current_level / daily)

    def countdown(self, now: Optional[datetime] = None) -> Optional[Dict[str, int]]:
        """Break the time to empty into days/hours/minutes for display."""
        now = now or self._clock.now()
        empty_at = self.estimate_empty_time(now)
        if empty_at is None:
            return None
        remaining = max(0, int((empty_at - now).total_seconds() // 60))
        days, rest = divmod(remaining, 24 * 60)
        hours, minutes = divmod(rest, 60)
        return {"days": days, "hours": hours, "minutes": minutes}

    def status(self) -> TankStatus:
        percentage = self._state.percentage
        if percentage <= self._state.low_level_threshold:
            return TankStatus.LOW
        if percentage <= MEDIUM_LEVEL_PERCENT:
            return TankStatus.MEDIUM
        return TankStatus.GOOD

    def to_status_dict(self) -> Dict[str, Any]:
        state = self._state
        return {
            "capacity": state.capacity,
            "current_level": round(state.current_level, 2),
            "percentage": round(state.percentage, 1),
            "status": self.status().value,
            "irrigation_volume": state.irrigation_volume,
            "low_level_threshold": state.low_level_threshold,
            "auto_irrigation": state.auto_irrigation,
            "daily_consumption": self.daily_consumption(),
            "estimated_empty_at": to_iso(state.estimated_empty_at),
            "countdown": self.countdown(),
            "last_refill": to_iso(state.last_refill),
            "schedules": [entry.to_dict() for entry in state.schedules],
        }

    def _refresh_estimate(self) -> None:
        self._state.estimated_empty_at = self.estimate_empty_time()
