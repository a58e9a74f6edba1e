"""
Irrigation schedule slots and the slot matcher.

A schedule is an ordered list of daily ``HH:MM`` slots. The same list is
mirrored into the tank and soil snapshots; the irrigation coordinator is the
only writer of those copies.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from dripsim.domain.exceptions import CorruptedStateError, ValidationError
from dripsim.utils.time import minute_of_day
from dripsim.utils.validation import strict_bool

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MINUTES = 2


def parse_time_of_day(value: str) -> datetime.time:
    """Parse ``HH:MM`` (24-hour) into a :class:`datetime.time`."""
    return datetime.datetime.strptime(value, "%H:%M").time()


@dataclass(frozen=True)
class ScheduleEntry:
    """A daily irrigation slot."""

    time_of_day: str  # HH:MM format (24-hour)
    enabled: bool = True

    def validate(self) -> bool:
        """
        Validate the slot configuration.

        Returns:
            bool: True if valid, False otherwise.
        """
        if not isinstance(self.time_of_day, str) or len(self.time_of_day) != 5:
            return False
        try:
            parse_time_of_day(self.time_of_day)
            return True
        except ValueError:
            return False

    @property
    def minute_of_day(self) -> int:
        parsed = parse_time_of_day(self.time_of_day)
        return parsed.hour * 60 + parsed.minute

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time_of_day, "enabled": self.enabled}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ScheduleEntry":
        """Build an entry from ``{"time": "HH:MM", "enabled": bool}``.

        Raises:
            ValidationError: if the time is not ``HH:MM`` or ``enabled`` is not a boolean.
        """
        raw_time = data.get("time", data.get("time_of_day"))
        try:
            enabled = strict_bool(data.get("enabled", True), "enabled")
        except CorruptedStateError as exc:
            raise ValidationError(f"Invalid schedule flag {exc.value!r}; expected true or false") from None
        entry = ScheduleEntry(time_of_day=str(raw_time or ""), enabled=enabled)
        if not entry.validate():
            raise ValidationError(f"Invalid schedule time {raw_time!r}; expected HH:MM")
        return entry


DEFAULT_SCHEDULES: tuple[ScheduleEntry, ...] = (
    ScheduleEntry("07:00", True),
    ScheduleEntry("16:00", True),
)


def default_schedules() -> List[ScheduleEntry]:
    return list(DEFAULT_SCHEDULES)


def normalize_schedules(entries: Iterable[ScheduleEntry | Dict[str, Any]]) -> List[ScheduleEntry]:
    """
    Sort entries by time of day and collapse duplicates.

    A collapsed slot is enabled if any of its duplicates was enabled.

    Raises:
        ValidationError: if any entry has a malformed time.
    """
    by_time: Dict[str, bool] = {}
    for raw in entries:
        entry = raw if isinstance(raw, ScheduleEntry) else ScheduleEntry.from_dict(raw)
        if not entry.validate():
            raise ValidationError(f"Invalid schedule time {entry.time_of_day!r}; expected HH:MM")
        by_time[entry.time_of_day] = by_time.get(entry.time_of_day, False) or entry.enabled
    return [ScheduleEntry(time_of_day=t, enabled=e) for t, e in sorted(by_time.items())]


def schedules_field(value: Any, field: str) -> List[ScheduleEntry]:
    """Persisted-state validator for a schedule list."""
    if not isinstance(value, list):
        raise CorruptedStateError(field, value, "not a list")
    if not all(isinstance(item, dict) for item in value):
        raise CorruptedStateError(field, value, "schedule entry is not an object")
    try:
        return normalize_schedules(value)
    except ValidationError as exc:
        raise CorruptedStateError(field, value, str(exc)) from None


@dataclass(frozen=True)
class NextSlot:
    """Next upcoming slot, for display only."""

    time_of_day: str
    eta: datetime.datetime
    minutes_until: int
    is_tomorrow: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time_of_day,
            "eta": self.eta.isoformat(),
            "minutes_until": self.minutes_until,
            "hours": self.minutes_until // 60,
            "minutes": self.minutes_until % 60,
            "is_tomorrow": self.is_tomorrow,
        }


class IrrigationScheduler:
    """Matches wall-clock ticks against enabled slots, once per slot window.

    Each slot is ``Idle`` until its minute matches, becomes ``Fired`` when
    :meth:`check_tick` returns it, and only returns to ``Idle`` once more than
    ``debounce_minutes`` have elapsed since that firing.
    """

    def __init__(
        self,
        entries: Iterable[ScheduleEntry] = DEFAULT_SCHEDULES,
        *,
        debounce_minutes: float = DEFAULT_DEBOUNCE_MINUTES,
    ) -> None:
        self._entries: List[ScheduleEntry] = normalize_schedules(entries)
        self._debounce = datetime.timedelta(minutes=debounce_minutes)
        self._last_fired: Dict[str, datetime.datetime] = {}

    @property
    def entries(self) -> List[ScheduleEntry]:
        return list(self._entries)

    def set_entries(self, entries: Iterable[ScheduleEntry]) -> bool:
        """Replace the slot list. Returns True when it changed."""
        normalized = normalize_schedules(entries)
        if normalized == self._entries:
            return False
        self._entries = normalized
        live = {entry.time_of_day for entry in normalized}
        self._last_fired = {k: v for k, v in self._last_fired.items() if k in live}
        return True

    def check_tick(self, now: datetime.datetime) -> Optional[ScheduleEntry]:
        """Return the enabled slot matching ``now`` unless it fired recently."""
        current = minute_of_day(now)
        for entry in self._entries:
            if not entry.enabled or entry.minute_of_day != current:
                continue
            last = self._last_fired.get(entry.time_of_day)
            if last is not None and now - last <= self._debounce:
                logger.debug("Slot %s debounced (fired at %s)", entry.time_of_day, last)
                return None
            self._last_fired[entry.time_of_day] = now
            return entry
        return None

    def next_slot(self, now: datetime.datetime) -> Optional[NextSlot]:
        """Earliest enabled slot strictly after ``now``, wrapping to tomorrow."""
        enabled = [entry for entry in self._entries if entry.enabled]
        if not enabled:
            return None

        current = minute_of_day(now)
        today = now.replace(second=0, microsecond=0)
        for entry in enabled:
            if entry.minute_of_day > current:
                eta = today.replace(hour=0, minute=0) + datetime.timedelta(minutes=entry.minute_of_day)
                return NextSlot(entry.time_of_day, eta, entry.minute_of_day - current, False)

        first = enabled[0]
        eta = today.replace(hour=0, minute=0) + datetime.timedelta(days=1, minutes=first.minute_of_day)
        return NextSlot(first.time_of_day, eta, 24 * 60 - current + first.minute_of_day, True)

    def status(self, now: datetime.datetime) -> Dict[str, Any]:
        upcoming = self.next_slot(now)
        return {
            "entries": [entry.to_dict() for entry in self._entries],
            "last_fired": {k: v.isoformat() for k, v in self._last_fired.items()},
            "next": upcoming.to_dict() if upcoming else None,
        }
