"""Periodic driver that turns monotonic time into simulation ticks."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from dripsim.enums import SimulationEvent
from dripsim.utils.time import Clock, SystemClock, to_iso

if TYPE_CHECKING:
    from dripsim.services.application.irrigation_coordinator import IrrigationCoordinator, TickReport
    from dripsim.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_TICK_MINUTES = 60.0


class SimulationDriver:
    """
    The only caller of :meth:`IrrigationCoordinator.tick`.

    Elapsed time is measured on the monotonic clock and clamped to
    ``max_tick_minutes`` so a suspended host does not dry the soil out in one
    step on resume.
    """

    def __init__(
        self,
        coordinator: "IrrigationCoordinator",
        *,
        event_bus: "EventBus",
        clock: Optional[Clock] = None,
        max_tick_minutes: float = DEFAULT_MAX_TICK_MINUTES,
    ) -> None:
        self._coordinator = coordinator
        self._event_bus = event_bus
        self._clock = clock or SystemClock()
        self.max_tick_minutes = float(max_tick_minutes)
        self._lock = threading.Lock()
        self._last_monotonic: Optional[float] = None
        self._tick_count = 0
        self._clamped_count = 0
        self._last_tick_at: Optional[datetime] = None
        self._last_report: Optional["TickReport"] = None

    def clamp_elapsed(self, elapsed_minutes: float) -> float:
        if elapsed_minutes <= 0:
            return 0.0
        if elapsed_minutes > self.max_tick_minutes:
            logger.warning(
                "Elapsed %.1f min exceeds %.0f min; clamping (host suspended?)",
                elapsed_minutes,
                self.max_tick_minutes,
            )
            self._clamped_count += 1
            return self.max_tick_minutes
        return elapsed_minutes

    def start(self, now: Optional[datetime] = None) -> float:
        """Catch up on wall-clock time that passed while the process was down.

        Returns:
            Simulated minutes applied (after clamping)
        """
        gap = self.clamp_elapsed(self._coordinator.minutes_since_last_update(now))
        if gap > 0:
            logger.info("Catching up %.1f simulated minute(s) since last run", gap)
            self._coordinator.advance(gap)
        with self._lock:
            self._last_monotonic = self._clock.monotonic()
        return gap

    def tick(self, now: Optional[datetime] = None) -> "TickReport":
        """Advance by the monotonic time since the previous tick."""
        with self._lock:
            current = self._clock.monotonic()
            previous = self._last_monotonic if self._last_monotonic is not None else current
            self._last_monotonic = current
            elapsed = self.clamp_elapsed((current - previous) / 60.0)

        report = self._coordinator.tick(elapsed, now)
        self._tick_count += 1
        self._last_tick_at = now or self._clock.now()
        self._last_report = report
        self._event_bus.publish(SimulationEvent.TICK_COMPLETED, report.to_dict())
        return report

    def refresh_display(self) -> Dict[str, Any]:
        """Publish a read-only status snapshot; never mutates state."""
        snapshot = self._coordinator.get_status()
        self._event_bus.publish(SimulationEvent.DISPLAY_REFRESHED, snapshot)
        return snapshot

    def status(self) -> Dict[str, Any]:
        return {
            "ticks": self._tick_count,
            "clamped_ticks": self._clamped_count,
            "max_tick_minutes": self.max_tick_minutes,
            "last_tick_at": to_iso(self._last_tick_at),
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }
