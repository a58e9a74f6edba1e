"""Current weather condition and its evaporation profile."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from dripsim.enums import SimulationEvent, WeatherCondition, WeatherSource
from dripsim.utils.time import Clock, SystemClock, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaporationProfile:
    """Moisture lost per interval. ``interval_minutes == 0`` means none."""

    rate_percent: float
    interval_minutes: int

    @property
    def evaporates(self) -> bool:
        return self.interval_minutes > 0 and self.rate_percent > 0


EVAPORATION_PROFILES: Dict[WeatherCondition, EvaporationProfile] = {
    WeatherCondition.CLEAR: EvaporationProfile(rate_percent=1.0, interval_minutes=15),
    WeatherCondition.OVERCAST: EvaporationProfile(rate_percent=1.0, interval_minutes=30),
    WeatherCondition.RAIN: EvaporationProfile(rate_percent=0.0, interval_minutes=0),
}


def evaporation_profile(condition: WeatherCondition) -> EvaporationProfile:
    return EVAPORATION_PROFILES[condition]


class WeatherState:
    """Holds the current condition and pushes changes onto the event bus.

    No fetching or fallback logic lives here; see
    :mod:`dripsim.services.application.weather_service`.
    """

    def __init__(
        self,
        *,
        event_bus: Optional[Any] = None,
        clock: Optional[Clock] = None,
        condition: WeatherCondition = WeatherCondition.CLEAR,
    ) -> None:
        self._event_bus = event_bus
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._condition = condition
        self._source = WeatherSource.MANUAL
        self._updated_at: Optional[datetime] = None

    def current(self) -> WeatherCondition:
        return self._condition

    @property
    def source(self) -> WeatherSource:
        return self._source

    @property
    def updated_at(self) -> Optional[datetime]:
        return self._updated_at

    def set(self, condition: WeatherCondition | str, *, source: WeatherSource = WeatherSource.MANUAL) -> bool:
        """Update the condition. Returns True when it changed.

        Publishes ``weather.changed`` only on an actual change; the timestamp
        and source are refreshed either way so freshness checks stay honest.
        """
        condition = WeatherCondition.parse(condition)
        with self._lock:
            previous = self._condition
            self._condition = condition
            self._source = source
            self._updated_at = self._clock.now()
            changed = previous != condition

        if changed:
            logger.info("Weather changed %s -> %s (source=%s)", previous.value, condition.value, source.value)
            if self._event_bus is not None:
                self._event_bus.publish(
                    SimulationEvent.WEATHER_CHANGED,
                    {
                        "previous": previous.value,
                        "condition": condition.value,
                        "source": source.value,
                        "updated_at": to_iso(self._updated_at),
                    },
                )
        return changed

    def restore(self, condition: WeatherCondition, updated_at: Optional[datetime]) -> None:
        """Seed state from storage without publishing."""
        with self._lock:
            self._condition = condition
            self._source = WeatherSource.RESTORED
            self._updated_at = updated_at

    def to_dict(self) -> Dict[str, Any]:
        profile = evaporation_profile(self._condition)
        return {
            "condition": self._condition.value,
            "source": self._source.value,
            "updated_at": to_iso(self._updated_at),
            "evaporation_rate_percent": profile.rate_percent,
            "evaporation_interval_minutes": profile.interval_minutes,
        }
