"""
Weather Service
===============

Feeds the simulator's weather condition from an external provider, with a
climate-based fallback when the provider is unavailable.

Features:
- OpenWeatherMap current-conditions lookup (icon code -> condition)
- Consecutive-failure tracking; the fallback takes over after N failures
- Deterministic seasonal fallback (rainy season Nov-Apr, afternoon storms)
- Staleness reporting for the last successful reading
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

import requests

from dripsim.domain.exceptions import ExternalServiceError
from dripsim.enums import WeatherCondition, WeatherSource
from dripsim.utils.time import Clock, SystemClock, to_iso

if TYPE_CHECKING:
    from dripsim.services.application.irrigation_coordinator import IrrigationCoordinator

logger = logging.getLogger(__name__)

OPENWEATHERMAP_URL = "https://api.openweathermap.org/data/2.5/weather"

# OpenWeatherMap icon prefix ("10d" -> "10"); day and night map alike.
ICON_CONDITIONS: Dict[str, WeatherCondition] = {
    "01": WeatherCondition.CLEAR,
    "02": WeatherCondition.CLEAR,
    "03": WeatherCondition.OVERCAST,
    "04": WeatherCondition.OVERCAST,
    "50": WeatherCondition.OVERCAST,
    "09": WeatherCondition.RAIN,
    "10": WeatherCondition.RAIN,
    "11": WeatherCondition.RAIN,
    "13": WeatherCondition.RAIN,
}


class WeatherFeed(Protocol):
    """Source of the current condition. Raises ExternalServiceError on failure."""

    name: str

    def fetch_condition(self) -> WeatherCondition: ...


def condition_from_icon(icon: str) -> WeatherCondition:
    try:
        return ICON_CONDITIONS[str(icon)[:2]]
    except KeyError:
        raise ExternalServiceError(f"Unknown weather icon {icon!r}", detail={"icon": icon}) from None


class OpenWeatherMapFeed:
    """Current weather from the OpenWeatherMap REST API."""

    name = "openweathermap"

    def __init__(
        self,
        api_key: str,
        *,
        latitude: float,
        longitude: float,
        url: str = OPENWEATHERMAP_URL,
        timeout: float = 10,
    ) -> None:
        self.api_key = api_key
        self.latitude = latitude
        self.longitude = longitude
        self.url = url
        self.timeout = timeout

    def fetch_condition(self) -> WeatherCondition:
        params = {
            "lat": self.latitude,
            "lon": self.longitude,
            "appid": self.api_key,
            "units": "metric",
        }
        try:
            response = requests.get(self.url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise ExternalServiceError(f"Weather request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError("Weather response is not JSON") from exc

        try:
            icon = data["weather"][0]["icon"]
        except (KeyError, IndexError, TypeError):
            raise ExternalServiceError("Weather response has no icon", detail={"response": data}) from None
        return condition_from_icon(icon)


class IntelligentFallback:
    """
    Climate-based guess for South Sulawesi.

    Rainy season (Nov-Apr) afternoons (12:00-17:59) rain 40% of the time and
    are overcast otherwise; everything else is clear. The draw is seeded by
    date and hour, so repeated calls within the same hour agree.
    """

    name = "fallback"
    RAIN_CHANCE = 0.4

    def __init__(self, seed: str = "") -> None:
        self.seed = seed

    @staticmethod
    def is_rainy_season(moment: datetime) -> bool:
        return moment.month >= 11 or moment.month <= 4

    @staticmethod
    def is_afternoon(moment: datetime) -> bool:
        return 12 <= moment.hour <= 17

    def condition_at(self, moment: datetime) -> WeatherCondition:
        if not (self.is_rainy_season(moment) and self.is_afternoon(moment)):
            return WeatherCondition.CLEAR
        rng = random.Random(f"{self.seed}{moment:%Y-%m-%d}T{moment.hour:02d}")
        if rng.random() < self.RAIN_CHANCE:
            return WeatherCondition.RAIN
        return WeatherCondition.OVERCAST


class WeatherService:
    """Polls the feed and pushes the result through the coordinator."""

    def __init__(
        self,
        coordinator: "IrrigationCoordinator",
        *,
        feed: Optional[WeatherFeed] = None,
        fallback: Optional[IntelligentFallback] = None,
        clock: Optional[Clock] = None,
        failure_threshold: int = 3,
        stale_minutes: int = 30,
    ) -> None:
        self._coordinator = coordinator
        self._feed = feed
        self._fallback = fallback or IntelligentFallback()
        self._clock = clock or SystemClock()
        self.failure_threshold = max(1, int(failure_threshold))
        self.stale_after = timedelta(minutes=stale_minutes)
        self._consecutive_failures = 0
        self._last_error: Optional[str] = None
        self._last_success: Optional[datetime] = None
        self._last_poll: Optional[datetime] = None
        self._using_fallback = feed is None

    @property
    def using_fallback(self) -> bool:
        return self._using_fallback

    def poll(self, now: Optional[datetime] = None) -> WeatherCondition:
        """
        Refresh the condition once.

        A feed failure below the threshold keeps the current condition; at
        the threshold the fallback takes over until the feed recovers.
        """
        now = now or self._clock.now()
        self._last_poll = now

        if self._feed is not None:
            try:
                condition = self._feed.fetch_condition()
            except ExternalServiceError as exc:
                self._consecutive_failures += 1
                self._last_error = str(exc)
                logger.warning(
                    "Weather feed %s failed (%d/%d): %s",
                    self._feed.name,
                    self._consecutive_failures,
                    self.failure_threshold,
                    exc,
                )
                if self._consecutive_failures < self.failure_threshold:
                    return self._coordinator.weather.current()
            else:
                if self._using_fallback:
                    logger.info("Weather feed %s recovered", self._feed.name)
                self._consecutive_failures = 0
                self._last_error = None
                self._last_success = now
                self._using_fallback = False
                self._coordinator.set_weather(condition, source=WeatherSource.API)
                return condition

        if not self._using_fallback:
            logger.warning("Switching to fallback weather")
        self._using_fallback = True
        condition = self._fallback.condition_at(now)
        self._coordinator.set_weather(condition, source=WeatherSource.FALLBACK)
        return condition

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        if self._last_success is None:
            return True
        now = now or self._clock.now()
        return now - self._last_success > self.stale_after

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self._clock.now()
        return {
            "feed": self._feed.name if self._feed is not None else None,
            "using_fallback": self._using_fallback,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "last_error": self._last_error,
            "last_success": to_iso(self._last_success),
            "last_poll": to_iso(self._last_poll),
            "stale": self.is_stale(now),
            "condition": self._coordinator.weather.current().value,
        }
