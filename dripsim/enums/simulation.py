from __future__ import annotations

from enum import Enum


class WeatherCondition(str, Enum):
    """Weather conditions that drive the evaporation model."""

    CLEAR = "clear"
    OVERCAST = "overcast"
    RAIN = "rain"

    @classmethod
    def parse(cls, value: "WeatherCondition | str") -> "WeatherCondition":
        """Accept an enum member or its (case-insensitive) value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(value.strip().lower())
        raise ValueError(f"Unsupported weather condition: {value!r}")


class WeatherSource(str, Enum):
    MANUAL = "manual"
    API = "api"
    FALLBACK = "fallback"
    RESTORED = "restored"


class TankStatus(str, Enum):
    """Reservoir fill status, derived from percentage of capacity."""

    LOW = "low"
    MEDIUM = "medium"
    GOOD = "good"


class MoistureBand(str, Enum):
    """Classification of a soil moisture reading for a drip system."""

    VERY_DRY = "very_dry"
    DRY = "dry"
    OPTIMAL = "optimal"
    MOIST = "moist"
    SATURATED = "saturated"
