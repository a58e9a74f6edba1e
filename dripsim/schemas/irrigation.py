"""
Irrigation Schemas
==================

Request schemas for the irrigation simulator endpoints.
"""

import math
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dripsim.domain.schedules import parse_time_of_day
from dripsim.enums import LogCategory, WeatherCondition


class ScheduleEntrySchema(BaseModel):
    """One daily irrigation slot."""
    time: str = Field(..., description="Slot time, HH:MM (24-hour)")
    enabled: bool = Field(default=True, description="Whether the slot fires")

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        v = v.strip()
        if len(v) != 5:
            raise ValueError("time must be HH:MM")
        try:
            parse_time_of_day(v)
        except ValueError:
            raise ValueError("time must be HH:MM") from None
        return v


class MoistureThresholdsSchema(BaseModel):
    """Soil moisture thresholds in percent."""
    min: float = Field(..., ge=0, le=100, description="Auto-irrigation threshold")
    max: float = Field(..., ge=0, le=100)
    optimal: float = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self) -> "MoistureThresholdsSchema":
        if not self.min < self.max:
            raise ValueError("min must be below max")
        if not self.min <= self.optimal <= self.max:
            raise ValueError("optimal must lie between min and max")
        return self


class IrrigationConfigUpdate(BaseModel):
    """Partial configuration update; omitted fields are left unchanged."""
    model_config = ConfigDict(extra="forbid")

    schedules: Optional[List[ScheduleEntrySchema]] = None
    capacity: Optional[float] = Field(default=None, gt=0, description="Tank capacity (L)")
    irrigation_volume: Optional[float] = Field(default=None, gt=0, description="Water per cycle (L)")
    low_level_threshold: Optional[float] = Field(default=None, gt=0, le=100, description="Low level alert (%)")
    irrigation_duration: Optional[float] = Field(default=None, ge=5, description="Drip cycle length (min)")
    moisture_thresholds: Optional[MoistureThresholdsSchema] = None
    auto_irrigation: Optional[bool] = None

    @field_validator("capacity", "irrigation_volume", "low_level_threshold", "irrigation_duration")
    @classmethod
    def reject_non_finite(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not math.isfinite(v):
            raise ValueError("must be a finite number")
        return v

    @model_validator(mode="after")
    def check_volume_within_capacity(self) -> "IrrigationConfigUpdate":
        if self.capacity is not None and self.irrigation_volume is not None:
            if self.irrigation_volume > self.capacity:
                raise ValueError("irrigation_volume must not exceed capacity")
        return self

    def to_changes(self) -> dict:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_none=True)


class WeatherUpdateRequest(BaseModel):
    """Manual weather override."""
    condition: WeatherCondition = Field(..., description="clear, overcast or rain")

    @field_validator("condition", mode="before")
    @classmethod
    def normalize_condition(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class EventLogQuery(BaseModel):
    """Query parameters for the event log listing."""
    category: Optional[LogCategory] = None
    limit: int = Field(default=20, ge=1, le=100)
