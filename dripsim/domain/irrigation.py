"""Irrigation events and request results."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from dripsim.enums import IrrigationOutcome, TriggerSource


@dataclass(frozen=True)
class IrrigationEvent:
    """One started irrigation, appended to the capped event log."""

    timestamp: str
    trigger_source: TriggerSource
    volume_consumed: float
    moisture_delta: float
    moisture_before: float
    remaining_level: float
    slot: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "trigger_source": self.trigger_source.value,
            "volume_consumed": self.volume_consumed,
            "moisture_delta": self.moisture_delta,
            "moisture_before": self.moisture_before,
            "remaining_level": self.remaining_level,
            "slot": self.slot,
        }


_MESSAGES = {
    IrrigationOutcome.STARTED: "Drip irrigation started",
    IrrigationOutcome.ALREADY_IRRIGATING: "Irrigation already in progress",
    IrrigationOutcome.INSUFFICIENT_WATER: "Not enough water in the tank",
    IrrigationOutcome.AUTO_IRRIGATION_DISABLED: "Automatic irrigation is disabled",
    IrrigationOutcome.SOIL_ALREADY_WET: "Soil is already moist enough",
}


@dataclass(frozen=True)
class IrrigationResult:
    outcome: IrrigationOutcome
    source: TriggerSource
    event: Optional[IrrigationEvent] = None

    @property
    def started(self) -> bool:
        return self.outcome == IrrigationOutcome.STARTED

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "started": self.started,
            "source": self.source.value,
            "message": self.message,
            "event": self.event.to_dict() if self.event else None,
        }
