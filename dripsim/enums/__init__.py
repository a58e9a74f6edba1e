"""
Enums Module
============

Enumeration types shared across the DripSim code base.
"""

from dripsim.enums.events import (
    IrrigationOutcome,
    LogCategory,
    MoistureLogKind,
    SimulationEvent,
    TriggerSource,
)
from dripsim.enums.simulation import MoistureBand, TankStatus, WeatherCondition, WeatherSource

__all__ = [
    "IrrigationOutcome",
    "LogCategory",
    "MoistureBand",
    "MoistureLogKind",
    "SimulationEvent",
    "TankStatus",
    "TriggerSource",
    "WeatherCondition",
    "WeatherSource",
]
