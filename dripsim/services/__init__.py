"""
Service Organization
====================

**application/**
  Long-lived services owned by the ServiceContainer, one instance per
  application: IrrigationCoordinator, SimulationDriver, WeatherService.

**container.py**
  Builds and wires everything, restores persisted state, starts the scheduler.
"""
