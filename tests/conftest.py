"""
Shared test fixtures for the DripSim test suite.

Provides:
- A controllable FakeClock (wall + monotonic time)
- In-memory SQLite database with all tables created
- Repository instances wired to the test database
- An inline EventBus plus a recorder for published events
- Engines and a fully wired IrrigationCoordinator

Usage:
    def test_example(coordinator, tank_engine):
        tank_engine.state.current_level = 5.0
        assert not coordinator.request_irrigation("manual").started
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from dripsim.domain.schedules import IrrigationScheduler
from dripsim.domain.soil import SoilMoistureEngine
from dripsim.domain.tank import TankEngine
from dripsim.domain.weather import WeatherState
from dripsim.enums import SimulationEvent
from dripsim.services.application.irrigation_coordinator import IrrigationCoordinator
from dripsim.utils.event_bus import EventBus
from infrastructure.database.repositories.event_log import EventLogRepository
from infrastructure.database.repositories.state import StateRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("dripsim").setLevel(logging.WARNING)


class FakeClock:
    """Clock whose wall and monotonic readings only move when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 3, 10, 6, 0, 0)
        self._monotonic = 1_000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, *, minutes: float = 0.0, seconds: float = 0.0) -> None:
        delta = timedelta(minutes=minutes, seconds=seconds)
        self._now += delta
        self._monotonic += delta.total_seconds()

    def set(self, moment: datetime) -> None:
        """Jump the wall clock only (monotonic time is unaffected)."""
        self._now = moment


class EventRecorder:
    """Collects every payload published on the bus, keyed by topic value."""

    def __init__(self, bus: EventBus) -> None:
        self.events: dict[str, list] = defaultdict(list)
        for topic in SimulationEvent:
            bus.subscribe(topic, self._make_handler(topic.value))

    def _make_handler(self, name: str):
        def _handler(payload):
            self.events[name].append(payload)

        return _handler

    def of(self, topic: SimulationEvent) -> list:
        return self.events[topic.value]


# ========================== Clock & Bus Fixtures ===========================


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def event_bus():
    """EventBus delivering inline in the publisher's thread."""
    bus = EventBus(worker_count=0)
    yield bus
    bus.shutdown()


@pytest.fixture()
def recorder(event_bus):
    return EventRecorder(event_bus)


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler():
    """In-memory SQLite database with all tables created.

    Each test gets a fresh database.
    """
    handler = SQLiteDatabaseHandler(":memory:")
    handler.create_tables()
    yield handler
    handler.close_db()


@pytest.fixture()
def state_repo(db_handler):
    return StateRepository(db_handler)


@pytest.fixture()
def event_log_repo(db_handler):
    return EventLogRepository(db_handler, max_entries=100)


# ========================== Engine Fixtures ================================


@pytest.fixture()
def soil_engine(clock):
    return SoilMoistureEngine(clock=clock, rng=random.Random(7))


@pytest.fixture()
def tank_engine(clock):
    return TankEngine(clock=clock)


@pytest.fixture()
def weather_state(event_bus, clock):
    return WeatherState(event_bus=event_bus, clock=clock)


@pytest.fixture()
def irrigation_scheduler():
    return IrrigationScheduler()


@pytest.fixture()
def stop_timer():
    """Stands in for the scheduler's one-shot auto-stop job."""
    return Mock()


@pytest.fixture()
def coordinator(
    soil_engine,
    tank_engine,
    weather_state,
    irrigation_scheduler,
    state_repo,
    event_log_repo,
    event_bus,
    clock,
    stop_timer,
):
    """Fully wired coordinator over in-memory storage and an inline bus."""
    coord = IrrigationCoordinator(
        soil=soil_engine,
        tank=tank_engine,
        weather=weather_state,
        scheduler=irrigation_scheduler,
        state_repo=state_repo,
        event_log=event_log_repo,
        event_bus=event_bus,
        clock=clock,
        stop_timer=stop_timer,
    )
    yield coord
    coord.close()
