"""Tests for the reservoir model."""

from datetime import timedelta

import pytest

from dripsim.domain.schedules import ScheduleEntry
from dripsim.domain.tank import TankEngine, TankState
from dripsim.enums import TankStatus


def test_consume_draws_volume(tank_engine):
    assert tank_engine.consume(7) is True
    assert tank_engine.state.current_level == pytest.approx(65.0)


def test_consume_without_enough_water_leaves_level(tank_engine):
    tank_engine.state.current_level = 5.0
    assert tank_engine.consume(7) is False
    assert tank_engine.state.current_level == 5.0


def test_consume_rejects_non_positive_volume(tank_engine):
    assert tank_engine.consume(0) is False
    assert tank_engine.state.current_level == 72.0


def test_refill_and_empty(tank_engine, clock):
    tank_engine.empty()
    assert tank_engine.state.current_level == 0.0

    tank_engine.refill()
    assert tank_engine.state.current_level == tank_engine.state.capacity
    assert tank_engine.state.last_refill == clock.now()


@pytest.mark.parametrize(
    "level, status",
    [
        (0.0, TankStatus.LOW),
        (18.0, TankStatus.LOW),
        (19.0, TankStatus.MEDIUM),
        (45.0, TankStatus.MEDIUM),
        (46.0, TankStatus.GOOD),
        (90.0, TankStatus.GOOD),
    ],
)
def test_status_thresholds(tank_engine, level, status):
    tank_engine.state.current_level = level
    assert tank_engine.status() == status


def test_estimated_empty_time_uses_enabled_slots(tank_engine, clock):
    assert tank_engine.daily_consumption() == pytest.approx(14.0)
    assert tank_engine.estimate_empty_time() == clock.now() + timedelta(days=72 / 14)

    tank_engine.set_schedules([ScheduleEntry("07:00", True), ScheduleEntry("16:00", False)])
    assert tank_engine.estimate_empty_time() == clock.now() + timedelta(days=72 / 7)


def test_no_estimate_without_auto_or_enabled_slots(tank_engine):
    tank_engine.update_settings(auto_irrigation=False)
    assert tank_engine.estimate_empty_time() is None
    assert tank_engine.state.estimated_empty_at is None

    tank_engine.update_settings(auto_irrigation=True)
    tank_engine.set_schedules([ScheduleEntry("07:00", False)])
    assert tank_engine.estimate_empty_time() is None
    assert tank_engine.countdown() is None


def test_estimate_is_refreshed_on_mutation(tank_engine, clock):
    tank_engine.consume(7)
    assert tank_engine.state.estimated_empty_at == clock.now() + timedelta(days=65 / 14)


def test_shrinking_capacity_below_level_resets_to_eighty_percent(tank_engine):
    tank_engine.update_settings(capacity=50)
    assert tank_engine.state.capacity == 50.0
    assert tank_engine.state.current_level == pytest.approx(40.0)


def test_countdown_breakdown(tank_engine):
    tank_engine.state.current_level = 14.0
    assert tank_engine.countdown() == {"days": 1, "hours": 0, "minutes": 0}


def test_status_dict_contents(tank_engine):
    status = tank_engine.to_status_dict()
    assert status["current_level"] == 72.0
    assert status["percentage"] == 80.0
    assert status["status"] == "good"
    assert status["daily_consumption"] == 14.0
    assert status["schedules"] == [
        {"time": "07:00", "enabled": True},
        {"time": "16:00", "enabled": True},
    ]


class TestTankSnapshot:
    def test_level_above_capacity_is_recovered(self):
        state, recovered = TankState.from_snapshot({"capacity": 90, "current_level": 120})
        assert state.current_level == 72.0
        assert [err.field for err in recovered] == ["current_level"]

    def test_non_positive_capacity_is_recovered(self):
        state, recovered = TankState.from_snapshot({"capacity": 0, "current_level": 10})
        assert state.capacity == 90.0
        assert state.current_level == 10.0
        assert [err.field for err in recovered] == ["capacity"]

    def test_volume_above_capacity_is_recovered(self):
        state, recovered = TankState.from_snapshot({"capacity": 5, "current_level": 4, "irrigation_volume": 7})
        assert state.irrigation_volume == 5.0
        assert [err.field for err in recovered] == ["irrigation_volume"]

    def test_round_trip(self, clock):
        engine = TankEngine(clock=clock)
        engine.refill()
        state, recovered = TankState.from_snapshot(engine.state.to_snapshot())
        assert recovered == []
        assert state == engine.state
