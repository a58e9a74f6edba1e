"""
IrrigationCoordinator tests.

Covers request gating, schedule reconciliation, weather handling, config
updates and persistence/restore, all over in-memory SQLite and an inline bus.
"""

from datetime import datetime, timedelta

import pytest

from dripsim.domain.exceptions import ValidationError
from dripsim.domain.schedules import ScheduleEntry
from dripsim.enums import (
    IrrigationOutcome,
    LogCategory,
    SimulationEvent,
    TriggerSource,
    WeatherCondition,
    WeatherSource,
)


def _irrigation_log(coordinator):
    return coordinator.recent_events(LogCategory.IRRIGATION)


def _moisture_log(coordinator):
    return coordinator.recent_events(LogCategory.MOISTURE)


# ==================== Request gating ====================


class TestRequestIrrigation:
    def test_insufficient_water_changes_nothing(self, coordinator, tank_engine, soil_engine, recorder):
        tank_engine.state.current_level = 5.0
        before = soil_engine.state.moisture

        result = coordinator.request_irrigation(TriggerSource.MANUAL)

        assert result.outcome == IrrigationOutcome.INSUFFICIENT_WATER
        assert result.started is False
        assert tank_engine.state.current_level == 5.0
        assert soil_engine.state.is_irrigating is False
        assert soil_engine.state.moisture == before
        assert _irrigation_log(coordinator) == []
        assert recorder.of(SimulationEvent.IRRIGATION_REFUSED) == [
            {"outcome": "insufficient_water", "source": "manual", "slot": None}
        ]

    def test_manual_start_consumes_and_logs(self, coordinator, tank_engine, soil_engine, stop_timer, recorder):
        soil_engine.state.moisture = 20.0

        result = coordinator.trigger_irrigation()

        assert result.outcome == IrrigationOutcome.STARTED
        assert tank_engine.state.current_level == pytest.approx(65.0)
        assert soil_engine.state.is_irrigating is True
        stop_timer.assert_called_once_with(15.0)

        event = result.event.to_dict()
        assert event["trigger_source"] == "manual"
        assert event["volume_consumed"] == 7.0
        assert event["moisture_before"] == 20.0
        assert event["moisture_delta"] == 12.0
        assert event["remaining_level"] == 65.0

        logged = _irrigation_log(coordinator)
        assert len(logged) == 1
        assert logged[0]["volume_consumed"] == 7.0
        assert recorder.of(SimulationEvent.IRRIGATION_STARTED) == [event]

    def test_second_request_while_irrigating_is_refused(self, coordinator, tank_engine):
        coordinator.trigger_irrigation()
        result = coordinator.trigger_irrigation()

        assert result.outcome == IrrigationOutcome.ALREADY_IRRIGATING
        assert tank_engine.state.current_level == pytest.approx(65.0)
        assert len(_irrigation_log(coordinator)) == 1

    def test_scheduled_respects_auto_flag_but_manual_does_not(self, coordinator, soil_engine):
        soil_engine.state.moisture = 20.0
        coordinator.update_config({"auto_irrigation": False})

        scheduled = coordinator.request_irrigation(TriggerSource.SCHEDULED, slot="07:00")
        assert scheduled.outcome == IrrigationOutcome.AUTO_IRRIGATION_DISABLED

        manual = coordinator.request_irrigation(TriggerSource.MANUAL)
        assert manual.started is True

    def test_scheduled_skips_wet_soil_but_manual_irrigates(self, coordinator, soil_engine, tank_engine):
        soil_engine.state.moisture = 35.0

        scheduled = coordinator.request_irrigation(TriggerSource.SCHEDULED, slot="07:00")
        assert scheduled.outcome == IrrigationOutcome.SOIL_ALREADY_WET
        assert tank_engine.state.current_level == 72.0

        assert coordinator.request_irrigation("manual").started is True

    def test_auto_disabled_is_checked_before_water(self, coordinator, tank_engine):
        tank_engine.state.current_level = 0.0
        coordinator.update_config({"auto_irrigation": False})
        result = coordinator.request_irrigation(TriggerSource.SCHEDULED)
        assert result.outcome == IrrigationOutcome.AUTO_IRRIGATION_DISABLED

    def test_already_irrigating_is_checked_before_water(self, coordinator, tank_engine):
        coordinator.trigger_irrigation()
        tank_engine.state.current_level = 0.0
        assert coordinator.trigger_irrigation().outcome == IrrigationOutcome.ALREADY_IRRIGATING

    def test_stop_publishes_completion(self, coordinator, recorder):
        coordinator.trigger_irrigation()

        assert coordinator.stop_irrigation() is True
        assert coordinator.stop_irrigation() is False
        assert len(recorder.of(SimulationEvent.IRRIGATION_COMPLETED)) == 1
        assert _moisture_log(coordinator)[0]["kind"] == "irrigation_complete"


# ==================== Schedules and ticks ====================


class TestSchedules:
    def test_reconcile_identical_list_is_a_no_op(self, coordinator, recorder, state_repo):
        assert coordinator.reconcile_schedules([ScheduleEntry("07:00"), ScheduleEntry("16:00")]) is False
        assert recorder.of(SimulationEvent.SCHEDULES_RECONCILED) == []
        assert state_repo.load("tank") is None

    def test_reconcile_updates_all_copies(self, coordinator, tank_engine, soil_engine, irrigation_scheduler, state_repo):
        entries = [{"time": "18:00", "enabled": True}, {"time": "06:30", "enabled": False}]

        assert coordinator.reconcile_schedules(entries) is True

        expected = [ScheduleEntry("06:30", False), ScheduleEntry("18:00", True)]
        assert tank_engine.state.schedules == expected
        assert soil_engine.state.schedules == expected
        assert irrigation_scheduler.entries == expected
        assert state_repo.load("tank")["schedules"] == [
            {"time": "06:30", "enabled": False},
            {"time": "18:00", "enabled": True},
        ]

    def test_tick_fires_due_slot_once(self, coordinator, clock, soil_engine, recorder):
        soil_engine.state.moisture = 30.0
        clock.set(datetime(2026, 3, 10, 7, 0, 0))

        report = coordinator.tick(1.0)

        assert report.fired_slot == "07:00"
        assert report.result.started is True
        assert report.result.event.slot == "07:00"
        assert report.result.event.trigger_source == TriggerSource.SCHEDULED
        assert recorder.of(SimulationEvent.SCHEDULE_FIRED)[0]["slot"] == "07:00"

        clock.set(datetime(2026, 3, 10, 7, 0, 30))
        assert coordinator.tick(0.5).fired_slot is None

    def test_tick_without_due_slot_only_advances(self, coordinator, soil_engine):
        report = coordinator.tick(15.0)
        assert report.fired_slot is None
        assert report.moisture_changed is True
        assert soil_engine.state.moisture == pytest.approx(44.0)

    def test_tick_reconciles_from_tank_schedules(self, coordinator, tank_engine, irrigation_scheduler):
        tank_engine.state.schedules = [ScheduleEntry("05:45")]
        report = coordinator.tick(1.0)
        assert report.schedules_reconciled is True
        assert irrigation_scheduler.entries == [ScheduleEntry("05:45")]

    def test_minutes_since_last_update(self, coordinator, clock):
        assert coordinator.minutes_since_last_update() == 0.0
        coordinator.advance(1.0)
        clock.advance(minutes=12)
        assert coordinator.minutes_since_last_update() == pytest.approx(12.0)


# ==================== Weather ====================


class TestWeather:
    def test_manual_rain_saturates_once(self, coordinator, soil_engine, recorder):
        data = coordinator.set_weather("Rain")

        assert data["condition"] == "rain"
        assert 75.0 <= soil_engine.state.moisture <= 90.0
        assert soil_engine.state.weather == WeatherCondition.RAIN

        soil_engine.state.moisture = 50.0
        coordinator.set_weather("rain")
        assert soil_engine.state.moisture == 50.0
        assert len(recorder.of(SimulationEvent.RAIN_APPLIED)) == 1
        assert _moisture_log(coordinator)[0]["kind"] == "rain_event"

    def test_weather_change_from_bus_is_applied(self, coordinator, weather_state, soil_engine):
        weather_state.set("rain", source=WeatherSource.API)
        assert soil_engine.state.weather == WeatherCondition.RAIN
        assert soil_engine.state.moisture >= 75.0

    def test_stale_bus_payload_is_ignored(self, coordinator, soil_engine, event_bus):
        event_bus.publish(SimulationEvent.WEATHER_CHANGED, {"condition": "rain"})
        assert soil_engine.state.weather == WeatherCondition.CLEAR
        assert soil_engine.state.moisture == 45.0

    def test_overcast_slows_evaporation(self, coordinator, soil_engine):
        coordinator.set_weather("overcast")
        coordinator.advance(30.0)
        assert soil_engine.state.moisture == pytest.approx(44.0)

    def test_unknown_condition_is_rejected(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.set_weather("hail")


# ==================== Manual commands and config ====================


class TestManualCommands:
    def test_refill_and_empty_tank(self, coordinator, recorder):
        assert coordinator.empty_tank()["current_level"] == 0.0
        assert coordinator.refill_tank()["current_level"] == 90.0
        assert len(recorder.of(SimulationEvent.TANK_EMPTIED)) == 1
        assert len(recorder.of(SimulationEvent.TANK_REFILLED)) == 1

    def test_empty_soil(self, coordinator, recorder):
        status = coordinator.empty_soil()
        assert status["moisture"] == 0.0
        assert status["band"] == "very_dry"
        assert recorder.of(SimulationEvent.SOIL_EMPTIED) == [{"moisture": 0.0}]


class TestUpdateConfig:
    @pytest.mark.parametrize(
        "changes",
        [
            {"bogus": 1},
            {"capacity": 5},
            {"capacity": -1},
            {"irrigation_volume": float("nan")},
            {"low_level_threshold": 0},
            {"irrigation_duration": 2},
            {"auto_irrigation": "yes"},
            {"capacity": 100, "moisture_thresholds": {"min": 80, "max": 40, "optimal": 60}},
            {"capacity": 100, "schedules": [{"time": "7am"}]},
        ],
    )
    def test_invalid_update_mutates_nothing(self, coordinator, tank_engine, soil_engine, recorder, changes):
        tank_before = tank_engine.state.to_snapshot()
        soil_before = soil_engine.state.to_snapshot()

        with pytest.raises(ValidationError):
            coordinator.update_config(changes)

        assert tank_engine.state.to_snapshot() == tank_before
        assert soil_engine.state.to_snapshot() == soil_before
        assert recorder.of(SimulationEvent.CONFIG_UPDATED) == []

    def test_valid_update_applies_everywhere(self, coordinator, tank_engine, soil_engine, irrigation_scheduler, recorder):
        status = coordinator.update_config(
            {
                "capacity": 100,
                "irrigation_volume": 10,
                "irrigation_duration": 20,
                "schedules": [{"time": "06:30", "enabled": True}],
                "moisture_thresholds": {"min": 30, "max": 70, "optimal": 50},
            }
        )

        assert tank_engine.state.capacity == 100.0
        assert tank_engine.state.irrigation_volume == 10.0
        assert soil_engine.state.irrigation_duration == 20.0
        assert soil_engine.state.moisture_thresholds.minimum == 30.0
        assert irrigation_scheduler.entries == [ScheduleEntry("06:30")]
        assert soil_engine.state.schedules == [ScheduleEntry("06:30")]
        assert status["tank"]["capacity"] == 100.0
        assert status["next_schedule"] == "06:30"
        assert recorder.of(SimulationEvent.CONFIG_UPDATED)[0]["keys"] == [
            "capacity",
            "irrigation_duration",
            "irrigation_volume",
            "moisture_thresholds",
            "schedules",
        ]

    def test_auto_flag_is_mirrored_to_soil(self, coordinator, tank_engine, soil_engine):
        coordinator.update_config({"auto_irrigation": False})
        assert tank_engine.state.auto_irrigation is False
        assert soil_engine.state.auto_irrigation is False


# ==================== Queries ====================


def test_status_snapshot(coordinator):
    status = coordinator.get_status()
    assert status["moisture"] == 45.0
    assert status["band"] == "moist"
    assert status["tank_level"] == 72.0
    assert status["tank_status"] == "good"
    assert status["next_schedule"] == "07:00"
    assert status["eta"]["minutes_until"] == 60
    assert status["should_irrigate"] is False
    assert status["weather"] == "clear"


def test_recent_events_rejects_unknown_category(coordinator):
    with pytest.raises(ValidationError):
        coordinator.recent_events("rainfall")


# ==================== Persistence ====================


class TestPersistence:
    def test_mutation_is_persisted(self, coordinator, state_repo):
        coordinator.trigger_irrigation()
        assert state_repo.load("tank")["current_level"] == pytest.approx(65.0)
        assert state_repo.load("soil")["is_irrigating"] is True
        assert state_repo.load("weather")["condition"] == "clear"

    def test_restore_recovers_invalid_field(self, coordinator, state_repo, soil_engine, recorder):
        state_repo.save("soil", {"moisture": "NaN", "irrigation_duration": 20}, updated_at="2026-03-10T05:00:00")

        recovered = coordinator.restore()

        assert [(r["entity"], r["field"]) for r in recovered] == [("soil", "moisture")]
        assert soil_engine.state.moisture == 45.0
        assert soil_engine.state.irrigation_duration == 20.0
        assert recorder.of(SimulationEvent.STATE_RECOVERED)[0]["field"] == "moisture"
        assert _moisture_log(coordinator)[0]["kind"] == "state_recovered"
        assert state_repo.load("soil")["moisture"] == 45.0

    def test_restore_discards_unreadable_snapshot(self, coordinator, db_handler, tank_engine):
        db_handler.save_entity_state("tank", "not json", "2026-03-10T05:00:00")

        recovered = coordinator.restore()

        assert recovered == [{"entity": "tank", "field": "*", "reason": "snapshot is not a JSON object"}]
        assert tank_engine.state.current_level == 72.0

    def test_restore_weather_does_not_rain(self, coordinator, state_repo, soil_engine, weather_state, recorder):
        state_repo.save("soil", {"moisture": 30.0}, updated_at="2026-03-10T05:00:00")
        state_repo.save("weather", {"condition": "rain", "updated_at": None}, updated_at="2026-03-10T05:00:00")

        coordinator.restore()

        assert weather_state.current() == WeatherCondition.RAIN
        assert soil_engine.state.weather == WeatherCondition.RAIN
        assert soil_engine.state.moisture == 30.0
        assert recorder.of(SimulationEvent.RAIN_APPLIED) == []

    def test_restore_resumes_running_cycle(self, coordinator, state_repo, soil_engine, clock, stop_timer):
        started = clock.now() - timedelta(minutes=5)
        state_repo.save(
            "soil",
            {"moisture": 30.0, "is_irrigating": True, "irrigation_start_time": started.isoformat()},
            updated_at=started.isoformat(),
        )

        coordinator.restore()

        assert soil_engine.state.is_irrigating is True
        stop_timer.assert_called_once_with(pytest.approx(10.0))

    def test_restore_stops_overdue_cycle(self, coordinator, state_repo, soil_engine, clock, stop_timer, recorder):
        started = clock.now() - timedelta(minutes=40)
        state_repo.save(
            "soil",
            {"moisture": 30.0, "is_irrigating": True, "irrigation_start_time": started.isoformat()},
            updated_at=started.isoformat(),
        )

        coordinator.restore()

        assert soil_engine.state.is_irrigating is False
        stop_timer.assert_not_called()
        assert len(recorder.of(SimulationEvent.IRRIGATION_COMPLETED)) == 1

    def test_resume_when_idle_returns_none(self, coordinator):
        assert coordinator.resume_pending_irrigation() is None

    def test_restore_resumes_from_cycle_length(self, coordinator, state_repo, soil_engine, clock, stop_timer):
        started = clock.now() - timedelta(minutes=5)
        state_repo.save(
            "soil",
            {
                "moisture": 30.0,
                "is_irrigating": True,
                "irrigation_start_time": started.isoformat(),
                "irrigation_duration": 15,
                "irrigation_cycle_minutes": 30,
            },
            updated_at=started.isoformat(),
        )

        coordinator.restore()

        assert soil_engine.state.is_irrigating is True
        stop_timer.assert_called_once_with(pytest.approx(25.0))

    def test_restore_resets_schedule_with_bad_flag(self, coordinator, state_repo, tank_engine):
        state_repo.save(
            "tank",
            {"schedules": [{"time": "07:00", "enabled": "false"}]},
            updated_at="2026-03-10T05:00:00",
        )

        recovered = coordinator.restore()

        assert ("tank", "schedules") in [(r["entity"], r["field"]) for r in recovered]
        assert [entry.to_dict() for entry in tank_engine.state.schedules] == [
            {"time": "07:00", "enabled": True},
            {"time": "16:00", "enabled": True},
        ]
