#!/usr/bin/env python3
"""
Tests for the schedule engine: when is a pump due, and for which trigger
"""
import logging
from datetime import date, datetime, time

import pytest

from water_scheduler.schedule import LastRunRecord, ScheduleEngine, latest_passed_trigger

TODAY = date(2026, 10, 19)


def at(hour, minute=0, second=0, day=TODAY):
    return datetime.combine(day, time(hour, minute, second))


def ran(pump_id="basil", day=TODAY, trigger=time(8, 0)):
    return LastRunRecord(pump_id=pump_id, date=day, trigger=trigger)


@pytest.fixture
def basil(make_profile):
    return make_profile()


@pytest.fixture
def tomato(make_profile):
    """Two waterings a day, tracked per trigger"""
    return make_profile(pump_id="tomato", pin=27, triggers=("08:00", "18:00"),
                        last_run_granularity="trigger")


class TestLatestPassedTrigger:
    def test_before_first_trigger(self, tomato):
        assert latest_passed_trigger(tomato, at(7, 59, 59)) is None

    def test_exactly_at_trigger(self, tomato):
        assert latest_passed_trigger(tomato, at(8)) == time(8, 0)

    def test_latest_of_several(self, tomato):
        assert latest_passed_trigger(tomato, at(12)) == time(8, 0)
        assert latest_passed_trigger(tomato, at(23, 59)) == time(18, 0)


class TestDayGranularity:
    def test_not_due_before_trigger(self, basil):
        engine = ScheduleEngine([basil])
        assert engine.evaluate(basil, None, at(7, 59)) is False

    def test_due_at_trigger_without_history(self, basil):
        engine = ScheduleEngine([basil])
        decision = engine.decide(basil, None, at(8))
        assert decision.due is True
        assert decision.trigger == time(8, 0)

    def test_not_due_after_watering_today(self, basil):
        engine = ScheduleEngine([basil])
        assert engine.evaluate(basil, ran(), at(8, 0, 6)) is False
        assert engine.evaluate(basil, ran(), at(23, 59)) is False

    def test_due_again_next_day(self, basil):
        engine = ScheduleEngine([basil])
        tomorrow = date(2026, 10, 20)
        assert engine.evaluate(basil, ran(), at(7, 59, day=tomorrow)) is False
        assert engine.evaluate(basil, ran(), at(8, day=tomorrow)) is True

    def test_late_start_fires_once(self, basil):
        """Process started at 14:00, trigger was 08:00: still due today"""
        engine = ScheduleEngine([basil])
        assert engine.evaluate(basil, ran(day=date(2026, 10, 18)), at(14)) is True

    def test_missed_days_not_backfilled(self, basil):
        """Three days down: one watering for today's trigger, nothing for the gap"""
        engine = ScheduleEngine([basil])
        decision = engine.decide(basil, ran(day=date(2026, 10, 16)), at(9))
        assert decision.due is True
        assert decision.trigger == time(8, 0)

    def test_disabled_pump_never_due(self, make_profile):
        profile = make_profile(enabled=False)
        engine = ScheduleEngine([profile])
        assert engine.evaluate(profile, None, at(12)) is False

    def test_future_last_run_warns_once(self, basil, caplog):
        """Clock moved backwards: last run is after today"""
        engine = ScheduleEngine([basil])
        future = ran(day=date(2026, 10, 25))

        with caplog.at_level(logging.WARNING, logger="water_scheduler.schedule"):
            first = engine.evaluate(basil, future, at(9))
            second = engine.evaluate(basil, future, at(9, 1))

        assert first is True and second is True
        warnings = [r for r in caplog.records if "after today" in r.getMessage()]
        assert len(warnings) == 1


class TestTriggerGranularity:
    def test_first_trigger_due(self, tomato):
        engine = ScheduleEngine([tomato])
        decision = engine.decide(tomato, None, at(8, 30))
        assert decision.due is True
        assert decision.trigger == time(8, 0)

    def test_between_triggers_after_watering(self, tomato):
        engine = ScheduleEngine([tomato])
        assert engine.evaluate(tomato, ran("tomato"), at(12)) is False

    def test_second_trigger_due(self, tomato):
        engine = ScheduleEngine([tomato])
        decision = engine.decide(tomato, ran("tomato"), at(18, 0, 1))
        assert decision.due is True
        assert decision.trigger == time(18, 0)

    def test_second_trigger_not_repeated(self, tomato):
        engine = ScheduleEngine([tomato])
        assert engine.evaluate(tomato, ran("tomato", trigger=time(18, 0)), at(20)) is False

    def test_missed_earlier_trigger_not_backfilled(self, tomato):
        """Started at 19:00 with nothing run today: only the 18:00 watering fires"""
        engine = ScheduleEngine([tomato])
        decision = engine.decide(tomato, ran("tomato", day=date(2026, 10, 16), trigger=time(18, 0)), at(19))
        assert decision.trigger == time(18, 0)

        done = ran("tomato", trigger=time(18, 0))
        assert engine.evaluate(tomato, done, at(19, 0, 10)) is False


class TestDecideAll:
    def test_profile_order_and_lookup(self, basil, tomato):
        engine = ScheduleEngine([tomato, basil])
        decisions = engine.decide_all({"basil": ran()}, at(9))

        assert [d.pump_id for d in decisions] == ["tomato", "basil"]
        assert [d.due for d in decisions] == [True, False]
        assert engine.get("basil") is basil
        assert engine.get("mint") is None
