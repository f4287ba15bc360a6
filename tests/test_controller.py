#!/usr/bin/env python3
"""
Tests for the pump controller state machine.

Pins go through RPiGpioPort on the GPIO simulation, so every assertion about
the pump being on or off is an assertion about the simulated pin.
"""
from datetime import datetime

import pytest

from water_scheduler.controller import COMPLETED, FAULTED, INTERRUPTED, PumpState
from water_scheduler.events import ACTIVATION_ABORTED, GPIO_FAILURE, TRANSITION, TRIGGER_IGNORED

PIN = 17
SCHEDULED = datetime(2026, 10, 19, 8, 0)


@pytest.fixture
def profile(make_profile):
    return make_profile()


@pytest.fixture
def controller(make_controller, profile):
    return make_controller(profile)


def written_values(sim_gpio, pin=PIN):
    return [value for _, value in sim_gpio.writes(pin)]


class TestBasicOperation:
    @pytest.mark.timeout(30)
    def test_initialization(self, controller, sim_gpio):
        """Controller starts idle with the pin LOW"""
        assert controller.state == PumpState.IDLE
        assert not sim_gpio.is_high(PIN)
        assert controller.activation_start is None
        assert controller.seconds_until_deadline(1000.0) is None

    @pytest.mark.timeout(30)
    def test_trigger_switches_pump_on(self, controller, sim_gpio, events):
        assert controller.trigger(1000.0, SCHEDULED) is True

        assert controller.state == PumpState.ACTIVATING
        assert sim_gpio.is_high(PIN)
        assert controller.activation_start == 1000.0
        assert controller.target_end == 1005.0
        assert controller.seconds_until_deadline(1002.0) == 3.0
        assert events.transitions() == [("IDLE", "ACTIVATING")]

    @pytest.mark.timeout(30)
    def test_deadline_switches_pump_off(self, controller, sim_gpio, events):
        controller.trigger(1000.0, SCHEDULED)

        assert controller.advance(1004.9) is None
        assert sim_gpio.is_high(PIN)

        result = controller.advance(1005.0)
        assert result.outcome == COMPLETED
        assert result.runtime == 5.0
        assert result.scheduled_for == SCHEDULED
        assert controller.state == PumpState.IDLE
        assert not sim_gpio.is_high(PIN)
        assert events.transitions() == [
            ("IDLE", "ACTIVATING"),
            ("ACTIVATING", "COOLDOWN"),
            ("COOLDOWN", "IDLE"),
        ]

    @pytest.mark.timeout(30)
    def test_late_advance_still_completes_below_ceiling(self, controller, sim_gpio):
        """A slow tick ends the activation late but not as a fault"""
        controller.trigger(1000.0, SCHEDULED)
        result = controller.advance(1012.0)
        assert result.outcome == COMPLETED
        assert result.runtime == 12.0
        assert not sim_gpio.is_high(PIN)

    @pytest.mark.timeout(30)
    def test_advance_is_idempotent(self, controller, sim_gpio):
        controller.trigger(1000.0, SCHEDULED)
        controller.advance(1005.0)
        writes = len(sim_gpio.writes(PIN))

        assert controller.advance(1005.0) is None
        assert controller.advance(1006.0) is None
        assert len(sim_gpio.writes(PIN)) == writes

    @pytest.mark.timeout(30)
    def test_manual_duration(self, controller, sim_gpio):
        controller.trigger(1000.0, duration=2.5)
        assert controller.target_end == 1002.5
        result = controller.advance(1002.5)
        assert result.outcome == COMPLETED
        assert result.scheduled_for is None

    @pytest.mark.timeout(30)
    @pytest.mark.parametrize("duration", [0, -1, 15.1])
    def test_manual_duration_out_of_range(self, controller, sim_gpio, duration):
        with pytest.raises(ValueError):
            controller.trigger(1000.0, duration=duration)
        assert controller.state == PumpState.IDLE
        assert not sim_gpio.is_high(PIN)

    @pytest.mark.timeout(30)
    def test_shutdown_interrupts_activation(self, controller, sim_gpio):
        controller.trigger(1000.0, SCHEDULED)
        result = controller.shutdown(1002.0)

        assert result.outcome == INTERRUPTED
        assert result.runtime == 2.0
        assert controller.state == PumpState.IDLE
        assert not sim_gpio.is_high(PIN)

    @pytest.mark.timeout(30)
    def test_shutdown_when_idle_does_nothing(self, controller, sim_gpio):
        assert controller.shutdown(1000.0) is None
        assert written_values(sim_gpio) == [sim_gpio.LOW]


class TestTriggerHandling:
    @pytest.mark.timeout(30)
    def test_same_occurrence_while_running_is_silent(self, controller, sim_gpio, events):
        controller.trigger(1000.0, SCHEDULED)
        assert controller.trigger(1001.0, SCHEDULED) is False
        assert TRIGGER_IGNORED not in events.actions()
        assert written_values(sim_gpio) == [sim_gpio.LOW, sim_gpio.HIGH]

    @pytest.mark.timeout(30)
    def test_other_occurrence_while_running_reported_once(self, controller, events):
        controller.trigger(1000.0, SCHEDULED)
        other = datetime(2026, 10, 19, 8, 1)
        assert controller.trigger(1001.0, other) is False
        assert controller.trigger(1002.0, other) is False
        assert events.actions().count(TRIGGER_IGNORED) == 1

    @pytest.mark.timeout(30)
    def test_trigger_after_completion_starts_again(self, controller, sim_gpio):
        controller.trigger(1000.0, SCHEDULED)
        controller.advance(1005.0)
        assert controller.trigger(1100.0, datetime(2026, 10, 20, 8, 0)) is True
        assert sim_gpio.is_high(PIN)


class TestSafety:
    @pytest.mark.timeout(30)
    def test_safety_ceiling_faults_starved_activation(self, controller, sim_gpio, events):
        """No advance() for longer than the ceiling: FAULT, not a late completion"""
        controller.trigger(1000.0, SCHEDULED)
        result = controller.advance(1016.0)

        assert result.outcome == FAULTED
        assert controller.state == PumpState.FAULT
        assert not sim_gpio.is_high(PIN)
        assert "safety ceiling" in controller.last_fault
        assert events.transitions()[-1] == ("ACTIVATING", "FAULT")

    @pytest.mark.timeout(30)
    def test_ceiling_boundary_is_not_a_fault(self, make_controller, make_profile, sim_gpio):
        controller = make_controller(make_profile(duration=15, safety_ceiling=15))
        controller.trigger(1000.0, SCHEDULED)
        assert controller.advance(1015.0).outcome == COMPLETED

    @pytest.mark.timeout(30)
    def test_fault_entry_writes_low_twice(self, controller, sim_gpio):
        controller.trigger(1000.0, SCHEDULED)
        controller.advance(1016.0)
        assert written_values(sim_gpio) == [sim_gpio.LOW, sim_gpio.HIGH, sim_gpio.LOW, sim_gpio.LOW]

    @pytest.mark.timeout(30)
    def test_fault_ignores_triggers(self, controller, sim_gpio, events):
        controller.trigger(1000.0, SCHEDULED)
        controller.advance(1016.0)
        writes = len(sim_gpio.writes(PIN))

        next_day = datetime(2026, 10, 20, 8, 0)
        for now in (90000.0, 90001.0, 90002.0):
            assert controller.trigger(now, next_day) is False

        assert controller.state == PumpState.FAULT
        assert not sim_gpio.is_high(PIN)
        assert len(sim_gpio.writes(PIN)) == writes
        assert events.actions().count(TRIGGER_IGNORED) == 1

    @pytest.mark.timeout(30)
    def test_low_failure_enters_fault(self, controller, sim_gpio, events):
        """The LOW write at the deadline fails on every retry"""
        controller.trigger(1000.0, SCHEDULED)
        sim_gpio.fail_writes(PIN, value=sim_gpio.LOW, count=3)

        result = controller.advance(1005.0)

        assert result.outcome == FAULTED
        assert controller.state == PumpState.FAULT
        assert GPIO_FAILURE in events.actions()
        # Fault entry's own LOW writes get through
        assert not sim_gpio.is_high(PIN)
        assert events.transitions() == [("IDLE", "ACTIVATING"), ("ACTIVATING", "FAULT")]

    @pytest.mark.timeout(30)
    def test_low_retried_until_pin_confirmed(self, controller, sim_gpio):
        """While LOW cannot be confirmed, every advance() writes it again"""
        controller.trigger(1000.0, SCHEDULED)
        sim_gpio.fail_writes(PIN, value=sim_gpio.LOW)

        controller.advance(1005.0)
        assert controller.state == PumpState.FAULT
        assert sim_gpio.is_high(PIN)

        controller.advance(1006.0)
        assert sim_gpio.is_high(PIN)

        sim_gpio.clear_failures()
        controller.advance(1007.0)
        assert not sim_gpio.is_high(PIN)

        # Confirmed: no more writes
        writes = len(sim_gpio.writes(PIN))
        controller.advance(1008.0)
        assert len(sim_gpio.writes(PIN)) == writes

    @pytest.mark.timeout(30)
    def test_shutdown_reasserts_unconfirmed_low(self, controller, sim_gpio):
        controller.trigger(1000.0, SCHEDULED)
        sim_gpio.fail_writes(PIN, value=sim_gpio.LOW)
        controller.advance(1005.0)

        sim_gpio.clear_failures()
        assert controller.shutdown(1006.0) is None
        assert not sim_gpio.is_high(PIN)


class TestErrorHandling:
    @pytest.mark.timeout(30)
    def test_high_failure_aborts_activation(self, controller, sim_gpio, events):
        sim_gpio.fail_writes(PIN, value=sim_gpio.HIGH)

        assert controller.trigger(1000.0, SCHEDULED) is False
        assert controller.state == PumpState.IDLE
        assert not sim_gpio.is_high(PIN)
        assert ACTIVATION_ABORTED in events.actions()
        assert TRANSITION not in events.actions()

    @pytest.mark.timeout(30)
    def test_high_failure_reported_once_per_occurrence(self, controller, sim_gpio, events):
        sim_gpio.fail_writes(PIN, value=sim_gpio.HIGH)

        for now in (1000.0, 1060.0, 1120.0):
            assert controller.trigger(now, SCHEDULED) is False
        assert events.actions().count(ACTIVATION_ABORTED) == 1

        assert controller.trigger(90000.0, datetime(2026, 10, 20, 8, 0)) is False
        assert events.actions().count(ACTIVATION_ABORTED) == 2
        assert controller.state == PumpState.IDLE
        assert not sim_gpio.is_high(PIN)

    @pytest.mark.timeout(30)
    def test_manual_run_failure_always_reported(self, controller, sim_gpio, events):
        sim_gpio.fail_writes(PIN, value=sim_gpio.HIGH)
        controller.trigger(1000.0, duration=2.0)
        controller.trigger(1001.0, duration=2.0)
        assert events.actions().count(ACTIVATION_ABORTED) == 2

    @pytest.mark.timeout(30)
    def test_dropped_high_write_detected_by_read_back(self, controller, sim_gpio, events):
        sim_gpio.fail_writes(PIN, value=sim_gpio.HIGH, silent=True)

        assert controller.trigger(1000.0, SCHEDULED) is False
        assert controller.state == PumpState.IDLE
        assert ACTIVATION_ABORTED in events.actions()

    @pytest.mark.timeout(30)
    def test_transient_high_failure_recovered_by_retry(self, controller, sim_gpio):
        sim_gpio.fail_writes(PIN, value=sim_gpio.HIGH, count=2)
        assert controller.trigger(1000.0, SCHEDULED) is True
        assert sim_gpio.is_high(PIN)

    @pytest.mark.timeout(30)
    def test_high_and_low_failure_enters_fault(self, controller, sim_gpio, events):
        """Pin state unknown after the aborted activation"""
        sim_gpio.fail_writes(PIN)

        assert controller.trigger(1000.0, SCHEDULED) is False
        assert controller.state == PumpState.FAULT
        assert events.transitions() == [("IDLE", "FAULT")]
        assert "not confirmed" in events.events[-1].detail

    @pytest.mark.timeout(30)
    def test_fault_in_one_pump_leaves_others_alone(self, make_controller, make_profile, sim_gpio):
        basil = make_controller(make_profile())
        mint = make_controller(make_profile(pump_id="mint", pin=22))
        sim_gpio.fail_writes(17, value=sim_gpio.LOW)

        basil.trigger(1000.0, SCHEDULED)
        mint.trigger(1000.0, SCHEDULED)
        basil.advance(1005.0)
        result = mint.advance(1005.0)

        assert basil.state == PumpState.FAULT
        assert result.outcome == COMPLETED
        assert mint.state == PumpState.IDLE
        assert not sim_gpio.is_high(22)
