"""
Shared fixtures for the water scheduler tests.

No real hardware and no real waiting: pins go through the GPIO simulation and
time comes from a ManualClock that tests advance explicitly.
"""
import os
import sys
import logging
from datetime import datetime, timedelta
from typing import List

import pytest

# Add project root to Python path to ensure imports work
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from utils.gpio_simulation import SimulatedGPIO
from water_scheduler.config import WaterSchedulerConfig
from water_scheduler.events import EventSink, StatusEvent, TRANSITION
from water_scheduler.gpio import RPiGpioPort
from water_scheduler.persistence import LastRunStore
from water_scheduler.profile import PumpProfile
from water_scheduler.controller import PumpController
from water_scheduler.supervisor import Supervisor


# ─────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────

class ManualClock:
    """Clock source that only moves when told to.

    Calendar and monotonic time advance together.
    """

    def __init__(self, calendar: datetime = datetime(2026, 10, 19, 7, 59, 0), monotonic: float = 1000.0):
        self.calendar = calendar
        self.monotonic = monotonic

    def now_monotonic(self) -> float:
        return self.monotonic

    def now_calendar(self) -> datetime:
        return self.calendar

    def advance(self, seconds: float):
        self.monotonic += seconds
        self.calendar += timedelta(seconds=seconds)

    def set_calendar(self, calendar: datetime):
        """Jump the calendar clock only, e.g. a wall-clock correction."""
        self.calendar = calendar


class RecordingEventSink(EventSink):
    """Keeps every published status event."""

    def __init__(self):
        self.events: List[StatusEvent] = []
        self.closed = False

    def publish(self, event: StatusEvent):
        self.events.append(event)

    def close(self):
        self.closed = True

    def actions(self, pump_id=None) -> List[str]:
        return [e.action for e in self.events if pump_id is None or e.pump_id == pump_id]

    def transitions(self, pump_id=None):
        return [(e.old_state.name, e.new_state.name) for e in self.events
                if e.action == TRANSITION and (pump_id is None or e.pump_id == pump_id)]


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sim_gpio(clock):
    """Simulated RPi.GPIO stamping writes with the manual monotonic clock"""
    return SimulatedGPIO(clock=clock.now_monotonic)


@pytest.fixture
def gpio_port(sim_gpio):
    return RPiGpioPort(sim_gpio, write_retries=3)


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def store(tmp_path):
    return LastRunStore(str(tmp_path / "last_run.json"))


@pytest.fixture
def make_profile():
    """Factory for profiles; defaults to basil: 08:00, 5s, ceiling 15s, pin 17"""
    def _make(**overrides):
        values = dict(
            pump_id="basil",
            pin=17,
            triggers=("08:00",),
            duration=5.0,
            safety_ceiling=15.0,
        )
        values.update(overrides)
        return PumpProfile(**values)
    return _make


@pytest.fixture
def make_controller(gpio_port, events):
    def _make(profile):
        gpio_port.setup([profile.pin])
        return PumpController(profile, gpio_port, events)
    return _make


@pytest.fixture
def make_supervisor(gpio_port, store, clock, events):
    """Factory for supervisors whose wait advances the manual clock"""
    def _make(profiles, **kwargs):
        def wait(timeout):
            clock.advance(timeout)
            return False
        kwargs.setdefault('wait', wait)
        kwargs.setdefault('store', store)
        return Supervisor(
            profiles,
            gpio_port,
            clock=clock,
            events=events,
            **kwargs
        )
    return _make


@pytest.fixture
def clean_env(monkeypatch):
    """Remove scheduler settings from the environment for the test.

    Each key is set before it is deleted so monkeypatch also removes values a
    test loads from a .env file.
    """
    for key in list(WaterSchedulerConfig.SCHEMA) + ['log_level']:
        monkeypatch.setenv(key.upper(), "")
        monkeypatch.delenv(key.upper())


@pytest.fixture
def restore_logging():
    """Put back root logger handlers replaced by setup_logging"""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
