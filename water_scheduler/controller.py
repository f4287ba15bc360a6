"""Pump controller: the per-pump activation state machine.

State Machine:
    IDLE -> ACTIVATING -> COOLDOWN -> IDLE
    ACTIVATING -> FAULT when the safety ceiling is exceeded or the pin
    cannot be switched off

    IDLE: pin LOW, ready for the next due trigger
    ACTIVATING: pin HIGH, water flowing until the monotonic deadline
    COOLDOWN: pin switched off; passed through in the same call so the
        off-command is always issued before a new trigger is accepted
    FAULT: pin held LOW, triggers ignored until the process restarts

Timing:
    The monotonic clock is the only authority on how long a pin has been on.
    The controller never sleeps: the supervisor calls ``advance()`` with the
    current monotonic time and the controller switches the pin off once the
    deadline has passed. A pump found on for longer than its safety ceiling
    (a starved loop, a stuck timer) is faulted instead of completed.

Hardware Errors:
    - HIGH write fails: activation aborted, pump stays IDLE; reported once
      per scheduled occurrence
    - LOW write fails: FAULT, since the pump may still be running
    - FAULT entry always writes LOW and then writes it again
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Optional

from .errors import GpioError
from .events import (ACTIVATION_ABORTED, GPIO_FAILURE, TRANSITION, TRIGGER_IGNORED,
                     EventSink, LoggingEventSink, StatusEvent)
from .gpio import GpioPort, Level
from .profile import PumpProfile

logger = logging.getLogger(__name__)


class PumpState(Enum):
    """State machine states for a pump controller."""
    IDLE = auto()
    ACTIVATING = auto()
    COOLDOWN = auto()
    FAULT = auto()


COMPLETED = 'completed'
FAULTED = 'fault'
INTERRUPTED = 'interrupted'


@dataclass(frozen=True)
class ActivationResult:
    """Report of an activation that has ended.

    Attributes:
        pump_id: Pump that ran
        scheduled_for: Date and trigger time the activation served, None for manual runs
        started: Monotonic time the pin went HIGH
        ended: Monotonic time the activation ended
        outcome: ``completed``, ``fault`` or ``interrupted``
    """
    pump_id: str
    scheduled_for: Optional[datetime]
    started: float
    ended: float
    outcome: str

    @property
    def runtime(self) -> float:
        return self.ended - self.started


class PumpController:
    """Drives one pump's pin through the activation state machine.

    The controller is not thread-safe; the supervisor loop is its only caller.

    Args:
        profile: The pump's profile (referenced, not owned)
        gpio: GPIO port the pin is driven through
        events: Sink for status events
    """

    def __init__(self, profile: PumpProfile, gpio: GpioPort, events: Optional[EventSink] = None):
        self.profile = profile
        self.gpio = gpio
        self.events = events or LoggingEventSink()

        self._state = PumpState.IDLE
        self._activation_start: Optional[float] = None
        self._target_end: Optional[float] = None
        self._scheduled_for: Optional[datetime] = None
        self._low_confirmed = True
        self._last_ignored = None
        self._last_aborted = None
        self._last_fault = ""

    @property
    def pump_id(self) -> str:
        return self.profile.pump_id

    @property
    def state(self) -> PumpState:
        return self._state

    @property
    def activation_start(self) -> Optional[float]:
        return self._activation_start

    @property
    def target_end(self) -> Optional[float]:
        return self._target_end

    @property
    def last_fault(self) -> str:
        return self._last_fault

    def seconds_until_deadline(self, now: float) -> Optional[float]:
        """Time left until the running activation must end, or None when idle."""
        if self._state != PumpState.ACTIVATING:
            return None
        return max(0.0, self._target_end - now)

    # ── Events ───────────────────────────────────────────────

    def _emit(self, action: str, old_state: PumpState, now: float, detail: str = ""):
        self.events.publish(StatusEvent(
            pump_id=self.pump_id,
            action=action,
            old_state=old_state,
            new_state=self._state,
            monotonic=now,
            detail=detail,
        ))

    def _transition(self, new_state: PumpState, now: float, detail: str = ""):
        old_state = self._state
        self._state = new_state
        self._emit(TRANSITION, old_state, now, detail)

    # ── Triggering ───────────────────────────────────────────

    def trigger(self, now: float, scheduled_for: Optional[datetime] = None,
                duration: Optional[float] = None) -> bool:
        """Start an activation if the pump is idle.

        Args:
            now: Current monotonic time
            scheduled_for: Date and trigger time being served; None for manual runs
            duration: Override of the profile duration (manual runs)

        Returns:
            True if the pin was switched on

        Raises:
            ValueError: If ``duration`` is not within (0, safety_ceiling]
        """
        if duration is None:
            duration = self.profile.duration
        elif not 0 < duration <= self.profile.safety_ceiling:
            raise ValueError(f"{self.pump_id}: duration {duration}s outside "
                             f"(0, {self.profile.safety_ceiling}]s")

        if self._state != PumpState.IDLE:
            self._report_ignored(now, scheduled_for)
            return False

        try:
            self.gpio.set(self.profile.pin, Level.HIGH)
        except GpioError as e:
            self._abort_activation(now, scheduled_for, e)
            return False

        self._activation_start = now
        self._target_end = now + duration
        self._scheduled_for = scheduled_for
        self._transition(PumpState.ACTIVATING, now, f"watering for {duration:.1f}s")
        return True

    def _report_ignored(self, now: float, scheduled_for: Optional[datetime]):
        if self._state == PumpState.ACTIVATING and scheduled_for == self._scheduled_for:
            # Same occurrence still running
            return
        key = (scheduled_for, self._state)
        if key == self._last_ignored:
            return
        self._last_ignored = key

        if self._state == PumpState.FAULT:
            detail = f"pump in FAULT ({self._last_fault}), restart required"
        else:
            detail = f"pump busy in {self._state.name}"
        if scheduled_for is not None:
            detail = f"{scheduled_for:%Y-%m-%d %H:%M}: {detail}"
        self._emit(TRIGGER_IGNORED, self._state, now, detail)

    def _abort_activation(self, now: float, scheduled_for: Optional[datetime], error: GpioError):
        if scheduled_for is None or scheduled_for != self._last_aborted:
            self._last_aborted = scheduled_for
            self._emit(ACTIVATION_ABORTED, self._state, now, f"could not switch pump on: {error}")
        else:
            logger.debug(f"{self.pump_id}: still cannot switch on for {scheduled_for:%Y-%m-%d %H:%M}")
        try:
            self.gpio.set(self.profile.pin, Level.LOW)
        except GpioError as e:
            self._enter_fault(now, f"pin state unknown after failed HIGH write: {e}")

    # ── Advancing ────────────────────────────────────────────

    def advance(self, now: float) -> Optional[ActivationResult]:
        """Apply the monotonic deadline and safety ceiling.

        Returns:
            An ActivationResult when an activation ended during this call
        """
        if self._state == PumpState.ACTIVATING:
            elapsed = now - self._activation_start
            if elapsed > self.profile.safety_ceiling:
                return self._fault_activation(
                    now, f"pin on for {elapsed:.1f}s, safety ceiling {self.profile.safety_ceiling:.1f}s"
                )
            if now >= self._target_end:
                return self._end_activation(now, COMPLETED, f"watered for {elapsed:.1f}s")
        elif self._state == PumpState.FAULT and not self._low_confirmed:
            self._low_confirmed = self._write_low(now)
        return None

    def shutdown(self, now: float) -> Optional[ActivationResult]:
        """Switch the pin off for process shutdown.

        Returns:
            An ActivationResult if an activation was cut short
        """
        if self._state == PumpState.ACTIVATING:
            elapsed = now - self._activation_start
            return self._end_activation(now, INTERRUPTED, f"shutdown after {elapsed:.1f}s")
        if self._state == PumpState.FAULT and not self._low_confirmed:
            self._low_confirmed = self._write_low(now)
        return None

    def _end_activation(self, now: float, outcome: str, detail: str) -> ActivationResult:
        try:
            self.gpio.set(self.profile.pin, Level.LOW)
        except GpioError as e:
            self._emit(GPIO_FAILURE, self._state, now, f"could not switch pump off: {e}")
            return self._fault_activation(now, f"LOW write failed: {e}")

        result = self._result(now, outcome)
        self._transition(PumpState.COOLDOWN, now, detail)
        self._clear_activation()
        self._transition(PumpState.IDLE, now)
        return result

    def _fault_activation(self, now: float, reason: str) -> ActivationResult:
        result = self._result(now, FAULTED)
        self._enter_fault(now, reason)
        return result

    def _result(self, now: float, outcome: str) -> ActivationResult:
        return ActivationResult(
            pump_id=self.pump_id,
            scheduled_for=self._scheduled_for,
            started=self._activation_start,
            ended=now,
            outcome=outcome,
        )

    def _clear_activation(self):
        self._activation_start = None
        self._target_end = None
        self._scheduled_for = None

    # ── Fault handling ───────────────────────────────────────

    def _write_low(self, now: float) -> bool:
        try:
            self.gpio.set(self.profile.pin, Level.LOW)
            return True
        except GpioError as e:
            logger.critical(f"{self.pump_id}: cannot confirm pin {self.profile.pin} is LOW: {e}")
            return False

    def _enter_fault(self, now: float, reason: str):
        """Enter FAULT: pin forced LOW and re-asserted, pump disabled."""
        if self._state == PumpState.FAULT:
            return
        self._last_fault = reason
        old_state = self._state
        self._state = PumpState.FAULT
        self._clear_activation()

        self._write_low(now)
        self._low_confirmed = self._write_low(now)

        detail = reason if self._low_confirmed else f"{reason}; pin LOW not confirmed"
        self._emit(TRANSITION, old_state, now, detail)
