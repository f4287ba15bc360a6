#!/usr/bin/env python3
"""GPIO simulation module for running without Raspberry Pi hardware.

This module provides a simulated GPIO interface that mimics the subset of the
RPi.GPIO API the water scheduler drives, so the scheduler can run in
simulation mode on any machine and tests can observe every pin write.

Besides pin state the simulation keeps a timestamped history of writes and
can be told to fail writes, which is how hardware faults are exercised.

Usage:
    from utils.gpio_simulation import SimulatedGPIO
    GPIO = SimulatedGPIO()

    # Use like RPi.GPIO
    GPIO.setmode(GPIO.BCM)
    GPIO.setup(18, GPIO.OUT, initial=GPIO.LOW)
    GPIO.output(18, GPIO.HIGH)
"""

import time
import threading
from typing import Callable, Dict, List, Optional, Tuple


class SimulatedGPIO:
    """Simulated GPIO module.

    Attributes:
        history: List of ``(timestamp, channel, value)`` for every accepted write
    """

    # Constants matching RPi.GPIO
    OUT = 0
    IN = 1
    HIGH = 1
    LOW = 0
    BCM = 11
    BOARD = 10

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.RLock()
        self._clock = clock
        self._state: Dict[int, int] = {}
        self._mode: Dict[int, int] = {}
        self._numbering_mode = None
        self._warnings = True
        self._failures: Dict[int, Tuple[Optional[int], Optional[int], bool]] = {}
        self.history: List[Tuple[float, int, int]] = []
        self.cleanup_done = False

    def setmode(self, mode):
        with self._lock:
            self._numbering_mode = mode

    def setwarnings(self, warnings):
        self._warnings = warnings

    def setup(self, channel, direction, initial=None):
        """Setup a GPIO channel or a list of channels."""
        with self._lock:
            if self._numbering_mode is None:
                raise RuntimeError("Please set pin numbering mode using GPIO.setmode()")
            channels = channel if isinstance(channel, (list, tuple)) else [channel]
            for ch in channels:
                self._mode[ch] = direction
                if direction == self.OUT:
                    value = initial if initial is not None else self.LOW
                    self._state[ch] = value
                    self.history.append((self._clock(), ch, value))
                else:
                    self._state.setdefault(ch, self.LOW)
            self.cleanup_done = False

    def output(self, channel, value):
        """Set output value for a channel.

        Raises:
            RuntimeError: If the channel is not an output, or a failure was injected
        """
        with self._lock:
            if self._mode.get(channel) != self.OUT:
                raise RuntimeError("The GPIO channel has not been set up as an OUTPUT")

            value = self.HIGH if value else self.LOW
            failure = self._injected_failure(channel, value)
            if failure == 'raise':
                raise RuntimeError(f"Simulated write failure on channel {channel}")
            if failure == 'drop':
                return

            self._state[channel] = value
            self.history.append((self._clock(), channel, value))

    def input(self, channel):
        with self._lock:
            if channel not in self._mode:
                raise RuntimeError("You must setup() the GPIO channel first")
            return self._state.get(channel, self.LOW)

    def cleanup(self, channel=None):
        """Cleanup one channel, a list of channels, or all of them."""
        with self._lock:
            if channel is None:
                self._state.clear()
                self._mode.clear()
                self.cleanup_done = True
            else:
                channels = channel if isinstance(channel, (list, tuple)) else [channel]
                for ch in channels:
                    self._state.pop(ch, None)
                    self._mode.pop(ch, None)
                self.cleanup_done = not self._mode

    # ── Fault injection ──────────────────────────────────────

    def fail_writes(self, channel, value=None, count=None, silent=False):
        """Make writes to ``channel`` fail.

        Args:
            channel: Pin number
            value: Only fail writes of this value (HIGH/LOW); None fails both
            count: Number of writes to fail; None fails until cleared
            silent: Drop the write without raising, so only a read-back notices
        """
        with self._lock:
            self._failures[channel] = (value, count, silent)

    def clear_failures(self, channel=None):
        with self._lock:
            if channel is None:
                self._failures.clear()
            else:
                self._failures.pop(channel, None)

    def _injected_failure(self, channel, value) -> Optional[str]:
        failure = self._failures.get(channel)
        if failure is None:
            return None
        fail_value, count, silent = failure
        if fail_value is not None and fail_value != value:
            return None
        if count is not None:
            if count <= 1:
                del self._failures[channel]
            else:
                self._failures[channel] = (fail_value, count - 1, silent)
        return 'drop' if silent else 'raise'

    # ── Inspection helpers ───────────────────────────────────

    def is_high(self, channel) -> bool:
        with self._lock:
            return self._state.get(channel, self.LOW) == self.HIGH

    def writes(self, channel) -> List[Tuple[float, int]]:
        """``(timestamp, value)`` pairs written to ``channel``, oldest first."""
        with self._lock:
            return [(ts, value) for ts, ch, value in self.history if ch == channel]
