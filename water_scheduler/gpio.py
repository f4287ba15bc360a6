"""GPIO port: the binary output capability the pump controllers drive.

All pin writes go through ``GpioPort.set()``. A write either takes effect
synchronously or raises ``GpioError``; the port never sleeps, so a failing
write cannot stall the supervisor loop.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, List

from .errors import GpioError

logger = logging.getLogger(__name__)

GPIO_BACKENDS = ('rpi', 'simulation')


class Level(Enum):
    """Logical pin level. HIGH switches the pump on."""
    LOW = 0
    HIGH = 1


class GpioPort(ABC):
    """Binary output capability for pump pins."""

    @abstractmethod
    def setup(self, pins: Iterable[int]):
        """Configure ``pins`` as outputs, initially LOW."""

    @abstractmethod
    def set(self, pin: int, level: Level):
        """Drive ``pin`` to ``level``.

        Raises:
            GpioError: If the write failed or the pin did not take the level
        """

    @abstractmethod
    def cleanup(self):
        """Release the pins."""


class RPiGpioPort(GpioPort):
    """GPIO port over an RPi.GPIO compatible module.

    Works with the real ``RPi.GPIO`` module and with
    ``utils.gpio_simulation.SimulatedGPIO``. Pins use BCM numbering.

    Every write is verified by reading the pin back, and retried immediately
    (without delay) up to ``write_retries`` times before ``GpioError`` is
    raised.

    Args:
        gpio_module: RPi.GPIO compatible module or object
        active_low: Relay boards that switch on a LOW output; logical HIGH is
            then written as a physical LOW
        write_retries: Attempts per write, at least 1
    """

    def __init__(self, gpio_module, active_low: bool = False, write_retries: int = 3):
        self.gpio = gpio_module
        self.active_low = active_low
        self.write_retries = max(1, write_retries)
        self._pins: List[int] = []

    def _physical(self, level: Level):
        on = level == Level.HIGH
        if self.active_low:
            on = not on
        return self.gpio.HIGH if on else self.gpio.LOW

    def setup(self, pins: Iterable[int]):
        self.gpio.setmode(self.gpio.BCM)
        self.gpio.setwarnings(False)
        off = self._physical(Level.LOW)
        for pin in pins:
            try:
                self.gpio.setup(pin, self.gpio.OUT, initial=off)
            except (RuntimeError, ValueError, OSError) as e:
                raise GpioError(pin, f"setup failed: {e}") from e
            self._pins.append(pin)
            logger.debug(f"Initialized pin {pin} as output ({'active low' if self.active_low else 'active high'})")

    def set(self, pin: int, level: Level):
        expected = self._physical(level)
        last_error = None

        for attempt in range(1, self.write_retries + 1):
            try:
                self.gpio.output(pin, expected)
                actual = self.gpio.input(pin)
                if bool(actual) == bool(expected):
                    logger.debug(f"Set pin {pin} to {level.name}")
                    return
                last_error = f"read back {actual}, expected {expected}"
            except (RuntimeError, ValueError, OSError) as e:
                last_error = str(e)

            if attempt < self.write_retries:
                logger.warning(f"GPIO pin {pin} write {level.name} attempt "
                               f"{attempt}/{self.write_retries} failed: {last_error}")

        logger.error(f"GPIO pin {pin} write {level.name} failed after {self.write_retries} attempts: {last_error}")
        raise GpioError(pin, f"write {level.name} failed: {last_error}")

    def cleanup(self):
        if not self._pins:
            return
        try:
            self.gpio.cleanup(self._pins)
        except (RuntimeError, ValueError, OSError) as e:
            logger.warning(f"GPIO cleanup failed: {e}")
        self._pins = []


def create_gpio_port(backend: str, active_low: bool = False, write_retries: int = 3) -> GpioPort:
    """Build the GPIO port for the configured backend.

    Raises:
        GpioError: If the ``rpi`` backend is requested but RPi.GPIO cannot be loaded
        ValueError: For an unknown backend name
    """
    if backend == 'simulation':
        from utils.gpio_simulation import SimulatedGPIO
        logger.warning("GPIO simulation mode active - pumps will not be switched")
        return RPiGpioPort(SimulatedGPIO(), active_low=active_low, write_retries=write_retries)

    if backend == 'rpi':
        try:
            import RPi.GPIO as GPIO
        except (ImportError, RuntimeError) as e:
            raise GpioError('*', f"RPi.GPIO unavailable ({e}); set GPIO_BACKEND=simulation to run without hardware") from e
        return RPiGpioPort(GPIO, active_low=active_low, write_retries=write_retries)

    raise ValueError(f"Unknown GPIO backend '{backend}', expected one of {GPIO_BACKENDS}")
