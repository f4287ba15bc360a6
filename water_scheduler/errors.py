"""Exception types for the water scheduler.

Every error the scheduler raises derives from ``WaterError`` so callers at the
process boundary can report them uniformly.
"""


class WaterError(Exception):
    """Base class for scheduler errors."""
    pass


class ConfigurationError(WaterError):
    """Raised when a pump profile or the pump configuration file is invalid.

    Fatal at startup: the scheduler does not run with an invalid profile.
    """
    pass


class GpioError(WaterError):
    """Raised when a GPIO write fails or cannot be verified."""

    def __init__(self, pin, message: str):
        super().__init__(f"GPIO pin {pin}: {message}")
        self.pin = pin


class ClockError(WaterError):
    """Raised when the OS clock cannot provide monotonic time."""
    pass


class PersistenceError(WaterError):
    """Raised when the last-run state file cannot be read or written."""
    pass
