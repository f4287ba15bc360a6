"""Time sources for scheduling and duration measurement.

Two clocks are kept apart on purpose: the monotonic clock is the only
authority on how long a pin has been on, the calendar clock is only used to
decide whether a trigger time of day has passed.
"""
import time
import logging
from datetime import datetime

from .errors import ClockError

logger = logging.getLogger(__name__)


class SystemClock:
    """Clock source backed by the operating system."""

    def now_monotonic(self) -> float:
        return time.monotonic()

    def now_calendar(self) -> datetime:
        """Local date and time of day (naive)."""
        return datetime.now()

    def check(self):
        """Verify the OS offers a usable monotonic clock.

        Raises:
            ClockError: If the monotonic clock is unavailable or adjustable
        """
        try:
            info = time.get_clock_info('monotonic')
            first = time.monotonic()
            second = time.monotonic()
        except OSError as e:
            raise ClockError(f"Monotonic clock unavailable: {e}") from e

        if not info.monotonic or info.adjustable:
            raise ClockError(f"Clock '{info.implementation}' is not monotonic")
        if second < first:
            raise ClockError("Monotonic clock ran backwards")

        logger.debug(f"Using monotonic clock {info.implementation} (resolution {info.resolution}s)")
