"""Pump profiles: validated, immutable per-pump watering configuration.

A profile is built once at startup from the pump configuration file and
rejected with ``ConfigurationError`` if any invariant fails, so nothing
downstream has to re-check it.

Configuration file layout (YAML)::

    timing:
      daily_start_time: "07:30"
    pumps:
      basil:
        pin: 17
        triggers: ["08:00"]
        duration: 5
        safety_ceiling: 15

Instead of ``duration`` a pump may give ``ml_per_day`` and ``ml_per_s``; the
duration is then the time needed to pump the daily amount.
"""
import math
import logging
from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Hard upper bound on pin-on time for pumps that do not set their own.
DEFAULT_SAFETY_CEILING = 30.0

DEFAULT_DAILY_START_TIME = "07:30"

PUMP_KEYS = {
    'pin', 'enabled', 'triggers', 'duration', 'safety_ceiling',
    'last_run_granularity', 'ml_per_s', 'ml_per_day',
}


class LastRunGranularity(Enum):
    """How finely completed waterings are tracked for a pump.

    DAY: at most one watering per calendar day; the pump has exactly one
        trigger time.
    TRIGGER: one watering per trigger time per day; the pump may have
        several trigger times.
    """
    DAY = "day"
    TRIGGER = "trigger"


def parse_time_of_day(value: Any) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a ``datetime.time``.

    Raises:
        ConfigurationError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value.replace(microsecond=0)
    if isinstance(value, int) and not isinstance(value, bool):
        # YAML 1.1 reads unquoted 8:00 as the base-60 integer 480
        raise ConfigurationError(
            f"Time value {value} was read as a number; quote trigger times, e.g. \"08:00\""
        )
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid time of day {value!r}")

    parts = value.strip().split(':')
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ConfigurationError(f"Invalid time of day '{value}', expected HH:MM or HH:MM:SS")
    try:
        return time(*(int(p) for p in parts))
    except ValueError as e:
        raise ConfigurationError(f"Invalid time of day '{value}': {e}") from e


@dataclass(frozen=True)
class PumpProfile:
    """Static configuration of one pump.

    Attributes:
        pump_id: Unique pump name
        pin: BCM number of the GPIO line switching the pump
        triggers: Daily trigger times, sorted and unique
        duration: Activation duration in seconds
        safety_ceiling: Hard upper bound on continuous pin-on time in seconds
        enabled: Disabled pumps are never scheduled
        last_run_granularity: Per-day or per-trigger last-run tracking
        ml_per_s: Pump flow rate, informational unless duration is derived
        ml_per_day: Daily amount, informational unless duration is derived
    """
    pump_id: str
    pin: int
    triggers: Tuple[time, ...]
    duration: float
    safety_ceiling: float = DEFAULT_SAFETY_CEILING
    enabled: bool = True
    last_run_granularity: LastRunGranularity = LastRunGranularity.DAY
    ml_per_s: Optional[float] = field(default=None, compare=False)
    ml_per_day: Optional[float] = field(default=None, compare=False)

    def __post_init__(self):
        if not isinstance(self.pump_id, str) or not self.pump_id.strip():
            raise ConfigurationError(f"Invalid pump id {self.pump_id!r}")
        name = self.pump_id

        if isinstance(self.pin, bool) or not isinstance(self.pin, int) or self.pin < 0:
            raise ConfigurationError(f"{name}: pin must be a non-negative integer, got {self.pin!r}")

        triggers = tuple(sorted(set(parse_time_of_day(t) for t in self.triggers)))
        if not triggers:
            raise ConfigurationError(f"{name}: at least one trigger time is required")
        object.__setattr__(self, 'triggers', triggers)

        granularity = self.last_run_granularity
        if not isinstance(granularity, LastRunGranularity):
            try:
                granularity = LastRunGranularity(str(granularity).lower())
            except ValueError:
                choices = [g.value for g in LastRunGranularity]
                raise ConfigurationError(
                    f"{name}: last_run_granularity '{granularity}' not in {choices}"
                ) from None
            object.__setattr__(self, 'last_run_granularity', granularity)
        if granularity == LastRunGranularity.DAY and len(triggers) > 1:
            raise ConfigurationError(
                f"{name}: {len(triggers)} trigger times need last_run_granularity 'trigger'"
            )

        duration = _as_number(name, 'duration', self.duration)
        ceiling = _as_number(name, 'safety_ceiling', self.safety_ceiling)
        if duration <= 0:
            raise ConfigurationError(f"{name}: duration must be positive, got {duration}s")
        if ceiling < duration:
            raise ConfigurationError(
                f"{name}: safety_ceiling ({ceiling}s) is below duration ({duration}s)"
            )
        object.__setattr__(self, 'duration', duration)
        object.__setattr__(self, 'safety_ceiling', ceiling)

    def __str__(self):
        times = ", ".join(t.strftime('%H:%M:%S' if t.second else '%H:%M') for t in self.triggers)
        text = (f"pump {self.pump_id} ({'enabled' if self.enabled else 'disabled'}), "
                f"{self.duration:.1f}s at {times} on pin {self.pin}, "
                f"ceiling {self.safety_ceiling:.1f}s")
        if self.ml_per_day is not None and self.ml_per_s is not None:
            text += f", {self.ml_per_day:.1f} mL/day at {self.ml_per_s:.1f} mL/s"
        return text


def _as_number(name: str, key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name}: {key} must be a number, got {value!r}")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}: {key} must be a number, got {value!r}") from None
    if not math.isfinite(seconds):
        raise ConfigurationError(f"{name}: {key} must be finite, got {value!r}")
    return seconds


def _optional_number(name: str, key: str, value: Any) -> Optional[float]:
    return None if value is None else _as_number(name, key, value)


def _derive_duration(name: str, entry: Dict[str, Any]) -> float:
    if 'duration' in entry:
        return entry['duration']

    ml_per_day = entry.get('ml_per_day')
    ml_per_s = entry.get('ml_per_s')
    if ml_per_day is None or ml_per_s is None:
        raise ConfigurationError(f"{name}: either duration or ml_per_day and ml_per_s is required")

    ml_per_s = _as_number(name, 'ml_per_s', ml_per_s)
    if ml_per_s <= 0:
        raise ConfigurationError(f"{name}: ml_per_s must be positive, got {ml_per_s}")
    return _as_number(name, 'ml_per_day', ml_per_day) / ml_per_s


def profile_from_entry(name: str, entry: Dict[str, Any],
                       default_triggers: Iterable[Any] = (DEFAULT_DAILY_START_TIME,)) -> PumpProfile:
    """Build one profile from a ``pumps`` entry of the configuration file."""
    if not isinstance(entry, dict):
        raise ConfigurationError(f"{name}: pump entry must be a mapping")

    unknown = set(entry) - PUMP_KEYS
    if unknown:
        raise ConfigurationError(f"{name}: unknown keys {sorted(unknown)}")
    if 'pin' not in entry:
        raise ConfigurationError(f"{name}: pin is required")

    triggers = entry.get('triggers', list(default_triggers))
    if isinstance(triggers, (str, time)):
        triggers = [triggers]
    if not isinstance(triggers, (list, tuple)):
        raise ConfigurationError(f"{name}: triggers must be a list of times")

    enabled = entry.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ConfigurationError(f"{name}: enabled must be true or false")

    return PumpProfile(
        pump_id=str(name),
        pin=entry['pin'],
        triggers=tuple(triggers),
        duration=_derive_duration(name, entry),
        safety_ceiling=entry.get('safety_ceiling', DEFAULT_SAFETY_CEILING),
        enabled=enabled,
        last_run_granularity=entry.get('last_run_granularity', LastRunGranularity.DAY),
        ml_per_s=_optional_number(name, 'ml_per_s', entry.get('ml_per_s')),
        ml_per_day=_optional_number(name, 'ml_per_day', entry.get('ml_per_day')),
    )


def profiles_from_config(data: Any) -> List[PumpProfile]:
    """Build all profiles from a parsed configuration document.

    Pumps keep the order in which the file lists them.

    Raises:
        ConfigurationError: If any profile is invalid or two pumps share a pin
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Pump configuration must be a mapping with a 'pumps' section")

    timing = data.get('timing') or {}
    if not isinstance(timing, dict):
        raise ConfigurationError("'timing' section must be a mapping")
    default_trigger = timing.get('daily_start_time', DEFAULT_DAILY_START_TIME)

    pumps = data.get('pumps')
    if not isinstance(pumps, dict) or not pumps:
        raise ConfigurationError("Pump configuration has no pumps")

    profiles = []
    pins: Dict[int, str] = {}
    for name, entry in pumps.items():
        profile = profile_from_entry(str(name), entry, default_triggers=(default_trigger,))
        if profile.pin in pins:
            raise ConfigurationError(
                f"{profile.pump_id}: pin {profile.pin} already used by pump {pins[profile.pin]}"
            )
        pins[profile.pin] = profile.pump_id
        profiles.append(profile)
    return profiles


def load_pump_profiles(path: str) -> List[PumpProfile]:
    """Load and validate pump profiles from a YAML file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or a profile is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read pump configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse pump configuration {path}: {e}") from e

    profiles = profiles_from_config(data)
    logger.debug(f"Loaded {len(profiles)} pump profiles from {path}")
    return profiles
