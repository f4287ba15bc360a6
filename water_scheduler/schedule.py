"""Schedule engine: decides which pumps are due for watering.

A pump is due when the latest of its trigger times that has already passed
today has not been watered yet. Missed days and missed earlier triggers are
never caught up: after downtime only one watering fires, for the most recent
trigger, so a restart cannot release several doses in a row.

How "already watered" is judged depends on the profile's
``LastRunGranularity``:

    DAY      last_run.date != today
    TRIGGER  last_run.date != today or last_run.trigger < latest passed trigger
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Mapping, Optional

from .profile import LastRunGranularity, PumpProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LastRunRecord:
    """Most recently finished watering of a pump.

    Attributes:
        pump_id: Pump the record belongs to
        date: Calendar date the watering was scheduled for
        trigger: Trigger time the watering was scheduled for
        completed_at: Wall-clock time the activation ended, for operators
    """
    pump_id: str
    date: date
    trigger: time
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ScheduleDecision:
    """Result of evaluating one pump for one tick."""
    pump_id: str
    due: bool
    trigger: Optional[time] = None


def latest_passed_trigger(profile: PumpProfile, now: datetime) -> Optional[time]:
    """Return the latest trigger time of today that is not after ``now``."""
    current = now.time()
    passed = [t for t in profile.triggers if t <= current]
    return passed[-1] if passed else None


class ScheduleEngine:
    """Evaluates pump profiles against the calendar clock and last-run records.

    The engine owns the profiles; controllers only reference them.
    """

    def __init__(self, profiles: Iterable[PumpProfile]):
        self._profiles: Dict[str, PumpProfile] = {}
        for profile in profiles:
            self._profiles[profile.pump_id] = profile
        self._future_warned = set()

    @property
    def profiles(self) -> List[PumpProfile]:
        return list(self._profiles.values())

    def get(self, pump_id: str) -> Optional[PumpProfile]:
        return self._profiles.get(pump_id)

    def evaluate(self, profile: PumpProfile, last_run: Optional[LastRunRecord],
                 calendar_now: datetime) -> bool:
        """Whether ``profile`` is due at ``calendar_now``."""
        return self.decide(profile, last_run, calendar_now).due

    def decide(self, profile: PumpProfile, last_run: Optional[LastRunRecord],
               calendar_now: datetime) -> ScheduleDecision:
        if not profile.enabled:
            return ScheduleDecision(profile.pump_id, False)

        trigger = latest_passed_trigger(profile, calendar_now)
        if trigger is None:
            return ScheduleDecision(profile.pump_id, False)

        if last_run is None:
            return ScheduleDecision(profile.pump_id, True, trigger)

        today = calendar_now.date()
        if last_run.date > today and profile.pump_id not in self._future_warned:
            # Clock moved backwards since the last watering
            logger.warning(f"{profile.pump_id}: last run {last_run.date} is after today {today}")
            self._future_warned.add(profile.pump_id)

        if last_run.date != today:
            due = True
        elif profile.last_run_granularity == LastRunGranularity.TRIGGER:
            due = last_run.trigger < trigger
        else:
            due = False

        return ScheduleDecision(profile.pump_id, due, trigger if due else None)

    def decide_all(self, last_runs: Mapping[str, LastRunRecord],
                   calendar_now: datetime) -> List[ScheduleDecision]:
        """Evaluate every profile against one calendar snapshot, in profile order."""
        return [
            self.decide(profile, last_runs.get(profile.pump_id), calendar_now)
            for profile in self._profiles.values()
        ]
