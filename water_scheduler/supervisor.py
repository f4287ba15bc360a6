"""Supervisor loop: the single coordinating loop of the scheduler.

Each tick takes one time snapshot, lets the schedule engine decide which
pumps are due, hands due pumps to their controllers, advances every
controller against its monotonic deadline, and persists last-run records
that changed. The wait between ticks is the only suspension point and is
shortened to the nearest activation deadline, so pumps are switched off on
time even with a coarse tick.

SIGINT and SIGTERM stop the loop between ticks. On the way out every running
pump is switched off before the GPIO port is released.
"""
import signal
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from .clock import SystemClock
from .controller import ActivationResult, FAULTED, PumpController, PumpState
from .errors import PersistenceError
from .events import EventSink, LoggingEventSink
from .gpio import GpioPort
from .persistence import LastRunStore
from .profile import PumpProfile
from .schedule import LastRunRecord, ScheduleEngine

logger = logging.getLogger(__name__)


class Supervisor:
    """Owns the schedule, the pump controllers and the last-run state.

    Args:
        profiles: Validated pump profiles
        gpio: GPIO port shared by all controllers
        store: Last-run persistence
        clock: Clock source (defaults to the system clock)
        events: Status event sink (defaults to logging)
        tick_interval: Maximum seconds between ticks
        max_active_pumps: Maximum pumps watering at once, 0 for no limit
        retry_interval: Seconds before a pump that could not be switched on
            is tried again
        wait: ``wait(timeout) -> bool`` used between ticks; defaults to
            waiting on the stop event
    """

    def __init__(self, profiles: Iterable[PumpProfile], gpio: GpioPort, store: LastRunStore,
                 clock=None, events: Optional[EventSink] = None, tick_interval: float = 1.0,
                 max_active_pumps: int = 0, retry_interval: float = 60.0,
                 wait: Optional[Callable[[float], bool]] = None):
        self.engine = ScheduleEngine(profiles)
        self.gpio = gpio
        self.store = store
        self.clock = clock or SystemClock()
        self.events = events or LoggingEventSink()
        self.tick_interval = tick_interval
        self.max_active_pumps = max_active_pumps
        self.retry_interval = retry_interval

        self.controllers: Dict[str, PumpController] = {
            profile.pump_id: PumpController(profile, gpio, self.events)
            for profile in self.engine.profiles
        }
        self.last_runs: Dict[str, LastRunRecord] = {}

        self._stop = threading.Event()
        self._wait = wait or self._stop.wait
        self._started = False
        self._dirty = False
        self._deferred = set()
        self._retry_at: Dict[str, float] = {}

    # ── Lifecycle ────────────────────────────────────────────

    def start(self):
        """Initialize the pins LOW and load last-run records."""
        if self._started:
            return
        self.gpio.setup([profile.pin for profile in self.engine.profiles])
        self.last_runs = self.store.load()
        for profile in self.engine.profiles:
            last_run = self.last_runs.get(profile.pump_id)
            if last_run:
                logger.info(f"{profile.pump_id}: last watered for {last_run.date} {last_run.trigger}")
            else:
                logger.info(f"{profile.pump_id}: no previous watering recorded")
        self._started = True

    def stop(self):
        """Ask the loop to exit after the current tick."""
        self._stop.set()

    def run(self):
        """Run ticks until stopped, then switch everything off."""
        previous = self._install_signal_handlers()
        try:
            self.start()
            logger.info(f"Supervisor running with {len(self.controllers)} pumps, tick {self.tick_interval}s")
            while not self._stop.is_set():
                delay = self.tick()
                self._wait(delay)
        finally:
            self.shutdown()
            self._restore_signal_handlers(previous)

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, stopping")
        self.stop()

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, self._handle_signal)
        return previous

    def _restore_signal_handlers(self, previous):
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def shutdown(self):
        """Switch off every running pump, persist, and release the pins."""
        now = self.clock.now_monotonic()
        calendar_now = self.clock.now_calendar()
        for controller in self.controllers.values():
            if controller.state == PumpState.ACTIVATING:
                logger.warning(f"{controller.pump_id}: switching off for shutdown")
            result = controller.shutdown(now)
            if result:
                self._record(result, calendar_now)
        self._persist()
        self.gpio.cleanup()
        self._started = False
        logger.info("Supervisor stopped, all pumps off")

    # ── Tick ─────────────────────────────────────────────────

    def tick(self) -> float:
        """Run one supervisor tick.

        Returns:
            Seconds to wait before the next tick
        """
        now = self.clock.now_monotonic()
        calendar_now = self.clock.now_calendar()

        active = self.active_count()
        for decision in self.engine.decide_all(self.last_runs, calendar_now):
            if not decision.due:
                continue
            controller = self.controllers[decision.pump_id]
            if (controller.state == PumpState.IDLE and self.max_active_pumps
                    and active >= self.max_active_pumps):
                if decision.pump_id not in self._deferred:
                    logger.info(f"{decision.pump_id}: due but {active} pumps already running, deferring")
                    self._deferred.add(decision.pump_id)
                continue

            idle = controller.state == PumpState.IDLE
            if idle and now < self._retry_at.get(decision.pump_id, now):
                continue

            scheduled_for = datetime.combine(calendar_now.date(), decision.trigger)
            if controller.trigger(now, scheduled_for):
                active += 1
                self._deferred.discard(decision.pump_id)
                self._retry_at.pop(decision.pump_id, None)
            elif controller.state == PumpState.IDLE:
                self._retry_at[decision.pump_id] = now + self.retry_interval
                logger.warning(f"{decision.pump_id}: could not start watering, "
                               f"retrying in {self.retry_interval:.0f}s")

        for controller in self.controllers.values():
            result = controller.advance(now)
            if result:
                self._record(result, calendar_now)

        self._persist()
        return self._next_delay(now)

    def active_count(self) -> int:
        return sum(1 for c in self.controllers.values() if c.state == PumpState.ACTIVATING)

    def _next_delay(self, now: float) -> float:
        delay = self.tick_interval
        for controller in self.controllers.values():
            remaining = controller.seconds_until_deadline(now)
            if remaining is not None:
                delay = min(delay, remaining)
        return delay

    def _record(self, result: ActivationResult, calendar_now: datetime):
        if result.outcome == FAULTED:
            logger.error(f"{result.pump_id}: activation ended in FAULT after {result.runtime:.1f}s")
        if result.scheduled_for is None:
            return
        self.last_runs[result.pump_id] = LastRunRecord(
            pump_id=result.pump_id,
            date=result.scheduled_for.date(),
            trigger=result.scheduled_for.time(),
            completed_at=calendar_now.replace(microsecond=0),
        )
        self._dirty = True
        logger.info(f"{result.pump_id}: watering for {result.scheduled_for:%Y-%m-%d %H:%M} "
                    f"{result.outcome} after {result.runtime:.1f}s")

    def _persist(self):
        if not self._dirty:
            return
        try:
            self.store.save(self.last_runs)
            self._dirty = False
        except PersistenceError as e:
            logger.error(f"{e} - will retry next tick")

    # ── Manual runs ──────────────────────────────────────────

    def test_pump(self, pump_id: str, seconds: float) -> Optional[ActivationResult]:
        """Run one pump for ``seconds`` outside the schedule.

        No last-run record is written. Returns None if the pump could not be
        switched on.

        Raises:
            KeyError: If there is no pump with that id
            ValueError: If ``seconds`` is outside (0, safety ceiling]
        """
        controller = self.controllers[pump_id]
        self.start()

        if not controller.trigger(self.clock.now_monotonic(), duration=seconds):
            return None

        while not self._stop.is_set():
            now = self.clock.now_monotonic()
            result = controller.advance(now)
            if result:
                return result
            remaining = controller.seconds_until_deadline(now)
            self._wait(self.tick_interval if remaining is None else min(self.tick_interval, remaining))

        return controller.shutdown(self.clock.now_monotonic())

