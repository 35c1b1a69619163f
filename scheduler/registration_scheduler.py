"""Periodic sync task per registration."""
import logging
import random
import threading
import time
from typing import Callable, Dict, List, Optional

from processor.models import Registration
from scheduler.sync_runner import SyncRunner

logger = logging.getLogger(__name__)

SYNC_INTERVAL_SECONDS = 900
MAX_INITIAL_JITTER_SECONDS = 765

STATE_PENDING = 'pending'
STATE_ACTIVE = 'active'


def registration_key(registration: Registration) -> str:
    return f"{registration.guild_id}/{registration.meetup_group}"


class RegistrationScheduler:
    """
    Runs every registration on its own thread, forever.

    Each task waits for its first tick, then syncs at a fixed rate anchored
    to that tick. A failing pass is logged and the task carries on with its
    next tick. Tasks only stop when the whole scheduler shuts down.
    """

    def __init__(
        self,
        runner: SyncRunner,
        interval: float = SYNC_INTERVAL_SECONDS,
        max_jitter: int = MAX_INITIAL_JITTER_SECONDS,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None
    ):
        """
        Initialize the scheduler.

        Args:
            runner: SyncRunner executing the passes
            interval: Seconds between two ticks of a registration
            max_jitter: Exclusive upper bound of the first tick delay
            rng: Random source for the first tick delay
            clock: Monotonic clock in seconds
            wait: Function sleeping up to the given seconds and returning
                True once shutdown was requested (default: stop event wait)

        Raises:
            ValueError: If interval is not positive or max_jitter is negative
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if max_jitter < 0:
            raise ValueError(f"max_jitter must not be negative, got {max_jitter}")

        self.runner = runner
        self.interval = interval
        self.max_jitter = max_jitter
        self.rng = rng or random.Random()
        self.clock = clock
        self._stop = threading.Event()
        self.wait = wait or self._stop.wait
        self._lock = threading.Lock()
        self._states: Dict[str, str] = {}
        self._threads: List[threading.Thread] = []

    def initial_delay(self, initial_wait: bool) -> float:
        """Seconds to wait before the first tick."""
        if not initial_wait or self.max_jitter <= 0:
            return 0
        return self.rng.randrange(0, self.max_jitter, 3)

    def next_tick(self, previous_tick: float, now: float) -> float:
        """
        Next anchored tick strictly after the previous one.

        Ticks missed because a pass overran the interval are skipped.
        """
        tick = previous_tick + self.interval
        while tick <= now:
            tick += self.interval
        return tick

    def schedule(self, registration: Registration, initial_wait: bool) -> threading.Thread:
        """
        Start the periodic task of a registration on a daemon thread.

        Args:
            registration: Registration to sync
            initial_wait: Delay the first tick by a random jitter

        Returns:
            The started thread
        """
        thread = threading.Thread(
            target=self.run_registration,
            args=(registration, initial_wait),
            name=f"sync-{registration_key(registration)}",
            daemon=True
        )
        with self._lock:
            self._states[registration_key(registration)] = STATE_PENDING
            self._threads.append(thread)
        thread.start()
        return thread

    def run_registration(self, registration: Registration, initial_wait: bool) -> None:
        """
        Tick loop of one registration, run on the calling thread.

        Returns only once shutdown was requested.
        """
        key = registration_key(registration)
        with self._lock:
            self._states.setdefault(key, STATE_PENDING)

        delay = self.initial_delay(initial_wait)
        if delay:
            logger.info(f"Waiting for {delay} seconds before syncing {key}")
        tick = self.clock() + delay

        while True:
            remaining = tick - self.clock()
            if remaining > 0 and self.wait(remaining):
                break
            if self._stop.is_set():
                break

            with self._lock:
                self._states[key] = STATE_ACTIVE
            self._run_tick(registration)

            tick = self.next_tick(tick, self.clock())

        logger.info(f"Stopped syncing {key}")

    def _run_tick(self, registration: Registration) -> None:
        """Run one pass, logging instead of raising on failure."""
        try:
            self.runner.run_pass(registration)
        except Exception as e:
            logger.error(
                f"Sync of {registration.meetup_group} for guild {registration.guild_id} "
                f"failed: {e}",
                extra={
                    'meetup_group': registration.meetup_group,
                    'guild_id': registration.guild_id,
                    'error_type': type(e).__name__
                },
                exc_info=True
            )

    def state_of(self, registration: Registration) -> Optional[str]:
        """Return the task state of a registration, or None if unknown."""
        with self._lock:
            return self._states.get(registration_key(registration))

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop every task and wait for the threads to finish.

        Args:
            timeout: Seconds to wait for each thread
        """
        logger.info("Shutting down registration scheduler")
        self._stop.set()
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


class RegistrationService:
    """Registers new Meetup groups and starts syncing them right away."""

    def __init__(self, store, scheduler: RegistrationScheduler):
        self.store = store
        self.scheduler = scheduler

    def register(self, registration: Registration) -> bool:
        """
        Store a registration and schedule it without initial delay.

        Args:
            registration: Registration created by an operator

        Returns:
            True if it was new and is now syncing, False if it already existed
        """
        logger.info(f"Registering a new synchronization for {registration.meetup_group}")
        if not self.store.insert(registration):
            return False

        self.scheduler.schedule(registration, initial_wait=False)
        return True

    def start_all(self) -> int:
        """
        Schedule every stored registration with a random initial delay.

        Returns:
            Number of scheduled registrations
        """
        registrations = self.store.list_all()
        for registration in registrations:
            self.scheduler.schedule(registration, initial_wait=True)
        logger.info(f"Scheduled {len(registrations)} registrations")
        return len(registrations)
