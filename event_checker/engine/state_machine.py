import logging
import threading
import time
from datetime import timedelta
from enum import Enum
from typing import Callable, List, Optional, Union

from event_checker.config import CheckerSettings, load_settings

from .engine import EngineResult, MatchingEngine
from .errors import CheckerStateError, ConfigurationError, StreamClosed
from .models import PENDING, ExpectationSet, ObservedEvent, Verdict, VerdictStatus
from .sources import EventSource

logger = logging.getLogger(__name__)

Duration = Union[float, int, timedelta]
ResultListener = Callable[[ObservedEvent, EngineResult], None]


class CheckerState(str, Enum):
    CONFIGURED = "configured"
    LISTENING = "listening"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    EVENT_LIMIT_EXCEEDED = "event_limit_exceeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self not in (CheckerState.CONFIGURED, CheckerState.LISTENING)


_TERMINAL_STATES = {
    VerdictStatus.SUCCEEDED: CheckerState.SUCCEEDED,
    VerdictStatus.TIMED_OUT: CheckerState.TIMED_OUT,
    VerdictStatus.EVENT_LIMIT_EXCEEDED: CheckerState.EVENT_LIMIT_EXCEEDED,
    VerdictStatus.FAILED: CheckerState.FAILED,
}


def to_seconds(value: Duration) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _is_event_limit(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


class EventChecker:
    """
    State machine that drives a matching engine from an event source.

    Lifecycle: CONFIGURED -> LISTENING -> one of SUCCEEDED, TIMED_OUT,
    EVENT_LIMIT_EXCEEDED or FAILED. A checker runs once; build a new one for
    every run.

    Only the run loop mutates the match state and counters. ``wait`` and
    ``reset_timeout`` may be called from any thread.
    """

    def __init__(
        self,
        expectations: ExpectationSet,
        event_limit: Optional[int] = None,
        time_limit: Optional[Duration] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        settings: Optional[CheckerSettings] = None,
        poll_interval: Optional[Duration] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize a checker.

        Args:
            expectations: Expectation set that defines success
            event_limit: Maximum number of events to consume (settings default)
            time_limit: Time budget in seconds or as timedelta (settings default)
            namespace: Only count events from this namespace, if set
            name: Name used in log messages (defaults to the expectation set name)
            settings: Source of defaults (loaded from the environment if omitted)
            poll_interval: Longest single wait on the source before re-checking
                the deadline
            clock: Monotonic clock, injectable for tests

        Raises:
            ConfigurationError: If a limit is not positive
        """
        settings = settings or load_settings()

        self.expectations = expectations
        self.name = name or expectations.name or "event-checker"
        self.event_limit = settings.event_limit if event_limit is None else event_limit
        self.time_limit = to_seconds(
            settings.time_limit_seconds if time_limit is None else time_limit
        )
        self.poll_interval = to_seconds(
            settings.poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.namespace = namespace

        if not _is_event_limit(self.event_limit):
            raise ConfigurationError(f"event_limit must be a positive integer: {self.event_limit}")
        if self.time_limit <= 0:
            raise ConfigurationError(f"time_limit must be positive: {self.time_limit}")
        if self.poll_interval <= 0:
            raise ConfigurationError(f"poll_interval must be positive: {self.poll_interval}")

        self.engine = MatchingEngine(expectations)
        self.events_seen = 0
        self.failure_cause: Optional[BaseException] = None

        self._clock = clock
        self._lock = threading.Lock()
        self._listening = threading.Event()
        self._state = CheckerState.CONFIGURED
        self._deadline: Optional[float] = None
        self._verdict: Verdict = PENDING
        self._listeners: List[ResultListener] = []

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def with_event_limit(self, event_limit: int) -> "EventChecker":
        self._require_configured()
        if not _is_event_limit(event_limit):
            raise ConfigurationError(f"event_limit must be a positive integer: {event_limit}")
        self.event_limit = event_limit
        return self

    def with_time_limit(self, time_limit: Duration) -> "EventChecker":
        self._require_configured()
        seconds = to_seconds(time_limit)
        if seconds <= 0:
            raise ConfigurationError(f"time_limit must be positive: {seconds}")
        self.time_limit = seconds
        return self

    def add_listener(self, listener: ResultListener) -> None:
        """Register a callback invoked from the run loop after every submitted event."""
        self._require_configured()
        self._listeners.append(listener)

    def _require_configured(self) -> None:
        if self._state is not CheckerState.CONFIGURED:
            raise CheckerStateError(f"Checker '{self.name}' is already {self._state.value}")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    @property
    def state(self) -> CheckerState:
        with self._lock:
            return self._state

    @property
    def verdict(self) -> Verdict:
        with self._lock:
            return self._verdict

    def remaining_time(self) -> Optional[float]:
        """Seconds left before the deadline, or None if the run has not started."""
        with self._lock:
            if self._deadline is None:
                return None
            return self._deadline - self._clock()

    def wait(self, timeout: Duration) -> bool:
        """
        Block until the run loop is listening or ``timeout`` elapses.

        Returns:
            True if the checker started listening in time
        """
        ready = self._listening.wait(to_seconds(timeout))
        if not ready:
            logger.warning("Checker '%s' did not start within %ss", self.name, to_seconds(timeout))
        return ready

    def reset_timeout(self) -> bool:
        """
        Push the deadline to ``now + time_limit``.

        Matched patterns and the event counter are kept. Has no effect
        unless the checker is listening.

        Returns:
            True if the deadline was moved
        """
        with self._lock:
            if self._state is not CheckerState.LISTENING:
                return False
            self._deadline = self._clock() + self.time_limit
        logger.info("Checker '%s' deadline reset to %.1fs from now", self.name, self.time_limit)
        return True

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------
    def run(self, source: EventSource) -> Verdict:
        """
        Consume events from ``source`` until a terminal verdict is reached.

        Args:
            source: Event source to pull from

        Returns:
            The terminal Verdict

        Raises:
            CheckerStateError: If the checker has already been run
        """
        with self._lock:
            if self._state is not CheckerState.CONFIGURED:
                raise CheckerStateError(
                    f"Checker '{self.name}' cannot run again (state: {self._state.value})"
                )
            self._state = CheckerState.LISTENING
            self._deadline = self._clock() + self.time_limit
        self._listening.set()

        logger.info(
            "Checker '%s' listening for %d expected event(s) (event_limit=%d, time_limit=%.1fs)",
            self.name,
            len(self.expectations),
            self.event_limit,
            self.time_limit,
        )

        try:
            verdict = self._listen(source)
        except Exception as e:
            self.failure_cause = e
            logger.exception("Checker '%s' crashed while listening", self.name)
            verdict = self._finish(
                VerdictStatus.FAILED, f"checker error: {type(e).__name__}: {e}"
            )

        log = logger.info if verdict.passed else logger.warning
        log("Checker '%s' finished: %s", self.name, verdict.describe())
        return verdict

    def _listen(self, source: EventSource) -> Verdict:
        while True:
            remaining = self.remaining_time() or 0.0
            if remaining <= 0:
                return self._finish(
                    VerdictStatus.TIMED_OUT,
                    f"time limit of {self.time_limit:.1f}s elapsed before all "
                    "expected events were observed",
                )

            try:
                event = source.next_event(min(remaining, self.poll_interval))
            except StreamClosed:
                return self._finish(
                    VerdictStatus.FAILED,
                    "event stream ended before all expected events were observed",
                )
            except Exception as e:
                self.failure_cause = e
                logger.error("Checker '%s' event source failed: %s", self.name, e)
                return self._finish(VerdictStatus.FAILED, f"event source failed: {e}")

            if event is None:
                continue

            if self.namespace is not None and event.namespace != self.namespace:
                continue

            self.events_seen += 1
            if self.events_seen > self.event_limit:
                return self._finish(
                    VerdictStatus.EVENT_LIMIT_EXCEEDED,
                    f"observed more than {self.event_limit} events without "
                    "matching every expected event",
                )

            result = self.engine.submit(event)
            for listener in self._listeners:
                listener(event, result)

            if self.engine.is_complete():
                return self._finish(
                    VerdictStatus.SUCCEEDED,
                    f"all {len(self.expectations)} expected events observed",
                )

    def _finish(self, status: VerdictStatus, detail: str) -> Verdict:
        verdict = Verdict(
            status=status,
            detail=detail,
            unmatched=tuple(self.engine.unmatched()),
            events_seen=self.events_seen,
        )
        with self._lock:
            self._state = _TERMINAL_STATES[status]
            self._verdict = verdict
        return verdict

    def __repr__(self) -> str:
        return (
            f"EventChecker(name={self.name}, "
            f"state={self._state.value}, "
            f"matched={self.engine.matched_count()}/{len(self.expectations)}, "
            f"events={self.events_seen})"
        )
