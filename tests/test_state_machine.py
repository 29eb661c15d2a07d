"""
Tests for the checker state machine.

Tests cover:
- Success, timeout, event limit and failure verdicts
- Readiness handshake
- Deadline reset while listening
- Namespace filtering
- Single-use lifecycle
"""

import threading
from datetime import timedelta

import pytest

from event_checker.engine.engine import EngineAction
from event_checker.engine.errors import CheckerStateError, ConfigurationError
from event_checker.engine.models import VerdictStatus, process_exec
from event_checker.engine.sources import IterableEventSource, QueueEventSource
from event_checker.engine.state_machine import CheckerState, EventChecker


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def run_in_thread(checker, source):
    thread = threading.Thread(target=checker.run, args=(source,), daemon=True)
    thread.start()
    return thread


class TestVerdicts:
    """Test how runs terminate."""

    def test_boutique_scenario_succeeds_after_third_event(
        self, boutique_expectations, fast_settings
    ):
        checker = EventChecker(
            boutique_expectations,
            event_limit=5000,
            time_limit=timedelta(minutes=5),
            settings=fast_settings,
        )
        actions = []
        checker.add_listener(lambda event, result: actions.append(result.action))

        source = IterableEventSource(
            [
                process_exec("frontend", {"app": "frontend"}),
                process_exec("adservice", {"app": "adservice"}),
                process_exec("redis", {"app": "redis-cart"}),
            ]
        )
        verdict = checker.run(source)

        assert verdict.status == VerdictStatus.SUCCEEDED
        assert verdict.passed
        assert verdict.unmatched == ()
        assert verdict.events_seen == 3
        assert actions == [EngineAction.NO_MATCH, EngineAction.MATCHED, EngineAction.MATCHED]
        assert checker.state == CheckerState.SUCCEEDED
        assert checker.verdict == verdict

    def test_success_stops_consuming_early(self, boutique_expectations, fast_settings):
        """Events after completion are left in the source."""
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        trailing = process_exec("frontend", {"app": "frontend"})
        remaining = iter(
            [
                process_exec("redis", {"app": "redis-cart"}),
                process_exec("adservice", {"app": "adservice"}),
                trailing,
            ]
        )
        verdict = checker.run(IterableEventSource(remaining))

        assert verdict.passed
        assert verdict.events_seen == 2
        assert next(remaining) is trailing

    def test_timeout_lists_unmatched_patterns(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, time_limit=0.2, settings=fast_settings)
        source = QueueEventSource()
        source.put(process_exec("frontend", {"app": "frontend"}))

        verdict = checker.run(source)

        assert verdict.status == VerdictStatus.TIMED_OUT
        assert not verdict.passed
        assert verdict.unmatched == boutique_expectations.patterns
        assert verdict.events_seen == 1
        description = verdict.describe()
        assert "adservice" in description
        assert "redis-cart" in description
        assert checker.state == CheckerState.TIMED_OUT

    def test_event_limit_exceeded(self, boutique_expectations, fast_settings):
        checker = EventChecker(
            boutique_expectations, event_limit=2, time_limit=60, settings=fast_settings
        )
        source = QueueEventSource()
        source.put_many(process_exec("frontend", {"app": "frontend"}) for _ in range(3))

        verdict = checker.run(source)

        assert verdict.status == VerdictStatus.EVENT_LIMIT_EXCEEDED
        assert verdict.events_seen == 3
        assert len(verdict.unmatched) == 2
        assert checker.state == CheckerState.EVENT_LIMIT_EXCEEDED

    def test_event_limit_reached_exactly_still_succeeds(
        self, boutique_expectations, fast_settings
    ):
        checker = EventChecker(boutique_expectations, event_limit=2, settings=fast_settings)
        source = IterableEventSource(
            [
                process_exec("adservice", {"app": "adservice"}),
                process_exec("redis", {"app": "redis-cart"}),
            ]
        )
        assert checker.run(source).passed

    def test_duplicates_do_not_rematch(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        actions = []
        checker.add_listener(lambda event, result: actions.append(result.action))
        source = IterableEventSource(
            [
                process_exec("adservice", {"app": "adservice"}),
                process_exec("adservice", {"app": "adservice"}),
                process_exec("redis", {"app": "redis-cart"}),
            ]
        )

        verdict = checker.run(source)

        assert verdict.passed
        assert verdict.events_seen == 3
        assert actions == [
            EngineAction.MATCHED,
            EngineAction.ALREADY_SATISFIED,
            EngineAction.MATCHED,
        ]

    def test_end_of_stream_fails(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        source = IterableEventSource([process_exec("adservice", {"app": "adservice"})])

        verdict = checker.run(source)

        assert verdict.status == VerdictStatus.FAILED
        assert "event stream ended" in verdict.detail
        assert [p.process_name for p in verdict.unmatched] == ["redis"]

    def test_source_failure_carries_cause(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        source = QueueEventSource()
        source.put(process_exec("adservice", {"app": "adservice"}))
        error = ConnectionError("subscription reset by peer")
        source.fail(error)

        verdict = checker.run(source)

        assert verdict.status == VerdictStatus.FAILED
        assert "subscription reset by peer" in verdict.detail
        assert checker.failure_cause is error
        assert verdict.events_seen == 1

    def test_listener_error_fails_the_run(self, boutique_expectations, fast_settings):
        """A crash inside the run loop still ends in a terminal state."""
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        error = RuntimeError("listener exploded")

        def broken_listener(event, result):
            raise error

        checker.add_listener(broken_listener)
        source = IterableEventSource([process_exec("adservice", {"app": "adservice"})])

        verdict = checker.run(source)

        assert verdict.status == VerdictStatus.FAILED
        assert "checker error: RuntimeError: listener exploded" in verdict.detail
        assert verdict.events_seen == 1
        assert checker.state == CheckerState.FAILED
        assert checker.verdict == verdict
        assert checker.failure_cause is error
        assert checker.reset_timeout() is False

    def test_namespace_filter(self, boutique_expectations, fast_settings):
        """Events from other namespaces are dropped before counting."""
        checker = EventChecker(
            boutique_expectations, event_limit=2, namespace="labels", settings=fast_settings
        )
        source = IterableEventSource(
            [
                process_exec("adservice", {"app": "adservice"}, namespace="default"),
                process_exec("frontend", {"app": "frontend"}, namespace="kube-system"),
                process_exec("adservice", {"app": "adservice"}, namespace="labels"),
                process_exec("redis", {"app": "redis-cart"}, namespace="labels"),
            ]
        )

        verdict = checker.run(source)

        assert verdict.passed
        assert verdict.events_seen == 2


class TestReadiness:
    """Test the wait() handshake."""

    def test_wait_true_once_listening_without_events(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        source = QueueEventSource()
        thread = run_in_thread(checker, source)

        assert checker.wait(2.0) is True
        assert checker.state == CheckerState.LISTENING
        assert checker.events_seen == 0

        source.close()
        thread.join(timeout=2.0)
        assert checker.state == CheckerState.FAILED

    def test_wait_false_when_never_started(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        assert checker.wait(0.05) is False
        assert checker.state == CheckerState.CONFIGURED

    def test_wait_accepts_timedelta(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        assert checker.wait(timedelta(milliseconds=10)) is False

    def test_events_put_after_wait_are_not_lost(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        source = QueueEventSource()
        thread = run_in_thread(checker, source)

        assert checker.wait(2.0)
        source.put(process_exec("redis", {"app": "redis-cart"}))
        source.put(process_exec("adservice", {"app": "adservice"}))
        thread.join(timeout=2.0)

        assert checker.verdict.passed


class TestResetTimeout:
    """Test extending the deadline while listening."""

    def test_noop_before_start(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        assert checker.reset_timeout() is False
        assert checker.remaining_time() is None

    def test_reset_extends_deadline_and_keeps_progress(
        self, boutique_expectations, fast_settings
    ):
        clock = FakeClock()
        checker = EventChecker(
            boutique_expectations, time_limit=10, settings=fast_settings, clock=clock
        )
        source = QueueEventSource()
        thread = run_in_thread(checker, source)
        assert checker.wait(2.0)

        source.put(process_exec("adservice", {"app": "adservice"}))
        clock.advance(8)
        assert checker.reset_timeout() is True
        assert checker.remaining_time() == pytest.approx(10)

        # Past the original deadline, inside the new one
        clock.advance(8)
        source.put(process_exec("redis", {"app": "redis-cart"}))
        thread.join(timeout=2.0)

        verdict = checker.verdict
        assert verdict.passed
        assert verdict.events_seen == 2

    def test_reset_is_not_cumulative(self, boutique_expectations, fast_settings):
        clock = FakeClock()
        checker = EventChecker(
            boutique_expectations, time_limit=10, settings=fast_settings, clock=clock
        )
        source = QueueEventSource()
        thread = run_in_thread(checker, source)
        assert checker.wait(2.0)

        checker.reset_timeout()
        checker.reset_timeout()
        checker.reset_timeout()
        assert checker.remaining_time() == pytest.approx(10)

        clock.advance(11)
        thread.join(timeout=2.0)
        assert checker.state == CheckerState.TIMED_OUT

    def test_noop_after_terminal(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        checker.run(IterableEventSource([]))
        assert checker.state == CheckerState.FAILED
        assert checker.reset_timeout() is False


class TestLifecycle:
    """Test configuration and single-use rules."""

    def test_cannot_run_twice(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        checker.run(IterableEventSource([]))
        with pytest.raises(CheckerStateError):
            checker.run(IterableEventSource([]))

    def test_defaults_come_from_settings(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        assert checker.event_limit == fast_settings.event_limit
        assert checker.time_limit == fast_settings.time_limit_seconds
        assert checker.name == "boutique"

    def test_fluent_limits(self, boutique_expectations, fast_settings):
        checker = (
            EventChecker(boutique_expectations, settings=fast_settings)
            .with_event_limit(5000)
            .with_time_limit(timedelta(minutes=5))
        )
        assert checker.event_limit == 5000
        assert checker.time_limit == 300.0

    def test_limits_frozen_after_start(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        checker.run(IterableEventSource([]))
        with pytest.raises(CheckerStateError):
            checker.with_event_limit(10)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"event_limit": 0},
            {"event_limit": -5},
            {"event_limit": True},
            {"event_limit": 2.5},
            {"time_limit": 0},
            {"time_limit": -1.0},
        ],
    )
    def test_invalid_limits_rejected(self, boutique_expectations, fast_settings, kwargs):
        with pytest.raises(ConfigurationError):
            EventChecker(boutique_expectations, settings=fast_settings, **kwargs)

    def test_fluent_event_limit_rejects_bool(self, boutique_expectations, fast_settings):
        checker = EventChecker(boutique_expectations, settings=fast_settings)
        with pytest.raises(ConfigurationError):
            checker.with_event_limit(True)
        assert checker.event_limit == fast_settings.event_limit
