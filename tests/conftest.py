"""
Shared pytest fixtures for the event checker test suite.
"""

import pytest

from event_checker.config import CheckerSettings
from event_checker.engine.matchers import exact, regex
from event_checker.engine.models import EventKind, ExpectationSet, ExpectedEventPattern


@pytest.fixture
def fast_settings(tmp_path) -> CheckerSettings:
    """Settings with short limits so timing tests finish quickly."""
    return CheckerSettings(
        event_limit=5000,
        time_limit_seconds=2.0,
        wait_timeout_seconds=2.0,
        poll_interval_seconds=0.01,
        workload_attempts=3,
        expectations_dir=tmp_path / "expectations",
        database_url=f"sqlite:///{tmp_path / 'history.db'}",
    )


@pytest.fixture
def boutique_expectations() -> ExpectationSet:
    """The two-pattern adservice/redis expectation set."""
    return ExpectationSet(
        [
            ExpectedEventPattern(EventKind.PROCESS_EXEC, "adservice", {"app": exact("adservice")}),
            ExpectedEventPattern(EventKind.PROCESS_EXEC, "redis", {"app": exact("redis-cart")}),
        ],
        name="boutique",
    )


@pytest.fixture
def hashed_pattern() -> ExpectedEventPattern:
    return ExpectedEventPattern(
        EventKind.PROCESS_EXEC,
        "frontend",
        {"app": exact("frontend"), "pod-template-hash": regex("[a-f0-9]+")},
    )
