from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from event_checker.config import CheckerSettings, load_settings

from .errors import CollaboratorFailure
from .models import Verdict, VerdictStatus
from .sources import EventSource
from .state_machine import Duration, EventChecker, to_seconds

logger = logging.getLogger(__name__)

Collaborator = Callable[[EventChecker], None]
CleanupTask = Callable[[], None]
NamedTask = Tuple[str, Callable]


@dataclass(frozen=True)
class TaskFailure:
    task: str
    error: str

    def describe(self) -> str:
        return f"{self.task}: {self.error}"


@dataclass(frozen=True)
class RunOutcome:
    """
    Combined result of a checker run, its collaborators and the cleanup phase.

    Attributes:
        verdict: Terminal verdict of the checker
        collaborator_failures: Failures reported by concurrently run tasks
        cleanup_failures: Failures reported by cleanup tasks
    """

    verdict: Verdict
    collaborator_failures: Tuple[TaskFailure, ...] = ()
    cleanup_failures: Tuple[TaskFailure, ...] = ()

    @property
    def passed(self) -> bool:
        return (
            self.verdict.passed
            and not self.collaborator_failures
            and not self.cleanup_failures
        )

    @property
    def detail(self) -> str:
        """Every failure reason, checker first, or a success summary."""
        if self.passed:
            return self.verdict.describe()

        reasons: List[str] = []
        if not self.verdict.passed:
            reasons.append(f"checker {self.verdict.describe()}")
        reasons.extend(f"collaborator {f.describe()}" for f in self.collaborator_failures)
        reasons.extend(f"cleanup {f.describe()}" for f in self.cleanup_failures)
        return "\n".join(reasons)


def _describe_error(error: BaseException) -> str:
    message = str(error)
    if isinstance(error, CollaboratorFailure) and message:
        return message
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


def _named(tasks: Sequence[Union[Callable, NamedTask]], prefix: str) -> List[NamedTask]:
    named: List[NamedTask] = []
    for idx, task in enumerate(tasks, start=1):
        if isinstance(task, tuple):
            named.append(task)
        else:
            named.append((getattr(task, "name", None) or f"{prefix}-{idx}", task))
    return named


class ParallelOrchestrator:
    """
    Runs a checker concurrently with collaborator tasks, then cleans up.

    The checker and every collaborator are started together on a thread
    pool and joined. Cleanup tasks run afterwards, one at a time, whatever
    the outcome of the concurrent phase.
    """

    def __init__(self, thread_name_prefix: str = "event-checker"):
        self.thread_name_prefix = thread_name_prefix

    def run(
        self,
        checker: EventChecker,
        source: EventSource,
        collaborators: Sequence[Union[Collaborator, NamedTask]] = (),
        cleanup: Sequence[Union[CleanupTask, NamedTask]] = (),
    ) -> RunOutcome:
        """
        Run the checker and collaborators in parallel, then the cleanup tasks.

        Args:
            checker: A freshly configured checker
            source: Event source the checker consumes
            collaborators: Callables receiving the checker, optionally as
                (name, callable) pairs; raising reports a failure
            cleanup: Callables without arguments, optionally named

        Returns:
            RunOutcome aggregating every verdict and failure
        """
        named_collaborators = _named(collaborators, "collaborator")
        named_cleanup = _named(cleanup, "cleanup")

        with ThreadPoolExecutor(
            max_workers=len(named_collaborators) + 1,
            thread_name_prefix=self.thread_name_prefix,
        ) as executor:
            checker_future = executor.submit(checker.run, source)
            collaborator_futures = [
                (name, executor.submit(task, checker)) for name, task in named_collaborators
            ]

            verdict = self._checker_verdict(checker, checker_future)
            collaborator_failures = self._collect_failures(collaborator_futures)

        cleanup_failures = []
        for name, task in named_cleanup:
            try:
                task()
            except Exception as e:
                logger.warning("Cleanup task '%s' failed: %s", name, e)
                cleanup_failures.append(TaskFailure(name, _describe_error(e)))

        outcome = RunOutcome(
            verdict=verdict,
            collaborator_failures=tuple(collaborator_failures),
            cleanup_failures=tuple(cleanup_failures),
        )
        if outcome.passed:
            logger.info("Checker '%s' and collaborators passed", checker.name)
        else:
            logger.warning("Checker '%s' run failed:\n%s", checker.name, outcome.detail)
        return outcome

    def _checker_verdict(self, checker: EventChecker, future: "Future[Verdict]") -> Verdict:
        try:
            return future.result()
        except Exception as e:
            logger.error("Checker '%s' crashed: %s", checker.name, e)
            return Verdict(
                status=VerdictStatus.FAILED,
                detail=f"checker error: {_describe_error(e)}",
                unmatched=tuple(checker.engine.unmatched()),
                events_seen=checker.events_seen,
            )

    def _collect_failures(self, futures: List[Tuple[str, Future]]) -> List[TaskFailure]:
        failures = []
        for name, future in futures:
            try:
                future.result()
            except Exception as e:
                logger.warning("Collaborator '%s' failed: %s", name, e)
                failures.append(TaskFailure(name, _describe_error(e)))
        return failures


class Workload:
    """
    Collaborator that waits for the checker to listen, then runs an action.

    The action is attempted up to ``attempts`` times. After every failed
    attempt the checker deadline is reset so slow retries do not starve it.
    """

    def __init__(
        self,
        action: Callable[[], None],
        name: str = "workload",
        attempts: Optional[int] = None,
        wait_timeout: Optional[Duration] = None,
        settings: Optional[CheckerSettings] = None,
    ):
        settings = settings or load_settings()
        self.action = action
        self.name = name
        self.attempts = settings.workload_attempts if attempts is None else attempts
        self.wait_timeout = to_seconds(
            settings.wait_timeout_seconds if wait_timeout is None else wait_timeout
        )
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")

    def __call__(self, checker: EventChecker) -> None:
        if not checker.wait(self.wait_timeout):
            raise CollaboratorFailure(
                f"checker '{checker.name}' did not start within {self.wait_timeout:.1f}s"
            )

        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                self.action()
                logger.info("Workload '%s' succeeded on attempt %d", self.name, attempt)
                return
            except Exception as e:
                last_error = e
                checker.reset_timeout()
                logger.warning(
                    "Workload '%s' attempt %d/%d failed: %s", self.name, attempt, self.attempts, e
                )

        raise CollaboratorFailure(
            f"failed after {self.attempts} attempt(s): {_describe_error(last_error)}"
            if last_error is not None
            else f"failed after {self.attempts} attempt(s)"
        )
