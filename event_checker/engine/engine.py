import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .matchers import matches
from .models import ExpectationSet, ExpectedEventPattern, ObservedEvent

logger = logging.getLogger(__name__)


class EngineAction(str, Enum):
    NO_MATCH = "no_match"
    MATCHED = "matched"
    ALREADY_SATISFIED = "already_satisfied"


class EngineResult:
    """
    Outcome of submitting one event to the matching engine.
    """

    __slots__ = ("action", "pattern")

    def __init__(self, action: EngineAction, pattern: Optional[ExpectedEventPattern] = None):
        self.action = action
        self.pattern = pattern

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EngineResult):
            return NotImplemented
        return self.action == other.action and self.pattern == other.pattern

    def __repr__(self) -> str:
        if self.pattern is None:
            return f"EngineResult({self.action.value})"
        return f"EngineResult({self.action.value}, {self.pattern.describe()})"


def pattern_accepts(pattern: ExpectedEventPattern, event: ObservedEvent) -> bool:
    """
    Check whether an observed event satisfies an expected event pattern.

    Kind and process name must be equal, and every declared attribute must be
    present on the event and satisfy its matcher. Attributes the pattern does
    not declare are ignored.

    Args:
        pattern: Expected event pattern
        event: Observed event to test

    Returns:
        True if the event proves the pattern
    """
    if pattern.kind != event.kind:
        return False
    if pattern.process_name != event.process_name:
        return False

    for key, attribute_pattern in pattern.attribute_patterns.items():
        if key not in event.attributes:
            return False
        if not matches(attribute_pattern, event.attributes[key]):
            return False

    return True


class MatchingEngine:
    """
    Matches observed events against an unordered expectation set.

    Keeps one matched flag per pattern. Flags only ever go from False to
    True; the expectation set itself is never modified.
    """

    def __init__(self, expectations: ExpectationSet):
        """
        Initialize the matching engine.

        Args:
            expectations: The expectation set to satisfy
        """
        self.expectations = expectations
        self._matched: List[bool] = [False] * len(expectations)

    def submit(self, event: ObservedEvent) -> EngineResult:
        """
        Match a single event against the remaining unmatched patterns.

        The first unmatched pattern (in declaration order) that accepts the
        event is marked as matched. An event that only proves patterns that
        are already matched changes nothing.

        Args:
            event: Observed event to process

        Returns:
            EngineResult describing what the event did
        """
        already_satisfied = False

        for idx, pattern in enumerate(self.expectations.patterns):
            if not pattern_accepts(pattern, event):
                continue

            if self._matched[idx]:
                already_satisfied = True
                continue

            self._matched[idx] = True
            logger.debug("Matched %s with event %s", pattern.describe(), event.event_id)
            return EngineResult(EngineAction.MATCHED, pattern)

        if already_satisfied:
            return EngineResult(EngineAction.ALREADY_SATISFIED)
        return EngineResult(EngineAction.NO_MATCH)

    def is_complete(self) -> bool:
        """Return True once every pattern has been matched."""
        return all(self._matched)

    def unmatched(self) -> List[ExpectedEventPattern]:
        """Get the patterns that are still waiting for an event, in declaration order."""
        return [
            pattern
            for pattern, matched in zip(self.expectations.patterns, self._matched)
            if not matched
        ]

    def matched_count(self) -> int:
        return sum(self._matched)

    def get_state_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the current match state.

        Returns:
            Dictionary with per-pattern flags and totals
        """
        return {
            "expectation_set": self.expectations.name,
            "total": len(self._matched),
            "matched": self.matched_count(),
            "patterns": [
                {"pattern": pattern.describe(), "matched": matched}
                for pattern, matched in zip(self.expectations.patterns, self._matched)
            ],
        }
