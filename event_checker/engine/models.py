import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .matchers import AttributePattern, ExactMatcher, RegexMatcher


class EventKind(str, Enum):
    PROCESS_EXEC = "process_exec"
    PROCESS_EXIT = "process_exit"
    PROCESS_KPROBE = "process_kprobe"
    PROCESS_TRACEPOINT = "process_tracepoint"

    @classmethod
    def parse(cls, value: Any) -> "EventKind":
        if isinstance(value, EventKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(kind.value for kind in cls)
            raise ConfigurationError(f"Unknown event kind '{value}' (expected one of: {allowed})")


class ObservedEvent:
    """
    A single event pulled from the live event stream.

    Carries the event kind, the name of the process that produced it and the
    contextual attributes (pod labels) as they were at emission time.
    """

    def __init__(
        self,
        kind: EventKind,
        process_name: str,
        attributes: Optional[Mapping[str, str]] = None,
        namespace: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ):
        """
        Initialize an ObservedEvent.

        Args:
            kind: Event kind (e.g. EventKind.PROCESS_EXEC)
            process_name: Name of the process the event belongs to
            attributes: Contextual attributes, e.g. pod labels
            namespace: Namespace of the pod that produced the event, if any
            timestamp: Event timestamp (defaults to current time if not provided)
            event_id: Unique event identifier (auto-generated hash if not provided)
        """
        self.kind = EventKind.parse(kind)
        self.process_name = process_name
        self.attributes: Dict[str, str] = dict(attributes or {})
        self.namespace = namespace
        self.timestamp = timestamp or datetime.now()

        if event_id:
            self.event_id = event_id
        else:
            event_str = json.dumps(
                {
                    "kind": self.kind.value,
                    "process": process_name,
                    "namespace": namespace,
                    "attributes": self.attributes,
                    "timestamp": self.timestamp.isoformat(),
                },
                sort_keys=True,
            )
            self.event_id = hashlib.sha256(event_str.encode()).hexdigest()

    def __repr__(self) -> str:
        return (
            f"ObservedEvent(kind={self.kind.value}, "
            f"process={self.process_name}, "
            f"attributes={self.attributes})"
        )


def process_exec(
    process_name: str,
    attributes: Optional[Mapping[str, str]] = None,
    namespace: Optional[str] = None,
) -> ObservedEvent:
    """Shorthand for an observed process execution."""
    return ObservedEvent(EventKind.PROCESS_EXEC, process_name, attributes, namespace=namespace)


@dataclass(frozen=True)
class ExpectedEventPattern:
    """
    Declarative description of one event that must be observed.

    Attribute patterns are a subset match: every declared key must be
    present on the event and satisfy its matcher, other event attributes
    are ignored.
    """

    kind: EventKind
    process_name: str
    attribute_patterns: Mapping[str, AttributePattern] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind.parse(self.kind))
        if not self.process_name or not isinstance(self.process_name, str):
            raise ConfigurationError("Expected event pattern requires a process name")
        for key, pattern in self.attribute_patterns.items():
            if not isinstance(pattern, (ExactMatcher, RegexMatcher)):
                raise ConfigurationError(
                    f"Attribute '{key}' of '{self.process_name}' must be an exact or regex matcher"
                )
        object.__setattr__(
            self, "attribute_patterns", MappingProxyType(dict(self.attribute_patterns))
        )

    def describe(self) -> str:
        if not self.attribute_patterns:
            return f"{self.kind.value} {self.process_name}"
        attrs = ", ".join(
            f"{key}={pattern!r}" for key, pattern in sorted(self.attribute_patterns.items())
        )
        return f"{self.kind.value} {self.process_name} {{{attrs}}}"

    def __str__(self) -> str:
        return self.describe()


class ExpectationSet:
    """
    Unordered collection of expected event patterns that together define success.

    The collection is fixed at construction. Declaration order is kept only
    so that matching and reporting are deterministic.
    """

    def __init__(self, patterns: Iterable[ExpectedEventPattern], name: str = ""):
        self._patterns: Tuple[ExpectedEventPattern, ...] = tuple(patterns)
        if not self._patterns:
            raise ConfigurationError("Expectation set must contain at least one pattern")
        self.name = name

    @property
    def patterns(self) -> Tuple[ExpectedEventPattern, ...]:
        return self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self):
        return iter(self._patterns)

    def __repr__(self) -> str:
        return f"ExpectationSet(name='{self.name}', patterns={len(self._patterns)})"


class VerdictStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    EVENT_LIMIT_EXCEEDED = "event_limit_exceeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not VerdictStatus.PENDING


@dataclass(frozen=True)
class Verdict:
    """
    Terminal outcome of one checker run.

    Attributes:
        status: How the run ended
        detail: Human-readable reason
        unmatched: Patterns that were never observed
        events_seen: Number of events counted against the event limit
    """

    status: VerdictStatus
    detail: str = ""
    unmatched: Tuple[ExpectedEventPattern, ...] = ()
    events_seen: int = 0

    @property
    def passed(self) -> bool:
        return self.status is VerdictStatus.SUCCEEDED

    def describe(self) -> str:
        lines = [f"{self.status.value}: {self.detail}" if self.detail else self.status.value]
        if self.unmatched:
            lines.append(f"unmatched expected events ({len(self.unmatched)}):")
            lines.extend(f"  - {pattern.describe()}" for pattern in self.unmatched)
        return "\n".join(lines)

    def as_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "detail": self.detail,
            "unmatched": [pattern.describe() for pattern in self.unmatched],
            "events_seen": self.events_seen,
        }


PENDING = Verdict(VerdictStatus.PENDING)
