import re
from typing import Any, Union

from .errors import ConfigurationError


class ExactMatcher:
    """
    Matches an attribute value by plain string equality.
    """

    __slots__ = ("expected",)

    def __init__(self, expected: str):
        if not isinstance(expected, str):
            raise ConfigurationError(f"Exact matcher value must be a string: {expected!r}")
        self.expected = expected

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ExactMatcher) and other.expected == self.expected

    def __hash__(self) -> int:
        return hash(("exact", self.expected))

    def __repr__(self) -> str:
        return f"Exact({self.expected!r})"


class RegexMatcher:
    """
    Matches an attribute value against a regular expression.

    The expression must cover the whole value: "[a-f0-9]+" accepts "abc123"
    but rejects "abc123-xyz".
    """

    __slots__ = ("pattern", "compiled")

    def __init__(self, pattern: str):
        if not isinstance(pattern, str):
            raise ConfigurationError(f"Regex pattern must be a string: {pattern!r}")
        try:
            self.compiled = re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid regex pattern '{pattern}': {e}")
        self.pattern = pattern

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RegexMatcher) and other.pattern == self.pattern

    def __hash__(self) -> int:
        return hash(("regex", self.pattern))

    def __repr__(self) -> str:
        return f"Regex({self.pattern!r})"


AttributePattern = Union[ExactMatcher, RegexMatcher]


def exact(value: str) -> ExactMatcher:
    return ExactMatcher(value)


def regex(pattern: str) -> RegexMatcher:
    return RegexMatcher(pattern)


def matches(pattern: AttributePattern, value: Any) -> bool:
    """
    Check whether an observed attribute value satisfies a pattern.

    Args:
        pattern: ExactMatcher or RegexMatcher
        value: Observed attribute value (non-strings never match)

    Returns:
        True if the value satisfies the pattern
    """
    if not isinstance(value, str):
        return False

    if isinstance(pattern, ExactMatcher):
        return value == pattern.expected
    if isinstance(pattern, RegexMatcher):
        return pattern.compiled.fullmatch(value) is not None

    raise TypeError(f"Unsupported attribute pattern: {pattern!r}")


def to_dict(pattern: AttributePattern) -> dict:
    """Serialize a pattern to its document form ({"exact": ...} or {"regex": ...})."""
    if isinstance(pattern, ExactMatcher):
        return {"exact": pattern.expected}
    if isinstance(pattern, RegexMatcher):
        return {"regex": pattern.pattern}
    raise TypeError(f"Unsupported attribute pattern: {pattern!r}")
