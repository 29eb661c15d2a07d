import pytest

from event_checker.engine.errors import ConfigurationError
from event_checker.engine.matchers import ExactMatcher, RegexMatcher, exact, matches, regex, to_dict


class TestExactMatcher:
    """Test exact string matching."""

    def test_equal_value_matches(self):
        assert matches(exact("frontend"), "frontend") is True

    def test_different_value_does_not_match(self):
        assert matches(exact("frontend"), "frontend-v2") is False
        assert matches(exact("frontend"), "Frontend") is False
        assert matches(exact("frontend"), "") is False

    def test_non_string_values_never_match(self):
        assert matches(exact("5"), 5) is False
        assert matches(exact("None"), None) is False

    def test_non_string_expected_rejected(self):
        with pytest.raises(ConfigurationError):
            ExactMatcher(5)  # type: ignore[arg-type]


class TestRegexMatcher:
    """Test regular expression matching."""

    def test_full_value_matches(self):
        assert matches(regex("[a-f0-9]+"), "abc123") is True

    def test_partial_match_is_rejected(self):
        """The expression must cover the whole value, not a prefix or substring."""
        assert matches(regex("[a-f0-9]+"), "abc123-xyz") is False
        assert matches(regex("[a-f0-9]+"), "xyz-abc123") is False

    def test_empty_value(self):
        assert matches(regex("[a-f0-9]+"), "") is False
        assert matches(regex("[a-f0-9]*"), "") is True

    def test_invalid_regex_fails_at_construction(self):
        with pytest.raises(ConfigurationError, match="Invalid regex pattern"):
            RegexMatcher("[a-f")

    def test_equality_by_pattern(self):
        assert regex("[a-f0-9]+") == regex("[a-f0-9]+")
        assert regex("[a-f0-9]+") != exact("[a-f0-9]+")


def test_to_dict():
    """Test serializing matchers to their document form."""
    assert to_dict(exact("redis-cart")) == {"exact": "redis-cart"}
    assert to_dict(regex("[a-f0-9]+")) == {"regex": "[a-f0-9]+"}


def test_unknown_pattern_type_rejected():
    with pytest.raises(TypeError):
        matches("frontend", "frontend")  # type: ignore[arg-type]
