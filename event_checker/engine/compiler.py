from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore[import]

from event_checker.config import CheckerSettings

from .errors import ConfigurationError, ExpectationFileError
from .matchers import AttributePattern, ExactMatcher, RegexMatcher, to_dict
from .models import EventKind, ExpectationSet, ExpectedEventPattern
from .state_machine import EventChecker

ALLOWED_KEYS = {"id", "name", "namespace", "event_limit", "time_limit_seconds", "expect"}
PATTERN_KEYS = {"kind", "process", "attributes"}


class LineLoader(yaml.SafeLoader):
    """YAML loader that annotates nodes with line numbers."""


class _LineDict(dict):
    __slots__ = ("_line",)


class _LineList(list):
    __slots__ = ("_line",)


def _construct_mapping(loader, node, deep=False):
    mapping = _LineDict()
    mapping._line = node.start_mark.line + 1  # type: ignore[attr-defined]
    loader.flatten_mapping(node)
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


def _construct_sequence(loader, node, deep=False):
    seq = _LineList()
    seq._line = node.start_mark.line + 1  # type: ignore[attr-defined]
    for child in node.value:
        seq.append(loader.construct_object(child, deep=deep))
    return seq


LineLoader.add_constructor(  # type: ignore[attr-defined]
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping
)
LineLoader.add_constructor(  # type: ignore[attr-defined]
    yaml.resolver.BaseResolver.DEFAULT_SEQUENCE_TAG, _construct_sequence
)


def _get_line(value: object) -> Optional[int]:
    return getattr(value, "_line", None)


class CompiledExpectations:
    """
    An expectation set together with the run limits declared next to it.

    Limits left out of the document are None and fall back to the checker
    settings when a checker is built.
    """

    def __init__(
        self,
        expectation_id: str,
        expectations: ExpectationSet,
        event_limit: Optional[int] = None,
        time_limit_seconds: Optional[float] = None,
        namespace: Optional[str] = None,
    ):
        self.expectation_id = expectation_id
        self.expectations = expectations
        self.event_limit = event_limit
        self.time_limit_seconds = time_limit_seconds
        self.namespace = namespace

    def build_checker(
        self,
        settings: Optional[CheckerSettings] = None,
        event_limit: Optional[int] = None,
        time_limit: Optional[float] = None,
    ) -> EventChecker:
        """Create a fresh checker; explicit arguments override the document limits."""
        return EventChecker(
            self.expectations,
            event_limit=event_limit if event_limit is not None else self.event_limit,
            time_limit=time_limit if time_limit is not None else self.time_limit_seconds,
            namespace=self.namespace,
            name=self.expectations.name or self.expectation_id,
            settings=settings,
        )

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.expectation_id,
            "name": self.expectations.name,
            "expect": [
                {
                    "kind": pattern.kind.value,
                    "process": pattern.process_name,
                    "attributes": {
                        key: to_dict(matcher)
                        for key, matcher in pattern.attribute_patterns.items()
                    },
                }
                for pattern in self.expectations
            ],
        }
        if self.namespace is not None:
            data["namespace"] = self.namespace
        if self.event_limit is not None:
            data["event_limit"] = self.event_limit
        if self.time_limit_seconds is not None:
            data["time_limit_seconds"] = self.time_limit_seconds
        return data

    def __repr__(self) -> str:
        return (
            f"CompiledExpectations(id='{self.expectation_id}', "
            f"patterns={len(self.expectations)}, "
            f"namespace={self.namespace})"
        )


class ExpectationCompiler:
    """
    Compiles expectation documents into immutable expectation sets.

    A document looks like::

        id: labels
        name: Labels demo app
        namespace: labels
        event_limit: 5000
        time_limit_seconds: 300
        expect:
          - kind: process_exec
            process: adservice
            attributes:
              app: adservice                     # exact match
              pod-template-hash: {regex: "[a-f0-9]+"}

    All regular expressions are compiled here, so a malformed document
    fails before any checker runs.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Args:
            path: File the document came from, used to locate errors
        """
        self.path = path

    def _error(self, message: str, node: object = None) -> ConfigurationError:
        if self.path is not None:
            return ExpectationFileError(message, file_path=self.path, line=_get_line(node))
        return ConfigurationError(message)

    def compile(self, document: Any) -> CompiledExpectations:
        """
        Compile an expectation document.

        Args:
            document: Parsed YAML/JSON document

        Returns:
            CompiledExpectations ready to build checkers from

        Raises:
            ConfigurationError: If the document is malformed or a regex is invalid
        """
        if not isinstance(document, dict):
            raise self._error("Expectation document must be a dictionary", document)

        unknown = [key for key in document if key not in ALLOWED_KEYS]
        if unknown:
            raise self._error(
                f"Unknown field(s): {', '.join(str(k) for k in unknown)}", document
            )

        expectation_id = document.get("id")
        if not isinstance(expectation_id, str) or not expectation_id.strip():
            raise self._error("Expectation document must have a non-empty 'id'", document)

        name = document.get("name", expectation_id)
        if not isinstance(name, str):
            raise self._error("'name' must be a string", document)

        namespace = document.get("namespace")
        if namespace is not None and not isinstance(namespace, str):
            raise self._error("'namespace' must be a string", document)

        event_limit = document.get("event_limit")
        if event_limit is not None and (
            isinstance(event_limit, bool) or not isinstance(event_limit, int) or event_limit < 1
        ):
            raise self._error("'event_limit' must be a positive integer", document)

        time_limit = document.get("time_limit_seconds")
        if time_limit is not None and (
            isinstance(time_limit, bool)
            or not isinstance(time_limit, (int, float))
            or time_limit <= 0
        ):
            raise self._error("'time_limit_seconds' must be a positive number", document)

        expect = document.get("expect")
        if not isinstance(expect, list) or not expect:
            raise self._error("'expect' must be a non-empty list", document)

        patterns = [self._compile_pattern(item, idx) for idx, item in enumerate(expect)]

        return CompiledExpectations(
            expectation_id=expectation_id,
            expectations=ExpectationSet(patterns, name=name),
            event_limit=event_limit,
            time_limit_seconds=float(time_limit) if time_limit is not None else None,
            namespace=namespace,
        )

    def _compile_pattern(self, item: Any, idx: int) -> ExpectedEventPattern:
        context = f"expect[{idx}]"
        if not isinstance(item, dict):
            raise self._error(f"{context} must be a dictionary", item)

        unknown = [key for key in item if key not in PATTERN_KEYS]
        if unknown:
            raise self._error(
                f"{context} contains unknown field(s): {', '.join(str(k) for k in unknown)}",
                item,
            )

        process = item.get("process")
        if not isinstance(process, str) or not process:
            raise self._error(f"{context} must have a non-empty 'process'", item)

        try:
            kind = EventKind.parse(item.get("kind", EventKind.PROCESS_EXEC.value))
        except ConfigurationError as e:
            raise self._error(f"{context}: {e}", item)

        attributes = item.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise self._error(f"{context}.attributes must be a dictionary", item)

        attribute_patterns: Dict[str, AttributePattern] = {}
        for key, spec in attributes.items():
            attribute_patterns[str(key)] = self._compile_matcher(
                spec, f"{context}.attributes.{key}", attributes
            )

        return ExpectedEventPattern(
            kind=kind, process_name=process, attribute_patterns=attribute_patterns
        )

    def _compile_matcher(self, spec: Any, context: str, parent: object) -> AttributePattern:
        if isinstance(spec, str):
            return ExactMatcher(spec)

        if not isinstance(spec, dict) or len(spec) != 1:
            raise self._error(
                f"{context} must be a string or a single-key mapping of 'exact' or 'regex'",
                parent,
            )

        matcher_kind, value = next(iter(spec.items()))
        if not isinstance(value, str):
            raise self._error(f"{context}.{matcher_kind} must be a string", spec)

        try:
            if matcher_kind == "exact":
                return ExactMatcher(value)
            if matcher_kind == "regex":
                return RegexMatcher(value)
        except ConfigurationError as e:
            raise self._error(f"{context}: {e}", spec)

        raise self._error(f"{context} has unsupported matcher '{matcher_kind}'", spec)


def compile_expectations(document: Any) -> CompiledExpectations:
    """
    Convenience function to compile a single expectation document.

    Args:
        document: Parsed document (dictionary)

    Returns:
        CompiledExpectations object
    """
    return ExpectationCompiler().compile(document)


def compile_yaml(text: str) -> CompiledExpectations:
    """
    Compile an expectation document given as YAML text.

    Raises:
        ConfigurationError: If the YAML is invalid or the document is malformed
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML format: {e}")
    return compile_expectations(document)


def load_expectation_file(path: Path | str) -> CompiledExpectations:
    """
    Load and compile an expectation file, reporting errors with file and line.

    Raises:
        ExpectationFileError: If the file is missing, invalid YAML or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ExpectationFileError("Expectation file not found", file_path=path)

    try:
        with path.open("r", encoding="utf-8") as handle:
            document = yaml.load(handle, Loader=LineLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line = mark.line + 1 if mark is not None else None
        raise ExpectationFileError(f"Invalid YAML: {exc}", file_path=path, line=line)

    return ExpectationCompiler(path=path).compile(document)


def load_expectation_dir(directory: Path | str) -> List[CompiledExpectations]:
    """Load every ``*.yaml`` expectation file in a directory, sorted by file name."""
    directory = Path(directory)
    return [load_expectation_file(path) for path in sorted(directory.glob("*.yaml"))]
