import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from .extractor import DottedPathExtractor
from .models import EventKind, ObservedEvent

_extractor = DottedPathExtractor()


def parse_jsonl(jsonl_string: str) -> List[Dict[str, Any]]:
    """
    Parse a JSONL (JSON Lines) formatted string into a list of dictionaries.

    Handles:
    - Comment lines (lines starting with #)
    - Empty lines (whitespace-only)
    - Malformed JSON with descriptive errors

    Args:
        jsonl_string: A string containing newline-delimited JSON objects

    Returns:
        List of parsed record dictionaries

    Raises:
        ValueError: If a non-comment, non-empty line contains invalid JSON
    """
    records = []
    lines = jsonl_string.strip().split("\n") if jsonl_string.strip() else []

    for line_num, line in enumerate(lines, start=1):
        line = line.strip()

        if not line or line.startswith("#"):
            continue

        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"Line {line_num}: Invalid JSON - {str(e)}")

        if not isinstance(record, dict):
            raise ValueError(
                f"Line {line_num}: Expected JSON object, got {type(record).__name__}"
            )
        records.append(record)

    return records


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def decode_event(record: Dict[str, Any]) -> ObservedEvent:
    """
    Convert one exported record into an ObservedEvent.

    Two shapes are accepted. The flat shape::

        {"kind": "process_exec", "process": "redis", "namespace": "labels",
         "attributes": {"app": "redis-cart"}}

    and the nested export shape, keyed by event kind::

        {"process_exec": {"process": {"binary": "/usr/local/bin/redis",
         "pod": {"namespace": "labels", "pod_labels": {"app": "redis-cart"}}}},
         "time": "2024-01-01T00:00:00Z"}

    For the nested shape the process name is the basename of the binary.

    Raises:
        ValueError: If the record matches neither shape
    """
    if "kind" in record:
        process_name = record.get("process")
        if not isinstance(process_name, str) or not process_name:
            raise ValueError("Flat event record requires a 'process' string")
        return ObservedEvent(
            kind=_kind(record["kind"]),
            process_name=process_name,
            attributes=_extractor.extract_string_map(record, "attributes"),
            namespace=record.get("namespace"),
            timestamp=_parse_timestamp(record.get("time") or record.get("timestamp")),
            event_id=_event_id(record.get("id"), "id"),
        )

    for kind in EventKind:
        if kind.value not in record:
            continue
        prefix = f"{kind.value}.process"
        binary = _extractor.extract(record, f"{prefix}.binary")
        if not isinstance(binary, str) or not binary:
            raise ValueError(f"'{kind.value}' record requires process.binary")
        return ObservedEvent(
            kind=kind,
            process_name=os.path.basename(binary),
            attributes=_extractor.extract_string_map(record, f"{prefix}.pod.pod_labels"),
            namespace=_extractor.extract(record, f"{prefix}.pod.namespace"),
            timestamp=_parse_timestamp(record.get("time")),
            event_id=_event_id(_extractor.extract(record, f"{prefix}.exec_id"), "exec_id"),
        )

    raise ValueError(f"Unrecognized event record with keys: {', '.join(sorted(record))}")


def _event_id(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Event '{field}' must be a string, got {type(value).__name__}")
    return value


def _kind(value: Any) -> EventKind:
    try:
        return EventKind(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown event kind '{value}'")


def parse_events(jsonl_string: str) -> List[ObservedEvent]:
    """
    Parse a JSONL event export into ObservedEvents.

    Raises:
        ValueError: If a line is not valid JSON or not a recognized event record
    """
    events = []
    for idx, record in enumerate(parse_jsonl(jsonl_string), start=1):
        try:
            events.append(decode_event(record))
        except ValueError as e:
            raise ValueError(f"Event {idx}: {e}")
    return events
