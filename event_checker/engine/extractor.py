from typing import Any, Dict


class DottedPathExtractor:
    """
    Reads values out of nested event export records using dotted paths.
    """

    def extract(self, record: Dict[str, Any], path: str, default: Any = None) -> Any:
        """
        Extract a value from a nested dictionary using dotted path notation.

        Examples:
            extract({"process": {"binary": "/usr/bin/redis"}}, "process.binary")
                → "/usr/bin/redis"
            extract({"process": {"pod": {"namespace": "labels"}}}, "process.pod.namespace")
                → "labels"
            extract({}, "missing.path") → None
            extract({"a": "b"}, "missing.path", "default") → "default"

        Args:
            record: Dictionary to extract from
            path: Dot-separated path to the field
            default: Value to return if path doesn't exist

        Returns:
            The extracted value if found, otherwise the default value
        """
        if not path:
            return default

        if not isinstance(record, dict):
            return default

        value: Any = record
        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def extract_string_map(self, record: Dict[str, Any], path: str) -> Dict[str, str]:
        """
        Extract a flat mapping of string values, e.g. pod labels.

        Scalar values are converted to strings; nested values and nulls are
        dropped because attribute matchers only compare strings.

        Args:
            record: Dictionary to extract from
            path: Dot-separated path to the mapping

        Returns:
            Dictionary of string keys to string values (empty if missing)
        """
        value = self.extract(record, path)
        if not isinstance(value, dict):
            return {}

        result: Dict[str, str] = {}
        for key, raw in value.items():
            if isinstance(raw, bool):
                result[str(key)] = "true" if raw else "false"
            elif isinstance(raw, (str, int, float)):
                result[str(key)] = str(raw)
        return result
