from pathlib import Path
from typing import Optional


class EventCheckerError(Exception):
    """Base exception for event checker issues."""


class ConfigurationError(EventCheckerError):
    """Raised when an expectation set, matcher or setting is malformed."""


class ExpectationFileError(ConfigurationError):
    """Raised when an expectation file on disk fails validation."""

    def __init__(self, message: str, file_path: Path, line: Optional[int] = None):
        location = f"{file_path}:{line}" if line is not None else str(file_path)
        super().__init__(f"{location} - {message}")
        self.file_path = file_path
        self.line = line


class CheckerStateError(EventCheckerError):
    """Raised when a checker is driven outside of its lifecycle."""


class StreamClosed(EventCheckerError):
    """Raised by an event source once no further events will arrive."""


class CollaboratorFailure(EventCheckerError):
    """Raised by a collaborator task to report a descriptive failure."""
