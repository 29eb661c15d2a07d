from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from event_checker.engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "EVENT_CHECKER_"
BUNDLED_EXPECTATIONS_DIR = Path(__file__).resolve().parent / "expectations"
# Stored documents live under the working directory, never inside the package
DEFAULT_EXPECTATIONS_DIR = Path("expectations")
DEFAULT_DATABASE_URL = "sqlite:///event_checker_history.db"


@dataclass(frozen=True)
class CheckerSettings:
    """Defaults shared by checkers, workloads and the backend."""

    event_limit: int = 5000
    time_limit_seconds: float = 300.0
    wait_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.5
    workload_attempts: int = 3
    expectations_dir: Path = DEFAULT_EXPECTATIONS_DIR
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"

    def with_overrides(self, **overrides: object) -> "CheckerSettings":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _read_int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got '{raw}'")
    if value < minimum:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got '{raw}'")
    if value <= 0:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be positive, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> CheckerSettings:
    """
    Build settings from ``EVENT_CHECKER_*`` environment variables.

    Unset variables fall back to the CheckerSettings defaults.

    Raises:
        ConfigurationError: If a variable holds an invalid value
    """
    env = os.environ if env is None else env
    defaults = CheckerSettings()

    expectations_dir = env.get(ENV_PREFIX + "EXPECTATIONS_DIR")
    settings = CheckerSettings(
        event_limit=_read_int(env, "EVENT_LIMIT", defaults.event_limit),
        time_limit_seconds=_read_float(env, "TIME_LIMIT", defaults.time_limit_seconds),
        wait_timeout_seconds=_read_float(env, "WAIT_TIMEOUT", defaults.wait_timeout_seconds),
        poll_interval_seconds=_read_float(
            env, "POLL_INTERVAL", defaults.poll_interval_seconds
        ),
        workload_attempts=_read_int(env, "WORKLOAD_ATTEMPTS", defaults.workload_attempts),
        expectations_dir=Path(expectations_dir) if expectations_dir else defaults.expectations_dir,
        database_url=env.get(ENV_PREFIX + "DATABASE_URL") or defaults.database_url,
        log_level=(env.get(ENV_PREFIX + "LOG_LEVEL") or defaults.log_level).upper(),
    )
    logger.debug("Loaded checker settings: %s", settings)
    return settings


def configure_logging(settings: Optional[CheckerSettings] = None) -> None:
    settings = settings or load_settings()
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level '{settings.log_level}'")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "BUNDLED_EXPECTATIONS_DIR",
    "CheckerSettings",
    "ConfigurationError",
    "configure_logging",
    "load_settings",
]
