"""Configuration loading for taskmr."""

import os
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import InvalidOperation

logger = logging.getLogger(__name__)

BACKEND_EVENT_SOURCED = "es"
BACKEND_SIMPLE = "simple"
BACKENDS = (BACKEND_EVENT_SOURCED, BACKEND_SIMPLE)

EVENT_DB_NAME = "events.sqlite3"
SIMPLE_DB_NAME = "tasks.sqlite3"

DEFAULT_PRIORITY = 10
DEFAULT_COST = 10

# SQLite INTEGER is a signed 64-bit value
INTEGER_MIN = -(2 ** 63)
INTEGER_MAX = 2 ** 63 - 1

_BOOL_FIELDS = ("allow_edit_closed", "verify_reads")


def check_integer(name: str, value: Optional[int]) -> Optional[int]:
    """Reject integers the database cannot store.

    Raises:
        InvalidOperation: if ``value`` is outside the signed 64-bit range
    """
    if value is not None and not INTEGER_MIN <= value <= INTEGER_MAX:
        raise InvalidOperation(f"{name} must be between {INTEGER_MIN} and {INTEGER_MAX}")
    return value


def _default_data_dir() -> str:
    return str(Path.home() / ".local" / "share" / "taskmr")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TaskmrConfig:
    """Configuration for the task store."""
    data_dir: str = ""
    backend: str = BACKEND_EVENT_SOURCED
    allow_edit_closed: bool = True  # whether Edit is accepted on closed tasks
    verify_reads: bool = False  # replay and compare on every command load
    sqlite_timeout: float = 30.0

    def __post_init__(self):
        if not self.data_dir:
            self.data_dir = _default_data_dir()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskmrConfig":
        """Create config from dictionary."""
        values = {k: v for k, v in data.items() if hasattr(cls, k)}
        for key in _BOOL_FIELDS:
            if key in values:
                values[key] = _parse_bool(values[key])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            k: v for k, v in self.__dict__.items()
            if not k.startswith('_')
        }

    @property
    def event_db_path(self) -> Path:
        return Path(self.data_dir) / EVENT_DB_NAME

    @property
    def simple_db_path(self) -> Path:
        return Path(self.data_dir) / SIMPLE_DB_NAME

    def validate(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(
                f"unknown backend {self.backend!r}, expected one of {', '.join(BACKENDS)}"
            )


def default_config_path() -> Path:
    return Path.home() / ".config" / "taskmr" / "config.json"


def load_config(config_path: Optional[Path] = None) -> TaskmrConfig:
    """Load configuration from defaults, the JSON config file and environment.

    Environment variables take precedence over the file. The result is not
    validated here so that callers can apply their own overrides first.
    """
    config = TaskmrConfig()

    config_path = config_path or default_config_path()
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
            merged = {**config.to_dict(), **file_config}
            config = TaskmrConfig.from_dict(merged)
            logger.debug(f"Loaded config from {config_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {config_path}: {e}")

    config.data_dir = os.getenv("TASKMR_DATA_DIR", config.data_dir)
    config.backend = os.getenv("TASKMR_BACKEND", config.backend)
    if "TASKMR_ALLOW_EDIT_CLOSED" in os.environ:
        config.allow_edit_closed = _parse_bool(os.environ["TASKMR_ALLOW_EDIT_CLOSED"])
    if "TASKMR_VERIFY_READS" in os.environ:
        config.verify_reads = _parse_bool(os.environ["TASKMR_VERIFY_READS"])

    return config
