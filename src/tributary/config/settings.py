"""
Sync-wide settings read from the connector configuration.
"""

from dataclasses import dataclass
from typing import Any

from tributary.exceptions import ConfigurationError

# Failure budget value meaning "tolerate any number of failures"
UNLIMITED = -1

# Properties every source accepts in addition to its own
COMMON_PROPERTIES: dict[str, dict[str, Any]] = {
    "max_stream_failures": {
        "type": "integer",
        "title": "Max Stream Failures",
        "description": (
            "Number of streams that may fail before the sync is aborted. "
            "Leave unset to abort on the first failure; -1 for no limit."
        ),
        "minimum": UNLIMITED,
    },
    "max_slice_failures": {
        "type": "integer",
        "title": "Max Slice Failures",
        "description": (
            "Number of slices of a stream that may fail before the stream is aborted. "
            "Leave unset to abort on the first failure; -1 for no limit."
        ),
        "minimum": UNLIMITED,
    },
    "compress_state": {
        "type": "boolean",
        "title": "Compress State",
        "description": "Emit state as base64-encoded gzip.",
        "default": False,
    },
    "backfill": {
        "type": "boolean",
        "title": "Backfill",
        "description": "Read every stream in full without touching stored incremental state.",
        "default": False,
    },
    "debug": {
        "type": "boolean",
        "title": "Debug",
        "description": "Enable debug logging.",
        "default": False,
    },
}


def _budget(config: dict[str, Any], key: str) -> int | None:
    value = config.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}", details={"key": key})
    if value < UNLIMITED:
        raise ConfigurationError(f"'{key}' must be >= {UNLIMITED}, got {value}", details={"key": key})
    return value


def _flag(config: dict[str, Any], key: str) -> bool:
    value = config.get(key, False)
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be a boolean, got {value!r}", details={"key": key})
    return value


@dataclass(frozen=True)
class SyncSettings:
    """
    Failure budgets and switches for one sync.

    A budget of None means no budget: the first failure is fatal. A budget
    of ``UNLIMITED`` tolerates any number of failures.
    """

    max_stream_failures: int | None = None
    max_slice_failures: int | None = None
    compress_state: bool = False
    backfill: bool = False
    debug: bool = False

    @classmethod
    def from_config(cls, config: Any) -> "SyncSettings":
        """Build settings from a config mapping (or ``Config``)."""
        data = getattr(config, "data", config) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")
        return cls(
            max_stream_failures=_budget(data, "max_stream_failures"),
            max_slice_failures=_budget(data, "max_slice_failures"),
            compress_state=_flag(data, "compress_state"),
            backfill=_flag(data, "backfill"),
            debug=_flag(data, "debug"),
        )


def budget_exceeded(failures: int, budget: int | None) -> bool:
    """True once ``failures`` is over ``budget``; never for an unlimited budget."""
    if budget is None:
        return failures > 0
    if budget == UNLIMITED:
        return False
    return failures > budget
