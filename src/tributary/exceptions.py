"""
Tributary exception hierarchy.

All domain-specific exceptions inherit from TributaryError, making it easy
to catch any framework error with a single base class while still allowing
fine-grained handling when needed.

Hierarchy::

    TributaryError
    ├── ConfigurationError        - config loading, catalog, stream resolution
    │   ├── StreamNotFoundError   - requested streams unknown to the source
    │   └── DependencyCycleError  - cyclic stream dependency declarations
    ├── ProtocolError             - malformed wire message
    ├── StateCodecError           - persisted state cannot be decoded
    ├── RecoverableError          - marker for tolerable fetch errors
    └── SyncError                 - failures while reading streams
        ├── StreamSlicesError     - slice enumeration failed
        ├── SliceFailuresError    - aggregate of failed slices
        └── StreamFailuresError   - aggregate of failed streams
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any


class TributaryError(Exception):
    """Base exception for all Tributary errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(TributaryError):
    """Raised when configuration loading, parsing, or validation fails."""


class StreamNotFoundError(ConfigurationError):
    """Raised when requested streams are not defined by the source."""

    def __init__(self, missing: Iterable[str], known: Iterable[str]) -> None:
        self.missing = sorted(set(missing))
        self.known = sorted(set(known))
        super().__init__(
            f"Requested streams not found in the source: {', '.join(self.missing)}. "
            f"Available streams: {', '.join(self.known) or '(none)'}",
            details={"missing": self.missing, "known": self.known},
        )


class DependencyCycleError(ConfigurationError):
    """Raised when stream dependency declarations form a cycle."""

    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = cycles
        rendered = "; ".join(" -> ".join(cycle) for cycle in cycles)
        super().__init__(f"Circular stream dependencies: {rendered}", details={"cycles": cycles})


# --- Protocol / state --------------------------------------------------------


class ProtocolError(TributaryError):
    """Raised when a protocol message cannot be parsed."""


class StateCodecError(TributaryError):
    """Raised when persisted sync state cannot be decoded."""


# --- Recoverable marker ------------------------------------------------------


class RecoverableError(TributaryError):
    """Raised by data-fetching code for errors the sync may skip past.

    A recoverable error while reading a slice is reported and the slice is
    abandoned, but it does not count against any failure budget.
    """

    recoverable = True


def is_recoverable(error: BaseException) -> bool:
    """Return True if the error is explicitly marked recoverable."""
    return isinstance(error, RecoverableError) or bool(getattr(error, "recoverable", False))


# --- Sync --------------------------------------------------------------------


def describe_slice(stream_slice: Any) -> str:
    """Render a slice for log and error messages."""
    if stream_slice is None:
        return "(unsliced)"
    try:
        return json.dumps(stream_slice, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return repr(stream_slice)


class SyncError(TributaryError):
    """Raised when reading streams fails."""


class StreamSlicesError(SyncError):
    """Raised when a stream cannot enumerate its slices."""

    def __init__(self, stream_name: str, *, cause: Exception | None = None) -> None:
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"Stream '{stream_name}' failed to produce slices{reason}", details={"stream": stream_name})
        self.stream_name = stream_name
        if cause is not None:
            self.__cause__ = cause


class SliceFailuresError(SyncError):
    """Raised when a stream's failed slices exceed what it tolerates."""

    def __init__(self, stream_name: str, slices: list[Any], *, total: int | None = None) -> None:
        self.stream_name = stream_name
        self.slices = list(slices)
        self.total = total
        rendered = ", ".join(describe_slice(s) for s in self.slices)
        out_of = f" of {total}" if total is not None else ""
        super().__init__(
            f"Stream '{stream_name}' failed {len(self.slices)}{out_of} slices: {rendered}",
            details={"stream": stream_name, "slices": [describe_slice(s) for s in self.slices]},
        )


class StreamFailuresError(SyncError):
    """Raised at the end of a sync when one or more streams failed."""

    def __init__(self, streams: list[str], *, aborted: bool = False) -> None:
        self.streams = list(streams)
        self.aborted = aborted
        prefix = "Sync aborted after" if aborted else "Sync finished with"
        super().__init__(
            f"{prefix} {len(self.streams)} failed streams: {', '.join(self.streams)}",
            details={"streams": self.streams, "aborted": aborted},
        )
