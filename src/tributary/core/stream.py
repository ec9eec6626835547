"""
Stream base class and immutable stream definitions.

A ``Stream`` is what a connector implements: it enumerates slices and reads
records for each. A ``StreamDefinition`` is the frozen descriptor taken from
a stream once per sync; ordering and policy decisions are made against
definitions, never against live stream objects.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

from tributary.core.cursor import CursorTracker, normalize_cursor_field
from tributary.protocol import SyncMode
from tributary.utils.logging import get_logger

StreamKey = str | Sequence[str] | Sequence[Sequence[str]]

DEFAULT_SLICE_ERROR_PCT_FOR_FAILURE = 1.0


def _snake_case(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


def wrap_primary_key(keys: StreamKey | None) -> tuple[tuple[str, ...], ...] | None:
    """
    Wrap a primary key as a tuple of field paths.

    ``"id"`` becomes ``(("id",),)``, ``["org", "id"]`` becomes
    ``(("org",), ("id",))`` and nested paths are kept as-is.
    """
    if not keys:
        return None
    if isinstance(keys, str):
        return ((keys,),)
    return tuple((component,) if isinstance(component, str) else tuple(component) for component in keys)


@dataclass(frozen=True)
class StreamDefinition:
    """Immutable descriptor of a stream for the duration of one sync."""

    name: str
    primary_key: tuple[tuple[str, ...], ...] | None = None
    cursor_field: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    checkpoint_interval: int | None = None
    supports_incremental: bool = False
    source_defined_cursor: bool = True
    slice_error_pct_for_failure: float = DEFAULT_SLICE_ERROR_PCT_FOR_FAILURE

    def __post_init__(self):
        if not self.name:
            raise ValueError("Stream name must not be empty")
        if not 0 < self.slice_error_pct_for_failure <= 1:
            raise ValueError("slice_error_pct_for_failure must be in (0, 1]")


class Stream(ABC):
    """
    Base class for a stream of records from an external system.

    Subclasses implement ``read_records`` and ``primary_key``; everything
    else has a default. Override ``stream_slices`` to partition the stream
    (one slice per repository, project, time window, ...) and
    ``cursor_field`` to enable incremental reads.
    """

    def __init__(self, logger=None):
        self._logger = logger

    @property
    def logger(self):
        if self._logger is None:
            self._logger = get_logger(f"tributary.streams.{self.name}")
        return self._logger

    @property
    def name(self) -> str:
        """Stream name; the snake-cased class name unless overridden."""
        return _snake_case(type(self).__name__)

    @property
    def dependencies(self) -> Sequence[str]:
        """Names of streams that must run before this one when both are requested."""
        return ()

    @property
    @abstractmethod
    def primary_key(self) -> StreamKey | None:
        """Single field, composite field list, or composite of nested paths."""

    @property
    def cursor_field(self) -> str | Sequence[str]:
        """Path to the record field used as the incremental cursor."""
        return ()

    @property
    def source_defined_cursor(self) -> bool:
        return True

    @property
    def supports_incremental(self) -> bool:
        return bool(normalize_cursor_field(self.cursor_field))

    @property
    def state_checkpoint_interval(self) -> int | None:
        """
        Records per slice after which state is checkpointed.

        None means state is checkpointed only at slice boundaries, which is
        what streams whose records do not arrive in cursor order need.
        """
        return None

    @property
    def slice_error_pct_for_failure(self) -> float:
        """Fraction of failed slices at which the whole stream is failed."""
        return DEFAULT_SLICE_ERROR_PCT_FOR_FAILURE

    @property
    def cutoff_lag_days(self) -> float:
        """Days of trailing window re-read to catch late-arriving records."""
        return 0

    def json_schema(self) -> dict[str, Any]:
        return {"$schema": "http://json-schema.org/draft-07/schema#", "type": "object", "properties": {}}

    async def stream_slices(
        self,
        sync_mode: SyncMode,
        cursor_field: Sequence[str] | None = None,
        stream_state: dict[str, Any] | None = None,
    ) -> AsyncIterator[Any]:
        """Yield the partitions of this stream; a single unsliced pass by default."""
        yield None

    @abstractmethod
    def read_records(
        self,
        sync_mode: SyncMode,
        cursor_field: Sequence[str] | None = None,
        stream_slice: Any = None,
        stream_state: dict[str, Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield the records of one slice."""

    def state_key(self, stream_slice: Any = None) -> str:
        """Key under which the cutoff of ``stream_slice`` is stored."""
        if stream_slice is None:
            return self.name
        if isinstance(stream_slice, str):
            return stream_slice
        return json.dumps(stream_slice, sort_keys=True, default=str)

    def get_updated_state(
        self, current_stream_state: dict[str, Any] | None, latest_record: dict[str, Any], stream_slice: Any = None
    ) -> dict[str, Any]:
        """Stream state after observing ``latest_record``; unchanged without a cursor field."""
        tracker = CursorTracker(self.cursor_field, self.cutoff_lag_days)
        return tracker.update(current_stream_state, latest_record, self.state_key(stream_slice))

    async def on_before_read(self) -> None:
        """Hook run before the first slice is requested."""

    async def on_after_read(self) -> None:
        """Hook run after the last slice was read successfully."""

    @property
    def definition(self) -> StreamDefinition:
        return StreamDefinition(
            name=self.name,
            primary_key=wrap_primary_key(self.primary_key),
            cursor_field=normalize_cursor_field(self.cursor_field),
            dependencies=tuple(self.dependencies),
            checkpoint_interval=self.state_checkpoint_interval,
            supports_incremental=self.supports_incremental,
            source_defined_cursor=self.source_defined_cursor,
            slice_error_pct_for_failure=self.slice_error_pct_for_failure,
        )

    def as_catalog_entry(self) -> dict[str, Any]:
        """Describe this stream for the CATALOG message."""
        definition = self.definition
        entry: dict[str, Any] = {
            "name": definition.name,
            "json_schema": self.json_schema(),
            "supported_sync_modes": [str(SyncMode.FULL_REFRESH)],
        }
        if definition.supports_incremental:
            entry["supported_sync_modes"].append(str(SyncMode.INCREMENTAL))
            entry["source_defined_cursor"] = definition.source_defined_cursor
            entry["default_cursor_field"] = list(definition.cursor_field)
        if definition.primary_key:
            entry["source_defined_primary_key"] = [list(path) for path in definition.primary_key]
        if definition.dependencies:
            entry["dependencies"] = list(definition.dependencies)
        return entry
