"""
Testing utilities for Tributary sources and streams.

Provides in-memory streams and sources, plus helpers that run a sync and
collect what it emitted, without a real external system.

Usage:
    from tributary.testing import InMemorySource, InMemoryStream, read_source

    users = InMemoryStream("users", [{"id": 1, "updated_at": "2024-01-01T00:00:00Z"}], cursor_field="updated_at")
    result = await read_source(InMemorySource([users]), config={})
    assert result.status == "success"
    assert result.records_for("users") == [{"id": 1, "updated_at": "2024-01-01T00:00:00Z"}]
"""

from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from tributary.core.source import Source
from tributary.core.state import decode_state
from tributary.core.stream import DEFAULT_SLICE_ERROR_PCT_FOR_FAILURE, Stream, StreamKey
from tributary.protocol import (
    ConfiguredCatalog,
    ConfiguredStream,
    Message,
    RecordMessage,
    SourceStatus,
    StateMessage,
    SyncMode,
)

Records = Sequence[dict[str, Any]] | Callable[[Any], Iterable[dict[str, Any]]]


class InMemoryStream(Stream):
    """
    Stream over records held in memory.

    Args:
        name: Stream name
        records: Records of every slice, or a callable mapping a slice to its records
        slices: Slices to enumerate (a single unsliced pass when None)
        failures: Errors to raise, keyed by ``state_key(slice)``; raised
            after ``fail_after`` records of that slice
        slices_error: Error raised instead of enumerating slices
    """

    def __init__(
        self,
        name: str,
        records: Records = (),
        *,
        slices: Sequence[Any] | None = None,
        primary_key: StreamKey | None = "id",
        cursor_field: str | Sequence[str] = (),
        dependencies: Sequence[str] = (),
        checkpoint_interval: int | None = None,
        slice_error_pct_for_failure: float = DEFAULT_SLICE_ERROR_PCT_FOR_FAILURE,
        cutoff_lag_days: float = 0,
        failures: dict[str, Exception] | None = None,
        fail_after: int = 0,
        slices_error: Exception | None = None,
    ):
        self._name = name
        super().__init__()
        self._records = records
        self._slices = slices
        self._primary_key = primary_key
        self._cursor_field = cursor_field
        self._dependencies = tuple(dependencies)
        self._checkpoint_interval = checkpoint_interval
        self._slice_error_pct_for_failure = slice_error_pct_for_failure
        self._cutoff_lag_days = cutoff_lag_days
        self.failures = dict(failures or {})
        self.fail_after = fail_after
        self.slices_error = slices_error

        # Observations for assertions
        self.slices_read: list[Any] = []
        self.states_seen: list[dict[str, Any] | None] = []
        self.cursor_fields_seen: list[list[str] | None] = []
        self.closed_readers = 0
        self.before_read_calls = 0
        self.after_read_calls = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def primary_key(self) -> StreamKey | None:
        return self._primary_key

    @property
    def cursor_field(self) -> str | Sequence[str]:
        return self._cursor_field

    @property
    def dependencies(self) -> Sequence[str]:
        return self._dependencies

    @property
    def state_checkpoint_interval(self) -> int | None:
        return self._checkpoint_interval

    @property
    def slice_error_pct_for_failure(self) -> float:
        return self._slice_error_pct_for_failure

    @property
    def cutoff_lag_days(self) -> float:
        return self._cutoff_lag_days

    async def on_before_read(self) -> None:
        self.before_read_calls += 1

    async def on_after_read(self) -> None:
        self.after_read_calls += 1

    async def stream_slices(self, sync_mode, cursor_field=None, stream_state=None) -> AsyncIterator[Any]:
        if self.slices_error is not None:
            raise self.slices_error
        for stream_slice in self._slices if self._slices is not None else [None]:
            yield stream_slice

    def _slice_records(self, stream_slice: Any) -> list[dict[str, Any]]:
        if callable(self._records):
            return list(self._records(stream_slice))
        return list(self._records)

    async def read_records(self, sync_mode, cursor_field=None, stream_slice=None, stream_state=None):
        self.slices_read.append(stream_slice)
        self.cursor_fields_seen.append(cursor_field)
        self.states_seen.append(dict(stream_state) if stream_state is not None else None)
        error = self.failures.get(self.state_key(stream_slice))
        try:
            for index, record in enumerate(self._slice_records(stream_slice)):
                if error is not None and index == self.fail_after:
                    raise error
                yield dict(record)
            if error is not None:
                raise error
        finally:
            self.closed_readers += 1


class InMemorySource(Source):
    """Source over a fixed list of streams."""

    def __init__(
        self,
        streams: Sequence[Stream],
        *,
        name: str = "in_memory",
        properties: dict[str, Any] | None = None,
        connection_ok: bool = True,
        connection_message: str | None = None,
    ):
        self._streams = list(streams)
        self._name = name
        self._properties = properties or {}
        self.connection_ok = connection_ok
        self.connection_message = connection_message

    @property
    def type(self) -> str:
        return self._name

    def connection_specification(self) -> dict[str, Any]:
        spec = super().connection_specification()
        spec["properties"] = dict(self._properties)
        return spec

    def streams(self, config: dict[str, Any]) -> Sequence[Stream]:
        return self._streams

    async def check_connection(self, config: dict[str, Any]) -> tuple[bool, str | None]:
        return self.connection_ok, self.connection_message


def catalog_for(*names: str, sync_mode: SyncMode = SyncMode.INCREMENTAL) -> ConfiguredCatalog:
    """Configured catalog selecting ``names`` in the given order."""
    return ConfiguredCatalog(streams=tuple(ConfiguredStream(name=name, sync_mode=sync_mode) for name in names))


async def collect_messages(messages: AsyncIterator[Message]) -> list[Message]:
    """Drain an async iterator of messages into a list."""
    collected = []
    async with aclosing(messages):
        async for message in messages:
            collected.append(message)
    return collected


@dataclass
class ReadResult:
    """Outcome of a ``read_source`` run."""

    messages: list[Message] = field(default_factory=list)
    status: str = "success"
    error: Exception | None = None

    @property
    def records(self) -> list[RecordMessage]:
        return [m for m in self.messages if isinstance(m, RecordMessage)]

    def records_for(self, stream: str) -> list[dict[str, Any]]:
        return [m.data for m in self.records if m.stream == stream]

    @property
    def states(self) -> list[StateMessage]:
        return [m for m in self.messages if isinstance(m, StateMessage)]

    @property
    def checkpoints(self) -> list[StateMessage]:
        """STATE messages that are plain checkpoints (no status, no config)."""
        return [m for m in self.states if m.source_status is None and m.source_config is None]

    def status_messages(self, status: SourceStatus | None = None) -> list[StateMessage]:
        return [
            m
            for m in self.states
            if m.source_status is not None and (status is None or m.source_status.status == status)
        ]

    @property
    def final_state(self) -> dict[str, Any]:
        """Decoded state carried by the last STATE message."""
        states = self.states
        return decode_state(states[-1].data) if states else {}


async def read_source(
    source: Source,
    config: dict[str, Any] | None = None,
    catalog: ConfiguredCatalog | None = None,
    state: Any = None,
) -> ReadResult:
    """
    Run a sync and collect everything it emitted.

    Errors are captured on the result instead of raised; messages emitted
    before the error are kept.

    Args:
        source: Source to read
        config: Connector configuration (default: empty)
        catalog: Streams to read (default: every stream, incremental)
        state: Prior sync-wide state

    Returns:
        ReadResult with messages, status ("success" or "error") and error
    """
    config = config or {}
    if catalog is None:
        catalog = catalog_for(*(stream.name for stream in source.streams(config)))

    result = ReadResult()
    try:
        messages = source.read(config, catalog, state)
        async with aclosing(messages):
            async for message in messages:
                result.messages.append(message)
    except Exception as e:
        result.status = "error"
        result.error = e
    return result
