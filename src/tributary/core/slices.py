"""
Per-stream slice driver.

Reads one stream slice by slice, advances the stream's cursor state,
checkpoints on an interval and at slice boundaries, and applies the
slice-level failure policy. Everything is pulled one item at a time through
async generators: nothing is read ahead of the consumer.
"""

import copy
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from tributary.config.settings import SyncSettings, budget_exceeded
from tributary.core.stream import Stream, StreamDefinition
from tributary.exceptions import (
    ConfigurationError,
    SliceFailuresError,
    StreamSlicesError,
    describe_slice,
    is_recoverable,
)
from tributary.protocol import SyncMode
from tributary.utils.logging import get_logger

logger = get_logger("tributary.slices")


@dataclass
class RecordSignal:
    stream: str
    record: dict[str, Any]


@dataclass
class CheckpointSignal:
    """Snapshot of the full sync-wide state, taken when a stream checkpoints."""

    stream: str
    state: dict[str, Any]


@dataclass
class SliceFailureSignal:
    """A slice that could not be read; the stream carries on with the next one."""

    stream: str
    stream_slice: Any
    error: Exception
    recoverable: bool


Signal = RecordSignal | CheckpointSignal | SliceFailureSignal


@dataclass
class StreamStats:
    records: int = 0
    slices: int = 0
    completed_slices: int = 0
    failed_slices: list[Any] = field(default_factory=list)
    recovered_slices: list[Any] = field(default_factory=list)


def _slice_label(stream_slice: Any) -> str:
    return "" if stream_slice is None else f" ({describe_slice(stream_slice)})"


class SliceDriver:
    """
    Drives the slices of a single stream.

    The driver writes only its own stream's slot of the shared sync-wide
    state map, and only when it checkpoints.

    Attributes:
        stream: The stream being read
        definition: Frozen descriptor taken from the stream at construction
        sync_state: Sync-wide state map shared with the orchestrator
        settings: Failure budgets and backfill switch
        stats: Counters for the current run
    """

    def __init__(
        self,
        stream: Stream,
        sync_state: dict[str, Any],
        settings: SyncSettings | None = None,
        definition: StreamDefinition | None = None,
    ):
        self.stream = stream
        self.definition = definition or stream.definition
        self.sync_state = sync_state
        self.settings = settings or SyncSettings()
        self.stats = StreamStats()
        self._stream_state: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self.definition.name

    def effective_mode(self, sync_mode: SyncMode) -> SyncMode:
        """Incremental only if requested, supported, and not a backfill."""
        if sync_mode == SyncMode.INCREMENTAL and self.definition.supports_incremental and not self.settings.backfill:
            return SyncMode.INCREMENTAL
        return SyncMode.FULL_REFRESH

    def _checkpoint(self) -> CheckpointSignal:
        self.sync_state[self.name] = self._stream_state
        return CheckpointSignal(stream=self.name, state=copy.deepcopy(self.sync_state))

    async def _next_slice(self, slices: AsyncIterator[Any]) -> tuple[bool, Any]:
        try:
            return True, await anext(slices)
        except StopAsyncIteration:
            return False, None
        except Exception as e:
            raise StreamSlicesError(self.name, cause=e) from e

    async def _read_slice(self, stream_slice: Any, mode: SyncMode, cursor_field: list[str]) -> AsyncIterator[Signal]:
        incremental = mode == SyncMode.INCREMENTAL
        interval = self.definition.checkpoint_interval
        records = self.stream.read_records(
            mode,
            cursor_field,
            stream_slice,
            self._stream_state if incremental else None,
        )
        count = 0
        # The source's iterator (often an open paginated cursor) is closed on
        # every exit path, including the consumer abandoning the sync.
        async with aclosing(records):
            async for record in records:
                count += 1
                self.stats.records += 1
                yield RecordSignal(stream=self.name, record=record)
                if not incremental:
                    continue
                self._stream_state = self.stream.get_updated_state(self._stream_state, record, stream_slice)
                if interval and count % interval == 0:
                    yield self._checkpoint()

        if incremental:
            yield self._checkpoint()

    async def run(
        self,
        sync_mode: SyncMode,
        progress: tuple[int, int] | None = None,
        cursor_field: Sequence[str] | None = None,
    ) -> AsyncIterator[Signal]:
        """
        Read every slice of the stream.

        Args:
            sync_mode: Mode requested by the configured catalog
            progress: (position, total) of this stream within the sync, for logging
            cursor_field: Cursor path chosen in the configured catalog; the
                stream's default cursor when empty

        Yields:
            Record, checkpoint and slice-failure signals in the order they happen

        Raises:
            ConfigurationError: If the stream's checkpoint interval is negative
            StreamSlicesError: If the stream cannot enumerate its slices
            SliceFailuresError: If failed slices exceed the configured budget,
                or reach the stream's failure fraction
            Exception: The slice's own error when no slice budget is configured
        """
        interval = self.definition.checkpoint_interval
        if interval is not None and interval < 0:
            raise ConfigurationError(
                f"Checkpoint interval {interval} of {self.name} stream must be a positive integer",
                details={"stream": self.name},
            )

        mode = self.effective_mode(sync_mode)
        self.stats = StreamStats()
        if mode == SyncMode.INCREMENTAL:
            self._stream_state = copy.deepcopy(self.sync_state.get(self.name) or {})
            logger.info(f"Syncing {self.name} stream in incremental mode from state {self._stream_state}")
        else:
            self._stream_state = {}
            reason = " (backfill)" if self.settings.backfill and sync_mode == SyncMode.INCREMENTAL else ""
            logger.info(f"Syncing {self.name} stream in full refresh mode{reason}")

        cursor = list(cursor_field or self.definition.cursor_field)
        position = f"{progress[0]}/{progress[1]}" if progress else "1/1"
        await self.stream.on_before_read()

        slices = self.stream.stream_slices(
            mode,
            cursor,
            self._stream_state if mode == SyncMode.INCREMENTAL else None,
        )
        async with aclosing(slices):
            has_slice, stream_slice = await self._next_slice(slices)
            if not has_slice:
                logger.info(f"Stream progress {position}: {self.name} (no slices to process)")
            elif stream_slice is None:
                logger.info(f"Stream progress {position}: {self.name}")
            else:
                logger.info(f"Stream progress {position}: {self.name} (first slice {describe_slice(stream_slice)})")

            while has_slice:
                self.stats.slices += 1
                try:
                    async with aclosing(self._read_slice(stream_slice, mode, cursor)) as signals:
                        async for signal in signals:
                            yield signal
                except Exception as e:
                    if is_recoverable(e):
                        self.stats.recovered_slices.append(stream_slice)
                        logger.warning(
                            f"Recoverable error reading slice{_slice_label(stream_slice)} of stream {self.name}: {e}"
                        )
                        yield SliceFailureSignal(self.name, stream_slice, e, recoverable=True)
                    elif self.settings.max_slice_failures is None:
                        raise
                    else:
                        self.stats.failed_slices.append(stream_slice)
                        logger.error(f"Failed to read slice{_slice_label(stream_slice)} of stream {self.name}: {e}")
                        yield SliceFailureSignal(self.name, stream_slice, e, recoverable=False)
                        if budget_exceeded(len(self.stats.failed_slices), self.settings.max_slice_failures):
                            raise SliceFailuresError(self.name, self.stats.failed_slices) from e
                else:
                    self.stats.completed_slices += 1
                    logger.info(
                        f"Completed slice {self.stats.completed_slices} for stream {self.name}"
                        f"{_slice_label(stream_slice)}"
                    )

                has_slice, stream_slice = await self._next_slice(slices)

        failed = self.stats.failed_slices
        if failed:
            if len(failed) / self.stats.slices >= self.definition.slice_error_pct_for_failure:
                raise SliceFailuresError(self.name, failed, total=self.stats.slices)
            logger.warning(
                f"Stream {self.name} completed with {len(failed)} of {self.stats.slices} failed slices: "
                f"{', '.join(describe_slice(s) for s in failed)}"
            )

        await self.stream.on_after_read()
        logger.info(f"Finished syncing {self.name} stream. Read {self.stats.records} records")
        if mode == SyncMode.INCREMENTAL:
            logger.info(f"Last recorded state of {self.name} stream is {self._stream_state}")
