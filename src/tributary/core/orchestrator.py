"""
Sync orchestration.

Runs the requested streams of a source one after another in dependency
order, turns the slice driver's signals into protocol messages and applies
the stream-level failure policy.
"""

import copy
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from tributary.config.resolver import redact_config
from tributary.config.settings import SyncSettings, budget_exceeded
from tributary.core.dependencies import resolve_stream_order
from tributary.core.slices import CheckpointSignal, RecordSignal, SliceDriver, SliceFailureSignal
from tributary.core.state import StateCodec
from tributary.core.stream import Stream
from tributary.exceptions import StreamFailuresError, describe_slice
from tributary.protocol import (
    ConfiguredCatalog,
    Message,
    RecordMessage,
    SourceStatus,
    SourceStatusInfo,
    StateMessage,
    StreamStatus,
    StreamStatusInfo,
    SyncMode,
)
from tributary.utils.logging import get_logger

logger = get_logger("tributary.orchestrator")


class SyncStatus(StrEnum):
    """Sync lifecycle status."""

    NOT_STARTED = "not_started"
    RESOLVING = "resolving"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


class StreamOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StreamResult:
    """Outcome of one stream within a sync."""

    name: str
    status: StreamOutcome
    records: int = 0
    slices: int = 0
    failed_slices: list[Any] = field(default_factory=list)
    error: Exception | None = None


class SyncOrchestrator:
    """
    Runs one sync of a source.

    Attributes:
        source_type: Source name reported in the opening status signal
        source_version: Version reported in the opening status signal
        streams: Every stream the source defines, keyed by name
        settings: Failure budgets, state compression and backfill switch
        spec: Connection specification used to redact the config
        status: Lifecycle status of the current sync
        stream_results: Outcome of each stream run so far, in run order
    """

    def __init__(
        self,
        streams: Sequence[Stream],
        settings: SyncSettings | None = None,
        source_type: str = "source",
        source_version: str | None = None,
        spec: dict[str, Any] | None = None,
    ):
        self.streams = {stream.name: stream for stream in streams}
        self.settings = settings or SyncSettings()
        self.source_type = source_type
        self.source_version = source_version
        self.spec = spec or {}
        self.codec = StateCodec(self.settings.compress_state)
        self.status = SyncStatus.NOT_STARTED
        self.stream_results: dict[str, StreamResult] = {}
        self.state: dict[str, Any] = {}

    @property
    def failed_streams(self) -> list[str]:
        return [name for name, result in self.stream_results.items() if result.status == StreamOutcome.FAILED]

    def _status_message(
        self,
        source_status: SourceStatus,
        message: str | None = None,
        stream: str | None = None,
        stream_message: str | None = None,
    ) -> StateMessage:
        return StateMessage(
            data=self.codec.encode(self.state),
            source_status=SourceStatusInfo(source_status, message),
            stream_status=StreamStatusInfo(stream, StreamStatus.ERROR, stream_message) if stream else None,
        )

    def _record_result(self, driver: SliceDriver, status: StreamOutcome, error: Exception | None = None) -> None:
        self.stream_results[driver.name] = StreamResult(
            name=driver.name,
            status=status,
            records=driver.stats.records,
            slices=driver.stats.slices,
            failed_slices=list(driver.stats.failed_slices),
            error=error,
        )

    async def read(
        self,
        config: dict[str, Any],
        catalog: ConfiguredCatalog,
        prior_state: Any = None,
    ) -> AsyncIterator[Message]:
        """
        Sync the streams selected by ``catalog``.

        Args:
            config: Connector configuration (secrets are redacted before echoing it)
            catalog: Streams to sync and their requested modes
            prior_state: Persisted sync-wide state, plain or compressed

        Yields:
            RECORD and STATE protocol messages

        Raises:
            ConfigurationError: If the requested streams cannot be resolved;
                nothing but the opening status signal is emitted in that case
            StreamFailuresError: If any stream failed and a stream budget is set
            Exception: The failing stream's own error when no stream budget is set
        """
        self.status = SyncStatus.RESOLVING
        self.stream_results = {}
        self.state = self.codec.decode(prior_state)

        yield StateMessage(
            data=self.codec.encode(self.state),
            source_config={
                "source_type": self.source_type,
                "source_version": self.source_version,
                "redacted_config": redact_config(config, self.spec),
            },
        )

        try:
            # Definitions are taken once and stay fixed for the whole sync
            definitions = {name: stream.definition for name, stream in self.streams.items()}
            order = resolve_stream_order(definitions.values(), catalog.stream_names)
        except Exception:
            self.status = SyncStatus.ABORTED
            raise

        self.status = SyncStatus.RUNNING
        logger.info(f"Syncing {len(order)} streams: {', '.join(order)}")

        for position, name in enumerate(order, start=1):
            configured = catalog.get(name)
            sync_mode = configured.sync_mode if configured else SyncMode.FULL_REFRESH
            cursor_field = configured.cursor_field if configured else ()
            driver = SliceDriver(self.streams[name], self.state, self.settings, definitions[name])
            try:
                signals = driver.run(sync_mode, progress=(position, len(order)), cursor_field=cursor_field)
                async with aclosing(signals):
                    async for signal in signals:
                        if isinstance(signal, RecordSignal):
                            yield RecordMessage.make(signal.stream, signal.record)
                        elif isinstance(signal, CheckpointSignal):
                            yield StateMessage(data=self.codec.encode(signal.state))
                        elif isinstance(signal, SliceFailureSignal):
                            detail = f"Slice {describe_slice(signal.stream_slice)} failed: {signal.error}"
                            yield self._status_message(SourceStatus.RUNNING, detail, name, detail)
            except Exception as e:
                self._record_result(driver, StreamOutcome.FAILED, e)
                logger.error(f"Encountered an error while reading stream {name}: {e}")
                yield self._status_message(SourceStatus.ERRORED, str(e), name, str(e))
                if self.settings.max_stream_failures is None:
                    self.status = SyncStatus.ABORTED
                    raise
                if budget_exceeded(len(self.failed_streams), self.settings.max_stream_failures):
                    self.status = SyncStatus.ABORTED
                    raise StreamFailuresError(self.failed_streams, aborted=True) from e
                continue

            self._record_result(driver, StreamOutcome.SUCCEEDED)

        if self.failed_streams:
            self.status = SyncStatus.PARTIAL_FAILURE
            raise StreamFailuresError(self.failed_streams)

        self.status = SyncStatus.SUCCEEDED
        logger.info(f"Finished syncing {len(order)} streams")
        yield self._status_message(SourceStatus.SUCCESS)

    def final_state(self) -> dict[str, Any]:
        """Copy of the sync-wide state as last checkpointed."""
        return copy.deepcopy(self.state)
