"""
Wire protocol messages.

Every message is one self-describing JSON object per line on stdout, tagged
with a ``type``. Consumers must tolerate well-formed messages of unknown
type, so ``parse_message`` returns an ``UnknownMessage`` for them rather than
failing.
"""

from __future__ import annotations

import json
import sys
import time
import traceback
from dataclasses import dataclass, field
from enum import StrEnum
from typing import IO, Any, ClassVar

from tributary.exceptions import ConfigurationError, ProtocolError


class MessageType(StrEnum):
    """Protocol message type tag."""

    CATALOG = "CATALOG"
    CONNECTION_STATUS = "CONNECTION_STATUS"
    LOG = "LOG"
    RECORD = "RECORD"
    SPEC = "SPEC"
    STATE = "STATE"
    TRACE = "TRACE"


class SyncMode(StrEnum):
    """How a stream is read."""

    FULL_REFRESH = "full_refresh"
    INCREMENTAL = "incremental"


class ConnectionStatus(StrEnum):
    """Outcome of a connection check."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class LogLevel(StrEnum):
    """Log level carried by LOG messages."""

    FATAL = "FATAL"
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"
    TRACE = "TRACE"


class FailureType(StrEnum):
    """Classification attached to TRACE error messages."""

    SYSTEM_ERROR = "system_error"
    CONFIG_ERROR = "config_error"


class SourceStatus(StrEnum):
    """Sync-wide status carried by status signals."""

    RUNNING = "RUNNING"
    ERRORED = "ERRORED"
    SUCCESS = "SUCCESS"


class StreamStatus(StrEnum):
    """Per-stream status carried by status signals."""

    ERROR = "ERROR"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class Message:
    """Base class for protocol messages."""

    type: ClassVar[MessageType]

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"type": str(self.type), **self.payload()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, separators=(",", ":"))


@dataclass
class RecordMessage(Message):
    """One synced record."""

    type: ClassVar[MessageType] = MessageType.RECORD

    stream: str
    data: dict[str, Any]
    emitted_at: int = field(default_factory=now_ms)
    namespace: str | None = None

    @classmethod
    def make(cls, stream: str, data: dict[str, Any], namespace: str | None = None) -> "RecordMessage":
        return cls(stream=stream, data=data, namespace=namespace)

    def payload(self) -> dict[str, Any]:
        record: dict[str, Any] = {"stream": self.stream, "emitted_at": self.emitted_at, "data": self.data}
        if self.namespace is not None:
            record["namespace"] = self.namespace
        return {"record": record}


@dataclass
class SourceStatusInfo:
    status: SourceStatus
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"status": str(self.status), "message": self.message}


@dataclass
class StreamStatusInfo:
    name: str
    status: StreamStatus
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": str(self.status), "message": self.message}


@dataclass
class StateMessage(Message):
    """
    Sync-wide state snapshot.

    Plain checkpoints carry only ``data``. Status signals additionally carry
    ``source_status`` (and ``stream_status`` when a stream or slice failed);
    the opening signal of a sync carries ``source_config``.
    """

    type: ClassVar[MessageType] = MessageType.STATE

    data: dict[str, Any]
    source_status: SourceStatusInfo | None = None
    stream_status: StreamStatusInfo | None = None
    source_config: dict[str, Any] | None = None

    def payload(self) -> dict[str, Any]:
        result: dict[str, Any] = {"state": {"data": self.data}}
        if self.source_status is not None:
            result["source_status"] = self.source_status.to_dict()
        if self.stream_status is not None:
            result["stream_status"] = self.stream_status.to_dict()
        if self.source_config is not None:
            result["source_config"] = self.source_config
        return result


@dataclass
class CatalogMessage(Message):
    type: ClassVar[MessageType] = MessageType.CATALOG

    streams: list[dict[str, Any]]

    def payload(self) -> dict[str, Any]:
        return {"catalog": {"streams": self.streams}}


@dataclass
class ConnectionStatusMessage(Message):
    type: ClassVar[MessageType] = MessageType.CONNECTION_STATUS

    status: ConnectionStatus
    message: str | None = None

    def payload(self) -> dict[str, Any]:
        status: dict[str, Any] = {"status": str(self.status)}
        if self.message is not None:
            status["message"] = self.message
        return {"connectionStatus": status}


@dataclass
class SpecMessage(Message):
    type: ClassVar[MessageType] = MessageType.SPEC

    spec: dict[str, Any]

    @property
    def connection_specification(self) -> dict[str, Any]:
        return self.spec.get("connectionSpecification", {})

    def payload(self) -> dict[str, Any]:
        return {"spec": self.spec}


@dataclass
class LogMessage(Message):
    type: ClassVar[MessageType] = MessageType.LOG

    level: LogLevel
    message: str
    stack_trace: str | None = None

    def payload(self) -> dict[str, Any]:
        log: dict[str, Any] = {"level": str(self.level), "message": self.message}
        if self.stack_trace:
            log["stack_trace"] = self.stack_trace
        return {"log": log}


@dataclass
class TraceMessage(Message):
    """Error trace emitted when a command fails."""

    type: ClassVar[MessageType] = MessageType.TRACE

    message: str
    failure_type: FailureType = FailureType.SYSTEM_ERROR
    internal_message: str | None = None
    stack_trace: str | None = None
    emitted_at: int = field(default_factory=now_ms)

    @classmethod
    def from_exception(cls, error: BaseException, failure_type: FailureType | None = None) -> "TraceMessage":
        if failure_type is None:
            failure_type = (
                FailureType.CONFIG_ERROR if isinstance(error, ConfigurationError) else FailureType.SYSTEM_ERROR
            )
        return cls(
            message=str(error) or type(error).__name__,
            failure_type=failure_type,
            internal_message=type(error).__name__,
            stack_trace="".join(traceback.format_exception(error)),
        )

    def payload(self) -> dict[str, Any]:
        return {
            "trace": {
                "type": "ERROR",
                "emitted_at": self.emitted_at,
                "error": {
                    "message": self.message,
                    "internal_message": self.internal_message,
                    "stack_trace": self.stack_trace,
                    "failure_type": str(self.failure_type),
                },
            }
        }


@dataclass
class UnknownMessage(Message):
    """A well-formed message whose type this version does not know."""

    raw: dict[str, Any]

    @property
    def type(self) -> str:  # type: ignore[override]
        return self.raw.get("type", "")

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


def is_source_status_message(message: Message) -> bool:
    """True for STATE messages that carry a sync status."""
    return isinstance(message, StateMessage) and message.source_status is not None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_state(obj: dict[str, Any]) -> StateMessage:
    source_status = obj.get("source_status")
    stream_status = obj.get("stream_status")
    return StateMessage(
        data=(obj.get("state") or {}).get("data", {}),
        source_status=(
            SourceStatusInfo(SourceStatus(source_status["status"]), source_status.get("message"))
            if source_status
            else None
        ),
        stream_status=(
            StreamStatusInfo(stream_status["name"], StreamStatus(stream_status["status"]), stream_status.get("message"))
            if stream_status
            else None
        ),
        source_config=obj.get("source_config"),
    )


def _parse_record(obj: dict[str, Any]) -> RecordMessage:
    record = obj["record"]
    return RecordMessage(
        stream=record["stream"],
        data=record.get("data", {}),
        emitted_at=record.get("emitted_at", now_ms()),
        namespace=record.get("namespace"),
    )


def _parse_trace(obj: dict[str, Any]) -> TraceMessage:
    trace = obj["trace"]
    error = trace.get("error", {})
    return TraceMessage(
        message=error.get("message", ""),
        failure_type=FailureType(error.get("failure_type") or FailureType.SYSTEM_ERROR),
        internal_message=error.get("internal_message"),
        stack_trace=error.get("stack_trace"),
        emitted_at=trace.get("emitted_at", now_ms()),
    )


_PARSERS = {
    MessageType.RECORD: _parse_record,
    MessageType.STATE: _parse_state,
    MessageType.CATALOG: lambda obj: CatalogMessage(streams=obj["catalog"].get("streams", [])),
    MessageType.CONNECTION_STATUS: lambda obj: ConnectionStatusMessage(
        status=ConnectionStatus(obj["connectionStatus"]["status"]),
        message=obj["connectionStatus"].get("message"),
    ),
    MessageType.SPEC: lambda obj: SpecMessage(spec=obj["spec"]),
    MessageType.LOG: lambda obj: LogMessage(
        level=LogLevel(obj["log"]["level"]),
        message=obj["log"]["message"],
        stack_trace=obj["log"].get("stack_trace"),
    ),
    MessageType.TRACE: _parse_trace,
}


def parse_message(line: str) -> Message:
    """
    Parse one line of protocol output.

    Args:
        line: A single JSON-encoded message

    Returns:
        The typed message, or ``UnknownMessage`` for an unrecognised type

    Raises:
        ProtocolError: If the line is not a JSON object with a ``type`` tag,
            or a known message type is missing required fields
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid message: {line!r}") from e
    if not isinstance(obj, dict) or not obj.get("type"):
        raise ProtocolError(f"Message type is not set: {line!r}")

    try:
        message_type = MessageType(obj["type"])
    except ValueError:
        return UnknownMessage(raw=obj)

    try:
        return _PARSERS[message_type](obj)
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid {message_type} message: {line!r}") from e


# ---------------------------------------------------------------------------
# Configured catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfiguredStream:
    """A stream selected for a sync, with the requested sync mode."""

    name: str
    sync_mode: SyncMode = SyncMode.FULL_REFRESH
    cursor_field: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "ConfiguredStream":
        stream = obj.get("stream") or {}
        name = stream.get("name") if isinstance(stream, dict) else None
        if not name:
            raise ValueError(f"Configured stream has no name: {obj!r}")
        return cls(
            name=name,
            sync_mode=SyncMode(obj.get("sync_mode", SyncMode.FULL_REFRESH)),
            cursor_field=tuple(obj.get("cursor_field") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"stream": {"name": self.name}, "sync_mode": str(self.sync_mode)}
        if self.cursor_field:
            result["cursor_field"] = list(self.cursor_field)
        return result


@dataclass(frozen=True)
class ConfiguredCatalog:
    streams: tuple[ConfiguredStream, ...] = ()

    @property
    def stream_names(self) -> list[str]:
        return [s.name for s in self.streams]

    def get(self, name: str) -> ConfiguredStream | None:
        for configured in self.streams:
            if configured.name == name:
                return configured
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"streams": [s.to_dict() for s in self.streams]}


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class MessageWriter:
    """Writes protocol messages as JSON lines."""

    def __init__(self, output: IO[str] | None = None):
        self._output = output

    @property
    def output(self) -> IO[str]:
        # Resolved lazily so test runners that swap sys.stdout are honoured
        return self._output or sys.stdout

    def write(self, message: Message) -> None:
        self.output.write(message.to_json() + "\n")
        self.output.flush()
