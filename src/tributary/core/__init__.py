"""Stream synchronization core."""

from tributary.core.cursor import CursorTracker, calculate_updated_state
from tributary.core.dependencies import DependencyGraph, resolve_stream_order
from tributary.core.orchestrator import StreamResult, SyncOrchestrator, SyncStatus
from tributary.core.slices import CheckpointSignal, RecordSignal, SliceDriver, SliceFailureSignal
from tributary.core.source import Source
from tributary.core.state import StateCodec, decode_state, encode_state
from tributary.core.stream import Stream, StreamDefinition

__all__ = [
    "CursorTracker",
    "calculate_updated_state",
    "DependencyGraph",
    "resolve_stream_order",
    "SyncOrchestrator",
    "SyncStatus",
    "StreamResult",
    "SliceDriver",
    "RecordSignal",
    "CheckpointSignal",
    "SliceFailureSignal",
    "Source",
    "StateCodec",
    "encode_state",
    "decode_state",
    "Stream",
    "StreamDefinition",
]
