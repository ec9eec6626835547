"""
Tributary - resumable, fault-tolerant stream synchronization for connectors.

Sources define streams; Tributary orders them, reads them slice by slice,
tracks incremental cursors, checkpoints state and decides which failures a
sync can live with.
"""

__version__ = "0.1.0"

# Core exports
from tributary.config.settings import UNLIMITED, SyncSettings
from tributary.core.dependencies import DependencyGraph, resolve_stream_order
from tributary.core.orchestrator import SyncOrchestrator, SyncStatus
from tributary.core.slices import SliceDriver
from tributary.core.source import Source
from tributary.core.state import decode_state, encode_state
from tributary.core.stream import Stream, StreamDefinition

# Exceptions
from tributary.exceptions import (
    ConfigurationError,
    DependencyCycleError,
    ProtocolError,
    RecoverableError,
    SliceFailuresError,
    StateCodecError,
    StreamFailuresError,
    StreamNotFoundError,
    StreamSlicesError,
    SyncError,
    TributaryError,
)

# Protocol
from tributary.protocol import ConfiguredCatalog, ConfiguredStream, SyncMode, parse_message

# Logging utilities
from tributary.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    # Sources and streams
    "Source",
    "Stream",
    "StreamDefinition",
    # Sync
    "SyncOrchestrator",
    "SyncStatus",
    "SliceDriver",
    "SyncSettings",
    "UNLIMITED",
    "DependencyGraph",
    "resolve_stream_order",
    "encode_state",
    "decode_state",
    # Protocol
    "SyncMode",
    "ConfiguredCatalog",
    "ConfiguredStream",
    "parse_message",
    # Logging
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
    # Exceptions
    "TributaryError",
    "ConfigurationError",
    "StreamNotFoundError",
    "DependencyCycleError",
    "ProtocolError",
    "StateCodecError",
    "RecoverableError",
    "SyncError",
    "StreamSlicesError",
    "SliceFailuresError",
    "StreamFailuresError",
]
