"""
Persisted sync state encoding.

Sync-wide state is a JSON object keyed by stream name. It is handed back to
the invoker as an opaque resumption token, either as-is or wrapped as
``{"format": "base64/gzip", "data": "<base64>"}``. State written as a GLOBAL
envelope, ``{"type": "GLOBAL", "global": {"shared_state": ...}}``, is
accepted on input and unwrapped to its shared state.
"""

import base64
import binascii
import copy
import gzip
import json
import zlib
from typing import Any

from tributary.exceptions import StateCodecError

STATE_FORMAT = "base64/gzip"
GLOBAL_STATE_TYPE = "GLOBAL"


def is_compressed(blob: Any) -> bool:
    """Check whether a blob is a compressed state wrapper."""
    return isinstance(blob, dict) and blob.get("format") == STATE_FORMAT and isinstance(blob.get("data"), str)


def compress(state: Any) -> dict[str, str]:
    """Serialize any JSON-serializable value into a compressed wrapper."""
    try:
        raw = json.dumps(state, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise StateCodecError(f"State is not JSON-serializable: {e}") from e
    return {"format": STATE_FORMAT, "data": base64.b64encode(gzip.compress(raw)).decode("ascii")}


def decompress(blob: Any) -> Any:
    """
    Inverse of ``compress``.

    Values that are not compressed wrappers are returned unchanged, so
    callers can pass state through without knowing how it was stored.
    """
    if not is_compressed(blob):
        return blob
    try:
        raw = gzip.decompress(base64.b64decode(blob["data"], validate=True))
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StateCodecError(f"Could not decode {STATE_FORMAT} state: {e}") from e


def is_global(blob: Any) -> bool:
    """Check whether a blob is a GLOBAL state envelope."""
    return isinstance(blob, dict) and blob.get("type") == GLOBAL_STATE_TYPE and isinstance(blob.get("global"), dict)


def unwrap_global(blob: Any) -> Any:
    """Return the shared state of a GLOBAL envelope; other values pass through."""
    if not is_global(blob):
        return blob
    return blob["global"].get("shared_state")


def encode_state(state: dict[str, Any], compress_state: bool = False) -> dict[str, Any]:
    """Encode sync-wide state for emission."""
    if compress_state:
        return compress(state)
    return copy.deepcopy(state)


def decode_state(blob: Any) -> dict[str, Any]:
    """
    Decode persisted sync-wide state.

    Args:
        blob: Plain state mapping, compressed wrapper, GLOBAL envelope, or None

    Returns:
        A fresh state mapping (never the caller's object)

    Raises:
        StateCodecError: If the blob is neither a mapping nor decodable
    """
    blob = unwrap_global(blob)
    if blob is None:
        return {}
    state = decompress(blob)
    if not isinstance(state, dict):
        raise StateCodecError(f"Sync state must be a JSON object, got {type(state).__name__}")
    return copy.deepcopy(state)


class StateCodec:
    """Encodes and decodes sync state with a fixed compression setting."""

    def __init__(self, compress_state: bool = False):
        self.compress_state = compress_state

    def encode(self, state: dict[str, Any]) -> dict[str, Any]:
        return encode_state(state, self.compress_state)

    def decode(self, blob: Any) -> dict[str, Any]:
        return decode_state(blob)
