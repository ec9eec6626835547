"""
Incremental cursor tracking.

Stream state maps a slice key to the highest cursor value seen for that
slice, stored as ``{"cutoff": <epoch-ms>}``. A stored cutoff only moves
forward.
"""

from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any

CursorField = Sequence[str]


def normalize_cursor_field(cursor_field: str | Sequence[str] | None) -> tuple[str, ...]:
    """Wrap a cursor field as a path tuple; ``None`` and ``""`` become ``()``."""
    if not cursor_field:
        return ()
    if isinstance(cursor_field, str):
        return (cursor_field,)
    return tuple(cursor_field)


def resolve_cursor_value(record: Any, cursor_field: CursorField) -> Any:
    """Follow a cursor path into a record; None if any segment is missing."""
    if not cursor_field:
        return None
    value = record
    for key in cursor_field:
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        else:
            return None
    return value


def to_datetime(value: Any) -> datetime | None:
    """
    Coerce a cursor value to an aware datetime.

    Accepts datetimes (naive ones are taken as UTC), dates, ISO-8601
    strings and epoch milliseconds. Returns None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def stored_cutoff(state: Mapping[str, Any] | None, slice_key: str) -> datetime | None:
    """Return the stored cutoff for a slice key, if any."""
    if not state:
        return None
    entry = state.get(slice_key)
    if not isinstance(entry, Mapping):
        return None
    return to_datetime(entry.get("cutoff"))


def calculate_updated_state(
    current_state: dict[str, Any] | None,
    cutoff: datetime | None,
    slice_key: str,
    cutoff_lag_days: float = 0,
) -> dict[str, Any]:
    """
    Advance a slice's cutoff if the new value is ahead of the stored one.

    The lag is subtracted only for the comparison; the stored value is the
    unadjusted cutoff. The input mapping is never mutated: when the cutoff
    advances a new mapping is returned, otherwise the input itself.

    Args:
        current_state: Stream state ``{slice_key: {"cutoff": epoch_ms}}``
        cutoff: Cursor value extracted from the latest record
        slice_key: Key of the slice the record belongs to
        cutoff_lag_days: Days subtracted from ``cutoff`` before comparing

    Returns:
        The updated (or unchanged) stream state
    """
    state = current_state if current_state is not None else {}
    if cutoff is None:
        return state

    adjusted = cutoff - timedelta(days=cutoff_lag_days)
    current = stored_cutoff(state, slice_key)
    if current is not None and adjusted <= current:
        return state

    return {**state, slice_key: {"cutoff": to_epoch_ms(cutoff)}}


class CursorTracker:
    """Derives stream state updates from records for one cursor field."""

    def __init__(self, cursor_field: str | Sequence[str] | None, cutoff_lag_days: float = 0):
        if cutoff_lag_days < 0:
            raise ValueError("cutoff_lag_days must be >= 0")
        self.cursor_field = normalize_cursor_field(cursor_field)
        self.cutoff_lag_days = cutoff_lag_days

    @property
    def enabled(self) -> bool:
        return bool(self.cursor_field)

    def cursor_value(self, record: Any) -> datetime | None:
        return to_datetime(resolve_cursor_value(record, self.cursor_field))

    def update(self, current_state: dict[str, Any] | None, record: Any, slice_key: str) -> dict[str, Any]:
        """Return the stream state after observing ``record`` in ``slice_key``."""
        if not self.enabled:
            return current_state if current_state is not None else {}
        return calculate_updated_state(current_state, self.cursor_value(record), slice_key, self.cutoff_lag_days)
