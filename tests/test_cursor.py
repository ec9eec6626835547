"""
Tests for incremental cursor tracking.
"""

from datetime import UTC, date, datetime, timedelta

import pytest

from tributary.core.cursor import (
    CursorTracker,
    calculate_updated_state,
    normalize_cursor_field,
    resolve_cursor_value,
    stored_cutoff,
    to_datetime,
    to_epoch_ms,
)

JAN_1 = datetime(2024, 1, 1, tzinfo=UTC)
JAN_1_MS = 1704067200000


class TestNormalize:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, ()),
            ("", ()),
            ((), ()),
            ("updated_at", ("updated_at",)),
            (["fields", "updated"], ("fields", "updated")),
        ],
    )
    def test_normalize_cursor_field(self, value, expected):
        assert normalize_cursor_field(value) == expected

    def test_resolve_nested_value(self):
        record = {"fields": {"updated": "2024-01-01"}}
        assert resolve_cursor_value(record, ("fields", "updated")) == "2024-01-01"
        assert resolve_cursor_value(record, ("fields", "missing")) is None
        assert resolve_cursor_value(record, ()) is None


class TestToDatetime:
    def test_iso_string_with_z(self):
        assert to_datetime("2024-01-01T00:00:00Z") == JAN_1

    def test_iso_string_with_offset(self):
        assert to_datetime("2024-01-01T02:00:00+02:00") == JAN_1

    def test_naive_values_are_utc(self):
        assert to_datetime("2024-01-01T00:00:00") == JAN_1
        assert to_datetime(datetime(2024, 1, 1)) == JAN_1

    def test_date(self):
        assert to_datetime(date(2024, 1, 1)) == JAN_1

    def test_epoch_millis(self):
        assert to_datetime(JAN_1_MS) == JAN_1

    @pytest.mark.parametrize("value", [None, True, "", "yesterday", {"a": 1}])
    def test_unusable_values(self, value):
        assert to_datetime(value) is None

    def test_to_epoch_ms(self):
        assert to_epoch_ms(JAN_1) == JAN_1_MS


class TestCalculateUpdatedState:
    def test_first_value_is_stored(self):
        assert calculate_updated_state({}, JAN_1, "users") == {"users": {"cutoff": JAN_1_MS}}

    def test_none_state_treated_as_empty(self):
        assert calculate_updated_state(None, JAN_1, "users") == {"users": {"cutoff": JAN_1_MS}}

    def test_newer_value_advances(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        later = JAN_1 + timedelta(hours=1)
        assert calculate_updated_state(state, later, "users") == {"users": {"cutoff": to_epoch_ms(later)}}

    def test_older_value_returns_same_state(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        assert calculate_updated_state(state, JAN_1 - timedelta(days=1), "users") is state

    def test_equal_value_returns_same_state(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        assert calculate_updated_state(state, JAN_1, "users") is state

    def test_missing_cursor_returns_same_state(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        assert calculate_updated_state(state, None, "users") is state

    def test_input_is_not_mutated(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        calculate_updated_state(state, JAN_1 + timedelta(days=1), "users")
        assert state == {"users": {"cutoff": JAN_1_MS}}

    def test_other_slice_keys_are_kept(self):
        state = {"a": {"cutoff": JAN_1_MS}}
        updated = calculate_updated_state(state, JAN_1, "b")
        assert updated == {"a": {"cutoff": JAN_1_MS}, "b": {"cutoff": JAN_1_MS}}

    def test_lag_within_window_does_not_advance(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        # 1 day ahead, but 2 days of lag puts it behind the stored cutoff
        assert calculate_updated_state(state, JAN_1 + timedelta(days=1), "users", cutoff_lag_days=2) is state

    def test_lag_stores_unadjusted_cutoff(self):
        state = {"users": {"cutoff": JAN_1_MS}}
        later = JAN_1 + timedelta(days=3)
        updated = calculate_updated_state(state, later, "users", cutoff_lag_days=2)
        assert updated == {"users": {"cutoff": to_epoch_ms(later)}}

    def test_stored_cutoff(self):
        assert stored_cutoff({"users": {"cutoff": JAN_1_MS}}, "users") == JAN_1
        assert stored_cutoff({}, "users") is None
        assert stored_cutoff({"users": "garbage"}, "users") is None


class TestCursorTracker:
    def test_negative_lag_rejected(self):
        with pytest.raises(ValueError):
            CursorTracker("updated_at", cutoff_lag_days=-1)

    def test_disabled_without_cursor_field(self):
        tracker = CursorTracker(None)
        state = {"users": {"cutoff": 1}}
        assert not tracker.enabled
        assert tracker.update(state, {"updated_at": "2024-01-01"}, "users") is state

    def test_update_from_record(self):
        tracker = CursorTracker("updated_at")
        assert tracker.update({}, {"updated_at": "2024-01-01T00:00:00Z"}, "users") == {"users": {"cutoff": JAN_1_MS}}

    def test_update_from_nested_record(self):
        tracker = CursorTracker(["fields", "updated"])
        assert tracker.update(None, {"fields": {"updated": JAN_1_MS}}, "k") == {"k": {"cutoff": JAN_1_MS}}

    def test_record_without_cursor_value(self):
        tracker = CursorTracker("updated_at")
        state = {"users": {"cutoff": JAN_1_MS}}
        assert tracker.update(state, {"id": 1}, "users") is state
