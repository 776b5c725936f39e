"""Unit tests for boundary time normalisation."""

from datetime import datetime, timedelta, timezone

import pytest

from attempt_service.services.timeutil import from_epoch_ms, minutes_to_ms, to_epoch_ms

# 2024-03-01T12:00:00Z
EPOCH_S = 1709294400
EPOCH_MS = EPOCH_S * 1000


class TestToEpochMs:
    def test_aware_datetime(self):
        assert to_epoch_ms(datetime(2024, 3, 1, 12, tzinfo=timezone.utc)) == EPOCH_MS

    def test_naive_datetime_is_utc(self):
        assert to_epoch_ms(datetime(2024, 3, 1, 12)) == EPOCH_MS

    def test_offset_datetime(self):
        tz = timezone(timedelta(hours=2))
        assert to_epoch_ms(datetime(2024, 3, 1, 14, tzinfo=tz)) == EPOCH_MS

    def test_milliseconds_pass_through(self):
        assert to_epoch_ms(EPOCH_MS) == EPOCH_MS

    def test_small_numbers_are_seconds(self):
        assert to_epoch_ms(EPOCH_S) == EPOCH_MS
        assert to_epoch_ms(float(EPOCH_S) + 0.5) == EPOCH_MS + 500

    def test_digit_string(self):
        assert to_epoch_ms(str(EPOCH_MS)) == EPOCH_MS
        assert to_epoch_ms(f" {EPOCH_S} ") == EPOCH_MS

    def test_iso_string_with_z(self):
        assert to_epoch_ms("2024-03-01T12:00:00Z") == EPOCH_MS

    def test_iso_string_with_offset(self):
        assert to_epoch_ms("2024-03-01T13:00:00+01:00") == EPOCH_MS

    def test_firestore_mapping(self):
        assert to_epoch_ms({"seconds": EPOCH_S, "nanoseconds": 250_000_000}) == EPOCH_MS + 250

    def test_underscored_mapping(self):
        assert to_epoch_ms({"_seconds": EPOCH_S, "_nanoseconds": 0}) == EPOCH_MS

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            to_epoch_ms(True)

    def test_empty_string_rejected(self):
        with pytest.raises(ValueError):
            to_epoch_ms("  ")

    def test_garbage_string_rejected(self):
        with pytest.raises(ValueError):
            to_epoch_ms("next tuesday")

    def test_mapping_without_seconds_rejected(self):
        with pytest.raises(ValueError):
            to_epoch_ms({"millis": 1})

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            to_epoch_ms([EPOCH_MS])


class TestHelpers:
    def test_from_epoch_ms_is_aware_utc(self):
        value = from_epoch_ms(EPOCH_MS)
        assert value == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        assert value.tzinfo is not None

    def test_minutes_to_ms(self):
        assert minutes_to_ms(5) == 300_000
        assert minutes_to_ms(1.5) == 90_000
