"""Unit tests for utility helpers."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from skillhub.utils import format_iso, is_blank, new_id, parse_datetime, truncate_preview, utc_now


class TestDatetimeHelpers:
    """Tests for parse_datetime / format_iso / utc_now."""

    def test_parse_datetime_with_z_suffix(self):
        """Test parsing ISO8601 with Z suffix."""
        dt = parse_datetime("2024-01-15T10:30:00Z")
        assert dt == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_parse_datetime_converts_offset_to_utc(self):
        """Test offsets are normalized to UTC."""
        dt = parse_datetime("2024-01-15T12:30:00+02:00")
        assert dt == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
        assert dt.utcoffset() == timedelta(0)

    def test_parse_datetime_naive_assumed_utc(self):
        """Test naive datetimes are treated as UTC."""
        dt = parse_datetime(datetime(2024, 1, 15, 10, 30))
        assert dt.tzinfo is not None
        assert dt == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_parse_datetime_none(self):
        assert parse_datetime(None) is None

    def test_parse_datetime_invalid(self):
        with pytest.raises(ValueError):
            parse_datetime("not a date")

    def test_format_iso_fixed_microseconds(self):
        """Test formatted timestamps always carry microseconds and a Z suffix."""
        dt = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
        assert format_iso(dt) == "2024-01-15T10:30:00.000000Z"

    def test_format_iso_other_timezone(self):
        dt = datetime(2024, 1, 15, 12, 30, 0, 5, tzinfo=timezone(timedelta(hours=2)))
        assert format_iso(dt) == "2024-01-15T10:30:00.000005Z"

    def test_format_iso_none(self):
        assert format_iso(None) is None

    def test_formatted_timestamps_sort_chronologically(self):
        """Test lexical order of stored strings matches time order."""
        base = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
        stamps = [base + timedelta(microseconds=n * 250_000) for n in range(6)]
        formatted = [format_iso(s) for s in stamps]
        assert sorted(formatted) == formatted

    def test_round_trip(self):
        now = utc_now()
        assert parse_datetime(format_iso(now)) == now

    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is not None


class TestTextHelpers:
    """Tests for truncate_preview and is_blank."""

    def test_truncate_short_text_unchanged(self):
        assert truncate_preview("short", 30) == "short"

    def test_truncate_exact_length_has_no_ellipsis(self):
        text = "x" * 30
        assert truncate_preview(text, 30) == text

    def test_truncate_long_text(self):
        text = "abcdefghij" * 4
        assert truncate_preview(text, 30) == text[:30] + "…"

    @pytest.mark.parametrize("value", [None, "", "   ", "\n\t"])
    def test_is_blank_true(self, value):
        assert is_blank(value)

    def test_is_blank_false(self):
        assert not is_blank(" hi ")


def test_new_id_unique():
    ids = {new_id() for _ in range(100)}
    assert len(ids) == 100
