"""Tests for shared parsing utilities."""

from datetime import date, datetime, timezone, timedelta
from decimal import Decimal

import pytest

from integrations.parsing_utils import (
    ensure_utc,
    fixed_point_to_decimal,
    normalize_iban,
    parse_iso_date,
    parse_iso_datetime,
    to_decimal,
)


class TestParseIsoDatetime:
    """Tests for parse_iso_datetime."""

    def test_none_returns_none(self):
        assert parse_iso_datetime(None) is None

    def test_naive_datetime_gets_utc(self):
        dt = datetime(2024, 6, 28, 12, 0, 0)
        result = parse_iso_datetime(dt)
        assert result.tzinfo == timezone.utc
        assert result == datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone.utc)

    def test_aware_datetime_other_tz_is_converted(self):
        tz_minus5 = timezone(timedelta(hours=-5))
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=tz_minus5)
        result = parse_iso_datetime(dt)
        assert result.tzinfo == timezone.utc
        assert result.hour == 17

    def test_date_object(self):
        result = parse_iso_datetime(date(2024, 6, 28))
        assert result == datetime(2024, 6, 28, 0, 0, 0, tzinfo=timezone.utc)

    def test_z_suffix(self):
        result = parse_iso_datetime("2024-01-15T10:30:00Z")
        assert result == datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    def test_no_colon_tz_negative(self):
        result = parse_iso_datetime("2024-01-15T10:30:00-0500")
        assert result == datetime(2024, 1, 15, 15, 30, 0, tzinfo=timezone.utc)

    def test_space_separator_with_microseconds(self):
        result = parse_iso_datetime("2024-06-28 18:42:46.561408+00:00")
        assert result.microsecond == 561408
        assert result.tzinfo == timezone.utc

    def test_date_only_string(self):
        result = parse_iso_datetime("2024-06-28")
        assert result == datetime(2024, 6, 28, 0, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["not-a-date", "", "2024-13-45"])
    def test_invalid_returns_none(self, value):
        assert parse_iso_datetime(value) is None


class TestParseIsoDate:
    """Tests for parse_iso_date."""

    def test_string(self):
        assert parse_iso_date("2026-01-15") == date(2026, 1, 15)

    def test_datetime_is_taken_in_utc(self):
        dt = datetime(2026, 1, 15, 23, 30, tzinfo=timezone(timedelta(hours=-2)))
        assert parse_iso_date(dt) == date(2026, 1, 16)

    def test_date_passthrough(self):
        d = date(2026, 1, 15)
        assert parse_iso_date(d) is d

    def test_none_and_garbage(self):
        assert parse_iso_date(None) is None
        assert parse_iso_date("yesterday") is None


class TestEnsureUtc:
    """Tests for ensure_utc."""

    def test_naive_becomes_utc(self):
        result = ensure_utc(datetime(2024, 6, 28, 12, 0, 0))
        assert result.tzinfo == timezone.utc
        assert result.hour == 12

    def test_utc_unchanged(self):
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone.utc)
        assert ensure_utc(dt) == dt

    def test_other_tz_same_instant(self):
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone(timedelta(hours=5)))
        result = ensure_utc(dt)
        assert result == dt
        assert result.tzinfo == timezone.utc


class TestDecimals:
    """Tests for to_decimal and fixed_point_to_decimal."""

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", [None, "", "abc"])
    def test_to_decimal_invalid(self, value):
        assert to_decimal(value) is None

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ({"unscaledValue": "-1250", "scale": "2"}, Decimal("-12.50")),
            ({"unscaledValue": 5, "scale": 0}, Decimal("5")),
            ({"unscaledValue": "12", "scale": "-3"}, Decimal("12000")),
        ],
    )
    def test_fixed_point(self, value, expected):
        assert fixed_point_to_decimal(value) == expected

    @pytest.mark.parametrize(
        "value",
        [None, "12.50", {"unscaledValue": "1"}, {"unscaledValue": "x", "scale": "2"},
         {"unscaledValue": "1", "scale": "two"}],
    )
    def test_fixed_point_invalid(self, value):
        assert fixed_point_to_decimal(value) is None


class TestNormalizeIban:
    """Tests for normalize_iban."""

    def test_strips_spaces_and_uppercases(self):
        assert normalize_iban(" nl91 abna\t0417 1643 00 ") == "NL91ABNA0417164300"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_is_none(self, value):
        assert normalize_iban(value) is None
