"""Shared parsing utilities for provider clients.

Centralises the value parsing every aggregator integration needs:
ISO 8601 dates and datetimes, timezone normalisation, decimal amounts
(including Tink's ``{unscaledValue, scale}`` fixed-point pairs) and IBANs.
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

_WHITESPACE_RE = re.compile(r"\s+")


def parse_iso_datetime(value) -> datetime | None:
    """Parse an ISO 8601 string (or date/datetime object) to a UTC-aware datetime.

    Handles:
    - Z suffix ("2024-01-15T10:30:00Z")
    - +0000 no-colon offset ("2024-01-15T10:30:00+0000")
    - Standard ISO with colon offset ("2024-06-28 18:42:46+00:00")
    - Date-only strings ("2024-06-28")
    - datetime/date objects passed through with UTC normalisation

    Args:
        value: A string, date, datetime, or None.

    Returns:
        A timezone-aware UTC datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    value_str = str(value)

    if value_str.endswith("Z"):
        value_str = value_str[:-1] + "+00:00"

    if (
        len(value_str) >= 5
        and value_str[-5] in ("+", "-")
        and value_str[-4:].isdigit()
    ):
        value_str = value_str[:-2] + ":" + value_str[-2:]

    try:
        return ensure_utc(datetime.fromisoformat(value_str))
    except (ValueError, TypeError):
        pass

    try:
        d = date.fromisoformat(str(value))
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def parse_iso_date(value) -> date | None:
    """Parse a date-like value (``"2024-06-28"``, date, datetime) to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    parsed = parse_iso_datetime(value)
    return parsed.date() if parsed else None


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC).

    SQLite strips tzinfo on round-trip, so every datetime read back from
    the database passes through here before it is compared.

    Args:
        dt: A datetime object.

    Returns:
        The same instant as a timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_decimal(value) -> Decimal | None:
    """Convert a value to Decimal, returning None on failure."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def fixed_point_to_decimal(value) -> Decimal | None:
    """Convert a ``{"unscaledValue": "-1250", "scale": "2"}`` pair to Decimal.

    ``-1250`` with scale ``2`` is ``-12.50``. Scales may be negative.

    Returns:
        The decimal value, or None if either part is missing or not numeric.
    """
    if not isinstance(value, dict):
        return None
    unscaled = to_decimal(value.get("unscaledValue"))
    scale = value.get("scale")
    if unscaled is None or scale is None:
        return None
    try:
        return unscaled.scaleb(-int(scale))
    except (TypeError, ValueError):
        return None


def normalize_iban(value: str | None) -> str | None:
    """Upper-case an IBAN and strip all whitespace; empty results become None."""
    if not value:
        return None
    normalized = _WHITESPACE_RE.sub("", str(value)).upper()
    return normalized or None
