"""Accounting period boundaries.

All boundaries are computed in UTC. ``period_bounds`` is deterministic for a
given (period type, timestamp) pair, which is what keeps ledger natural keys
stable across recomputations.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from affiliate_ledger.errors import ValidationError


class PeriodType(str, Enum):
    """Accounting period granularity."""

    MONTHLY = "monthly"
    WEEKLY = "weekly"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as aware UTC; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_period_type(value: str | PeriodType | None, default: str = "monthly") -> PeriodType:
    """Parse a period type, falling back to ``default`` when omitted."""
    if value is None:
        value = default
    try:
        return PeriodType(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown period type '{value}'") from exc


def period_bounds(period_type: PeriodType | str, at: datetime) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC bounds of the period containing ``at``.

    Monthly periods run from the first instant of the calendar month to the
    first instant of the next one. Weekly periods start Monday 00:00 UTC;
    a Sunday belongs to the week that began six days earlier.
    """
    period_type = PeriodType(period_type)
    at = ensure_utc(at)

    if period_type is PeriodType.MONTHLY:
        start = datetime(at.year, at.month, 1, tzinfo=timezone.utc)
        if at.month == 12:
            end = datetime(at.year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(at.year, at.month + 1, 1, tzinfo=timezone.utc)
        return start, end

    # Python's weekday() is already Monday=0 .. Sunday=6.
    day = datetime.combine(at.date(), time.min, tzinfo=timezone.utc)
    start = day - timedelta(days=at.weekday())
    return start, start + timedelta(days=7)


def parse_period_anchor(value: str) -> datetime:
    """Parse a ``YYYY-MM-DD`` (or full ISO-8601) string into a UTC instant.

    Date-only strings are read as midnight UTC of that day.
    """
    text = (value or "").strip()
    if not text:
        raise ValidationError("Period start date is required")
    try:
        if len(text) == 10:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError as exc:
        raise ValidationError(f"Invalid period start date '{value}'") from exc


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_cursor(value: datetime) -> int:
    """Encode a sort-key timestamp as an opaque numeric cursor (epoch microseconds)."""
    return (ensure_utc(value) - _EPOCH) // timedelta(microseconds=1)


def from_cursor(cursor: int) -> datetime:
    """Decode a numeric cursor back to an aware UTC datetime."""
    return _EPOCH + timedelta(microseconds=int(cursor))
