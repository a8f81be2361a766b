"""
Trend bucketing — canonical UTC bucket starts for day / week / month.

Week buckets follow the store's week-of-year numbering (weeks start on
Sunday, days before the first Sunday are week 0) and place the bucket at
Jan 1 + 7 * (week - 1) days. This is deliberately not ISO 8601.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.errors import ValidationError
from app.models.payments import TREND_PERIODS


def as_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def week_of_year(ts: datetime) -> int:
    """Sunday-based week number 0–53 (same as strftime %U)."""
    ts = as_utc(ts)
    yday = ts.timetuple().tm_yday - 1
    sunday_based_weekday = (ts.weekday() + 1) % 7
    return (yday + 7 - sunday_based_weekday) // 7


def bucket_from_key(
    period: str,
    year: int,
    month: int | None = None,
    day: int | None = None,
    week: int | None = None,
) -> datetime:
    """Convert a store group key back to the bucket-start instant."""
    if period == "day":
        return datetime(year, month or 1, day or 1, tzinfo=timezone.utc)
    if period == "week":
        jan1 = datetime(year, 1, 1, tzinfo=timezone.utc)
        return jan1 + timedelta(days=7 * ((week or 0) - 1))
    if period == "month":
        return datetime(year, month or 1, 1, tzinfo=timezone.utc)
    raise ValidationError(f"period must be one of {', '.join(TREND_PERIODS)}")


def bucket_start(ts: datetime, period: str) -> datetime:
    """Normalise an instant to the start of its bucket."""
    ts = as_utc(ts)
    if period == "week":
        return bucket_from_key("week", ts.year, week=week_of_year(ts))
    return bucket_from_key(period, ts.year, month=ts.month, day=ts.day)
