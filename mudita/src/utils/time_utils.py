"""
Mudita - Time Utilities
========================
Timestamp helpers shared by the stores and the date parser.

Conventions:
  • Persisted timestamps are **naive UTC** truncated to milliseconds
    (MongoDB's resolution), so a value read back compares equal to the
    value written.
  • LanceDB rows carry epoch milliseconds (``int64``).
  • "Local" means the fixed offset ``settings.TIMEZONE_OFFSET_HOURS``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mudita.config.settings import settings

LOCAL_TZ = timezone(timedelta(hours=settings.TIMEZONE_OFFSET_HOURS))
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as naive UTC, millisecond precision."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def local_now() -> datetime:
    return datetime.now(LOCAL_TZ)


def to_utc_naive(moment: datetime) -> datetime:
    """Convert an aware datetime to naive UTC.  Naive input is assumed UTC already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(moment: datetime) -> datetime:
    """Convert to local time.  Naive input is assumed UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(LOCAL_TZ)


def local_midnight(moment: datetime | None = None) -> datetime:
    """Aware local midnight of the day containing *moment* (default: now)."""
    local = to_local(moment) if moment is not None else local_now()
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(day: datetime) -> datetime:
    """Inclusive upper bound of *day*: 23:59:59.999."""
    return day.replace(hour=23, minute=59, second=59, microsecond=999000)


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    """Epoch milliseconds → naive UTC datetime."""
    return (_EPOCH + timedelta(milliseconds=int(value))).replace(tzinfo=None)


def format_korean_date(moment: datetime, with_year: bool = True) -> str:
    """``2025년 6월 15일`` (or ``6월 15일``) in local time."""
    local = to_local(moment)
    if with_year:
        return f"{local.year}년 {local.month}월 {local.day}일"
    return f"{local.month}월 {local.day}일"
