"""
Mudita - Date Range Parser
===========================
Extracts an explicit or relative day window from a free-text query.

Patterns are tried in a fixed table order (Korean before English,
relative expressions before explicit calendar dates) and the first
match wins.  Both ends of the returned ``DateRange`` are local
midnights; callers expand the end to 23:59:59.999 via
``DateRange.bounds()`` for inclusive range queries.

Examples (today = 2025-06-15)::

    parse_date_range("지난 7일 동안 어땠어?")   → 2025-06-08 … 2025-06-15
    parse_date_range("what happened yesterday") → 2025-06-14 … 2025-06-14
    parse_date_range("2025년 3월 1일 일기")       → 2025-03-01 … 2025-03-01
    parse_date_range("기분이 어때?")              → None
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from mudita.src.core.models import DateRange
from mudita.src.utils.time_utils import local_midnight

_DEFAULT_DAY_COUNT = 7

# ── Window builders ────────────────────────────────────────────────────
# Each receives the regex match and today's local midnight.
_Builder = Callable[[re.Match[str], datetime], tuple[datetime, datetime] | None]


def _last_n_days(match: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    days = int(match.group(1) or 0) or _DEFAULT_DAY_COUNT
    return today - timedelta(days=days), today


def _rolling_week(_: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    return today - timedelta(days=7), today


def _week_to_date(_: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    return _week_start(today), today


def _rolling_month(_: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    return _shift_month(today, -1), today


def _month_to_date(_: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    return today.replace(day=1), today


def _today(_: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    return today, today


def _yesterday(_: re.Match[str], today: datetime) -> tuple[datetime, datetime]:
    yesterday = today - timedelta(days=1)
    return yesterday, yesterday


def _explicit_date(match: re.Match[str], today: datetime) -> tuple[datetime, datetime] | None:
    year, month, day = (int(g) for g in match.groups())
    try:
        target = today.replace(year=year, month=month, day=day)
    except ValueError:
        return None
    return target, target


# ── Pattern table (priority order) ─────────────────────────────────────
_PATTERNS: list[tuple[re.Pattern[str], _Builder]] = [
    # Korean
    (re.compile(r"지난\s*(\d+)\s*일"), _last_n_days),
    (re.compile(r"최근\s*(\d+)\s*일"), _last_n_days),
    (re.compile(r"(?:지난|저번)\s*주"), _rolling_week),
    (re.compile(r"이번\s*주"), _week_to_date),
    (re.compile(r"(?:지난|저번)\s*달"), _rolling_month),
    (re.compile(r"이번\s*달"), _month_to_date),
    (re.compile(r"요즘|최근에"), _rolling_week),
    (re.compile(r"오늘"), _today),
    (re.compile(r"어제"), _yesterday),
    # English
    (re.compile(r"\blast\s+(\d+)\s+days?\b", re.IGNORECASE), _last_n_days),
    (re.compile(r"\bpast\s+(\d+)\s+days?\b", re.IGNORECASE), _last_n_days),
    (re.compile(r"\blast\s+week\b", re.IGNORECASE), _rolling_week),
    (re.compile(r"\bthis\s+week\b", re.IGNORECASE), _week_to_date),
    (re.compile(r"\blast\s+month\b", re.IGNORECASE), _rolling_month),
    (re.compile(r"\bthis\s+month\b", re.IGNORECASE), _month_to_date),
    (re.compile(r"\b(?:recently|lately)\b", re.IGNORECASE), _rolling_week),
    (re.compile(r"\btoday\b", re.IGNORECASE), _today),
    (re.compile(r"\byesterday\b", re.IGNORECASE), _yesterday),
    # Explicit calendar dates: 2025-06-15 / 2025년 6월 15일
    (re.compile(r"(\d{4})[-년]\s*(\d{1,2})[-월]\s*(\d{1,2})일?"), _explicit_date),
]


def parse_date_range(query: str, now: datetime | None = None) -> DateRange | None:
    """
    Return the first date window recognised in *query*, or ``None``.

    ``None`` is not an error: it means "no temporal filter".

    Parameters
    ----------
    query
        Free-text user message.
    now
        Reference moment (defaults to the current local time).
    """
    today = local_midnight(now)
    for pattern, builder in _PATTERNS:
        match = pattern.search(query)
        if match is None:
            continue
        window = builder(match, today)
        if window is None:
            continue
        start, end = window
        return DateRange(start_date=start, end_date=end)
    return None


def named_window(name: str | None, now: datetime | None = None) -> DateRange | None:
    """
    Calendar windows used by the diary-search tool.

    ``this_week`` starts on Sunday; ``last_week`` is the previous
    Sunday–Saturday; ``last_month`` is the whole previous month.
    ``all`` (or ``None``) means no filter.
    """
    if not name or name == "all":
        return None

    today = local_midnight(now)
    if name == "today":
        start, end = today, today
    elif name == "yesterday":
        start = end = today - timedelta(days=1)
    elif name == "this_week":
        start, end = _week_start(today), today
    elif name == "last_week":
        end = _week_start(today) - timedelta(days=1)
        start = end - timedelta(days=6)
    elif name == "this_month":
        start, end = today.replace(day=1), today
    elif name == "last_month":
        end = today.replace(day=1) - timedelta(days=1)
        start = end.replace(day=1)
    else:
        raise ValueError(f"Unknown date window: {name!r}")
    return DateRange(start_date=start, end_date=end)


# ── Calendar helpers ───────────────────────────────────────────────────

def _week_start(today: datetime) -> datetime:
    """Most recent Sunday (today if today is Sunday)."""
    return today - timedelta(days=(today.weekday() + 1) % 7)


def _shift_month(moment: datetime, months: int) -> datetime:
    """Same day *months* away, clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
