"""UTC calendar helpers shared by every aggregation module.

All public helpers take and return ISO ``YYYY-MM-DD`` strings, the wire
shape of ``learning_events.event_date``. Weeks start on Monday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

DateLike = str | date


def utc_today(now: datetime | None = None) -> str:
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return current.astimezone(UTC).date().isoformat()


def parse_utc_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.astimezone(UTC).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def to_date_string(value: DateLike) -> str:
    return parse_utc_date(value).isoformat()


def add_days(value: DateLike, days: int) -> str:
    return (parse_utc_date(value) + timedelta(days=days)).isoformat()


def days_between(earlier: DateLike, later: DateLike) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative if reversed)."""
    return (parse_utc_date(later) - parse_utc_date(earlier)).days


def is_yesterday(value: DateLike, today_utc: DateLike) -> bool:
    return days_between(value, today_utc) == 1


def get_week_start_utc(value: DateLike) -> str:
    day = parse_utc_date(value)
    return (day - timedelta(days=day.weekday())).isoformat()


def get_last_week_start_utc(value: DateLike) -> str:
    return add_days(get_week_start_utc(value), -7)


def get_week_end_utc(week_start: DateLike) -> str:
    return add_days(week_start, 6)


def generate_daily_range(n: int, today_utc: DateLike) -> list[str]:
    """``n`` ascending dates ending at ``today_utc`` inclusive."""
    if n <= 0:
        return []
    end = parse_utc_date(today_utc)
    return [(end - timedelta(days=offset)).isoformat() for offset in range(n - 1, -1, -1)]


def generate_weekly_range(n: int, today_utc: DateLike) -> list[str]:
    """``n`` ascending Monday week starts, the last one containing ``today_utc``."""
    if n <= 0:
        return []
    current = parse_utc_date(get_week_start_utc(today_utc))
    return [(current - timedelta(weeks=offset)).isoformat() for offset in range(n - 1, -1, -1)]


def date_range(start: DateLike, end: DateLike) -> list[str]:
    """Inclusive ascending dates from ``start`` to ``end``; empty if reversed."""
    first = parse_utc_date(start)
    span = (parse_utc_date(end) - first).days
    return [(first + timedelta(days=offset)).isoformat() for offset in range(span + 1)]


@dataclass(frozen=True)
class DateRange:
    start_date: str
    end_date: str
    inclusive: bool = True

    def contains(self, value: DateLike) -> bool:
        day = to_date_string(value)
        if self.inclusive:
            return self.start_date <= day <= self.end_date
        return self.start_date <= day < self.end_date

    def days(self) -> list[str]:
        last = self.end_date if self.inclusive else add_days(self.end_date, -1)
        return date_range(self.start_date, last)
