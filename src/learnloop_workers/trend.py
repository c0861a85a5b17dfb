"""Daily / weekly activity trend series for charts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable

from .event_aggregation import aggregate_by_day, aggregate_by_week
from .models import LearningEvent
from .time_buckets import (
    DateLike,
    generate_daily_range,
    generate_weekly_range,
    parse_utc_date,
    utc_today,
)

DAILY_TREND_POINTS = 30
WEEKLY_TREND_POINTS = 12


class TrendMode(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass(frozen=True)
class TrendPoint:
    x: str
    y: int


def get_trend_data(
    events: Iterable[LearningEvent],
    mode: TrendMode | str = TrendMode.DAILY,
    today_utc: DateLike | None = None,
) -> list[TrendPoint]:
    today = today_utc or utc_today()
    if TrendMode(mode) is TrendMode.WEEKLY:
        buckets = aggregate_by_week(events, generate_weekly_range(WEEKLY_TREND_POINTS, today))
    else:
        buckets = aggregate_by_day(events, generate_daily_range(DAILY_TREND_POINTS, today))
    return [TrendPoint(x=label, y=count) for label, count in buckets]


def format_date_label(value: DateLike, mode: TrendMode | str = TrendMode.DAILY) -> str:
    """Short axis label: ``M/D`` for days, ``M/D~`` for week starts."""
    day = parse_utc_date(value)
    label = f"{day.month}/{day.day}"
    return f"{label}~" if TrendMode(mode) is TrendMode.WEEKLY else label
