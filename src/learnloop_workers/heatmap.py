"""Activity heatmap (GitHub-style grid) built from learning events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .event_aggregation import aggregate_by_day
from .models import LearningEvent
from .time_buckets import DateLike, generate_daily_range, parse_utc_date, utc_today

DEFAULT_HEATMAP_DAYS = 84

# Upper bound (inclusive) of each non-zero level; anything above is level 3.
HEATMAP_LEVEL_BOUNDS: tuple[int, int] = (2, 4)


@dataclass(frozen=True)
class HeatmapDay:
    date: str
    count: int
    level: int


def get_heatmap_level(count: int) -> int:
    if count <= 0:
        return 0
    if count <= HEATMAP_LEVEL_BOUNDS[0]:
        return 1
    if count <= HEATMAP_LEVEL_BOUNDS[1]:
        return 2
    return 3


def get_heatmap_data(
    events: Iterable[LearningEvent],
    days: int = DEFAULT_HEATMAP_DAYS,
    today_utc: DateLike | None = None,
) -> list[HeatmapDay]:
    day_range = generate_daily_range(days, today_utc or utc_today())
    return [
        HeatmapDay(date=day, count=count, level=get_heatmap_level(count))
        for day, count in aggregate_by_day(events, day_range)
    ]


def group_heatmap_by_week(days: Iterable[HeatmapDay]) -> list[list[HeatmapDay]]:
    """Split an ascending series into display rows; a new row starts on Sunday."""
    weeks: list[list[HeatmapDay]] = []
    current: list[HeatmapDay] = []
    for day in days:
        if parse_utc_date(day.date).weekday() == 6 and current:
            weeks.append(current)
            current = []
        current.append(day)
    if current:
        weeks.append(current)
    return weeks
