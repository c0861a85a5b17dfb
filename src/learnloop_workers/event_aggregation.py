"""Bucket learning events into gap-filled day / week series."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Sequence

from .models import LearningEvent
from .time_buckets import get_week_start_utc


def count_events_by_date(events: Iterable[LearningEvent]) -> Counter[str]:
    return Counter(event.event_date for event in events)


def aggregate_by_day(
    events: Iterable[LearningEvent],
    day_range: Sequence[str],
) -> list[tuple[str, int]]:
    """Count events per day of ``day_range``; events outside it are dropped."""
    counts = count_events_by_date(events)
    return [(day, counts.get(day, 0)) for day in day_range]


def aggregate_by_week(
    events: Iterable[LearningEvent],
    week_starts: Sequence[str],
) -> list[tuple[str, int]]:
    """Count events per Monday week; events whose week is not listed are dropped."""
    counts: Counter[str] = Counter()
    for event in events:
        counts[get_week_start_utc(event.event_date)] += 1
    return [(week_start, counts.get(week_start, 0)) for week_start in week_starts]
