"""Operator dashboard aggregates: period summary, streak buckets, leaderboards."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable, Sequence

from .event_aggregation import aggregate_by_day
from .heatmap import HeatmapDay, get_heatmap_level
from .models import LearningEvent, UserLearningMetric
from .time_buckets import DateLike, DateRange, add_days, date_range, to_date_string
from .trend import TrendPoint

DEFAULT_LEADERBOARD_LIMIT = 10

# (label, min, max) inclusive; None means unbounded.
STREAK_BUCKETS: tuple[tuple[str, int, int | None], ...] = (
    ("0", 0, 0),
    ("1-2", 1, 2),
    ("3-6", 3, 6),
    ("7-13", 7, 13),
    ("14+", 14, None),
)


class AdminPeriod(StrEnum):
    TODAY = "today"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"


_PERIOD_DAYS_BACK: dict[AdminPeriod, int] = {
    AdminPeriod.TODAY: 0,
    AdminPeriod.LAST_7_DAYS: 6,
    AdminPeriod.LAST_30_DAYS: 29,
}


@dataclass(frozen=True)
class AdminSummary:
    period: AdminPeriod
    start_date: str
    end_date: str
    active_users: int
    total_events: int
    avg_events_per_user: float


@dataclass(frozen=True)
class StreakBucket:
    label: str
    count: int


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    weekly_events: int
    thirty_day_events: int
    streak: int
    last_event_date: str | None


@dataclass(frozen=True)
class Leaderboards:
    by_events: list[LeaderboardEntry]
    by_streak: list[LeaderboardEntry]


def get_date_range_for_period(period: AdminPeriod | str, today_utc: DateLike) -> DateRange:
    end = to_date_string(today_utc)
    return DateRange(start_date=add_days(end, -_PERIOD_DAYS_BACK[AdminPeriod(period)]), end_date=end)


def filter_events_by_date_range(
    events: Iterable[LearningEvent],
    window: DateRange,
) -> list[LearningEvent]:
    return [event for event in events if window.contains(event.event_date)]


def build_admin_summary(
    events: Iterable[LearningEvent],
    period: AdminPeriod | str,
    today_utc: DateLike,
) -> AdminSummary:
    window = get_date_range_for_period(period, today_utc)
    in_range = filter_events_by_date_range(events, window)
    active_users = len({event.user_id for event in in_range})
    total_events = len(in_range)
    average = round(total_events / active_users, 1) if active_users else 0.0
    return AdminSummary(
        period=AdminPeriod(period),
        start_date=window.start_date,
        end_date=window.end_date,
        active_users=active_users,
        total_events=total_events,
        avg_events_per_user=average,
    )


def calculate_streak_distribution(metrics: Iterable[UserLearningMetric]) -> list[StreakBucket]:
    counts = Counter[str]()
    for metric in metrics:
        for label, low, high in STREAK_BUCKETS:
            if metric.streak >= low and (high is None or metric.streak <= high):
                counts[label] += 1
                break
    return [StreakBucket(label=label, count=counts.get(label, 0)) for label, _, _ in STREAK_BUCKETS]


def calculate_weekly_goal_achievement_rate(metrics: Sequence[UserLearningMetric]) -> int:
    """Percentage of users whose weekly progress meets their goal."""
    if not metrics:
        return 0
    achieved = sum(1 for metric in metrics if metric.weekly_progress >= metric.weekly_goal)
    return round(achieved / len(metrics) * 100)


def build_events_trend(
    events: Iterable[LearningEvent],
    start_date: DateLike,
    end_date: DateLike,
) -> list[TrendPoint]:
    days = date_range(start_date, end_date)
    return [TrendPoint(x=day, y=count) for day, count in aggregate_by_day(events, days)]


def build_events_heatmap(
    events: Iterable[LearningEvent],
    start_date: DateLike,
    end_date: DateLike,
) -> list[HeatmapDay]:
    days = date_range(start_date, end_date)
    return [
        HeatmapDay(date=day, count=count, level=get_heatmap_level(count))
        for day, count in aggregate_by_day(events, days)
    ]


def build_leaderboards(
    events: Iterable[LearningEvent],
    metrics: Iterable[UserLearningMetric],
    today_utc: DateLike,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> Leaderboards:
    """Top-N users by 30-day activity and by current streak.

    Candidate order is metric users first, then users only seen in events (in
    first-seen order). Sorting is stable, so ties keep that order. Streak and
    last event date come from the metric row only; event-only users get 0 and None.
    """
    thirty_day = get_date_range_for_period(AdminPeriod.LAST_30_DAYS, today_utc)
    seven_day = get_date_range_for_period(AdminPeriod.LAST_7_DAYS, today_utc)

    metrics_by_user: dict[str, UserLearningMetric] = {}
    for metric in metrics:
        metrics_by_user.setdefault(metric.user_id, metric)

    user_order: dict[str, None] = dict.fromkeys(metrics_by_user)
    thirty_counts: Counter[str] = Counter()
    weekly_counts: Counter[str] = Counter()
    for event in events:
        user_order.setdefault(event.user_id, None)
        if thirty_day.contains(event.event_date):
            thirty_counts[event.user_id] += 1
            if seven_day.contains(event.event_date):
                weekly_counts[event.user_id] += 1

    entries: list[LeaderboardEntry] = []
    for user_id in user_order:
        metric = metrics_by_user.get(user_id)
        entries.append(
            LeaderboardEntry(
                user_id=user_id,
                weekly_events=weekly_counts.get(user_id, 0),
                thirty_day_events=thirty_counts.get(user_id, 0),
                streak=metric.streak if metric is not None else 0,
                last_event_date=metric.last_event_date if metric is not None else None,
            )
        )

    by_events = sorted(entries, key=lambda entry: entry.thirty_day_events, reverse=True)
    by_streak = sorted(entries, key=lambda entry: entry.streak, reverse=True)
    return Leaderboards(by_events=by_events[: max(0, limit)], by_streak=by_streak[: max(0, limit)])
