"""Per-user streak / weekly-progress derivation.

``UserLearningMetric`` rows are a cache over ``learning_events``. These helpers
either advance a row by one event or rebuild it from the user's event dates.
"""

from __future__ import annotations

from typing import Iterable

from .models import DEFAULT_WEEKLY_GOAL, UserLearningMetric
from .time_buckets import (
    DateLike,
    add_days,
    days_between,
    get_week_start_utc,
    to_date_string,
)


def calculate_streak(current_streak: int, last_event_date: DateLike | None, today_utc: DateLike) -> int:
    if last_event_date is None:
        return 1
    gap = days_between(last_event_date, today_utc)
    if gap == 0:
        return current_streak
    if gap == 1:
        return current_streak + 1
    return 1


def calculate_weekly_progress(event_dates: Iterable[DateLike], week_start: DateLike) -> int:
    """Distinct active days within the Monday week starting at ``week_start``."""
    start = to_date_string(week_start)
    end = add_days(start, 7)
    return len({day for day in map(to_date_string, event_dates) if start <= day < end})


def count_recent_active_days(event_dates: Iterable[DateLike], today_utc: DateLike, days: int = 7) -> int:
    today = to_date_string(today_utc)
    start = add_days(today, -(days - 1))
    return len({day for day in map(to_date_string, event_dates) if start <= day <= today})


def update_metrics_on_event(
    metric: UserLearningMetric | None,
    *,
    user_id: str,
    event_date: DateLike,
    week_event_dates: Iterable[DateLike],
) -> UserLearningMetric:
    """Advance a cached metric row for one newly recorded event.

    ``week_event_dates`` must include the dates of every event in the current
    week, the new one included.
    """
    today = to_date_string(event_date)
    previous = metric or UserLearningMetric(user_id=user_id)
    streak = calculate_streak(previous.streak, previous.last_event_date, today)
    progress = calculate_weekly_progress(week_event_dates, get_week_start_utc(today))
    return previous.model_copy(
        update={
            "streak": streak,
            "last_event_date": today,
            "weekly_progress": progress,
        }
    )


def recalculate_metrics(
    user_id: str,
    event_dates: Iterable[DateLike],
    today_utc: DateLike,
    weekly_goal: int = DEFAULT_WEEKLY_GOAL,
) -> UserLearningMetric:
    """Rebuild a metric row from scratch.

    The streak only survives when the most recent activity is today or
    yesterday; it then counts consecutive active days backwards from there.
    """
    today = to_date_string(today_utc)
    active_days = {day for day in map(to_date_string, event_dates) if day <= today}
    if not active_days:
        return UserLearningMetric(user_id=user_id, weekly_goal=weekly_goal)

    last_event_date = max(active_days)
    streak = 0
    if days_between(last_event_date, today) <= 1:
        cursor = last_event_date
        while cursor in active_days:
            streak += 1
            cursor = add_days(cursor, -1)

    return UserLearningMetric(
        user_id=user_id,
        streak=streak,
        last_event_date=last_event_date,
        weekly_goal=weekly_goal,
        weekly_progress=calculate_weekly_progress(active_days, get_week_start_utc(today)),
    )
