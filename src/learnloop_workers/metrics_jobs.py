"""Scheduled per-user metric refresh plus the admin and nudge reports.

``user_learning_metrics`` rows are rebuilt from ``learning_events`` for every
user active in the lookback window. Users with a cached row but no activity in
the window keep their last event date and drop to a zero streak. The reports
read the refreshed rows back; they never write events except the optional
``intervention_shown`` analytics event.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
import logging
from typing import Any, Iterable, Sequence

import psycopg

from . import metrics
from .admin_metrics import (
    DEFAULT_LEADERBOARD_LIMIT,
    AdminPeriod,
    AdminSummary,
    Leaderboards,
    StreakBucket,
    build_admin_summary,
    build_events_trend,
    build_leaderboards,
    calculate_streak_distribution,
    calculate_weekly_goal_achievement_rate,
    get_date_range_for_period,
)
from .config import int_env
from .event_store import (
    fetch_learning_events,
    fetch_user_metrics,
    insert_learning_event,
    upsert_user_metric,
)
from .habit_score import RECENT_WINDOW_DAYS, HabitScore, calculate_habit_score
from .intervention import Intervention, build_intervention_shown_event, decide_intervention
from .learning_metrics import count_recent_active_days, recalculate_metrics
from .metrics_explain import MetricsExplain, build_metrics_explain
from .models import (
    DEFAULT_WEEKLY_GOAL,
    EVENT_INSIGHTS_SHOWN,
    EVENT_INTERVENTION_SHOWN,
    EVENT_LIFECYCLE_APPLIED,
    LearningEvent,
    UserLearningMetric,
)
from .time_buckets import DateLike, add_days, to_date_string
from .trend import TrendPoint

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 90

# Analytics and ledger rows are not learning activity.
NON_LEARNING_EVENT_TYPES: frozenset[str] = frozenset(
    {EVENT_INTERVENTION_SHOWN, EVENT_INSIGHTS_SHOWN, EVENT_LIFECYCLE_APPLIED}
)


def metrics_lookback_days() -> int:
    """Streaks longer than the lookback are capped at it."""
    return int_env("LEARNLOOP_METRICS_LOOKBACK_DAYS", DEFAULT_LOOKBACK_DAYS, 7, 3650)


def learning_activity(events: Iterable[LearningEvent]) -> dict[str, list[str]]:
    """Event dates per user (one entry per event), in first-seen user order."""
    activity: dict[str, list[str]] = {}
    for event in events:
        if event.event_type in NON_LEARNING_EVENT_TYPES:
            continue
        activity.setdefault(event.user_id, []).append(event.event_date)
    return activity


def rebuild_user_metrics(
    events: Iterable[LearningEvent],
    existing: Iterable[UserLearningMetric],
    today_utc: DateLike,
) -> list[UserLearningMetric]:
    """Recalculate rows for active users and reset stale ones, sorted by user id."""
    today = to_date_string(today_utc)
    cached = {metric.user_id: metric for metric in existing}
    rebuilt: dict[str, UserLearningMetric] = {}
    for user_id, dates in learning_activity(events).items():
        previous = cached.get(user_id)
        goal = previous.weekly_goal if previous is not None else DEFAULT_WEEKLY_GOAL
        rebuilt[user_id] = recalculate_metrics(user_id, dates, today, weekly_goal=goal)
    for user_id, metric in cached.items():
        if user_id not in rebuilt:
            rebuilt[user_id] = metric.model_copy(update={"streak": 0, "weekly_progress": 0})
    return [rebuilt[user_id] for user_id in sorted(rebuilt)]


async def refresh_user_metrics(
    conn: psycopg.AsyncConnection[Any],
    *,
    today_utc: DateLike,
    lookback_days: int | None = None,
    user_ids: Sequence[str] | None = None,
) -> list[UserLearningMetric]:
    """Rebuild and upsert metric rows, committing once at the end."""
    today = to_date_string(today_utc)
    days = lookback_days or metrics_lookback_days()
    events = await fetch_learning_events(
        conn,
        start_date=add_days(today, -(days - 1)),
        end_date=today,
        user_ids=user_ids,
    )
    existing = await fetch_user_metrics(conn, user_ids)
    refreshed = rebuild_user_metrics(events, existing, today)
    for metric in refreshed:
        await upsert_user_metric(conn, metric)
    await conn.commit()

    metrics.record_user_metrics_refreshed(len(refreshed))
    logger.info(
        "Refreshed %d user metric rows",
        len(refreshed),
        extra={"learnloop_lookback_days": days, "learnloop_refreshed": len(refreshed)},
    )
    return refreshed


@dataclass(frozen=True)
class AdminReport:
    summary: AdminSummary
    streak_distribution: list[StreakBucket]
    weekly_goal_achievement_rate: int
    leaderboards: Leaderboards
    trend: list[TrendPoint]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_admin_report(
    events: Sequence[LearningEvent],
    user_metrics: Sequence[UserLearningMetric],
    period: AdminPeriod | str,
    today_utc: DateLike,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> AdminReport:
    learning = [event for event in events if event.event_type not in NON_LEARNING_EVENT_TYPES]
    window = get_date_range_for_period(period, today_utc)
    return AdminReport(
        summary=build_admin_summary(learning, period, today_utc),
        streak_distribution=calculate_streak_distribution(user_metrics),
        weekly_goal_achievement_rate=calculate_weekly_goal_achievement_rate(user_metrics),
        leaderboards=build_leaderboards(learning, user_metrics, today_utc, limit),
        trend=build_events_trend(learning, window.start_date, window.end_date),
    )


async def load_admin_report(
    conn: psycopg.AsyncConnection[Any],
    *,
    period: AdminPeriod | str,
    today_utc: DateLike,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> AdminReport:
    # Leaderboards always look back 30 days, whatever the summary period.
    window = get_date_range_for_period(AdminPeriod.LAST_30_DAYS, today_utc)
    events = await fetch_learning_events(
        conn, start_date=window.start_date, end_date=window.end_date
    )
    user_metrics = await fetch_user_metrics(conn)
    return build_admin_report(events, user_metrics, period, today_utc, limit)


@dataclass(frozen=True)
class UserNudge:
    user_id: str
    metric: UserLearningMetric
    habit: HabitScore
    explain: MetricsExplain
    intervention: Intervention | None
    logged: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "metric": self.metric.model_dump(),
            "habit": asdict(self.habit),
            "explain": asdict(self.explain),
            "intervention": asdict(self.intervention) if self.intervention else None,
            "logged": self.logged,
        }


def build_user_nudge(
    metric: UserLearningMetric,
    event_dates: Iterable[DateLike],
    today_utc: DateLike,
) -> UserNudge:
    """Explain the user's streak and weekly goal, score the habit, pick a nudge."""
    today = to_date_string(today_utc)
    dates = [to_date_string(value) for value in event_dates]
    explain = build_metrics_explain(metric, dates.count(today), today)
    habit = calculate_habit_score(
        count_recent_active_days(dates, today, RECENT_WINDOW_DAYS),
        metric.streak,
        metric.weekly_progress,
        metric.weekly_goal,
    )
    return UserNudge(
        user_id=metric.user_id,
        metric=metric,
        habit=habit,
        explain=explain,
        intervention=decide_intervention(habit.state, explain.streak, explain.weekly),
    )


async def nudge_user(
    conn: psycopg.AsyncConnection[Any],
    user_id: str,
    *,
    today_utc: DateLike,
    record: bool = False,
) -> UserNudge:
    """Build a user's nudge; with ``record`` also log ``intervention_shown``.

    Falls back to a freshly calculated metric when the user has no cached row.
    """
    today = to_date_string(today_utc)
    events = await fetch_learning_events(
        conn,
        start_date=add_days(today, -(RECENT_WINDOW_DAYS - 1)),
        end_date=today,
        user_id=user_id,
    )
    dates = learning_activity(events).get(user_id, [])
    cached = await fetch_user_metrics(conn, [user_id])
    metric = cached[0] if cached else recalculate_metrics(user_id, dates, today)
    nudge = build_user_nudge(metric, dates, today)

    if not record:
        return nudge
    shown = build_intervention_shown_event(user_id, nudge.intervention, today)
    if shown is None:
        return nudge
    await insert_learning_event(conn, shown)
    await conn.commit()
    logger.info(
        "Logged %s for user %s",
        shown.reference_id,
        user_id,
        extra={"learnloop_user_id": user_id, "learnloop_intervention": shown.reference_id},
    )
    return replace(nudge, logged=True)
