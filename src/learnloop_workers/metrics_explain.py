"""Reason-code explanations for streak and weekly-goal state.

Both classifiers are first-match rule lists. Each reason code maps to exactly
one message template; ``details`` keeps a fixed line order that audit tooling
parses positionally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from .models import UserLearningMetric
from .time_buckets import (
    DateLike,
    days_between,
    get_week_end_utc,
    get_week_start_utc,
    to_date_string,
)


class StreakReasonCode(StrEnum):
    ACTIVE_TODAY = "ACTIVE_TODAY"
    ACTIVE_YESTERDAY = "ACTIVE_YESTERDAY"
    NO_ACTIVITY_YET = "NO_ACTIVITY_YET"
    BROKEN = "BROKEN"
    RECOVERED = "RECOVERED"


class WeeklyReasonCode(StrEnum):
    ACHIEVED = "ACHIEVED"
    ON_TRACK = "ON_TRACK"
    BEHIND = "BEHIND"
    NO_GOAL = "NO_GOAL"


@dataclass(frozen=True)
class StreakExplain:
    current_streak: int
    today_count: int
    last_activity_date: str | None
    reason_code: StreakReasonCode
    message: str
    details: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WeeklyGoalExplain:
    goal_per_week: int
    completed_days_this_week: int
    week_start: str
    week_end: str
    reason_code: WeeklyReasonCode
    message: str
    details: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MetricsExplain:
    streak: StreakExplain
    weekly: WeeklyGoalExplain


_STREAK_VERDICTS: dict[StreakReasonCode, str] = {
    StreakReasonCode.ACTIVE_TODAY: "Streak kept: activity recorded today",
    StreakReasonCode.ACTIVE_YESTERDAY: "Streak pending: last activity was yesterday",
    StreakReasonCode.NO_ACTIVITY_YET: "No activity recorded yet",
    StreakReasonCode.BROKEN: "Streak broken: no activity for 2+ days",
    StreakReasonCode.RECOVERED: "Streak restarted today",
}

_WEEKLY_VERDICTS: dict[WeeklyReasonCode, str] = {
    WeeklyReasonCode.ACHIEVED: "Weekly goal achieved",
    WeeklyReasonCode.ON_TRACK: "On pace for the weekly goal",
    WeeklyReasonCode.BEHIND: "Behind the weekly pace",
    WeeklyReasonCode.NO_GOAL: "No weekly goal set",
}


def _streak_message(code: StreakReasonCode, current_streak: int, today_count: int) -> str:
    match code:
        case StreakReasonCode.ACTIVE_TODAY:
            return f"You studied today. Your streak is {current_streak} day(s)."
        case StreakReasonCode.ACTIVE_YESTERDAY:
            if today_count > 0:
                return f"You studied yesterday and today. Your streak is {current_streak} day(s)."
            return f"Study today to keep your {current_streak}-day streak going."
        case StreakReasonCode.NO_ACTIVITY_YET:
            return "No learning activity yet. Complete a lesson to start a streak."
        case StreakReasonCode.BROKEN:
            return "Your streak was reset after 2 or more days without activity."
        case StreakReasonCode.RECOVERED:
            return "Welcome back! Your streak starts again from today."


def _classify_streak(gap: int | None, today_count: int) -> StreakReasonCode:
    if gap is None:
        if today_count == 0:
            return StreakReasonCode.NO_ACTIVITY_YET
        return StreakReasonCode.RECOVERED
    if gap <= 0:
        return StreakReasonCode.ACTIVE_TODAY
    if gap == 1:
        return StreakReasonCode.ACTIVE_YESTERDAY
    if today_count > 0:
        return StreakReasonCode.RECOVERED
    return StreakReasonCode.BROKEN


def build_streak_explain(
    current_streak: int,
    last_activity_date: DateLike | None,
    today_count: int,
    today_utc: DateLike,
) -> StreakExplain:
    last = to_date_string(last_activity_date) if last_activity_date is not None else None
    gap = days_between(last, today_utc) if last is not None else None
    code = _classify_streak(gap, today_count)

    details = [
        f"Activity today: {today_count}",
        f"Last activity: {last or 'none'}",
    ]
    if gap is not None and gap >= 2:
        details.append(f"Days since last activity: {gap}")
    details.append(f"Verdict: {_STREAK_VERDICTS[code]}")

    return StreakExplain(
        current_streak=current_streak,
        today_count=today_count,
        last_activity_date=last,
        reason_code=code,
        message=_streak_message(code, current_streak, today_count),
        details=details,
    )


def elapsed_days_in_week(week_start_utc: DateLike, today_utc: DateLike) -> int:
    """1-based day of the week for ``today_utc``, clamped to 1..7."""
    return min(7, max(1, days_between(week_start_utc, today_utc) + 1))


def _classify_weekly(goal: int, completed: int, elapsed: int) -> WeeklyReasonCode:
    if goal == 0:
        return WeeklyReasonCode.NO_GOAL
    if completed >= goal:
        return WeeklyReasonCode.ACHIEVED
    if completed == 0:
        return WeeklyReasonCode.BEHIND
    expected = goal * elapsed / 7
    if completed >= expected:
        return WeeklyReasonCode.ON_TRACK
    return WeeklyReasonCode.BEHIND


def _weekly_message(code: WeeklyReasonCode, goal: int, completed: int, elapsed: int) -> str:
    days_needed = max(0, goal - completed)
    days_remaining = 7 - elapsed
    match code:
        case WeeklyReasonCode.NO_GOAL:
            return "Set a weekly goal to track your pace."
        case WeeklyReasonCode.ACHIEVED:
            return f"Goal reached: {completed} of {goal} days this week."
        case WeeklyReasonCode.ON_TRACK:
            return f"On track: {days_needed} more day(s) to reach your goal."
        case WeeklyReasonCode.BEHIND:
            if days_needed > days_remaining + 1:
                return f"{days_needed} more day(s) needed but only {days_remaining + 1} left this week."
            return f"A little behind: study {days_needed} more day(s) this week to catch up."


def build_weekly_goal_explain(
    goal_per_week: int,
    completed_days_this_week: int,
    week_start_utc: DateLike,
    today_utc: DateLike,
) -> WeeklyGoalExplain:
    week_start = to_date_string(week_start_utc)
    week_end = get_week_end_utc(week_start)
    elapsed = elapsed_days_in_week(week_start, today_utc)
    code = _classify_weekly(goal_per_week, completed_days_this_week, elapsed)

    return WeeklyGoalExplain(
        goal_per_week=goal_per_week,
        completed_days_this_week=completed_days_this_week,
        week_start=week_start,
        week_end=week_end,
        reason_code=code,
        message=_weekly_message(code, goal_per_week, completed_days_this_week, elapsed),
        details=[
            f"Week: {week_start} ~ {week_end}",
            f"Completed: {completed_days_this_week}/{goal_per_week} days",
            f"Elapsed: day {elapsed} of 7",
            f"Verdict: {_WEEKLY_VERDICTS[code]}",
        ],
    )


def build_metrics_explain(
    metric: UserLearningMetric,
    today_count: int,
    today_utc: DateLike,
) -> MetricsExplain:
    return MetricsExplain(
        streak=build_streak_explain(
            metric.streak, metric.last_event_date, today_count, today_utc
        ),
        weekly=build_weekly_goal_explain(
            metric.weekly_goal,
            metric.weekly_progress,
            get_week_start_utc(today_utc),
            today_utc,
        ),
    )
