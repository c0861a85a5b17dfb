"""Pick at most one nudge for a user from habit state and explain results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .habit_score import HabitState
from .metrics_explain import (
    StreakExplain,
    StreakReasonCode,
    WeeklyGoalExplain,
    WeeklyReasonCode,
)
from .models import EVENT_INTERVENTION_SHOWN, LearningEvent
from .time_buckets import DateLike, to_date_string

LONG_STREAK_DAYS = 7


class InterventionType(StrEnum):
    STREAK_RESCUE = "STREAK_RESCUE"
    WEEKLY_CATCHUP = "WEEKLY_CATCHUP"
    POSITIVE = "POSITIVE"


INTERVENTION_CTA: dict[InterventionType, str] = {
    InterventionType.STREAK_RESCUE: "Study for 5 minutes now",
    InterventionType.WEEKLY_CATCHUP: "Catch up this week",
}

INTERVENTION_ICONS: dict[InterventionType, str] = {
    InterventionType.STREAK_RESCUE: "seedling",
    InterventionType.WEEKLY_CATCHUP: "calendar",
    InterventionType.POSITIVE: "sparkles",
}

LOGGABLE_INTERVENTIONS: frozenset[InterventionType] = frozenset(
    {InterventionType.STREAK_RESCUE, InterventionType.WEEKLY_CATCHUP}
)


@dataclass(frozen=True)
class Intervention:
    type: InterventionType
    title: str
    message: str
    icon: str
    cta: str | None = None


def is_streak_at_risk(streak: StreakExplain) -> bool:
    return streak.reason_code is StreakReasonCode.ACTIVE_YESTERDAY and streak.current_streak > 0


def is_weekly_at_risk(weekly: WeeklyGoalExplain) -> bool:
    return weekly.reason_code is WeeklyReasonCode.BEHIND


def _streak_rescue(streak: StreakExplain) -> Intervention:
    return Intervention(
        type=InterventionType.STREAK_RESCUE,
        title="Keep your streak alive",
        message=f"Your {streak.current_streak}-day streak ends tonight unless you study today.",
        icon=INTERVENTION_ICONS[InterventionType.STREAK_RESCUE],
        cta=INTERVENTION_CTA[InterventionType.STREAK_RESCUE],
    )


def _weekly_catchup(weekly: WeeklyGoalExplain) -> Intervention:
    remaining = max(0, weekly.goal_per_week - weekly.completed_days_this_week)
    return Intervention(
        type=InterventionType.WEEKLY_CATCHUP,
        title="Catch up on your weekly goal",
        message=f"{remaining} more day(s) to reach this week's goal of {weekly.goal_per_week}.",
        icon=INTERVENTION_ICONS[InterventionType.WEEKLY_CATCHUP],
        cta=INTERVENTION_CTA[InterventionType.WEEKLY_CATCHUP],
    )


def _positive(streak: StreakExplain) -> Intervention:
    if streak.current_streak >= LONG_STREAK_DAYS:
        message = f"{streak.current_streak} days in a row. Great consistency!"
    else:
        message = "Your learning habit is steady. Keep it up!"
    return Intervention(
        type=InterventionType.POSITIVE,
        title="Nice work",
        message=message,
        icon=INTERVENTION_ICONS[InterventionType.POSITIVE],
    )


def decide_intervention(
    habit_state: HabitState | str,
    streak: StreakExplain,
    weekly: WeeklyGoalExplain,
) -> Intervention | None:
    state = HabitState(habit_state)
    streak_risk = is_streak_at_risk(streak)
    weekly_risk = is_weekly_at_risk(weekly)

    if state is HabitState.DANGER and streak_risk:
        return _streak_rescue(streak)
    if state is HabitState.WARNING and weekly_risk:
        return _weekly_catchup(weekly)
    if state is HabitState.STABLE:
        return _positive(streak)
    if state is HabitState.DANGER and weekly_risk:
        return _weekly_catchup(weekly)
    if state is HabitState.WARNING and streak_risk:
        return _streak_rescue(streak)
    return None


def has_intervention_cta(intervention: Intervention | None) -> bool:
    return intervention is not None and intervention.cta is not None


def should_log_intervention(intervention: Intervention | None) -> bool:
    return intervention is not None and intervention.type in LOGGABLE_INTERVENTIONS


def build_intervention_shown_event(
    user_id: str,
    intervention: Intervention | None,
    today_utc: DateLike,
) -> LearningEvent | None:
    """Analytics event for a displayed nudge, or None when it is not loggable."""
    if not should_log_intervention(intervention):
        return None
    return LearningEvent(
        user_id=user_id,
        event_type=EVENT_INTERVENTION_SHOWN,
        event_date=to_date_string(today_utc),
        reference_id=intervention.type.value,
    )
