"""Habit score: a 0-100 blend of recent activity, streak and weekly progress."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

RECENT_DAYS_WEIGHT = 40.0
STREAK_WEIGHT = 40.0
WEEKLY_WEIGHT = 20.0
STREAK_CAP_DAYS = 7
RECENT_WINDOW_DAYS = 7

STABLE_THRESHOLD = 80.0
WARNING_THRESHOLD = 50.0


class HabitState(StrEnum):
    STABLE = "stable"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class HabitScoreComponents:
    recent_days: float
    streak: float
    weekly: float


@dataclass(frozen=True)
class HabitScore:
    score: float
    state: HabitState
    components: HabitScoreComponents


def habit_state_for(score: float) -> HabitState:
    if score >= STABLE_THRESHOLD:
        return HabitState.STABLE
    if score >= WARNING_THRESHOLD:
        return HabitState.WARNING
    return HabitState.DANGER


def calculate_habit_score(
    recent_active_days: int,
    streak: int,
    weekly_progress: int,
    weekly_goal: int,
) -> HabitScore:
    recent_ratio = min(max(recent_active_days, 0), RECENT_WINDOW_DAYS) / RECENT_WINDOW_DAYS
    streak_ratio = min(max(streak, 0), STREAK_CAP_DAYS) / STREAK_CAP_DAYS
    weekly_ratio = min(weekly_progress / weekly_goal, 1.0) if weekly_goal > 0 else 0.0

    components = HabitScoreComponents(
        recent_days=round(recent_ratio * RECENT_DAYS_WEIGHT, 2),
        streak=round(streak_ratio * STREAK_WEIGHT, 2),
        weekly=round(max(weekly_ratio, 0.0) * WEEKLY_WEIGHT, 2),
    )
    score = round(components.recent_days + components.streak + components.weekly, 2)
    return HabitScore(score=score, state=habit_state_for(score), components=components)
