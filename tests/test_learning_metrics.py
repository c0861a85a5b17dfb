"""Tests for streak / weekly-progress derivation and the habit score."""

import pytest
from pydantic import ValidationError

from learnloop_workers.habit_score import HabitState, calculate_habit_score, habit_state_for
from learnloop_workers.learning_metrics import (
    calculate_streak,
    calculate_weekly_progress,
    count_recent_active_days,
    recalculate_metrics,
    update_metrics_on_event,
)
from learnloop_workers.models import LearningEvent, UserLearningMetric


def test_calculate_streak_rules():
    assert calculate_streak(0, None, "2024-01-10") == 1
    assert calculate_streak(4, "2024-01-10", "2024-01-10") == 4
    assert calculate_streak(4, "2024-01-09", "2024-01-10") == 5
    assert calculate_streak(4, "2024-01-07", "2024-01-10") == 1


def test_weekly_progress_counts_distinct_days_in_monday_week():
    dates = ["2024-01-14", "2024-01-15", "2024-01-15", "2024-01-17", "2024-01-22"]
    assert calculate_weekly_progress(dates, "2024-01-15") == 2


def test_recent_active_days_window():
    dates = ["2024-01-03", "2024-01-04", "2024-01-10", "2024-01-10"]
    assert count_recent_active_days(dates, "2024-01-10") == 2


def test_recalculate_metrics_counts_back_from_yesterday():
    metric = recalculate_metrics(
        "u1",
        ["2024-01-12", "2024-01-13", "2024-01-14", "2024-01-10"],
        "2024-01-15",
    )
    assert metric.streak == 3
    assert metric.last_event_date == "2024-01-14"
    assert metric.weekly_goal == 5
    assert metric.weekly_progress == 0


def test_recalculate_metrics_resets_stale_streak():
    metric = recalculate_metrics("u1", ["2024-01-10", "2024-01-11"], "2024-01-15")
    assert metric.streak == 0
    assert metric.last_event_date == "2024-01-11"


def test_recalculate_metrics_without_events():
    metric = recalculate_metrics("u1", [], "2024-01-15", weekly_goal=3)
    assert metric == UserLearningMetric(user_id="u1", weekly_goal=3)


def test_update_metrics_on_event_advances_streak():
    previous = UserLearningMetric(user_id="u1", streak=2, last_event_date="2024-01-14")
    updated = update_metrics_on_event(
        previous,
        user_id="u1",
        event_date="2024-01-15",
        week_event_dates=["2024-01-15"],
    )
    assert updated.streak == 3
    assert updated.last_event_date == "2024-01-15"
    assert updated.weekly_progress == 1


def test_metric_rejects_negative_streak():
    with pytest.raises(ValidationError):
        UserLearningMetric(user_id="u1", streak=-1)


def test_event_rejects_malformed_date():
    with pytest.raises(ValidationError):
        LearningEvent(user_id="u1", event_type="lesson_viewed", event_date="2024-13-45")


def test_habit_score_full_marks():
    score = calculate_habit_score(recent_active_days=7, streak=10, weekly_progress=6, weekly_goal=5)
    assert score.score == 100.0
    assert score.state is HabitState.STABLE


def test_habit_score_components_and_rounding():
    score = calculate_habit_score(recent_active_days=3, streak=2, weekly_progress=1, weekly_goal=5)
    assert score.components.recent_days == 17.14
    assert score.components.streak == 11.43
    assert score.components.weekly == 4.0
    assert score.score == 32.57
    assert score.state is HabitState.DANGER


def test_habit_state_thresholds():
    assert habit_state_for(80) is HabitState.STABLE
    assert habit_state_for(79.99) is HabitState.WARNING
    assert habit_state_for(50) is HabitState.WARNING
    assert habit_state_for(49.99) is HabitState.DANGER
