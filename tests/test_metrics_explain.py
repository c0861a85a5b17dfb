"""Tests for streak / weekly-goal reason-code classification."""

import pytest

from learnloop_workers.metrics_explain import (
    StreakReasonCode,
    WeeklyReasonCode,
    build_metrics_explain,
    build_streak_explain,
    build_weekly_goal_explain,
    elapsed_days_in_week,
)
from learnloop_workers.models import UserLearningMetric

TODAY = "2024-01-17"  # Wednesday
WEEK_START = "2024-01-15"


class TestStreakExplain:
    def test_active_today(self):
        explain = build_streak_explain(3, TODAY, 2, TODAY)
        assert explain.reason_code is StreakReasonCode.ACTIVE_TODAY
        assert explain.details == [
            "Activity today: 2",
            "Last activity: 2024-01-17",
            "Verdict: Streak kept: activity recorded today",
        ]

    def test_active_yesterday_message_depends_on_today(self):
        pending = build_streak_explain(3, "2024-01-16", 0, TODAY)
        done = build_streak_explain(3, "2024-01-16", 1, TODAY)
        assert pending.reason_code is StreakReasonCode.ACTIVE_YESTERDAY
        assert done.reason_code is StreakReasonCode.ACTIVE_YESTERDAY
        assert pending.message != done.message

    def test_no_activity_yet(self):
        explain = build_streak_explain(0, None, 0, TODAY)
        assert explain.reason_code is StreakReasonCode.NO_ACTIVITY_YET
        assert explain.details[1] == "Last activity: none"
        assert len(explain.details) == 3

    def test_broken_after_five_days(self):
        explain = build_streak_explain(4, "2024-01-12", 0, TODAY)
        assert explain.reason_code is StreakReasonCode.BROKEN
        assert explain.details[2] == "Days since last activity: 5"
        assert explain.details[-1].startswith("Verdict: ")

    def test_recovered_after_five_days(self):
        explain = build_streak_explain(1, "2024-01-12", 1, TODAY)
        assert explain.reason_code is StreakReasonCode.RECOVERED

    def test_recovered_with_no_prior_activity(self):
        explain = build_streak_explain(1, None, 1, TODAY)
        assert explain.reason_code is StreakReasonCode.RECOVERED

    @pytest.mark.parametrize("code", list(StreakReasonCode))
    def test_every_code_has_a_verdict(self, code):
        inputs = {
            StreakReasonCode.ACTIVE_TODAY: (1, TODAY, 1),
            StreakReasonCode.ACTIVE_YESTERDAY: (1, "2024-01-16", 0),
            StreakReasonCode.NO_ACTIVITY_YET: (0, None, 0),
            StreakReasonCode.BROKEN: (2, "2024-01-10", 0),
            StreakReasonCode.RECOVERED: (1, "2024-01-10", 3),
        }[code]
        explain = build_streak_explain(*inputs, TODAY)
        assert explain.reason_code is code
        assert explain.message


class TestWeeklyGoalExplain:
    def test_achieved(self):
        explain = build_weekly_goal_explain(5, 5, WEEK_START, TODAY)
        assert explain.reason_code is WeeklyReasonCode.ACHIEVED
        assert explain.week_end == "2024-01-21"

    def test_zero_completed_is_behind(self):
        assert build_weekly_goal_explain(5, 0, WEEK_START, TODAY).reason_code is WeeklyReasonCode.BEHIND

    @pytest.mark.parametrize("completed", [0, 3, 9])
    def test_no_goal_overrides_everything(self, completed):
        explain = build_weekly_goal_explain(0, completed, WEEK_START, TODAY)
        assert explain.reason_code is WeeklyReasonCode.NO_GOAL

    def test_on_track_against_exact_pace(self):
        # Day 3 of 7 with goal 7: expected pace is exactly 3.
        assert build_weekly_goal_explain(7, 3, WEEK_START, TODAY).reason_code is WeeklyReasonCode.ON_TRACK
        assert build_weekly_goal_explain(7, 2, WEEK_START, TODAY).reason_code is WeeklyReasonCode.BEHIND

    def test_fractional_pace_is_not_rounded(self):
        # goal 5 on day 3 expects 15/7 ~= 2.14 days.
        assert build_weekly_goal_explain(5, 2, WEEK_START, TODAY).reason_code is WeeklyReasonCode.BEHIND
        assert build_weekly_goal_explain(5, 3, WEEK_START, TODAY).reason_code is WeeklyReasonCode.ON_TRACK

    def test_details_shape(self):
        explain = build_weekly_goal_explain(5, 2, WEEK_START, TODAY)
        assert explain.details == [
            "Week: 2024-01-15 ~ 2024-01-21",
            "Completed: 2/5 days",
            "Elapsed: day 3 of 7",
            "Verdict: Behind the weekly pace",
        ]

    def test_elapsed_days_clamped(self):
        assert elapsed_days_in_week(WEEK_START, "2024-01-10") == 1
        assert elapsed_days_in_week(WEEK_START, "2024-01-30") == 7


def test_build_metrics_explain_combines_both():
    metric = UserLearningMetric(
        user_id="u1", streak=4, last_event_date="2024-01-16", weekly_goal=5, weekly_progress=2
    )
    explain = build_metrics_explain(metric, 0, TODAY)
    assert explain.streak.reason_code is StreakReasonCode.ACTIVE_YESTERDAY
    assert explain.weekly.week_start == WEEK_START
    assert explain.weekly.reason_code is WeeklyReasonCode.BEHIND
