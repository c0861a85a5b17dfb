"""Tests for the admin summary, streak distribution and leaderboards."""

from learnloop_workers.admin_metrics import (
    AdminPeriod,
    build_admin_summary,
    build_events_heatmap,
    build_events_trend,
    build_leaderboards,
    calculate_streak_distribution,
    calculate_weekly_goal_achievement_rate,
    get_date_range_for_period,
)
from learnloop_workers.models import LearningEvent, UserLearningMetric

TODAY = "2024-03-31"


def _event(user_id: str, event_date: str) -> LearningEvent:
    return LearningEvent(user_id=user_id, event_type="lesson_completed", event_date=event_date)


def _metric(
    user_id: str, streak: int = 0, progress: int = 0, goal: int = 5, last: str | None = None
) -> UserLearningMetric:
    return UserLearningMetric(
        user_id=user_id,
        streak=streak,
        last_event_date=last,
        weekly_goal=goal,
        weekly_progress=progress,
    )


def test_period_ranges_are_inclusive():
    assert get_date_range_for_period("today", TODAY).start_date == TODAY
    seven = get_date_range_for_period(AdminPeriod.LAST_7_DAYS, TODAY)
    assert (seven.start_date, seven.end_date) == ("2024-03-25", TODAY)
    assert len(get_date_range_for_period("30d", TODAY).days()) == 30


def test_admin_summary_counts_and_average():
    events = [
        _event("a", "2024-03-31"),
        _event("a", "2024-03-30"),
        _event("b", "2024-03-25"),
        _event("c", "2024-03-24"),
    ]
    summary = build_admin_summary(events, "7d", TODAY)
    assert summary.active_users == 2
    assert summary.total_events == 3
    assert summary.avg_events_per_user == 1.5


def test_admin_summary_without_users_has_zero_average():
    summary = build_admin_summary([], "today", TODAY)
    assert summary.active_users == 0
    assert summary.avg_events_per_user == 0


def test_streak_distribution_bucket_edges():
    metrics = [_metric(str(i), streak=s) for i, s in enumerate([0, 1, 2, 3, 6, 7, 13, 14, 40])]
    buckets = {bucket.label: bucket.count for bucket in calculate_streak_distribution(metrics)}
    assert buckets == {"0": 1, "1-2": 2, "3-6": 2, "7-13": 2, "14+": 2}


def test_weekly_goal_achievement_rate_counts_equality():
    metrics = [_metric("a", progress=5), _metric("b", progress=6), _metric("c", progress=4)]
    assert calculate_weekly_goal_achievement_rate(metrics) == 67
    assert calculate_weekly_goal_achievement_rate([]) == 0


def test_leaderboards_stable_ties_and_event_only_users():
    metrics = [_metric("m1", streak=3, last="2024-03-29"), _metric("m2", streak=3)]
    events = [
        _event("e1", "2024-03-30"),
        _event("m2", "2024-03-01"),
        _event("m1", "2024-03-31"),
        _event("e1", "2024-02-01"),
    ]
    boards = build_leaderboards(events, metrics, TODAY)

    assert [entry.user_id for entry in boards.by_events] == ["m1", "e1", "m2"]
    assert [entry.user_id for entry in boards.by_streak] == ["m1", "m2", "e1"]
    e1 = boards.by_events[1]
    assert e1.streak == 0
    assert e1.weekly_events == 1
    assert e1.thirty_day_events == 1
    assert e1.last_event_date is None
    m1, m2 = boards.by_streak[:2]
    assert m1.last_event_date == "2024-03-29"
    # The metric row is authoritative even when events are newer or it is empty.
    assert m2.last_event_date is None
    assert boards.by_events[-1].thirty_day_events == 0


def test_leaderboards_respect_limit():
    metrics = [_metric(f"u{i}", streak=i) for i in range(15)]
    boards = build_leaderboards([], metrics, TODAY, limit=3)
    assert [entry.user_id for entry in boards.by_streak] == ["u14", "u13", "u12"]
    assert len(boards.by_events) == 3


def test_events_trend_and_heatmap_span_inclusive_range():
    events = [_event("a", "2024-03-02"), _event("b", "2024-03-02"), _event("a", "2024-03-05")]
    trend = build_events_trend(events, "2024-03-01", "2024-03-03")
    assert [(point.x, point.y) for point in trend] == [
        ("2024-03-01", 0),
        ("2024-03-02", 2),
        ("2024-03-03", 0),
    ]
    heatmap = build_events_heatmap(events, "2024-03-01", "2024-03-03")
    assert [day.level for day in heatmap] == [0, 1, 0]
