"""Tests for issue templates, before/after evaluation and improvement ROI."""

from datetime import datetime, timedelta, timezone

import pytest

from learnloop_workers.evaluation import (
    EvaluationMeta,
    EvaluationStatus,
    build_effectiveness_delta,
    build_effectiveness_snapshot,
    build_evaluation_comment,
    evaluation_windows,
    format_percentage_points,
    get_evaluation_status,
    parse_timestamp,
)
from learnloop_workers.improvement_hints import HintType
from learnloop_workers.improvement_roi import (
    RoiMeta,
    RoiStatus,
    build_roi_comment,
    build_roi_snapshot,
    calculate_improvement_roi,
    get_roi_status,
)
from learnloop_workers.issue_templates import (
    build_evaluation_marker,
    build_issue_body,
    build_issue_labels,
    build_issue_title,
    default_baseline_snapshot_at,
    parse_issue_baseline,
    parse_lesson_slug_from_title,
)
from learnloop_workers.models import LearningEvent

BASELINE = "2024-02-01T00:00:00Z"


def _event(event_type: str, moment: datetime, user_id: str, ref: str = "intro") -> LearningEvent:
    return LearningEvent(
        user_id=user_id,
        event_type=event_type,
        event_date=moment.date().isoformat(),
        reference_id=ref,
        created_at=moment,
    )


def _window_events(start: datetime, views: int, followed: int, completed: int = 0, ref: str = "intro"):
    events = []
    for i in range(views):
        moment = start + timedelta(hours=i * 3)
        user = f"{ref}-{start:%m%d}-{i}"
        events.append(_event("lesson_viewed", moment, user, ref))
        if i < followed:
            events.append(_event("quiz_started", moment + timedelta(hours=1), user, ref))
        if i < completed:
            events.append(_event("lesson_completed", moment + timedelta(minutes=30), user, ref))
    return events


class TestIssueTemplates:
    def test_title_and_labels(self):
        title = build_issue_title("Intro to Loops", "intro-loops", HintType.CTA_MISSING)
        assert title == "[Lesson Improvement] Intro to Loops (intro-loops) - CTA_MISSING"
        assert parse_lesson_slug_from_title(title) == "intro-loops"
        assert build_issue_labels("intro-loops", HintType.CTA_MISSING) == [
            "lesson-improvement",
            "metrics",
            "hint:CTA_MISSING",
            "lesson:intro-loops",
        ]

    def test_body_metadata_parses_back(self):
        body = build_issue_body(
            lesson_title="Intro",
            lesson_slug="intro",
            hint_type=HintType.NEXT_LESSON_WEAK,
            follow_up_rate=12,
            origin_count=40,
            baseline_window_days=14,
            baseline_snapshot_at_utc=BASELINE,
        )
        assert "- Follow-up Rate: **12%**" in body
        baseline = parse_issue_baseline(body)
        assert baseline.lesson_slug == "intro"
        assert baseline.hint_type == "NEXT_LESSON_WEAK"
        assert baseline.baseline_window_days == 14
        assert baseline.baseline_snapshot_at_utc == BASELINE
        assert baseline.origin_count == 40
        assert baseline.follow_up_rate == 12

    def test_baseline_falls_back_to_summary_lines(self):
        body = "- Follow-up Rate: **7%**\n- Origin Count: 22\n"
        baseline = parse_issue_baseline(body)
        assert baseline.follow_up_rate == 7
        assert baseline.origin_count == 22
        assert baseline.lesson_slug is None
        assert baseline.baseline_window_days == 30

    def test_empty_body(self):
        baseline = parse_issue_baseline(None)
        assert baseline.origin_count == 0
        assert baseline.baseline_snapshot_at_utc is None

    def test_default_snapshot_is_utc_midnight(self):
        moment = datetime(2024, 3, 5, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert default_baseline_snapshot_at(moment) == "2024-03-06T00:00:00Z"

    def test_marker_format(self):
        assert build_evaluation_marker("intro", 12, 14) == "<!-- eval:lesson_slug=intro issue=12 window=14 -->"


class TestEvaluation:
    @pytest.mark.parametrize(
        ("delta", "after_origins", "expected"),
        [
            (0.05, 5, EvaluationStatus.IMPROVED),
            (0.04, 5, EvaluationStatus.NO_CHANGE),
            (-0.04, 5, EvaluationStatus.NO_CHANGE),
            (-0.05, 5, EvaluationStatus.REGRESSED),
            (0.5, 4, EvaluationStatus.LOW_SAMPLE),
        ],
    )
    def test_status_thresholds(self, delta, after_origins, expected):
        assert get_evaluation_status(delta, after_origins) is expected

    def test_parse_timestamp_variants(self):
        expected = datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert parse_timestamp("2024-02-01") == expected
        assert parse_timestamp(BASELINE) == expected
        assert parse_timestamp("2024-02-01T09:00:00+09:00") == expected

    def test_windows_are_adjacent(self):
        (before_start, before_end), (after_start, after_end) = evaluation_windows(BASELINE, 14)
        assert before_end == after_start == parse_timestamp(BASELINE)
        assert after_end - before_start == timedelta(days=28)

    def test_snapshot_only_counts_lesson_events_in_window(self):
        pivot = parse_timestamp(BASELINE)
        events = _window_events(pivot + timedelta(days=1), views=5, followed=3)
        events += _window_events(pivot + timedelta(days=1), views=4, followed=4, ref="other")
        events += _window_events(pivot + timedelta(days=20), views=3, followed=0)

        snapshot = build_effectiveness_snapshot(events, pivot, pivot + timedelta(days=14), "intro")
        assert snapshot.origin_count == 5
        assert snapshot.follow_up_count == 3
        assert snapshot.follow_up_rate == pytest.approx(0.6)
        assert snapshot.follow_up_counts == {"quiz_started": 3}

    def test_snapshot_follow_ups_may_reference_other_lessons(self):
        pivot = parse_timestamp(BASELINE)
        events = []
        for i in range(5):
            viewed = pivot + timedelta(days=2, hours=i)
            events.append(_event("lesson_viewed", viewed, f"u{i}", "intro"))
            events.append(_event("next_lesson_opened", viewed + timedelta(minutes=10), f"u{i}", "loops"))
        # Another learner's follow-up and one past the window end do not count.
        events.append(_event("lesson_viewed", pivot + timedelta(days=13, hours=23), "late", "intro"))
        events.append(_event("quiz_started", pivot + timedelta(days=14, hours=1), "late", "quiz-7"))
        events.append(_event("lesson_viewed", pivot + timedelta(days=3), "solo", "intro"))
        events.append(_event("note_created", pivot + timedelta(days=3, minutes=5), "someone-else", "note-1"))

        snapshot = build_effectiveness_snapshot(events, pivot, pivot + timedelta(days=14), "intro")

        assert snapshot.origin_count == 7
        assert snapshot.follow_up_count == 5
        assert snapshot.follow_up_counts == {"next_lesson_opened": 5}

    def test_delta_and_comment(self):
        pivot = parse_timestamp(BASELINE)
        events = _window_events(pivot - timedelta(days=10), views=5, followed=1)
        events += _window_events(pivot + timedelta(days=1), views=5, followed=3)
        (before_start, before_end), (after_start, after_end) = evaluation_windows(pivot)

        delta = build_effectiveness_delta(
            build_effectiveness_snapshot(events, before_start, before_end, "intro"),
            build_effectiveness_snapshot(events, after_start, after_end, "intro"),
        )
        assert delta.status is EvaluationStatus.IMPROVED
        assert delta.note == "Follow-up rate improved by +40pp"

        comment = build_evaluation_comment(
            delta, EvaluationMeta(issue_number=9, lesson_slug="intro", hint_type="CTA_MISSING", pr_url="https://example.test/pr/3")
        )
        assert "### Status: IMPROVED" in comment
        assert "| Follow-up Rate | 20% | 60% | +40pp |" in comment
        assert "| `quiz_started` | 3 |" in comment
        assert "**PR:** https://example.test/pr/3" in comment
        assert comment.endswith(build_evaluation_marker("intro", 9, 14))

    def test_low_sample_comment_recommends_waiting(self):
        pivot = parse_timestamp(BASELINE)
        events = _window_events(pivot + timedelta(days=1), views=2, followed=2)
        after = build_effectiveness_snapshot(events, pivot, pivot + timedelta(days=14), "intro")
        before = build_effectiveness_snapshot([], pivot - timedelta(days=14), pivot, "intro")
        delta = build_effectiveness_delta(before, after)

        comment = build_evaluation_comment(delta, EvaluationMeta(1, "intro", "LOW_ENGAGEMENT"))
        assert delta.status is EvaluationStatus.LOW_SAMPLE
        assert "Sample size is too small (2 origin events)" in comment
        assert "Wait for 5+ events" in comment

    def test_percentage_points_sign(self):
        assert format_percentage_points(0.0) == "+0pp"
        assert format_percentage_points(-0.1) == "-10pp"


class TestImprovementRoi:
    META = RoiMeta(
        issue_number=4,
        issue_title="[Lesson Improvement] Intro (intro) - CTA_MISSING",
        lesson_slug="intro",
        created_at="2024-01-20T00:00:00Z",
        closed_at=BASELINE,
    )

    def test_snapshot_counts_views_and_completions(self):
        pivot = parse_timestamp(BASELINE)
        events = _window_events(pivot + timedelta(days=1), views=5, followed=2, completed=4)
        snapshot = build_roi_snapshot(events, pivot, pivot + timedelta(days=7), "intro")
        assert snapshot.origin_count == 5
        assert snapshot.follow_up_count == 2
        assert snapshot.completion_count == 4
        assert snapshot.completion_rate == pytest.approx(0.8)

    def test_status_requires_samples_on_both_sides(self):
        assert get_roi_status(0.5, 4, 10) is RoiStatus.INSUFFICIENT_DATA
        assert get_roi_status(0.5, 10, 4) is RoiStatus.INSUFFICIENT_DATA
        assert get_roi_status(0.05, 5, 5) is RoiStatus.IMPROVED
        assert get_roi_status(-0.05, 5, 5) is RoiStatus.REGRESSED
        assert get_roi_status(0.0, 5, 5) is RoiStatus.NO_CHANGE

    def test_roi_and_comment(self):
        pivot = parse_timestamp(BASELINE)
        events = _window_events(pivot - timedelta(days=3), views=5, followed=3, completed=1)
        events += _window_events(pivot + timedelta(days=1), views=5, followed=1, completed=3)

        roi = calculate_improvement_roi(
            build_roi_snapshot(events, pivot - timedelta(days=7), pivot, "intro"),
            build_roi_snapshot(events, pivot, pivot + timedelta(days=7), "intro"),
            self.META,
        )
        assert roi.status is RoiStatus.REGRESSED
        assert roi.delta_completion_rate == pytest.approx(0.4)

        comment = build_roi_comment(roi)
        assert "**Issue:** #4 - [Lesson Improvement] Intro (intro) - CTA_MISSING" in comment
        assert "Follow-up rate decreased by +40pp." in comment
        assert "| Completion Rate | 20% | 60% | +40pp |" in comment
