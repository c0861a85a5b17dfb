"""ROI of a closed improvement: lesson views, follow-ups and completions before vs after."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable

from .effectiveness import calculate_follow_up_stats
from .evaluation import (
    EVAL_RATE_DELTA_THRESHOLD,
    TimestampLike,
    events_for_lesson,
    format_delta,
    format_percentage,
    format_percentage_points,
)
from .models import EVENT_LESSON_COMPLETED, EVENT_LESSON_VIEWED, LearningEvent

ROI_WINDOW_DAYS = 7
MIN_ROI_SAMPLE = 5


class RoiStatus(StrEnum):
    IMPROVED = "IMPROVED"
    REGRESSED = "REGRESSED"
    NO_CHANGE = "NO_CHANGE"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


@dataclass(frozen=True)
class RoiSnapshot:
    origin_count: int
    follow_up_count: int
    follow_up_rate: float
    completion_count: int
    completion_rate: float


@dataclass(frozen=True)
class RoiMeta:
    issue_number: int
    issue_title: str
    lesson_slug: str
    created_at: str
    closed_at: str


@dataclass(frozen=True)
class ImprovementRoi:
    lesson_slug: str
    issue_number: int
    issue_title: str
    status: RoiStatus
    before: RoiSnapshot
    after: RoiSnapshot
    delta_follow_up_rate: float
    delta_completion_rate: float
    window_days: int
    created_at: str
    closed_at: str


def build_roi_snapshot(
    events: Iterable[LearningEvent],
    start: TimestampLike,
    end: TimestampLike,
    lesson_slug: str,
) -> RoiSnapshot:
    scoped = events_for_lesson(events, lesson_slug, start, end)
    views = [event for event in scoped if event.event_type == EVENT_LESSON_VIEWED]
    stats = calculate_follow_up_stats(views, scoped)
    completions = sum(1 for event in scoped if event.event_type == EVENT_LESSON_COMPLETED)
    origin_count = len(views)
    return RoiSnapshot(
        origin_count=origin_count,
        follow_up_count=stats.followed_up_count,
        follow_up_rate=(stats.followed_up_count / origin_count) if origin_count else 0.0,
        completion_count=completions,
        completion_rate=(completions / origin_count) if origin_count else 0.0,
    )


def get_roi_status(delta_follow_up_rate: float, before_origin_count: int, after_origin_count: int) -> RoiStatus:
    if before_origin_count < MIN_ROI_SAMPLE or after_origin_count < MIN_ROI_SAMPLE:
        return RoiStatus.INSUFFICIENT_DATA
    if delta_follow_up_rate >= EVAL_RATE_DELTA_THRESHOLD:
        return RoiStatus.IMPROVED
    if delta_follow_up_rate <= -EVAL_RATE_DELTA_THRESHOLD:
        return RoiStatus.REGRESSED
    return RoiStatus.NO_CHANGE


def calculate_improvement_roi(before: RoiSnapshot, after: RoiSnapshot, meta: RoiMeta) -> ImprovementRoi:
    delta_follow_up = after.follow_up_rate - before.follow_up_rate
    return ImprovementRoi(
        lesson_slug=meta.lesson_slug,
        issue_number=meta.issue_number,
        issue_title=meta.issue_title,
        status=get_roi_status(delta_follow_up, before.origin_count, after.origin_count),
        before=before,
        after=after,
        delta_follow_up_rate=delta_follow_up,
        delta_completion_rate=after.completion_rate - before.completion_rate,
        window_days=ROI_WINDOW_DAYS,
        created_at=meta.created_at,
        closed_at=meta.closed_at,
    )


def _status_line(roi: ImprovementRoi) -> str:
    match roi.status:
        case RoiStatus.IMPROVED:
            return f"Follow-up rate improved by {format_percentage_points(roi.delta_follow_up_rate)}."
        case RoiStatus.REGRESSED:
            return f"Follow-up rate decreased by {format_percentage_points(abs(roi.delta_follow_up_rate))}."
        case RoiStatus.NO_CHANGE:
            return (
                f"No significant change in follow-up rate "
                f"({format_percentage_points(roi.delta_follow_up_rate)}, within the 5pp threshold)."
            )
        case RoiStatus.INSUFFICIENT_DATA:
            return (
                f"Sample too small for ROI analysis. Before: {roi.before.origin_count} views, "
                f"After: {roi.after.origin_count} views (minimum: {MIN_ROI_SAMPLE} each)."
            )


def build_roi_comment(roi: ImprovementRoi) -> str:
    before, after = roi.before, roi.after
    return "\n".join(
        [
            "## Improvement ROI Report",
            "",
            f"**Issue:** #{roi.issue_number} - {roi.issue_title}",
            f"**Lesson:** `{roi.lesson_slug}`",
            f"**Analysis Period:** {roi.window_days} days (before/after)",
            "",
            f"### Status: {roi.status}",
            "",
            _status_line(roi),
            "",
            "### Before/After Comparison",
            "",
            "| Metric | Before | After | Delta |",
            "|--------|--------|-------|-------|",
            f"| Lesson Views | {before.origin_count} | {after.origin_count} | "
            f"{format_delta(after.origin_count - before.origin_count)} |",
            f"| Follow-up Rate | {format_percentage(before.follow_up_rate)} | "
            f"{format_percentage(after.follow_up_rate)} | "
            f"{format_percentage_points(roi.delta_follow_up_rate)} |",
            f"| Completion Rate | {format_percentage(before.completion_rate)} | "
            f"{format_percentage(after.completion_rate)} | "
            f"{format_percentage_points(roi.delta_completion_rate)} |",
            "",
        ]
    )
