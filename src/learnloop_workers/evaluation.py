"""Before / after effectiveness evaluation for an improvement issue.

Snapshots here use 0-1 decimal rates (not rounded percents) so small
deltas survive; the +/-0.05 threshold is in the same unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Iterable

from .effectiveness import (
    FOLLOW_UP_EVENT_TYPES,
    ORIGIN_EVENT_TYPES,
    calculate_follow_up_stats,
)
from .issue_templates import build_evaluation_marker
from .models import LearningEvent

EVALUATION_WINDOW_DAYS = 14
MIN_ORIGIN_FOR_EVAL = 5
EVAL_RATE_DELTA_THRESHOLD = 0.05

TimestampLike = datetime | str


class EvaluationStatus(StrEnum):
    IMPROVED = "IMPROVED"
    REGRESSED = "REGRESSED"
    NO_CHANGE = "NO_CHANGE"
    LOW_SAMPLE = "LOW_SAMPLE"


@dataclass(frozen=True)
class EffectivenessSnapshot:
    origin_count: int
    follow_up_count: int
    follow_up_rate: float
    follow_up_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class EffectivenessDelta:
    status: EvaluationStatus
    before: EffectivenessSnapshot
    after: EffectivenessSnapshot
    delta_rate: float
    window_days: int
    note: str


@dataclass(frozen=True)
class EvaluationMeta:
    issue_number: int
    lesson_slug: str
    hint_type: str
    pr_url: str | None = None


def parse_timestamp(value: TimestampLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    text = value.strip()
    if len(text) == 10:
        return datetime.fromisoformat(text).replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)


def evaluation_windows(
    baseline_at: TimestampLike,
    window_days: int = EVALUATION_WINDOW_DAYS,
) -> tuple[tuple[datetime, datetime], tuple[datetime, datetime]]:
    """``(before, after)`` half-open windows of ``window_days`` around ``baseline_at``."""
    pivot = parse_timestamp(baseline_at)
    span = timedelta(days=window_days)
    return (pivot - span, pivot), (pivot, pivot + span)


def events_in_window(
    events: Iterable[LearningEvent],
    start: TimestampLike,
    end: TimestampLike,
) -> list[LearningEvent]:
    """Events with ``start <= occurred_at < end``."""
    lower, upper = parse_timestamp(start), parse_timestamp(end)
    return [event for event in events if lower <= event.occurred_at() < upper]


def events_for_lesson(
    events: Iterable[LearningEvent],
    lesson_slug: str,
    start: TimestampLike,
    end: TimestampLike,
) -> list[LearningEvent]:
    return [event for event in events_in_window(events, start, end) if event.reference_id == lesson_slug]


def build_effectiveness_snapshot(
    events: Iterable[LearningEvent],
    start: TimestampLike,
    end: TimestampLike,
    lesson_slug: str,
) -> EffectivenessSnapshot:
    """Follow-up profile of ``lesson_slug`` origins inside ``[start, end)``.

    Only origins are tied to the lesson. Follow-ups are any in-window events
    of the same user, whatever they reference (``next_lesson_opened`` points
    at the next lesson, quizzes and notes carry their own ids).
    """
    windowed = events_in_window(events, start, end)
    origins = [
        event
        for event in windowed
        if event.event_type in ORIGIN_EVENT_TYPES and event.reference_id == lesson_slug
    ]
    stats = calculate_follow_up_stats(origins, windowed)
    return EffectivenessSnapshot(
        origin_count=stats.origin_count,
        follow_up_count=stats.followed_up_count,
        follow_up_rate=(stats.followed_up_count / stats.origin_count) if stats.origin_count else 0.0,
        follow_up_counts={k: v for k, v in stats.follow_up_counts.items() if v > 0},
    )


def get_evaluation_status(delta_rate: float, after_origin_count: int) -> EvaluationStatus:
    if after_origin_count < MIN_ORIGIN_FOR_EVAL:
        return EvaluationStatus.LOW_SAMPLE
    if delta_rate >= EVAL_RATE_DELTA_THRESHOLD:
        return EvaluationStatus.IMPROVED
    if delta_rate <= -EVAL_RATE_DELTA_THRESHOLD:
        return EvaluationStatus.REGRESSED
    return EvaluationStatus.NO_CHANGE


def format_percentage_points(decimal: float) -> str:
    points = round(decimal * 100)
    return f"+{points}pp" if points >= 0 else f"{points}pp"


def format_percentage(decimal: float) -> str:
    return f"{round(decimal * 100)}%"


def format_delta(delta: int) -> str:
    return f"+{delta}" if delta > 0 else str(delta)


def _status_note(status: EvaluationStatus, delta_rate: float) -> str:
    match status:
        case EvaluationStatus.IMPROVED:
            return f"Follow-up rate improved by {format_percentage_points(delta_rate)}"
        case EvaluationStatus.REGRESSED:
            return f"Follow-up rate decreased by {format_percentage_points(delta_rate)}"
        case EvaluationStatus.NO_CHANGE:
            return f"No significant change ({format_percentage_points(delta_rate)})"
        case EvaluationStatus.LOW_SAMPLE:
            return "Not enough origin events after the change to evaluate"


def build_effectiveness_delta(
    before: EffectivenessSnapshot,
    after: EffectivenessSnapshot,
    window_days: int = EVALUATION_WINDOW_DAYS,
) -> EffectivenessDelta:
    delta_rate = after.follow_up_rate - before.follow_up_rate
    status = get_evaluation_status(delta_rate, after.origin_count)
    return EffectivenessDelta(
        status=status,
        before=before,
        after=after,
        delta_rate=delta_rate,
        window_days=window_days,
        note=_status_note(status, delta_rate),
    )


_RECOMMENDATIONS: dict[EvaluationStatus, str | None] = {
    EvaluationStatus.LOW_SAMPLE: (
        "Sample size is too small ({after} origin events). Wait for "
        "{minimum}+ events before judging effectiveness."
    ),
    EvaluationStatus.REGRESSED: (
        "The change appears to have hurt engagement. Consider reverting it "
        "or investigating why follow-ups dropped."
    ),
    EvaluationStatus.IMPROVED: (
        "The change is effective. Consider applying it to similar lessons."
    ),
    EvaluationStatus.NO_CHANGE: None,
}


def build_evaluation_comment(delta: EffectivenessDelta, meta: EvaluationMeta) -> str:
    """Markdown report for an issue; ends with the evaluation marker."""
    before, after = delta.before, delta.after
    lines = [
        "## Effectiveness Evaluation",
        "",
        f"**Issue:** #{meta.issue_number}",
        f"**Lesson:** `{meta.lesson_slug}`",
        f"**Hint Type:** `{meta.hint_type}`",
    ]
    if meta.pr_url:
        lines.append(f"**PR:** {meta.pr_url}")
    lines += [
        f"**Evaluation Period:** {delta.window_days} days (before/after)",
        "",
        f"### Status: {delta.status}",
        "",
        delta.note,
        "",
        "### Before/After Comparison",
        "",
        "| Metric | Before | After | Delta |",
        "|--------|--------|-------|-------|",
        f"| Origin Events | {before.origin_count} | {after.origin_count} | "
        f"{format_delta(after.origin_count - before.origin_count)} |",
        f"| Follow-up Rate | {format_percentage(before.follow_up_rate)} | "
        f"{format_percentage(after.follow_up_rate)} | {format_percentage_points(delta.delta_rate)} |",
        f"| Follow-up Count | {before.follow_up_count} | {after.follow_up_count} | "
        f"{format_delta(after.follow_up_count - before.follow_up_count)} |",
        "",
    ]
    if after.follow_up_counts:
        lines += ["### Follow-up Event Breakdown (After)", "", "| Event Type | Count |", "|------------|-------|"]
        for event_type in FOLLOW_UP_EVENT_TYPES:
            if event_type in after.follow_up_counts:
                lines.append(f"| `{event_type}` | {after.follow_up_counts[event_type]} |")
        lines.append("")
    recommendation = _RECOMMENDATIONS[delta.status]
    if recommendation:
        lines += ["### Recommendation", "", recommendation.format(after=after.origin_count, minimum=MIN_ORIGIN_FOR_EVAL), ""]
    lines.append(build_evaluation_marker(meta.lesson_slug, meta.issue_number, delta.window_days))
    return "\n".join(lines)
