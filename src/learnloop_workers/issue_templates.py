"""Text contracts shared with the issue tracker.

The evaluation marker and the trailing metadata block are parsed back out of
existing issues, so their layout is fixed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import re

from .improvement_hints import HINT_MESSAGES, HintType

IMPROVEMENT_LABEL = "lesson-improvement"
METRICS_LABEL = "metrics"
REDESIGN_LABEL = "needs-redesign"
TITLE_PREFIX = "[Lesson Improvement]"
DEFAULT_BASELINE_WINDOW_DAYS = 30

_EVALUATION_MARKER = "<!-- eval:lesson_slug={slug} issue={issue} window={window} -->"

_RECOMMENDED_ACTIONS: dict[HintType, tuple[str, ...]] = {
    HintType.LOW_SAMPLE: ("Drive more learners to this lesson before changing it",),
    HintType.NEXT_LESSON_WEAK: (
        "Link the next lessons explicitly",
        "End the lesson with a 'read this next' pointer",
        "Check prerequisites and related-lesson settings",
    ),
    HintType.CTA_MISSING: (
        "Add a 'summarize this in a note' call to action",
        "Place quiz and review buttons below the content",
        "Close the exercises with a prompt to act",
    ),
    HintType.LOW_ENGAGEMENT: (
        "Add one runnable example",
        "Rewrite pitfalls around real cases",
        "Restructure exercises into easy / medium / hard",
    ),
}


@dataclass(frozen=True)
class IssueBaseline:
    lesson_slug: str | None
    hint_type: str | None
    baseline_window_days: int
    baseline_snapshot_at_utc: str | None
    origin_count: int
    follow_up_rate: int


def hint_label(hint_type: HintType | str) -> str:
    return f"hint:{hint_type}"


def lesson_label(lesson_slug: str) -> str:
    return f"lesson:{lesson_slug}"


def build_issue_title(lesson_title: str, lesson_slug: str, hint_type: HintType | str) -> str:
    return f"{TITLE_PREFIX} {lesson_title} ({lesson_slug}) - {hint_type}"


def build_issue_labels(lesson_slug: str, hint_type: HintType | str) -> list[str]:
    return [IMPROVEMENT_LABEL, METRICS_LABEL, hint_label(hint_type), lesson_label(lesson_slug)]


def default_baseline_snapshot_at(now: datetime | None = None) -> str:
    current = now or datetime.now(UTC)
    return current.astimezone(UTC).strftime("%Y-%m-%dT00:00:00Z")


def build_issue_body(
    *,
    lesson_title: str,
    lesson_slug: str,
    hint_type: HintType,
    follow_up_rate: int,
    origin_count: int,
    baseline_window_days: int = DEFAULT_BASELINE_WINDOW_DAYS,
    baseline_snapshot_at_utc: str | None = None,
) -> str:
    snapshot_at = baseline_snapshot_at_utc or default_baseline_snapshot_at()
    actions = "\n".join(f"- {action}" for action in _RECOMMENDED_ACTIONS[hint_type])
    return "\n".join(
        [
            "## Detected improvement hint",
            "",
            f"- Lesson: **{lesson_title}**",
            f"- Slug: `{lesson_slug}`",
            f"- Hint Type: **{hint_type}**",
            f"- Follow-up Rate: **{follow_up_rate}%**",
            f"- Origin Count: {origin_count}",
            "",
            "---",
            "",
            "## Why",
            "",
            HINT_MESSAGES[hint_type],
            "",
            "---",
            "",
            "## Recommended actions",
            "",
            actions,
            "",
            "---",
            "",
            "## Success criteria",
            "",
            "- Follow-up Rate improves by **+10%** or more",
            "- next_lesson_opened / review / quiz / note follow-ups increase",
            "",
            "---",
            f"lesson_slug: {lesson_slug}",
            f"hint_type: {hint_type}",
            f"baseline_window_days: {baseline_window_days}",
            f"baseline_snapshot_at_utc: {snapshot_at}",
            f"origin_count: {origin_count}",
            f"follow_up_rate: {follow_up_rate}",
            "---",
        ]
    )


def _match(pattern: str, body: str) -> str | None:
    found = re.search(pattern, body, flags=re.MULTILINE)
    return found.group(1).strip() if found else None


def parse_issue_baseline(body: str | None) -> IssueBaseline:
    """Read baseline numbers from the metadata block, else from the summary lines."""
    text = body or ""
    rate = _match(r"^follow_up_rate:\s*(\d+)", text) or _match(
        r"Follow-up Rate:\s*\*\*(\d+)%\*\*", text
    )
    count = _match(r"^origin_count:\s*(\d+)", text) or _match(r"Origin Count:\s*(\d+)", text)
    window = _match(r"^baseline_window_days:\s*(\d+)", text)
    return IssueBaseline(
        lesson_slug=_match(r"^lesson_slug:\s*(\S+)", text),
        hint_type=_match(r"^hint_type:\s*(\S+)", text),
        baseline_window_days=int(window) if window else DEFAULT_BASELINE_WINDOW_DAYS,
        baseline_snapshot_at_utc=_match(r"^baseline_snapshot_at_utc:\s*(\S+)", text),
        origin_count=int(count) if count else 0,
        follow_up_rate=int(rate) if rate else 0,
    )


def parse_lesson_slug_from_title(title: str) -> str | None:
    found = re.search(r"\(([^()]+)\)\s*-\s*\S+\s*$", title)
    return found.group(1) if found else None


def build_evaluation_marker(lesson_slug: str, issue_number: int, window_days: int) -> str:
    return _EVALUATION_MARKER.format(slug=lesson_slug, issue=issue_number, window=window_days)
