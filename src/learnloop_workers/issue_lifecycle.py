"""Idempotent create / comment / label / close operations on improvement issues.

Every public coroutine returns ``IssueResult``: tracker failures are logged
and folded into ``error`` so a batch can keep going. Idempotency is
structural (label sets, a state check before close, evaluation markers),
not lock-based; callers serialize decisions per issue.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Generic, Iterable, TypeVar

from .improvement_hints import HintType
from .improvement_lifecycle import LifecycleDecision, LifecycleResult
from .issue_templates import (
    DEFAULT_BASELINE_WINDOW_DAYS,
    IMPROVEMENT_LABEL,
    IssueBaseline,
    build_evaluation_marker,
    build_issue_body,
    build_issue_labels,
    build_issue_title,
    hint_label,
    parse_issue_baseline,
    parse_lesson_slug_from_title,
)
from .issue_tracker import Issue, IssueComment, IssueTracker, TrackerError
from .lesson_ranking import MIN_SAMPLE_SIZE

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class IssueResult(Generic[T]):
    data: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CreateIssueParams:
    lesson_slug: str
    lesson_title: str
    hint_type: HintType
    follow_up_rate: int
    origin_count: int
    baseline_window_days: int = DEFAULT_BASELINE_WINDOW_DAYS
    baseline_snapshot_at_utc: str | None = None


@dataclass(frozen=True)
class ImprovementTrackerItem:
    issue_number: int
    issue_url: str
    issue_title: str
    lesson_slug: str | None
    baseline: IssueBaseline
    state: str


def has_evaluation_comment(comments: Iterable[IssueComment | str], marker: str) -> bool:
    for comment in comments:
        body = comment if isinstance(comment, str) else comment.body
        if marker in body:
            return True
    return False


class IssueLifecycleOrchestrator:
    def __init__(self, tracker: IssueTracker) -> None:
        self._tracker = tracker

    def _failed(self, operation: str, issue_number: int | None, exc: TrackerError) -> IssueResult:
        logger.warning(
            "Issue %s failed for #%s: %s",
            operation,
            issue_number,
            exc,
            extra={
                "learnloop_issue_operation": operation,
                "learnloop_issue_number": issue_number,
            },
        )
        return IssueResult(error=str(exc))

    async def is_duplicate_issue(self, lesson_slug: str, hint_type: HintType | str) -> IssueResult[bool]:
        """True when an open improvement issue already covers (lesson, hint)."""
        try:
            issues = await self._tracker.list_issues(
                state="open", labels=[IMPROVEMENT_LABEL, hint_label(hint_type)]
            )
        except TrackerError as exc:
            return self._failed("duplicate_check", None, exc)
        needle = f"({lesson_slug})"
        return IssueResult(data=any(needle in issue.title for issue in issues))

    async def create_issue(self, params: CreateIssueParams) -> IssueResult[Issue]:
        if params.origin_count < MIN_SAMPLE_SIZE:
            return IssueResult(
                error=f"origin_count {params.origin_count} is below the minimum sample of {MIN_SAMPLE_SIZE}"
            )
        if params.hint_type is HintType.LOW_SAMPLE:
            return IssueResult(error="LOW_SAMPLE lessons are not eligible for improvement issues")

        try:
            issue = await self._tracker.create_issue(
                title=build_issue_title(params.lesson_title, params.lesson_slug, params.hint_type),
                body=build_issue_body(
                    lesson_title=params.lesson_title,
                    lesson_slug=params.lesson_slug,
                    hint_type=params.hint_type,
                    follow_up_rate=params.follow_up_rate,
                    origin_count=params.origin_count,
                    baseline_window_days=params.baseline_window_days,
                    baseline_snapshot_at_utc=params.baseline_snapshot_at_utc,
                ),
                labels=build_issue_labels(params.lesson_slug, params.hint_type),
            )
        except TrackerError as exc:
            return self._failed("create", None, exc)
        logger.info(
            "Created improvement issue #%s for %s (%s)",
            issue.number,
            params.lesson_slug,
            params.hint_type,
            extra={"learnloop_issue_number": issue.number, "learnloop_lesson_slug": params.lesson_slug},
        )
        return IssueResult(data=issue)

    async def list_improvement_issues(
        self, state: str = "open", label: str = IMPROVEMENT_LABEL
    ) -> IssueResult[list[ImprovementTrackerItem]]:
        try:
            issues = await self._tracker.list_issues(state=state, labels=[label])
        except TrackerError as exc:
            return self._failed(f"list_{state}", None, exc)
        items = []
        for issue in issues:
            baseline = parse_issue_baseline(issue.body)
            items.append(
                ImprovementTrackerItem(
                    issue_number=issue.number,
                    issue_url=issue.url,
                    issue_title=issue.title,
                    lesson_slug=baseline.lesson_slug or parse_lesson_slug_from_title(issue.title),
                    baseline=baseline,
                    state=issue.state,
                )
            )
        return IssueResult(data=items)

    async def list_open_improvement_issues(self) -> IssueResult[list[ImprovementTrackerItem]]:
        return await self.list_improvement_issues("open")

    async def list_closed_improvement_issues(self) -> IssueResult[list[ImprovementTrackerItem]]:
        return await self.list_improvement_issues("closed")

    async def add_label_to_issue(self, issue_number: int, label: str) -> IssueResult[Issue]:
        try:
            issue = await self._tracker.get_issue(issue_number)
            if label in issue.labels:
                return IssueResult(data=issue)
            return IssueResult(data=await self._tracker.add_labels(issue_number, [label]))
        except TrackerError as exc:
            return self._failed("add_label", issue_number, exc)

    async def create_issue_comment(self, issue_number: int, body: str) -> IssueResult[IssueComment]:
        """Post a comment. Not idempotent; dedupe with an evaluation marker."""
        try:
            return IssueResult(data=await self._tracker.create_comment(issue_number, body))
        except TrackerError as exc:
            return self._failed("comment", issue_number, exc)

    async def list_issue_comments(self, issue_number: int) -> IssueResult[list[IssueComment]]:
        try:
            return IssueResult(data=await self._tracker.list_comments(issue_number))
        except TrackerError as exc:
            return self._failed("list_comments", issue_number, exc)

    async def close_issue(self, issue_number: int, comment: str | None = None) -> IssueResult[Issue]:
        """Comment (when given, on every call) and then close.

        A failed comment aborts before the close. Closing an already-closed
        issue succeeds without another state change.
        """
        if comment:
            posted = await self.create_issue_comment(issue_number, comment)
            if not posted.ok:
                return IssueResult(error=posted.error)
        try:
            issue = await self._tracker.get_issue(issue_number)
            if issue.state == "closed":
                return IssueResult(data=issue)
            return IssueResult(data=await self._tracker.set_state(issue_number, "closed"))
        except TrackerError as exc:
            return self._failed("close", issue_number, exc)

    async def post_evaluation_comment(
        self,
        issue_number: int,
        lesson_slug: str,
        window_days: int,
        body: str,
    ) -> IssueResult[IssueComment | None]:
        """Post an evaluation report once per (lesson, issue, window).

        ``data`` is None when a comment carrying the marker already exists.
        """
        marker = build_evaluation_marker(lesson_slug, issue_number, window_days)
        existing = await self.list_issue_comments(issue_number)
        if not existing.ok:
            return IssueResult(error=existing.error)
        if has_evaluation_comment(existing.data or [], marker):
            logger.info("Evaluation already posted on #%s", issue_number)
            return IssueResult(data=None)
        text = body if marker in body else f"{body}\n\n{marker}"
        return await self.create_issue_comment(issue_number, text)

    async def process_lifecycle_decision(
        self,
        issue_number: int,
        result: LifecycleResult,
        comment: str | None = None,
    ) -> IssueResult[Issue | None]:
        """Apply a decision. CONTINUE touches nothing and returns ``data=None``."""
        match result.decision:
            case LifecycleDecision.CONTINUE:
                return IssueResult(data=None)
            case LifecycleDecision.CLOSE_NO_EFFECT:
                return await self.close_issue(issue_number, comment)
            case LifecycleDecision.REDESIGN_REQUIRED:
                if comment:
                    posted = await self.create_issue_comment(issue_number, comment)
                    if not posted.ok:
                        return IssueResult(error=posted.error)
                if result.should_add_label and result.label_to_add:
                    return await self.add_label_to_issue(issue_number, result.label_to_add)
                try:
                    return IssueResult(data=await self._tracker.get_issue(issue_number))
                except TrackerError as exc:
                    return self._failed("get", issue_number, exc)
