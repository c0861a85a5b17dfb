"""Scheduled lifecycle pass over open improvement issues.

For each open issue: derive an ``ImprovementStatus`` from the event store,
decide, skip decisions already in the applied ledger, then apply through the
orchestrator (unless dry-run). One failing issue never stops the batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging
import os
from typing import Any, Awaitable, Callable, Protocol, Sequence

import psycopg

from . import metrics
from .config import bool_env, int_env
from .evaluation import (
    EVALUATION_WINDOW_DAYS,
    build_effectiveness_delta,
    build_effectiveness_snapshot,
    evaluation_windows,
    parse_timestamp,
)
from .event_store import fetch_learning_events
from .improvement_lifecycle import (
    ImprovementStatus,
    LifecycleDecision,
    build_lifecycle_comment,
    build_lifecycle_reference_id,
    determine_lifecycle,
    should_skip_decision,
)
from .improvement_roi import ROI_WINDOW_DAYS, build_roi_snapshot
from .issue_lifecycle import ImprovementTrackerItem, IssueLifecycleOrchestrator
from .issue_templates import IMPROVEMENT_LABEL
from .models import LearningEvent
from .priority_score import PrioritySettings, compute_priority_score, compute_roi_score

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACTIONS_PER_RUN = 20


@dataclass(frozen=True)
class LifecycleRunnerSettings:
    max_actions_per_run: int = DEFAULT_MAX_ACTIONS_PER_RUN
    issue_label: str = IMPROVEMENT_LABEL
    dry_run: bool = True


def lifecycle_runner_settings() -> LifecycleRunnerSettings:
    return LifecycleRunnerSettings(
        max_actions_per_run=int_env(
            "LEARNLOOP_LIFECYCLE_MAX_ACTIONS", DEFAULT_MAX_ACTIONS_PER_RUN, 1, 500
        ),
        issue_label=(
            os.environ.get("LEARNLOOP_LIFECYCLE_ISSUE_LABEL", "").strip()
            or IMPROVEMENT_LABEL
        ),
        dry_run=bool_env("LEARNLOOP_LIFECYCLE_DRY_RUN", True),
    )


@dataclass(frozen=True)
class IssueOutcome:
    issue_number: int
    decision: LifecycleDecision | None
    reason: str
    action: str
    error: str | None = None


@dataclass
class LifecycleRunSummary:
    dry_run: bool
    processed: int = 0
    applied: int = 0
    closed: int = 0
    redesign: int = 0
    continued: int = 0
    skipped_idempotent: int = 0
    skipped_limit: int = 0
    skipped_no_status: int = 0
    errors: int = 0
    outcomes: list[IssueOutcome] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "processed": self.processed,
            "applied": self.applied,
            "closed": self.closed,
            "redesign": self.redesign,
            "continued": self.continued,
            "skipped_idempotent": self.skipped_idempotent,
            "skipped_limit": self.skipped_limit,
            "skipped_no_status": self.skipped_no_status,
            "errors": self.errors,
            "outcomes": [
                {
                    "issue_number": outcome.issue_number,
                    "decision": outcome.decision.value if outcome.decision else None,
                    "reason": outcome.reason,
                    "action": outcome.action,
                    "error": outcome.error,
                }
                for outcome in self.outcomes
            ],
        }


class StatusProvider(Protocol):
    async def __call__(self, item: ImprovementTrackerItem) -> ImprovementStatus | None: ...


RecordApplied = Callable[[int, LifecycleDecision], Awaitable[None]]


def build_improvement_status(
    item: ImprovementTrackerItem,
    events: Sequence[LearningEvent],
    now: datetime,
    settings: PrioritySettings | None = None,
) -> ImprovementStatus | None:
    """Evaluate one issue against its recorded baseline.

    ``evaluation_count`` is the number of full evaluation windows elapsed
    since the baseline snapshot. The effectiveness delta compares the window
    before the baseline with the latest window; ROI is the change in lesson
    completion rate over the shorter ROI window.
    """
    baseline = item.baseline
    if not item.lesson_slug or not baseline.baseline_snapshot_at_utc:
        return None
    try:
        baseline_at = parse_timestamp(baseline.baseline_snapshot_at_utc)
    except ValueError:
        return None

    current = now.astimezone(UTC)
    elapsed_days = max(0, (current - baseline_at).days)
    evaluation_count = elapsed_days // EVALUATION_WINDOW_DAYS

    (before_start, before_end), _ = evaluation_windows(baseline_at, EVALUATION_WINDOW_DAYS)
    latest = (current - timedelta(days=EVALUATION_WINDOW_DAYS), current)
    delta = build_effectiveness_delta(
        build_effectiveness_snapshot(events, before_start, before_end, item.lesson_slug),
        build_effectiveness_snapshot(events, latest[0], latest[1], item.lesson_slug),
        EVALUATION_WINDOW_DAYS,
    )

    roi_span = timedelta(days=ROI_WINDOW_DAYS)
    roi_before = build_roi_snapshot(events, baseline_at - roi_span, baseline_at, item.lesson_slug)
    roi_after = build_roi_snapshot(events, current - roi_span, current, item.lesson_slug)

    priority = compute_priority_score(
        compute_roi_score(baseline.follow_up_rate),
        baseline.origin_count,
        None,
        baseline.hint_type,
        settings,
    )
    return ImprovementStatus(
        improvement_id=item.issue_number,
        priority_score=priority.score,
        effectiveness_delta=round(delta.delta_rate, 4),
        roi=round(roi_after.completion_rate - roi_before.completion_rate, 4),
        evaluation_count=evaluation_count,
        last_evaluated_at=current,
    )


class EventStoreStatusProvider:
    """Loads the activity of a lesson's learners from Postgres and builds its status."""

    def __init__(
        self,
        conn: psycopg.AsyncConnection[Any],
        *,
        now: datetime | None = None,
        settings: PrioritySettings | None = None,
    ) -> None:
        self._conn = conn
        self._now = now or datetime.now(UTC)
        self._settings = settings

    async def __call__(self, item: ImprovementTrackerItem) -> ImprovementStatus | None:
        if not item.lesson_slug or not item.baseline.baseline_snapshot_at_utc:
            return None
        baseline_at = parse_timestamp(item.baseline.baseline_snapshot_at_utc)
        lookback = max(EVALUATION_WINDOW_DAYS, ROI_WINDOW_DAYS)
        start_date = (baseline_at - timedelta(days=lookback)).date()
        end_date = self._now.date()
        lesson_events = await fetch_learning_events(
            self._conn,
            start_date=start_date,
            end_date=end_date,
            reference_id=item.lesson_slug,
        )
        learners = sorted({event.user_id for event in lesson_events})
        if not learners:
            return build_improvement_status(item, [], self._now, self._settings)
        # Follow-ups usually reference other lessons, so load the learners' whole activity.
        events = await fetch_learning_events(
            self._conn,
            start_date=start_date,
            end_date=end_date,
            user_ids=learners,
        )
        return build_improvement_status(item, events, self._now, self._settings)


async def run_lifecycle(
    orchestrator: IssueLifecycleOrchestrator,
    status_provider: StatusProvider,
    *,
    applied_refs: set[str] | frozenset[str] = frozenset(),
    settings: LifecycleRunnerSettings | None = None,
    record_applied: RecordApplied | None = None,
) -> LifecycleRunSummary:
    policy = settings or LifecycleRunnerSettings()
    summary = LifecycleRunSummary(dry_run=policy.dry_run)
    metrics.record_lifecycle_run()

    listed = await orchestrator.list_improvement_issues("open", policy.issue_label)
    if not listed.ok:
        summary.errors += 1
        metrics.record_lifecycle_error()
        logger.error("Lifecycle run aborted: could not list issues: %s", listed.error)
        return summary

    ledger = set(applied_refs)
    for item in listed.data or []:
        summary.processed += 1
        try:
            status = await status_provider(item)
        except (psycopg.Error, ValueError) as exc:
            summary.errors += 1
            metrics.record_lifecycle_error()
            logger.exception(
                "Failed to build status for issue #%s",
                item.issue_number,
                extra={"learnloop_issue_number": item.issue_number},
            )
            summary.outcomes.append(IssueOutcome(item.issue_number, None, "status failed", "error", str(exc)))
            continue
        if status is None:
            summary.skipped_no_status += 1
            summary.outcomes.append(IssueOutcome(item.issue_number, None, "no baseline metadata", "skipped"))
            continue

        result = determine_lifecycle(status)
        metrics.record_lifecycle_decision(result.decision.value)
        log_extra = {
            "learnloop_issue_number": item.issue_number,
            "learnloop_decision": result.decision.value,
        }

        if result.decision is LifecycleDecision.CONTINUE:
            summary.continued += 1
            summary.outcomes.append(IssueOutcome(item.issue_number, result.decision, result.reason, "none"))
            continue

        if should_skip_decision(item.issue_number, result.decision, ledger):
            summary.skipped_idempotent += 1
            summary.outcomes.append(
                IssueOutcome(item.issue_number, result.decision, result.reason, "already_applied")
            )
            continue

        if summary.applied >= policy.max_actions_per_run:
            summary.skipped_limit += 1
            summary.outcomes.append(IssueOutcome(item.issue_number, result.decision, result.reason, "limit"))
            continue

        if policy.dry_run:
            logger.info("[dry-run] would apply %s to #%s", result.decision, item.issue_number, extra=log_extra)
            summary.applied += 1
            _count_decision(summary, result.decision)
            summary.outcomes.append(IssueOutcome(item.issue_number, result.decision, result.reason, "dry_run"))
            continue

        applied = await orchestrator.process_lifecycle_decision(
            item.issue_number, result, build_lifecycle_comment(status, result)
        )
        if not applied.ok:
            summary.errors += 1
            metrics.record_lifecycle_error()
            summary.outcomes.append(
                IssueOutcome(item.issue_number, result.decision, result.reason, "error", applied.error)
            )
            continue

        ledger.add(build_lifecycle_reference_id(item.issue_number, result.decision))
        if record_applied is not None:
            try:
                await record_applied(item.issue_number, result.decision)
            except psycopg.Error:
                summary.errors += 1
                metrics.record_lifecycle_error()
                logger.exception("Applied %s to #%s but could not record it", result.decision, item.issue_number)
        summary.applied += 1
        _count_decision(summary, result.decision)
        metrics.record_lifecycle_applied()
        logger.info("Applied %s to #%s", result.decision, item.issue_number, extra=log_extra)
        summary.outcomes.append(IssueOutcome(item.issue_number, result.decision, result.reason, "applied"))

    return summary


def _count_decision(summary: LifecycleRunSummary, decision: LifecycleDecision) -> None:
    if decision is LifecycleDecision.CLOSE_NO_EFFECT:
        summary.closed += 1
    elif decision is LifecycleDecision.REDESIGN_REQUIRED:
        summary.redesign += 1
