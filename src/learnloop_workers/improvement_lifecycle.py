"""Lifecycle decision for an open improvement issue.

``determine_lifecycle`` is pure. The ``issue:{n}:{DECISION}`` reference ids
form the applied-decision ledger used to make scheduled runs idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
import re

from .issue_templates import REDESIGN_LABEL
from .models import EVENT_LIFECYCLE_APPLIED, LearningEvent
from .time_buckets import DateLike, to_date_string

MIN_EVALUATIONS_FOR_DECISION = 2
LIFECYCLE_SYSTEM_USER = "system"

REASON_INSUFFICIENT_EVALUATIONS = "evaluation count insufficient"
REASON_NO_EFFECT = "no improvement in effectiveness"
REASON_NEGATIVE_ROI = "effective but ROI negative"
REASON_MONITORING = "ongoing monitoring"

_REFERENCE_ID_RE = re.compile(r"^issue:(\d+):(\w+)$")


class LifecycleDecision(StrEnum):
    CONTINUE = "CONTINUE"
    CLOSE_NO_EFFECT = "CLOSE_NO_EFFECT"
    REDESIGN_REQUIRED = "REDESIGN_REQUIRED"


@dataclass(frozen=True)
class ImprovementStatus:
    improvement_id: int
    priority_score: float
    effectiveness_delta: float
    roi: float
    evaluation_count: int
    last_evaluated_at: datetime | None = None


@dataclass(frozen=True)
class LifecycleResult:
    decision: LifecycleDecision
    reason: str
    should_close: bool = False
    should_add_label: bool = False
    label_to_add: str | None = None


def determine_lifecycle(status: ImprovementStatus) -> LifecycleResult:
    if status.evaluation_count < MIN_EVALUATIONS_FOR_DECISION:
        return LifecycleResult(LifecycleDecision.CONTINUE, REASON_INSUFFICIENT_EVALUATIONS)
    # delta == 0 and roi == 0 closes.
    if status.effectiveness_delta <= 0 and status.roi <= 0:
        return LifecycleResult(LifecycleDecision.CLOSE_NO_EFFECT, REASON_NO_EFFECT, should_close=True)
    if status.effectiveness_delta > 0 and status.roi < 0:
        return LifecycleResult(
            LifecycleDecision.REDESIGN_REQUIRED,
            REASON_NEGATIVE_ROI,
            should_add_label=True,
            label_to_add=REDESIGN_LABEL,
        )
    return LifecycleResult(LifecycleDecision.CONTINUE, REASON_MONITORING)


def _status_table(status: ImprovementStatus) -> list[str]:
    return [
        "| Metric | Value |",
        "|--------|-------|",
        f"| Effectiveness delta | {status.effectiveness_delta:.2f} |",
        f"| ROI | {status.roi:.2f} |",
        f"| Evaluations | {status.evaluation_count} |",
    ]


def build_close_comment(status: ImprovementStatus) -> str:
    return "\n".join(
        [
            "## Closing: no measurable effect",
            "",
            f"After {status.evaluation_count} evaluations this improvement shows no gain "
            "in effectiveness and no positive ROI.",
            "",
            *_status_table(status),
            "",
            "Closed automatically by the improvement lifecycle job.",
        ]
    )


def build_redesign_comment(status: ImprovementStatus, result: LifecycleResult) -> str:
    label = result.label_to_add or REDESIGN_LABEL
    return "\n".join(
        [
            "## Redesign required",
            "",
            "Effectiveness improved but the ROI is negative. The approach needs a redesign.",
            "",
            *_status_table(status),
            "",
            f"Label `{label}` added by the improvement lifecycle job.",
        ]
    )


def build_lifecycle_comment(status: ImprovementStatus, result: LifecycleResult) -> str | None:
    match result.decision:
        case LifecycleDecision.CLOSE_NO_EFFECT:
            return build_close_comment(status)
        case LifecycleDecision.REDESIGN_REQUIRED:
            return build_redesign_comment(status, result)
        case LifecycleDecision.CONTINUE:
            return None


def build_lifecycle_reference_id(issue_number: int, decision: LifecycleDecision | str) -> str:
    return f"issue:{issue_number}:{decision}"


def parse_lifecycle_reference_id(reference_id: str) -> tuple[int, LifecycleDecision] | None:
    found = _REFERENCE_ID_RE.match(reference_id.strip())
    if found is None:
        return None
    try:
        return int(found.group(1)), LifecycleDecision(found.group(2))
    except ValueError:
        return None


def should_skip_decision(
    issue_number: int,
    decision: LifecycleDecision,
    applied_reference_ids: set[str] | frozenset[str],
) -> bool:
    """CONTINUE is never recorded; other decisions are applied at most once per issue."""
    if decision is LifecycleDecision.CONTINUE:
        return False
    return build_lifecycle_reference_id(issue_number, decision) in applied_reference_ids


def build_lifecycle_applied_event(
    issue_number: int,
    decision: LifecycleDecision,
    today_utc: DateLike,
) -> LearningEvent:
    return LearningEvent(
        user_id=LIFECYCLE_SYSTEM_USER,
        event_type=EVENT_LIFECYCLE_APPLIED,
        event_date=to_date_string(today_utc),
        reference_id=build_lifecycle_reference_id(issue_number, decision),
    )
