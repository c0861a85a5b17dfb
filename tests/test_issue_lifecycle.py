"""Tests for the issue orchestrator against the in-memory tracker."""

import pytest

from learnloop_workers.improvement_hints import HintType
from learnloop_workers.improvement_lifecycle import (
    ImprovementStatus,
    LifecycleDecision,
    LifecycleResult,
    determine_lifecycle,
)
from learnloop_workers.issue_lifecycle import (
    CreateIssueParams,
    IssueLifecycleOrchestrator,
    has_evaluation_comment,
)
from learnloop_workers.issue_templates import build_evaluation_marker
from learnloop_workers.issue_tracker import InMemoryIssueTracker


def _setup():
    tracker = InMemoryIssueTracker()
    return tracker, IssueLifecycleOrchestrator(tracker)


def _params(**overrides) -> CreateIssueParams:
    values = dict(
        lesson_slug="intro",
        lesson_title="Intro",
        hint_type=HintType.CTA_MISSING,
        follow_up_rate=12,
        origin_count=30,
        baseline_snapshot_at_utc="2024-02-01T00:00:00Z",
    )
    values.update(overrides)
    return CreateIssueParams(**values)


@pytest.mark.asyncio
async def test_create_issue_and_detect_duplicate() -> None:
    tracker, orchestrator = _setup()

    assert (await orchestrator.is_duplicate_issue("intro", HintType.CTA_MISSING)).data is False
    created = await orchestrator.create_issue(_params())
    assert created.ok
    assert created.data.title == "[Lesson Improvement] Intro (intro) - CTA_MISSING"
    assert created.data.has_labels(["lesson-improvement", "hint:CTA_MISSING", "lesson:intro"])

    assert (await orchestrator.is_duplicate_issue("intro", HintType.CTA_MISSING)).data is True
    assert (await orchestrator.is_duplicate_issue("intro", HintType.LOW_ENGAGEMENT)).data is False
    assert (await orchestrator.is_duplicate_issue("other", HintType.CTA_MISSING)).data is False


@pytest.mark.asyncio
async def test_create_issue_preconditions() -> None:
    tracker, orchestrator = _setup()

    low = await orchestrator.create_issue(_params(origin_count=4))
    assert not low.ok
    assert "minimum sample" in low.error

    low_sample_hint = await orchestrator.create_issue(_params(hint_type=HintType.LOW_SAMPLE))
    assert not low_sample_hint.ok
    assert tracker.calls == []


@pytest.mark.asyncio
async def test_list_improvement_issues_parses_baseline() -> None:
    tracker, orchestrator = _setup()
    await orchestrator.create_issue(_params())
    tracker.seed_issue(title="Unrelated bug", labels=["bug"])
    tracker.seed_issue(
        title="[Lesson Improvement] Old (old-lesson) - CTA_MISSING",
        labels=["lesson-improvement"],
        state="closed",
    )

    listed = await orchestrator.list_open_improvement_issues()
    assert [item.issue_number for item in listed.data] == [1]
    item = listed.data[0]
    assert item.lesson_slug == "intro"
    assert item.baseline.origin_count == 30
    assert item.baseline.baseline_snapshot_at_utc == "2024-02-01T00:00:00Z"

    closed = await orchestrator.list_closed_improvement_issues()
    assert [item.lesson_slug for item in closed.data] == ["old-lesson"]


@pytest.mark.asyncio
async def test_add_label_is_idempotent() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t", labels=["lesson-improvement"])

    first = await orchestrator.add_label_to_issue(issue.number, "needs-redesign")
    second = await orchestrator.add_label_to_issue(issue.number, "needs-redesign")

    assert first.ok and second.ok
    assert second.data.labels == frozenset({"lesson-improvement", "needs-redesign"})
    assert [op for op, _ in tracker.calls].count("add_labels") == 1


@pytest.mark.asyncio
async def test_close_twice_keeps_single_state_change() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t")

    first = await orchestrator.close_issue(issue.number, "closing")
    second = await orchestrator.close_issue(issue.number)

    assert first.data.state == "closed"
    assert second.data.state == "closed"
    assert second.data.closed_at == first.data.closed_at
    assert [op for op, _ in tracker.calls].count("set_state") == 1


@pytest.mark.asyncio
async def test_close_comment_failure_aborts_close() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t")
    tracker.fail_operations.add("create_comment")

    result = await orchestrator.close_issue(issue.number, "closing")

    assert not result.ok
    assert "create_comment failed" in result.error
    assert (await tracker.get_issue(issue.number)).state == "open"


@pytest.mark.asyncio
async def test_close_failure_leaves_issue_open() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t")
    tracker.fail_operations.add("set_state")

    result = await orchestrator.close_issue(issue.number)

    assert not result.ok
    assert (await tracker.get_issue(issue.number)).state == "open"


@pytest.mark.asyncio
async def test_unknown_issue_is_an_error_result() -> None:
    _, orchestrator = _setup()
    result = await orchestrator.add_label_to_issue(99, "x")
    assert result.data is None
    assert "not found" in result.error


@pytest.mark.asyncio
async def test_evaluation_comment_posted_once() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t")
    marker = build_evaluation_marker("intro", issue.number, 14)

    comments = (await orchestrator.list_issue_comments(issue.number)).data
    assert not has_evaluation_comment(comments, marker)

    first = await orchestrator.post_evaluation_comment(issue.number, "intro", 14, "## Report")
    second = await orchestrator.post_evaluation_comment(issue.number, "intro", 14, "## Report")

    assert first.data.body.endswith(marker)
    assert second.ok and second.data is None
    comments = (await orchestrator.list_issue_comments(issue.number)).data
    assert len(comments) == 1
    assert has_evaluation_comment(comments, marker)
    assert has_evaluation_comment([c.body for c in comments], marker)
    assert not has_evaluation_comment(comments, build_evaluation_marker("intro", issue.number, 28))


@pytest.mark.asyncio
async def test_continue_decision_touches_nothing() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t")

    result = await orchestrator.process_lifecycle_decision(
        issue.number, LifecycleResult(LifecycleDecision.CONTINUE, "ongoing monitoring")
    )

    assert result.ok and result.data is None
    assert tracker.calls == []


@pytest.mark.asyncio
async def test_redesign_decision_comments_then_labels() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t", labels=["lesson-improvement"])
    decision = determine_lifecycle(
        ImprovementStatus(
            improvement_id=issue.number,
            priority_score=10.0,
            effectiveness_delta=0.2,
            roi=-0.1,
            evaluation_count=2,
        )
    )

    result = await orchestrator.process_lifecycle_decision(issue.number, decision, "redesign please")

    assert result.data.state == "open"
    assert "needs-redesign" in result.data.labels
    assert [c.body for c in result.data.comments] == ["redesign please"]
    ops = [op for op, _ in tracker.calls]
    assert ops.index("create_comment") < ops.index("add_labels")


@pytest.mark.asyncio
async def test_close_decision_closes_with_comment() -> None:
    tracker, orchestrator = _setup()
    issue = tracker.seed_issue(title="t")

    result = await orchestrator.process_lifecycle_decision(
        issue.number,
        LifecycleResult(LifecycleDecision.CLOSE_NO_EFFECT, "no improvement in effectiveness", should_close=True),
        "no effect",
    )

    assert result.data.state == "closed"
    assert [c.body for c in result.data.comments] == ["no effect"]
