"""CLI entry point for one improvement-lifecycle pass."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
import json
import logging
from typing import Sequence

import psycopg

from .config import Config
from .event_store import fetch_applied_lifecycle_refs, record_lifecycle_applied
from .improvement_lifecycle import LifecycleDecision
from .issue_lifecycle import IssueLifecycleOrchestrator
from .issue_tracker import GitHubIssueTracker, TrackerError
from .lifecycle_runner import EventStoreStatusProvider, lifecycle_runner_settings, run_lifecycle
from .logging import setup_logging
from .metrics import get_metrics
from .time_buckets import utc_today

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="learnloop-lifecycle",
        description="Evaluate open lesson-improvement issues and close or relabel them.",
    )
    parser.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Decide without touching the tracker (default: LEARNLOOP_LIFECYCLE_DRY_RUN, true).",
    )
    parser.add_argument(
        "--label",
        default=None,
        help="Issue label that marks improvement issues.",
    )
    parser.add_argument(
        "--max-actions",
        type=int,
        default=None,
        help="Upper bound on tracker actions applied in this run.",
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    config = Config.from_env()
    setup_logging(config.log_format, config.log_level)

    settings = lifecycle_runner_settings()
    if args.dry_run is not None:
        settings = replace(settings, dry_run=bool(args.dry_run))
    if args.label:
        settings = replace(settings, issue_label=args.label.strip())
    if args.max_actions is not None:
        settings = replace(settings, max_actions_per_run=max(1, int(args.max_actions)))

    try:
        tracker = GitHubIssueTracker(
            owner=config.github_owner,
            repo=config.github_repo,
            token=config.github_token,
            api_url=config.github_api_url,
            timeout_seconds=config.tracker_timeout_seconds,
        )
    except TrackerError as exc:
        logger.error("%s", exc)
        return 2

    today = utc_today()
    async with tracker, await psycopg.AsyncConnection.connect(config.database_url) as conn:
        applied_refs = await fetch_applied_lifecycle_refs(conn)

        async def _record(issue_number: int, decision: LifecycleDecision) -> None:
            await record_lifecycle_applied(
                conn, issue_number=issue_number, decision=decision, today_utc=today
            )
            await conn.commit()

        summary = await run_lifecycle(
            IssueLifecycleOrchestrator(tracker),
            EventStoreStatusProvider(conn),
            applied_refs=applied_refs,
            settings=settings,
            record_applied=None if settings.dry_run else _record,
        )

    logger.info("Lifecycle run finished", extra={"learnloop_metrics": get_metrics()})
    print(json.dumps(summary.as_dict(), indent=2, sort_keys=True))
    return 1 if summary.errors else 0


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
