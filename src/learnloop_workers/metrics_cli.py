"""CLI for per-user metric refresh and the admin / nudge reports."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Sequence

import psycopg

from .admin_metrics import DEFAULT_LEADERBOARD_LIMIT, AdminPeriod
from .config import Config
from .logging import setup_logging
from .metrics import get_metrics
from .metrics_jobs import load_admin_report, nudge_user, refresh_user_metrics
from .time_buckets import to_date_string, utc_today

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="learnloop-metrics",
        description="Refresh cached learning metrics and print admin or per-user reports.",
    )
    parser.add_argument(
        "--today", type=to_date_string, default=None, help="UTC day to evaluate (default: today)."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    refresh = commands.add_parser("refresh", help="Rebuild user_learning_metrics rows.")
    refresh.add_argument(
        "--lookback-days",
        type=int,
        default=None,
        help="Days of events to rebuild from (default: LEARNLOOP_METRICS_LOOKBACK_DAYS, 90).",
    )
    refresh.add_argument("--user", action="append", dest="users", help="Limit to a user id (repeatable).")

    admin = commands.add_parser("admin-report", help="Print the operator dashboard aggregates.")
    admin.add_argument(
        "--period",
        choices=[period.value for period in AdminPeriod],
        default=AdminPeriod.LAST_7_DAYS.value,
    )
    admin.add_argument("--limit", type=int, default=DEFAULT_LEADERBOARD_LIMIT)

    nudge = commands.add_parser("nudge", help="Print a user's habit score and intervention.")
    nudge.add_argument("user_id")
    nudge.add_argument(
        "--record",
        action="store_true",
        help="Log an intervention_shown event for rescue and catch-up nudges.",
    )
    return parser


async def _execute(conn: psycopg.AsyncConnection[Any], args: argparse.Namespace, today: str) -> dict[str, Any]:
    if args.command == "refresh":
        refreshed = await refresh_user_metrics(
            conn,
            today_utc=today,
            lookback_days=max(1, args.lookback_days) if args.lookback_days else None,
            user_ids=args.users,
        )
        return {"today": today, "refreshed": len(refreshed)}
    if args.command == "admin-report":
        report = await load_admin_report(
            conn, period=args.period, today_utc=today, limit=max(0, args.limit)
        )
        return report.as_dict()
    nudge = await nudge_user(conn, args.user_id, today_utc=today, record=args.record)
    return nudge.as_dict()


async def _run(args: argparse.Namespace) -> int:
    config = Config.from_env()
    setup_logging(config.log_format, config.log_level)
    today = args.today or utc_today()

    try:
        async with await psycopg.AsyncConnection.connect(config.database_url) as conn:
            result = await _execute(conn, args, today)
    except psycopg.Error:
        logger.exception("Metrics %s failed", args.command)
        return 1

    logger.info("Metrics %s finished", args.command, extra={"learnloop_metrics": get_metrics()})
    print(json.dumps(result, indent=2, sort_keys=True, default=str))
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
