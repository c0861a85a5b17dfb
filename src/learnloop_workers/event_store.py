"""Postgres access for learning events, cached metrics and the lifecycle ledger."""

from __future__ import annotations

from datetime import date
import logging
from typing import Any, Sequence

import psycopg
from psycopg.rows import dict_row
from pydantic import ValidationError

from .improvement_lifecycle import (
    LIFECYCLE_SYSTEM_USER,
    LifecycleDecision,
    build_lifecycle_reference_id,
)
from .models import EVENT_LIFECYCLE_APPLIED, LearningEvent, UserLearningMetric
from .time_buckets import DateLike, to_date_string

logger = logging.getLogger(__name__)


def _rows_to_events(rows: Sequence[dict[str, Any]]) -> list[LearningEvent]:
    events: list[LearningEvent] = []
    for row in rows:
        try:
            events.append(LearningEvent.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed learning event for user %s: %s",
                row.get("user_id"),
                exc.errors()[0]["msg"] if exc.errors() else exc,
                extra={"learnloop_user_id": row.get("user_id")},
            )
    return events


async def fetch_learning_events(
    conn: psycopg.AsyncConnection[Any],
    *,
    start_date: DateLike,
    end_date: DateLike,
    user_id: str | None = None,
    event_types: Sequence[str] | None = None,
    reference_id: str | None = None,
    user_ids: Sequence[str] | None = None,
) -> list[LearningEvent]:
    """Events with ``start_date <= event_date <= end_date``, oldest first."""
    types = list(event_types) if event_types else None
    users = list(user_ids) if user_ids else None
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            """
            SELECT user_id::text AS user_id,
                   event_type,
                   event_date,
                   reference_id,
                   created_at
            FROM learning_events
            WHERE event_date BETWEEN %s AND %s
              AND (%s::text IS NULL OR user_id::text = %s)
              AND (%s::text[] IS NULL OR event_type = ANY(%s::text[]))
              AND (%s::text IS NULL OR reference_id = %s)
              AND (%s::text[] IS NULL OR user_id::text = ANY(%s::text[]))
            ORDER BY event_date ASC, created_at ASC NULLS FIRST
            """,
            (
                date.fromisoformat(to_date_string(start_date)),
                date.fromisoformat(to_date_string(end_date)),
                user_id,
                user_id,
                types,
                types,
                reference_id,
                reference_id,
                users,
                users,
            ),
        )
        rows = await cur.fetchall()
    return _rows_to_events(rows)


async def fetch_user_metrics(
    conn: psycopg.AsyncConnection[Any],
    user_ids: Sequence[str] | None = None,
) -> list[UserLearningMetric]:
    ids = list(user_ids) if user_ids else None
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            """
            SELECT user_id::text AS user_id,
                   streak,
                   last_event_date,
                   weekly_goal,
                   weekly_progress
            FROM user_learning_metrics
            WHERE (%s::text[] IS NULL OR user_id::text = ANY(%s::text[]))
            ORDER BY user_id
            """,
            (ids, ids),
        )
        rows = await cur.fetchall()
    metrics: list[UserLearningMetric] = []
    for row in rows:
        try:
            metrics.append(UserLearningMetric.model_validate(row))
        except ValidationError:
            logger.warning("Skipping malformed metric row for user %s", row.get("user_id"))
    return metrics


async def upsert_user_metric(conn: psycopg.AsyncConnection[Any], metric: UserLearningMetric) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO user_learning_metrics (
                user_id, streak, last_event_date, weekly_goal, weekly_progress, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id) DO UPDATE SET
                streak = EXCLUDED.streak,
                last_event_date = EXCLUDED.last_event_date,
                weekly_goal = EXCLUDED.weekly_goal,
                weekly_progress = EXCLUDED.weekly_progress,
                updated_at = NOW()
            """,
            (
                metric.user_id,
                metric.streak,
                metric.last_event_date,
                metric.weekly_goal,
                metric.weekly_progress,
            ),
        )


async def insert_learning_event(conn: psycopg.AsyncConnection[Any], event: LearningEvent) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO learning_events (user_id, event_type, event_date, reference_id, created_at)
            VALUES (%s, %s, %s, %s, COALESCE(%s, NOW()))
            """,
            (
                event.user_id,
                event.event_type,
                date.fromisoformat(event.event_date),
                event.reference_id,
                event.created_at,
            ),
        )


async def fetch_applied_lifecycle_refs(conn: psycopg.AsyncConnection[Any]) -> set[str]:
    """Reference ids (``issue:{n}:{DECISION}``) of decisions already applied."""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            """
            SELECT DISTINCT reference_id
            FROM learning_events
            WHERE event_type = %s
              AND user_id::text = %s
              AND reference_id IS NOT NULL
            """,
            (EVENT_LIFECYCLE_APPLIED, LIFECYCLE_SYSTEM_USER),
        )
        rows = await cur.fetchall()
    return {str(row["reference_id"]) for row in rows}


async def record_lifecycle_applied(
    conn: psycopg.AsyncConnection[Any],
    *,
    issue_number: int,
    decision: LifecycleDecision,
    today_utc: DateLike,
) -> bool:
    """Append a ``lifecycle_applied`` ledger event; False if it was already there."""
    reference_id = build_lifecycle_reference_id(issue_number, decision)
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO learning_events (user_id, event_type, event_date, reference_id, created_at)
            SELECT %s, %s, %s, %s, NOW()
            WHERE NOT EXISTS (
                SELECT 1
                FROM learning_events
                WHERE event_type = %s
                  AND reference_id = %s
            )
            """,
            (
                LIFECYCLE_SYSTEM_USER,
                EVENT_LIFECYCLE_APPLIED,
                date.fromisoformat(to_date_string(today_utc)),
                reference_id,
                EVENT_LIFECYCLE_APPLIED,
                reference_id,
            ),
        )
        return cur.rowcount > 0
