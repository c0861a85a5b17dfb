"""Validated ingestion contracts for learning events and per-user metrics."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

EVENT_LESSON_COMPLETED = "lesson_completed"
EVENT_LESSON_VIEWED = "lesson_viewed"
EVENT_QUIZ_COMPLETED = "quiz_completed"
EVENT_QUIZ_STARTED = "quiz_started"
EVENT_NOTE_UPDATED = "note_updated"
EVENT_NOTE_CREATED = "note_created"
EVENT_REVIEW_STARTED = "review_started"
EVENT_NEXT_LESSON_OPENED = "next_lesson_opened"
EVENT_INTERVENTION_SHOWN = "intervention_shown"
EVENT_INSIGHTS_SHOWN = "insights_shown"
EVENT_LIFECYCLE_APPLIED = "lifecycle_applied"

KNOWN_EVENT_TYPES: frozenset[str] = frozenset(
    {
        EVENT_LESSON_COMPLETED,
        EVENT_LESSON_VIEWED,
        EVENT_QUIZ_COMPLETED,
        EVENT_QUIZ_STARTED,
        EVENT_NOTE_UPDATED,
        EVENT_NOTE_CREATED,
        EVENT_REVIEW_STARTED,
        EVENT_NEXT_LESSON_OPENED,
        EVENT_INTERVENTION_SHOWN,
        EVENT_INSIGHTS_SHOWN,
        EVENT_LIFECYCLE_APPLIED,
    }
)

DEFAULT_WEEKLY_GOAL = 5


def _normalize_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.astimezone(UTC).date().isoformat() if value.tzinfo else value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise ValueError("date must be an ISO YYYY-MM-DD string")
    cleaned = value.strip()[:10]
    return date.fromisoformat(cleaned).isoformat()


class LearningEvent(BaseModel):
    """One append-only learning event; ``event_date`` is the UTC calendar day."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    event_type: str
    event_date: str
    reference_id: str | None = None
    created_at: datetime | None = None

    @field_validator("user_id", "event_type")
    @classmethod
    def non_empty(cls, value: str, info: Any) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError(f"{info.field_name} must not be empty")
        return cleaned

    @field_validator("event_date", mode="before")
    @classmethod
    def normalize_event_date(cls, value: Any) -> str:
        return _normalize_date(value)

    @field_validator("reference_id")
    @classmethod
    def trim_reference(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def occurred_at(self) -> datetime:
        """Event timestamp, falling back to midnight UTC of ``event_date``."""
        if self.created_at is not None:
            return self.created_at
        return datetime.fromisoformat(self.event_date).replace(tzinfo=UTC)


class UserLearningMetric(BaseModel):
    """Derived per-user cache row; rebuilt from events, never authoritative."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    streak: int = Field(default=0, ge=0)
    last_event_date: str | None = None
    weekly_goal: int = Field(default=DEFAULT_WEEKLY_GOAL, ge=0)
    weekly_progress: int = Field(default=0, ge=0)

    @field_validator("last_event_date", mode="before")
    @classmethod
    def normalize_last_event_date(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return _normalize_date(value)


class LessonInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    slug: str
    title: str = ""
    difficulty: str = "beginner"

    @field_validator("difficulty")
    @classmethod
    def lower_difficulty(cls, value: str) -> str:
        return value.strip().lower() or "beginner"
