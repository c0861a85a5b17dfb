"""Map a lesson's follow-up profile to the single most useful improvement hint."""

from __future__ import annotations

from enum import StrEnum

from .lesson_ranking import MIN_SAMPLE_SIZE, LessonRankingRow
from .models import (
    EVENT_NEXT_LESSON_OPENED,
    EVENT_NOTE_CREATED,
    EVENT_QUIZ_STARTED,
    EVENT_REVIEW_STARTED,
)

NEXT_LESSON_WEAK_RATE = 20
LOW_ENGAGEMENT_RATE = 30


class HintType(StrEnum):
    LOW_SAMPLE = "LOW_SAMPLE"
    NEXT_LESSON_WEAK = "NEXT_LESSON_WEAK"
    CTA_MISSING = "CTA_MISSING"
    LOW_ENGAGEMENT = "LOW_ENGAGEMENT"


HINT_MESSAGES: dict[HintType, str] = {
    HintType.LOW_SAMPLE: "Not enough data yet; keep collecting before changing this lesson.",
    HintType.NEXT_LESSON_WEAK: "Learners rarely continue to the next lesson; strengthen the hand-off.",
    HintType.CTA_MISSING: "No review, quiz or note follow-ups; add a clear call to action.",
    HintType.LOW_ENGAGEMENT: "Follow-up engagement is low; revisit the lesson content.",
}


def determine_hint(row: LessonRankingRow, min_sample: int = MIN_SAMPLE_SIZE) -> HintType | None:
    if row.origin_count < min_sample:
        return HintType.LOW_SAMPLE
    counts = row.follow_up_counts
    if row.follow_up_rate < NEXT_LESSON_WEAK_RATE and counts.get(EVENT_NEXT_LESSON_OPENED, 0) == 0:
        return HintType.NEXT_LESSON_WEAK
    cta_follow_ups = (
        counts.get(EVENT_REVIEW_STARTED, 0)
        + counts.get(EVENT_QUIZ_STARTED, 0)
        + counts.get(EVENT_NOTE_CREATED, 0)
    )
    if cta_follow_ups == 0:
        return HintType.CTA_MISSING
    if row.follow_up_rate < LOW_ENGAGEMENT_RATE:
        return HintType.LOW_ENGAGEMENT
    return None


def hint_message(hint: HintType | None) -> str | None:
    return HINT_MESSAGES[hint] if hint is not None else None
