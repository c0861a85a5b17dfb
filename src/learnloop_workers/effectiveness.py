"""Follow-up effectiveness of lessons.

An origin event (lesson viewed / completed, review started) counts as
"followed up" when the same user fires any follow-up event within
``FOLLOW_UP_WINDOW_HOURS`` strictly after it.
"""

from __future__ import annotations

from bisect import bisect_right
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from .models import (
    EVENT_LESSON_COMPLETED,
    EVENT_LESSON_VIEWED,
    EVENT_NEXT_LESSON_OPENED,
    EVENT_NOTE_CREATED,
    EVENT_QUIZ_STARTED,
    EVENT_REVIEW_STARTED,
    LearningEvent,
)

FOLLOW_UP_WINDOW_HOURS = 24

ORIGIN_EVENT_TYPES: tuple[str, ...] = (
    EVENT_LESSON_VIEWED,
    EVENT_LESSON_COMPLETED,
    EVENT_REVIEW_STARTED,
)
FOLLOW_UP_EVENT_TYPES: tuple[str, ...] = (
    EVENT_NEXT_LESSON_OPENED,
    EVENT_REVIEW_STARTED,
    EVENT_QUIZ_STARTED,
    EVENT_NOTE_CREATED,
)


@dataclass(frozen=True)
class FollowUpStats:
    origin_count: int
    followed_up_count: int
    follow_up_rate: int
    follow_up_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class EffectivenessSummary:
    follow_up_rate: int
    completion_rate: int
    origin_count: int
    followed_up_count: int
    top_follow_up_action: str | None
    breakdown: dict[str, FollowUpStats]


def to_percent(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    return round(numerator / denominator * 100)


def _follow_up_index(events: Iterable[LearningEvent]) -> dict[str, list[tuple[datetime, str]]]:
    index: dict[str, list[tuple[datetime, str]]] = defaultdict(list)
    for event in events:
        if event.event_type in FOLLOW_UP_EVENT_TYPES:
            index[event.user_id].append((event.occurred_at(), event.event_type))
    for timeline in index.values():
        timeline.sort(key=lambda item: item[0])
    return index


def follow_up_types_in_window(
    origin: LearningEvent,
    follow_ups: dict[str, list[tuple[datetime, str]]],
    window_hours: int = FOLLOW_UP_WINDOW_HOURS,
) -> set[str]:
    """Distinct follow-up types the user fired in ``(origin, origin + window]``."""
    timeline = follow_ups.get(origin.user_id)
    if not timeline:
        return set()
    started = origin.occurred_at()
    deadline = started + timedelta(hours=window_hours)
    position = bisect_right([moment for moment, _ in timeline], started)
    hits: set[str] = set()
    for moment, event_type in timeline[position:]:
        if moment > deadline:
            break
        hits.add(event_type)
    return hits


def calculate_follow_up_stats(
    origins: Sequence[LearningEvent],
    all_events: Iterable[LearningEvent],
    window_hours: int = FOLLOW_UP_WINDOW_HOURS,
) -> FollowUpStats:
    follow_ups = _follow_up_index(all_events)
    counts: Counter[str] = Counter()
    followed = 0
    for origin in origins:
        hits = follow_up_types_in_window(origin, follow_ups, window_hours)
        if hits:
            followed += 1
            counts.update(hits)
    return FollowUpStats(
        origin_count=len(origins),
        followed_up_count=followed,
        follow_up_rate=to_percent(followed, len(origins)),
        follow_up_counts={event_type: counts.get(event_type, 0) for event_type in FOLLOW_UP_EVENT_TYPES},
    )


def calculate_follow_up_rate(events: Sequence[LearningEvent]) -> int:
    origins = [event for event in events if event.event_type in ORIGIN_EVENT_TYPES]
    return calculate_follow_up_stats(origins, events).follow_up_rate


def calculate_completion_rate(events: Iterable[LearningEvent]) -> int:
    """Distinct (user, lesson) completions over distinct (user, lesson) views."""
    viewed: set[tuple[str, str]] = set()
    completed: set[tuple[str, str]] = set()
    for event in events:
        if event.reference_id is None:
            continue
        key = (event.user_id, event.reference_id)
        if event.event_type == EVENT_LESSON_VIEWED:
            viewed.add(key)
        elif event.event_type == EVENT_LESSON_COMPLETED:
            completed.add(key)
    return to_percent(len(completed & viewed), len(viewed))


def calculate_effectiveness_breakdown(events: Sequence[LearningEvent]) -> dict[str, FollowUpStats]:
    return {
        origin_type: calculate_follow_up_stats(
            [event for event in events if event.event_type == origin_type], events
        )
        for origin_type in ORIGIN_EVENT_TYPES
    }


def get_top_follow_up_action(counts: dict[str, int]) -> str | None:
    best: str | None = None
    for event_type in FOLLOW_UP_EVENT_TYPES:
        count = counts.get(event_type, 0)
        if count > 0 and (best is None or count > counts[best]):
            best = event_type
    return best


def build_effectiveness_summary(events: Sequence[LearningEvent]) -> EffectivenessSummary:
    origins = [event for event in events if event.event_type in ORIGIN_EVENT_TYPES]
    overall = calculate_follow_up_stats(origins, events)
    return EffectivenessSummary(
        follow_up_rate=overall.follow_up_rate,
        completion_rate=calculate_completion_rate(events),
        origin_count=overall.origin_count,
        followed_up_count=overall.followed_up_count,
        top_follow_up_action=get_top_follow_up_action(overall.follow_up_counts),
        breakdown=calculate_effectiveness_breakdown(events),
    )
