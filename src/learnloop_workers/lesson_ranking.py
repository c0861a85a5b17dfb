"""Per-lesson follow-up metrics and best / worst rankings."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .effectiveness import (
    FOLLOW_UP_EVENT_TYPES,
    ORIGIN_EVENT_TYPES,
    calculate_follow_up_stats,
)
from .models import LearningEvent, LessonInfo

MIN_SAMPLE_SIZE = 5
DEFAULT_RANKING_LIMIT = 10
DEFAULT_DIFFICULTY = "beginner"


@dataclass(frozen=True)
class LessonRankingRow:
    slug: str
    title: str
    difficulty: str
    origin_count: int
    follow_up_count: int
    follow_up_rate: int
    follow_up_counts: dict[str, int] = field(default_factory=dict)
    is_low_sample: bool = False


@dataclass(frozen=True)
class LessonRanking:
    best: list[LessonRankingRow]
    worst: list[LessonRankingRow]
    rows: list[LessonRankingRow]


def is_low_sample(origin_count: int, min_sample: int = MIN_SAMPLE_SIZE) -> bool:
    return origin_count < min_sample


def calculate_lesson_metrics(
    events: Sequence[LearningEvent],
    lessons: Iterable[LessonInfo] = (),
    min_sample: int = MIN_SAMPLE_SIZE,
) -> list[LessonRankingRow]:
    """One row per lesson slug seen on an origin event, in first-seen order."""
    catalog = {lesson.slug: lesson for lesson in lessons}
    origins_by_slug: dict[str, list[LearningEvent]] = defaultdict(list)
    for event in events:
        if event.event_type in ORIGIN_EVENT_TYPES and event.reference_id:
            origins_by_slug[event.reference_id].append(event)

    rows: list[LessonRankingRow] = []
    for slug, origins in origins_by_slug.items():
        stats = calculate_follow_up_stats(origins, events)
        lesson = catalog.get(slug)
        rows.append(
            LessonRankingRow(
                slug=slug,
                title=(lesson.title if lesson and lesson.title else slug),
                difficulty=(lesson.difficulty if lesson else DEFAULT_DIFFICULTY),
                origin_count=stats.origin_count,
                follow_up_count=stats.followed_up_count,
                follow_up_rate=stats.follow_up_rate,
                follow_up_counts={
                    event_type: stats.follow_up_counts.get(event_type, 0)
                    for event_type in FOLLOW_UP_EVENT_TYPES
                },
                is_low_sample=is_low_sample(stats.origin_count, min_sample),
            )
        )
    return rows


def build_lesson_ranking(
    events: Sequence[LearningEvent],
    lessons: Iterable[LessonInfo] = (),
    min_sample: int = MIN_SAMPLE_SIZE,
    limit: int = DEFAULT_RANKING_LIMIT,
) -> LessonRanking:
    rows = calculate_lesson_metrics(events, lessons, min_sample)
    best = sorted(rows, key=lambda row: (-row.follow_up_rate, -row.origin_count))
    worst = sorted(rows, key=lambda row: (row.follow_up_rate, -row.origin_count))
    return LessonRanking(best=best[:limit], worst=worst[:limit], rows=rows)
