"""Priority scoring for lesson-improvement candidates.

score = roi_score * impact_weight * strategy_weight

``roi_score`` is the inverse follow-up signal (100 - rate), ``impact_weight``
grows with traffic on a log scale, and ``strategy_weight`` comes from the
injected policy table (difficulty weight times hint weight). Operators read
the breakdown as well as the score, so both are always returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Iterable, Mapping, Sequence

from .config import float_env, int_env, weights_env
from .improvement_hints import HintType, determine_hint
from .lesson_ranking import MIN_SAMPLE_SIZE, LessonRankingRow

PRIORITY_VERSION = "v1"

DEFAULT_STRATEGY_WEIGHTS: dict[str, float] = {
    "beginner": 1.2,
    "intermediate": 1.0,
    "advanced": 0.9,
}
DEFAULT_HINT_WEIGHTS: dict[str, float] = {hint.value: 1.0 for hint in HintType}


@dataclass(frozen=True)
class PrioritySettings:
    strategy_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_STRATEGY_WEIGHTS)
    )
    hint_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_HINT_WEIGHTS))
    default_strategy_weight: float = 1.0
    impact_min: float = 0.5
    impact_max: float = 2.0
    min_sample: int = MIN_SAMPLE_SIZE
    version: str = PRIORITY_VERSION


def priority_settings() -> PrioritySettings:
    return PrioritySettings(
        strategy_weights=weights_env(
            "LEARNLOOP_PRIORITY_STRATEGY_WEIGHTS", DEFAULT_STRATEGY_WEIGHTS
        ),
        hint_weights=weights_env("LEARNLOOP_PRIORITY_HINT_WEIGHTS", DEFAULT_HINT_WEIGHTS),
        impact_min=float_env("LEARNLOOP_PRIORITY_IMPACT_MIN", 0.5, 0.0, 10.0),
        impact_max=float_env("LEARNLOOP_PRIORITY_IMPACT_MAX", 2.0, 0.0, 10.0),
        min_sample=int_env("LEARNLOOP_PRIORITY_MIN_SAMPLE", MIN_SAMPLE_SIZE, 1),
    )


@dataclass(frozen=True)
class PriorityBreakdown:
    roi_score: float
    impact_weight: float
    strategy_weight: float


@dataclass(frozen=True)
class PriorityResult:
    score: float
    breakdown: PriorityBreakdown
    version: str = PRIORITY_VERSION


@dataclass(frozen=True)
class ImprovementPriorityItem:
    lesson_slug: str
    lesson_title: str
    difficulty: str
    origin_count: int
    follow_up_rate: int
    hint_type: HintType | None
    priority: PriorityResult
    is_low_sample: bool


def compute_roi_score(follow_up_rate: float) -> float:
    return float(100 - min(100.0, max(0.0, follow_up_rate)))


def compute_impact_weight(origin_count: int, settings: PrioritySettings | None = None) -> float:
    policy = settings or PrioritySettings()
    raw = math.log10(max(0, origin_count) + 1)
    return min(policy.impact_max, max(policy.impact_min, raw))


def compute_strategy_weight(
    difficulty: str | None,
    hint_type: HintType | str | None,
    settings: PrioritySettings | None = None,
) -> float:
    policy = settings or PrioritySettings()
    level = (difficulty or "").strip().lower()
    difficulty_weight = policy.strategy_weights.get(level, policy.default_strategy_weight)
    hint_weight = 1.0
    if hint_type is not None:
        hint_weight = policy.hint_weights.get(str(hint_type), 1.0)
    return difficulty_weight * hint_weight


def compute_priority_score(
    roi_score: float,
    origin_count: int,
    difficulty: str | None,
    hint_type: HintType | str | None = None,
    settings: PrioritySettings | None = None,
) -> PriorityResult:
    policy = settings or PrioritySettings()
    impact = compute_impact_weight(origin_count, policy)
    strategy = compute_strategy_weight(difficulty, hint_type, policy)
    return PriorityResult(
        score=round(roi_score * impact * strategy, 4),
        breakdown=PriorityBreakdown(
            roi_score=roi_score,
            impact_weight=round(impact, 4),
            strategy_weight=round(strategy, 4),
        ),
        version=policy.version,
    )


def rank_improvements(items: Iterable[ImprovementPriorityItem]) -> list[ImprovementPriorityItem]:
    """Low-sample items last, then score, roi and traffic descending, slug ascending."""
    return sorted(
        items,
        key=lambda item: (
            item.is_low_sample,
            -item.priority.score,
            -item.priority.breakdown.roi_score,
            -item.origin_count,
            item.lesson_slug,
        ),
    )


def can_create_issue(origin_count: int, hint_type: HintType | None, min_sample: int = MIN_SAMPLE_SIZE) -> bool:
    return origin_count >= min_sample and hint_type is not None and hint_type is not HintType.LOW_SAMPLE


def is_actionable(item: ImprovementPriorityItem, min_sample: int = MIN_SAMPLE_SIZE) -> bool:
    return not item.is_low_sample and can_create_issue(item.origin_count, item.hint_type, min_sample)


def build_priority_queue(
    rows: Sequence[LessonRankingRow],
    settings: PrioritySettings | None = None,
) -> list[ImprovementPriorityItem]:
    policy = settings or PrioritySettings()
    items: list[ImprovementPriorityItem] = []
    for row in rows:
        hint = determine_hint(row, policy.min_sample)
        roi = compute_roi_score(row.follow_up_rate)
        items.append(
            ImprovementPriorityItem(
                lesson_slug=row.slug,
                lesson_title=row.title,
                difficulty=row.difficulty,
                origin_count=row.origin_count,
                follow_up_rate=row.follow_up_rate,
                hint_type=hint,
                priority=compute_priority_score(roi, row.origin_count, row.difficulty, hint, policy),
                is_low_sample=row.origin_count < policy.min_sample,
            )
        )
    return rank_improvements(items)


def actionable_items(
    items: Iterable[ImprovementPriorityItem],
    min_sample: int = MIN_SAMPLE_SIZE,
) -> list[ImprovementPriorityItem]:
    return [item for item in items if is_actionable(item, min_sample)]
