"""
Deterministic answer scoring.

An answer is compared to its reference answer by token coverage plus a small
length bonus, giving a 0-100 score and a feedback tier. No model calls, so the
same pair always scores the same.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class FeedbackTier(str, Enum):
    STRONG = "strong"
    GOOD = "good"
    PARTIAL = "partial"
    NEEDS_IMPROVEMENT = "needs improvement"


FEEDBACK_MESSAGES = {
    FeedbackTier.STRONG: "Strong, well-aligned answer.",
    FeedbackTier.GOOD: "Good, but add more detail and examples.",
    FeedbackTier.PARTIAL: "Partial coverage. Address missing key points.",
    FeedbackTier.NEEDS_IMPROVEMENT: "Needs improvement. Structure your response and hit core concepts.",
}

# Inclusive lower bounds, highest first.
TIER_THRESHOLDS = (
    (80, FeedbackTier.STRONG),
    (60, FeedbackTier.GOOD),
    (40, FeedbackTier.PARTIAL),
)

COVERAGE_WEIGHT = 0.8
LENGTH_WEIGHT = 0.2
FULL_LENGTH_WORDS = 60

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ScoreRecord:
    score: int
    tier: FeedbackTier

    @property
    def feedback(self) -> str:
        return FEEDBACK_MESSAGES[self.tier]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def reference_tokens(reference: str) -> set[str]:
    return {tok for tok in _TOKEN_SPLIT.split(reference.lower()) if tok}


def word_count(text: str) -> int:
    return len(text.split())


def tier_for(score: int) -> FeedbackTier:
    for lower_bound, tier in TIER_THRESHOLDS:
        if score >= lower_bound:
            return tier
    return FeedbackTier.NEEDS_IMPROVEMENT


def compute_score(answer: Optional[str], reference: Optional[str]) -> int:
    if not answer or not reference:
        return 0
    lowered = answer.lower()
    tokens = reference_tokens(reference)
    if not tokens:
        # Nothing to match against; fall back to answer substance.
        return 60 if len(lowered) > 20 else 30
    hits = sum(1 for tok in tokens if tok in lowered)
    coverage = hits / len(tokens)
    length_boost = min(1.0, word_count(lowered) / FULL_LENGTH_WORDS)
    return round_half_up(100 * (COVERAGE_WEIGHT * coverage + LENGTH_WEIGHT * length_boost))


def score_answer(answer: Optional[str], reference: Optional[str]) -> ScoreRecord:
    score = compute_score(answer, reference)
    return ScoreRecord(score=score, tier=tier_for(score))


def overall_score(scores: Sequence[int]) -> int:
    """Rounded mean of per-item scores. A session always has at least one question."""
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))
