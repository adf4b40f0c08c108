"""Attempt outcome math: aggregate score and per-concept strengths/weaknesses."""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from mastery_engine.learning_engine.constants import (
    STRENGTH_THRESHOLD_PCT,
    WEAKNESS_THRESHOLD_PCT,
)
from mastery_engine.schemas.assessment import AssessmentAnswer


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negatives (12.5 -> 13)."""
    return int(math.floor(value + 0.5))


def percent(part: float, whole: float) -> int:
    """Whole-number percentage, 0 when ``whole`` is not positive."""
    if whole <= 0:
        return 0
    return round_half_up(100 * part / whole)


@dataclass
class ConceptTally:
    correct: int = 0
    total: int = 0

    @property
    def accuracy_pct(self) -> int:
        return percent(self.correct, self.total)


@dataclass
class AttemptOutcome:
    """Scored attempt before anything is persisted."""

    score: int
    earned_weight: float
    total_weight: float
    correct_count: int
    total_count: int
    concepts: dict[str, ConceptTally] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)


def weighted_score(answers: Iterable[AssessmentAnswer]) -> tuple[int, float, float]:
    """
    Compute the aggregate percentage score.

    Returns:
        Tuple of (score_pct, earned_weight, total_weight)
    """
    earned = 0.0
    total = 0.0
    for answer in answers:
        total += answer.weight
        if answer.is_correct:
            earned += answer.weight
    return percent(earned, total), earned, total


def tally_concepts(answers: Iterable[AssessmentAnswer]) -> dict[str, ConceptTally]:
    """Count correct/total answers per concept label (unweighted), in first-seen order."""
    tallies: dict[str, ConceptTally] = {}
    for answer in answers:
        tally = tallies.setdefault(answer.concept, ConceptTally())
        tally.total += 1
        if answer.is_correct:
            tally.correct += 1
    return tallies


def classify_concepts(tallies: dict[str, ConceptTally]) -> tuple[list[str], list[str]]:
    """
    Split concepts into strengths (>= 75%) and weaknesses (<= 50%).

    Concepts strictly between the thresholds are in neither list.
    """
    strengths: list[str] = []
    weaknesses: list[str] = []
    for concept, tally in tallies.items():
        accuracy = tally.accuracy_pct
        if accuracy >= STRENGTH_THRESHOLD_PCT:
            strengths.append(concept)
        elif accuracy <= WEAKNESS_THRESHOLD_PCT:
            weaknesses.append(concept)
    return strengths, weaknesses


def summarize_attempt(answers: Sequence[AssessmentAnswer]) -> AttemptOutcome:
    """Score an answer set and derive strengths/weaknesses."""
    score, earned, total = weighted_score(answers)
    tallies = tally_concepts(answers)
    strengths, weaknesses = classify_concepts(tallies)
    return AttemptOutcome(
        score=score,
        earned_weight=earned,
        total_weight=total,
        correct_count=sum(1 for a in answers if a.is_correct),
        total_count=len(answers),
        concepts=tallies,
        strengths=strengths,
        weaknesses=weaknesses,
    )
