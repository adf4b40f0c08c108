"""Core skill mastery math (pure functions, no database access)."""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from mastery_engine.learning_engine.constants import (
    MASTERY_MAX,
    MASTERY_MIN,
    MASTERY_OBSERVED_WEIGHT,
    MASTERY_PRIOR_WEIGHT,
)
from mastery_engine.learning_engine.outcomes import percent, round_half_up
from mastery_engine.schemas.assessment import AssessmentAnswer


@dataclass
class SkillEvidence:
    """Weighted correct/total evidence for one skill from one attempt."""

    correct: float = 0.0
    total: float = 0.0

    @property
    def observed_pct(self) -> int:
        return percent(self.correct, self.total)


def clamp_mastery(value: float) -> float:
    """Clamp to [0, 100]."""
    return max(float(MASTERY_MIN), min(float(MASTERY_MAX), value))


def blend_mastery(prior: float, observed: float) -> int:
    """
    Blend prior mastery with the observed percentage of a new attempt.

    blended = round(clamp(prior * 0.6 + observed * 0.4, 0, 100))

    A learner with no history who scores 100% lands at 40, not 100: one
    attempt moves mastery only part of the way.
    """
    raw = prior * MASTERY_PRIOR_WEIGHT + observed * MASTERY_OBSERVED_WEIGHT
    return round_half_up(clamp_mastery(raw))


def aggregate_skill_evidence(answers: Iterable[AssessmentAnswer]) -> dict[int, SkillEvidence]:
    """
    Accumulate weighted evidence per skill across all answers tagged with it.

    Skills whose total weight is zero carry no evidence and are dropped.
    """
    evidence: dict[int, SkillEvidence] = {}
    for answer in answers:
        # A question lists each skill once even if the link rows repeat
        for skill_id in dict.fromkeys(answer.skill_ids):
            entry = evidence.setdefault(skill_id, SkillEvidence())
            entry.total += answer.weight
            if answer.is_correct:
                entry.correct += answer.weight
    return {skill_id: entry for skill_id, entry in evidence.items() if entry.total > 0}


def build_skill_lesson_map(links: Iterable[tuple[int, int]]) -> dict[int, set[int]]:
    """Adjacency map skill id -> lesson ids from (lesson_id, skill_id) link rows."""
    adjacency: dict[int, set[int]] = defaultdict(set)
    for lesson_id, skill_id in links:
        adjacency[skill_id].add(lesson_id)
    return dict(adjacency)


def lesson_target_mastery(
    skill_lessons: dict[int, set[int]],
    skill_mastery: dict[int, int],
) -> dict[int, int]:
    """
    Target mastery per lesson: the maximum mastery among its updated skills.

    A lesson is as mastered as its best-demonstrated skill.
    """
    targets: dict[int, int] = {}
    for skill_id, mastery in skill_mastery.items():
        for lesson_id in skill_lessons.get(skill_id, ()):
            current = targets.get(lesson_id)
            targets[lesson_id] = mastery if current is None else max(current, mastery)
    return targets
