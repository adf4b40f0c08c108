"""Pure recommendation scoring. Deterministic; no I/O."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mastery_engine.learning_engine.outcomes import round_half_up
from mastery_engine.ranking.grades import grade_order
from mastery_engine.schemas.recommendation import ModuleProfile

# Affinity
SAME_STRAND_BONUS = 2.5
SAME_SUBJECT_BONUS = 1.5

# Grade proximity
GRADE_CLOSE_BONUS = 0.5
GRADE_DISTANCE_PENALTY = 0.2  # per grade level beyond +/-1

# Standards
SHARED_STANDARDS_BONUS = 1.5

# Last-score conditioning
REINFORCE_BELOW_SCORE = 70
STRETCH_FROM_SCORE = 90
REINFORCE_BONUS = 2.0
GRADE_OVERSHOOT_PENALTY = -1.0
STRETCH_BONUS = 2.0
GRADE_UNDERSHOOT_PENALTY = -0.5
COVERAGE_BONUS = 0.5

# Baseline availability
BASELINE_BONUS = 1.0
NO_BASELINE_PENALTY = -0.3

# Candidates scoring at or below this are dropped
MIN_SCORE = -2.0

REASON_SEPARATOR = " · "
DEFAULT_REASON = "Explore related learning"
CALIBRATE_REASON = "Calibrate with a quick baseline quiz"


@dataclass
class ScoredCandidate:
    """A candidate module with its score and human-readable reason."""

    module: Any
    score: float
    reason: str


def _focus(module: Any) -> str:
    return module.topic or module.title


def score_candidate(
    current: Any,
    candidate: Any,
    current_profile: ModuleProfile,
    candidate_profile: ModuleProfile,
    last_score: float | None,
) -> tuple[float, str]:
    """
    Score one sibling module against the module the learner is on.

    Args:
        current: Current module (subject, strand, grade_band, topic, title)
        candidate: Candidate module with the same attributes
        current_profile: Standards/baseline profile of the current module
        candidate_profile: Standards/baseline profile of the candidate
        last_score: Learner's last score on the current module (0-100), if any

    Returns:
        Tuple of (score, reason)
    """
    score = 0.0
    reasons: list[str] = []

    if candidate.strand and current.strand and candidate.strand == current.strand:
        score += SAME_STRAND_BONUS
        reasons.append(f"Deepen {current.strand} focus")
    elif candidate.subject == current.subject:
        score += SAME_SUBJECT_BONUS
        reasons.append(f"Continue in {candidate.subject}")

    grade_diff = grade_order(candidate.grade_band) - grade_order(current.grade_band)
    if abs(grade_diff) <= 1:
        score += GRADE_CLOSE_BONUS
    else:
        score -= GRADE_DISTANCE_PENALTY * abs(grade_diff)

    shared = candidate_profile.standards & current_profile.standards
    novel = candidate_profile.standards - current_profile.standards
    if shared:
        score += SHARED_STANDARDS_BONUS
        reasons.append(f"Shares {len(shared)} standard{'s' if len(shared) != 1 else ''}")
    elif novel:
        reasons.append(f"Covers {len(novel)} new standard{'s' if len(novel) != 1 else ''}")

    if last_score is not None and last_score < REINFORCE_BELOW_SCORE:
        if shared:
            score += REINFORCE_BONUS
            reasons.append(f"Reinforce gaps via {_focus(candidate)}")
        if grade_diff > 1:
            score += GRADE_OVERSHOOT_PENALTY
    elif last_score is not None and last_score >= STRETCH_FROM_SCORE:
        if novel:
            score += STRETCH_BONUS
            reasons.append(f"Stretch with {_focus(candidate)}")
        if grade_diff < -1:
            score += GRADE_UNDERSHOOT_PENALTY
    elif candidate_profile.standards:
        score += COVERAGE_BONUS

    baseline = candidate_profile.baseline
    if baseline is not None:
        score += BASELINE_BONUS
        if baseline.attempt_count == 0:
            reasons.append(CALIBRATE_REASON)
        elif baseline.average_score is not None:
            reasons.append(f"Baseline average {round_half_up(baseline.average_score)}%")
    else:
        score += NO_BASELINE_PENALTY

    return score, REASON_SEPARATOR.join(reasons) if reasons else DEFAULT_REASON


def rank_candidates(
    current: Any,
    candidates: list[Any],
    profiles: dict[int, ModuleProfile],
    last_score: float | None,
    limit: int,
) -> list[ScoredCandidate]:
    """
    Score, sort and cut candidates.

    - Sort by score desc; ties keep candidate order (stable sort).
    - Drop candidates scoring <= MIN_SCORE, then keep the top ``limit``.
    """
    current_profile = profiles.get(current.id) or ModuleProfile(module_id=current.id)
    scored: list[ScoredCandidate] = []
    for candidate in candidates:
        candidate_profile = profiles.get(candidate.id) or ModuleProfile(module_id=candidate.id)
        score, reason = score_candidate(current, candidate, current_profile, candidate_profile, last_score)
        scored.append(ScoredCandidate(module=candidate, score=score, reason=reason))

    scored.sort(key=lambda entry: -entry.score)
    return [entry for entry in scored if entry.score > MIN_SCORE][:limit]
