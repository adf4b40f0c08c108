"""Recommendation service: loads the catalog slice, profiles modules, ranks siblings."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mastery_engine.core.config import settings
from mastery_engine.core.errors import RecommendationError
from mastery_engine.learning_engine.constants import AssessmentPurpose
from mastery_engine.models.assessment import Assessment, AssessmentQuestion, AssessmentSection
from mastery_engine.models.attempt import AssessmentAttempt, AttemptStatus
from mastery_engine.models.catalog import Module, ModuleStandard, ModuleVisibility, Standard
from mastery_engine.ranking.grades import grade_order
from mastery_engine.ranking.scorer import rank_candidates, score_candidate
from mastery_engine.schemas.recommendation import BaselineProfile, ModuleProfile, Recommendation

logger = logging.getLogger(__name__)

FALLBACK_REASON_PREFIX = "Subject fallback · "


def _fetch_public_module(db: Session, module_id: int) -> Module | None:
    module = db.get(Module, module_id)
    if module is None or module.visibility != ModuleVisibility.PUBLIC.value:
        return None
    return module


def _fetch_siblings(db: Session, current: Module) -> list[Module]:
    """Public modules in the same subject, excluding the current one, in id order."""
    stmt = (
        select(Module)
        .where(
            Module.subject == current.subject,
            Module.visibility == ModuleVisibility.PUBLIC.value,
            Module.id != current.id,
        )
        .order_by(Module.id)
    )
    return list(db.execute(stmt).scalars().all())


def _fetch_standards(db: Session, module_ids: list[int]) -> dict[int, set[tuple[str, str]]]:
    stmt = (
        select(ModuleStandard.module_id, Standard.framework, Standard.code)
        .join(Standard, Standard.id == ModuleStandard.standard_id)
        .where(ModuleStandard.module_id.in_(module_ids))
    )
    standards: dict[int, set[tuple[str, str]]] = {}
    for module_id, framework, code in db.execute(stmt).all():
        standards.setdefault(module_id, set()).add((framework, code))
    return standards


def _fetch_baselines(db: Session, module_ids: list[int]) -> dict[int, BaselineProfile]:
    """Newest BASELINE-purpose assessment per module, with its usage stats."""
    stmt = (
        select(Assessment.id, Assessment.module_id, Assessment.metadata_json)
        .where(Assessment.module_id.in_(module_ids))
        .order_by(Assessment.created_at.desc(), Assessment.id.desc())
    )
    baseline_ids: dict[int, int] = {}
    for assessment_id, module_id, metadata in db.execute(stmt).all():
        if module_id in baseline_ids:
            continue
        if AssessmentPurpose.from_metadata(metadata) is AssessmentPurpose.BASELINE:
            baseline_ids[module_id] = assessment_id

    if not baseline_ids:
        return {}
    assessment_ids = list(baseline_ids.values())

    question_counts = dict(
        db.execute(
            select(AssessmentSection.assessment_id, func.count(AssessmentQuestion.id))
            .join(AssessmentQuestion, AssessmentQuestion.section_id == AssessmentSection.id)
            .where(AssessmentSection.assessment_id.in_(assessment_ids))
            .group_by(AssessmentSection.assessment_id)
        ).all()
    )

    is_completed = AssessmentAttempt.status == AttemptStatus.COMPLETED.value
    attempt_stats = {
        assessment_id: (attempts, completed, average)
        for assessment_id, attempts, completed, average in db.execute(
            select(
                AssessmentAttempt.assessment_id,
                func.count(AssessmentAttempt.id),
                func.count(case((is_completed, AssessmentAttempt.id))),
                func.avg(case((is_completed, AssessmentAttempt.mastery_pct))),
            )
            .where(AssessmentAttempt.assessment_id.in_(assessment_ids))
            .group_by(AssessmentAttempt.assessment_id)
        ).all()
    }

    baselines: dict[int, BaselineProfile] = {}
    for module_id, assessment_id in baseline_ids.items():
        attempts, completed, average = attempt_stats.get(assessment_id, (0, 0, None))
        baselines[module_id] = BaselineProfile(
            assessment_id=assessment_id,
            question_count=question_counts.get(assessment_id, 0),
            attempt_count=attempts,
            completion_rate=completed / attempts if attempts else 0.0,
            average_score=float(average) if average is not None else None,
        )
    return baselines


def build_module_profiles(db: Session, modules: Iterable[Module]) -> dict[int, ModuleProfile]:
    """
    Build standards coverage and baseline profiles for a set of modules.

    Returns:
        Dict mapping module_id -> ModuleProfile (every module gets one)
    """
    module_ids = [module.id for module in modules]
    if not module_ids:
        return {}
    standards = _fetch_standards(db, module_ids)
    baselines = _fetch_baselines(db, module_ids)
    return {
        module_id: ModuleProfile(
            module_id=module_id,
            standards=frozenset(standards.get(module_id, ())),
            baseline=baselines.get(module_id),
        )
        for module_id in module_ids
    }


def _to_recommendation(module: Module, reason: str, fallback: bool, score: float | None = None) -> Recommendation:
    return Recommendation(
        id=module.id,
        slug=module.slug,
        title=module.title or module.topic or module.slug,
        subject=module.subject,
        strand=module.strand,
        topic=module.topic,
        grade_band=module.grade_band,
        summary=module.summary,
        open_track=bool(module.open_track),
        reason=f"{FALLBACK_REASON_PREFIX}{reason}" if fallback else reason,
        fallback=fallback,
        score=score,
    )


def get_recommendations(
    db: Session,
    module_id: int,
    last_score: float | None = None,
    *,
    limit: int | None = None,
) -> list[Recommendation]:
    """
    Recommend next modules after ``module_id``.

    Scored siblings come first (best first); when too few score above the
    cut-off, same-subject modules in ascending grade order fill the list as
    fallbacks. Read-only.

    Args:
        db: Database session
        module_id: Module the learner just worked on
        last_score: Learner's last score there (0-100), if known
        limit: Max recommendations (defaults to ``settings.RECOMMENDATION_LIMIT``)

    Returns:
        Up to ``limit`` recommendations; empty when the module is missing or not public

    Raises:
        RecommendationError: If any catalog read fails
    """
    limit = limit or settings.RECOMMENDATION_LIMIT

    try:
        current = _fetch_public_module(db, module_id)
        if current is None:
            return []

        candidates = _fetch_siblings(db, current)
        profiles = build_module_profiles(db, [current, *candidates])
    except SQLAlchemyError as e:
        logger.error(f"Failed to load recommendation inputs for module {module_id}: {e}", exc_info=True)
        raise RecommendationError(
            f"Failed to load recommendation inputs for module {module_id}: {e}",
            details={"module_id": module_id},
        ) from e

    top = rank_candidates(current, candidates, profiles, last_score, limit)
    recommendations = [
        _to_recommendation(entry.module, entry.reason, fallback=False, score=entry.score) for entry in top
    ]

    if len(recommendations) < limit:
        chosen = {entry.module.id for entry in top}
        # Candidates already hold every public same-subject module except the current one
        fallbacks = sorted(
            (candidate for candidate in candidates if candidate.id not in chosen),
            key=lambda module: (grade_order(module.grade_band), module.id),
        )
        current_profile = profiles[current.id]
        for module in fallbacks[: limit - len(recommendations)]:
            _, reason = score_candidate(current, module, current_profile, profiles[module.id], last_score)
            recommendations.append(_to_recommendation(module, reason, fallback=True))

    logger.info(
        f"Recommendations for module {module_id}: "
        f"{sum(not r.fallback for r in recommendations)} scored, "
        f"{sum(r.fallback for r in recommendations)} fallback"
    )
    return recommendations
