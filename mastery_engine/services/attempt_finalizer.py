"""Attempt finalization: score, complete, blend mastery, propagate, refresh the plan.

Only completing the attempt is authoritative. Everything after it is
best-effort: a learner must always get their score back even when
telemetry, propagation or the learning-path collaborator fails.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mastery_engine.core.clock import Clock, utcnow
from mastery_engine.core.config import settings
from mastery_engine.core.errors import (
    FINALIZE_USER_MESSAGE,
    AttemptAlreadyCompleted,
    AttemptNotFound,
    EmptyAttempt,
)
from mastery_engine.learning_engine.mastery.service import (
    apply_mastery_evidence,
    propagate_lesson_progress,
)
from mastery_engine.learning_engine.outcomes import AttemptOutcome, summarize_attempt
from mastery_engine.models.attempt import AssessmentAttempt, AttemptStatus
from mastery_engine.schemas.assessment import AssessmentAnswer, AssessmentResult, LoadedAssessment
from mastery_engine.services.collaborators import (
    NullPlanRefresher,
    PlanRefresher,
    ProfileFlagger,
    mark_diagnostic_completed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def complete_attempt(
    db: Session,
    learner_id: UUID,
    assessment: LoadedAssessment,
    outcome: AttemptOutcome,
    started_at: datetime,
    finished_at: datetime,
) -> None:
    """
    Move the attempt to ``completed`` and commit (terminal transition).

    The UPDATE is guarded on ``status = 'in_progress'`` so two concurrent
    finalize calls cannot both succeed; the loser raises before any blending.

    Raises:
        AttemptNotFound: If the attempt does not belong to this learner/assessment
        AttemptAlreadyCompleted: If the attempt was already completed
    """
    attempt_id = assessment.attempt_id
    scope = (
        AssessmentAttempt.id == attempt_id,
        AssessmentAttempt.learner_id == learner_id,
        AssessmentAttempt.assessment_id == assessment.assessment_id,
    )

    row = db.execute(
        select(AssessmentAttempt.status, AssessmentAttempt.metadata_json).where(*scope)
    ).one_or_none()
    if row is None:
        raise AttemptNotFound(
            f"Attempt {attempt_id} not found for learner",
            details={"attempt_id": attempt_id, "assessment_id": assessment.assessment_id},
            user_message=FINALIZE_USER_MESSAGE,
        )
    status, metadata = row
    if status != AttemptStatus.IN_PROGRESS.value:
        raise AttemptAlreadyCompleted(
            f"Attempt {attempt_id} is already completed",
            details={"attempt_id": attempt_id},
            user_message=FINALIZE_USER_MESSAGE,
        )

    merged: dict[str, Any] = dict(metadata or {})
    merged.update(
        {
            "strengths": outcome.strengths,
            "weaknesses": outcome.weaknesses,
            "started_at": started_at.isoformat(),
            "finished_at": finished_at.isoformat(),
        }
    )

    result = db.execute(
        update(AssessmentAttempt)
        .where(*scope, AssessmentAttempt.status == AttemptStatus.IN_PROGRESS.value)
        .values(
            status=AttemptStatus.COMPLETED.value,
            completed_at=finished_at,
            total_score=outcome.earned_weight,
            mastery_pct=outcome.score,
            metadata_json=merged,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        raise AttemptAlreadyCompleted(
            f"Attempt {attempt_id} was completed concurrently",
            details={"attempt_id": attempt_id},
            user_message=FINALIZE_USER_MESSAGE,
        )
    db.commit()


def _best_effort_store_step(db: Session, label: str, step: Callable[[], T]) -> T | None:
    """Run ``step`` in a SAVEPOINT and commit; on failure log, roll back, return None."""
    try:
        with db.begin_nested():
            result = step()
        db.commit()
        return result
    except Exception as e:
        db.rollback()
        logger.warning(f"{label} failed: {e}", exc_info=True)
        return None


def _refresh_plan(plan_refresher: PlanRefresher, learner_id: UUID, limit: int) -> list[str]:
    try:
        messages = plan_refresher(learner_id, limit)
    except Exception as e:
        # Best-effort: the collaborator may fail in any way
        logger.warning(f"Adaptive plan refresh failed for learner {learner_id}: {e}", exc_info=True)
        return []
    return [str(message) for message in messages or []]


def _flag_profile(db: Session, profile_flagger: ProfileFlagger, learner_id: UUID) -> None:
    try:
        with db.begin_nested():
            profile_flagger(db, learner_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to flag assessment completion for learner {learner_id}: {e}", exc_info=True)


def finalize_attempt(
    db: Session,
    learner_id: UUID,
    assessment: LoadedAssessment,
    answers: Sequence[AssessmentAnswer],
    started_at: datetime,
    *,
    plan_refresher: PlanRefresher | None = None,
    profile_flagger: ProfileFlagger = mark_diagnostic_completed,
    plan_suggestion_count: int | None = None,
    now: Clock = utcnow,
) -> AssessmentResult:
    """
    Finalize a completed attempt.

    Steps:
    1. Score: round(100 * correct weight / total weight)
    2. Per-concept accuracy -> strengths (>= 75%) / weaknesses (<= 50%)
    3. Complete the attempt (fatal, guarded against double finalize)
    4. Blend skill mastery and log mastery events (best-effort)
    5. Propagate to lesson progress (best-effort)
    6. Refresh the learning path via ``plan_refresher`` (best-effort)
    7. Flag the learner profile as diagnostic-complete (best-effort)

    Args:
        db: Database session
        learner_id: Authenticated learner ID
        assessment: Loaded assessment carrying the attempt ID
        answers: All answers of the attempt
        started_at: When the learner started
        plan_refresher: Learning-path collaborator (no-op when None)
        profile_flagger: Profile collaborator
        plan_suggestion_count: Suggestions to request (defaults to ``settings.PLAN_SUGGESTION_COUNT``)
        now: Clock for completion and evidence timestamps

    Returns:
        Score, counts, strengths, weaknesses and plan messages

    Raises:
        EmptyAttempt: If ``answers`` is empty
        AttemptNotFound: If the attempt does not belong to the learner/assessment
        AttemptAlreadyCompleted: If the attempt was already finalized
    """
    if not answers:
        raise EmptyAttempt(
            "Cannot finalize assessment without answers.",
            details={"attempt_id": assessment.attempt_id},
        )

    outcome = summarize_attempt(answers)
    finished_at = now()

    try:
        complete_attempt(db, learner_id, assessment, outcome, started_at, finished_at)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to finalize attempt {assessment.attempt_id}: {e}", exc_info=True)
        raise

    blended = _best_effort_store_step(
        db,
        "Mastery update",
        lambda: apply_mastery_evidence(db, learner_id, answers, assessment.attempt_id, finished_at),
    )
    if blended:
        _best_effort_store_step(
            db,
            "Lesson progress propagation",
            lambda: propagate_lesson_progress(db, learner_id, blended, finished_at),
        )

    limit = plan_suggestion_count or settings.PLAN_SUGGESTION_COUNT
    plan_messages = _refresh_plan(plan_refresher or NullPlanRefresher(), learner_id, limit)

    _flag_profile(db, profile_flagger, learner_id)

    logger.info(
        "Finalized assessment attempt",
        extra={
            "learner_id": str(learner_id),
            "attempt_id": assessment.attempt_id,
            "score": outcome.score,
            "correct": outcome.correct_count,
            "total": outcome.total_count,
        },
    )

    return AssessmentResult(
        score=outcome.score,
        correct_count=outcome.correct_count,
        total_count=outcome.total_count,
        strengths=outcome.strengths,
        weaknesses=outcome.weaknesses,
        plan_messages=plan_messages,
    )
