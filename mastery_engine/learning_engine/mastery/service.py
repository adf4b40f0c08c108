"""Skill mastery blending and lesson progress propagation.

Neither function commits. The finalizer runs each step inside a SAVEPOINT
and decides whether a failure is fatal.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mastery_engine.db.upsert import dialect_insert
from mastery_engine.learning_engine.constants import MASTERY_EVIDENCE_SOURCE
from mastery_engine.learning_engine.mastery.core import (
    aggregate_skill_evidence,
    blend_mastery,
    build_skill_lesson_map,
    lesson_target_mastery,
)
from mastery_engine.models.mastery import MasteryEvent, SkillMastery
from mastery_engine.models.progress import LessonProgress, LessonSkill, ProgressStatus
from mastery_engine.schemas.assessment import AssessmentAnswer

logger = logging.getLogger(__name__)


def get_skill_mastery(db: Session, learner_id: UUID) -> dict[int, int]:
    """Return the learner's current mastery percentage per skill id."""
    stmt = select(SkillMastery.skill_id, SkillMastery.mastery_pct).where(
        SkillMastery.learner_id == learner_id
    )
    return {skill_id: int(pct) for skill_id, pct in db.execute(stmt).all()}


def get_lesson_progress(db: Session, learner_id: UUID) -> list[LessonProgress]:
    """Return the learner's lesson progress rows ordered by lesson id."""
    stmt = (
        select(LessonProgress)
        .where(LessonProgress.learner_id == learner_id)
        .order_by(LessonProgress.lesson_id)
    )
    return list(db.execute(stmt).scalars().all())


def _ensure_mastery_rows(db: Session, learner_id: UUID, skill_ids: list[int]) -> None:
    # A first-seen skill has no row for FOR UPDATE to lock; seed one so a
    # concurrent blend waits on the unique key instead of also reading prior 0
    stmt = dialect_insert(db, SkillMastery).values(
        [
            {"learner_id": learner_id, "skill_id": skill_id, "mastery_pct": 0, "evidence": {}}
            for skill_id in skill_ids
        ]
    )
    db.execute(stmt.on_conflict_do_nothing(index_elements=["learner_id", "skill_id"]))


def _load_priors(db: Session, learner_id: UUID, skill_ids: list[int]) -> dict[int, int]:
    # Row locks keep a concurrent blend for the same learner from reading stale priors
    stmt = (
        select(SkillMastery.skill_id, SkillMastery.mastery_pct)
        .where(
            SkillMastery.learner_id == learner_id,
            SkillMastery.skill_id.in_(skill_ids),
        )
        .with_for_update()
    )
    return {skill_id: int(pct or 0) for skill_id, pct in db.execute(stmt).all()}


def apply_mastery_evidence(
    db: Session,
    learner_id: UUID,
    answers: Sequence[AssessmentAnswer],
    attempt_id: int,
    now: datetime,
) -> dict[int, int]:
    """
    Blend one attempt's skill evidence into the learner's skill mastery.

    For each skill tagged on any answer:
    observed = round(100 * correct_weight / total_weight),
    blended = round(clamp(prior * 0.6 + observed * 0.4, 0, 100)), where prior
    is the stored mastery (0 if none). Missing rows are seeded at 0 and every
    row is locked before priors are read, so concurrent blends for the same
    learner serialize; mastery rows are then upserted by (learner, skill).
    One append-only event per skill records the delta.
    Event logging is best-effort.

    Args:
        db: Database session
        learner_id: Learner ID
        answers: Answers of the completed attempt
        attempt_id: Completed attempt ID (for evidence and events)
        now: Evidence timestamp

    Returns:
        Mapping skill_id -> blended mastery percentage

    Raises:
        SQLAlchemyError: If reading priors or the mastery upsert fails
    """
    evidence = aggregate_skill_evidence(answers)
    if not evidence:
        return {}

    skill_ids = sorted(evidence.keys())
    _ensure_mastery_rows(db, learner_id, skill_ids)
    priors = _load_priors(db, learner_id, skill_ids)

    blended: dict[int, int] = {}
    mastery_records = []
    event_records = []
    for skill_id, entry in evidence.items():
        prior = priors.get(skill_id, 0)
        observed = entry.observed_pct
        value = blend_mastery(prior, observed)
        blended[skill_id] = value

        mastery_records.append(
            {
                "learner_id": learner_id,
                "skill_id": skill_id,
                "mastery_pct": value,
                "last_evidence_at": now,
                "evidence": {
                    "source": MASTERY_EVIDENCE_SOURCE,
                    "attempt_id": attempt_id,
                    "correct": entry.correct,
                    "total": entry.total,
                },
                "updated_at": now,
            }
        )
        event_records.append(
            {
                "learner_id": learner_id,
                "skill_id": skill_id,
                "attempt_id": attempt_id,
                "source": MASTERY_EVIDENCE_SOURCE,
                "delta_pct": value - prior,
                "mastery_pct_after": value,
                "metadata_json": {"correct": entry.correct, "total": entry.total},
                "created_at": now,
            }
        )

    stmt = dialect_insert(db, SkillMastery).values(mastery_records)
    stmt = stmt.on_conflict_do_update(
        index_elements=["learner_id", "skill_id"],
        set_={
            "mastery_pct": stmt.excluded.mastery_pct,
            "last_evidence_at": stmt.excluded.last_evidence_at,
            "evidence": stmt.excluded.evidence,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)

    try:
        with db.begin_nested():
            db.execute(insert(MasteryEvent), event_records)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to log mastery events for attempt {attempt_id}: {e}", exc_info=True)

    logger.debug(
        "Blended skill mastery",
        extra={"learner_id": str(learner_id), "attempt_id": attempt_id, "skills": blended},
    )
    return blended


def propagate_lesson_progress(
    db: Session,
    learner_id: UUID,
    skill_mastery: dict[int, int],
    now: datetime,
) -> dict[int, int]:
    """
    Roll updated skill mastery up into lesson progress.

    Every lesson linked to at least one updated skill gets target mastery =
    the max blended mastery among its updated skills. The upsert is evaluated
    against the stored row in a single statement:

    - mastery_pct = max(existing, target), never lower
    - attempts = existing + 1
    - status stays ``completed`` if it was, else ``in_progress``
    - last_activity_at = now

    Args:
        db: Database session
        learner_id: Learner ID
        skill_mastery: skill_id -> blended mastery from :func:`apply_mastery_evidence`
        now: Activity timestamp

    Returns:
        Mapping lesson_id -> target mastery that was applied

    Raises:
        SQLAlchemyError: If the link read or the upsert fails
    """
    if not skill_mastery:
        return {}

    links_stmt = select(LessonSkill.lesson_id, LessonSkill.skill_id).where(
        LessonSkill.skill_id.in_(list(skill_mastery.keys()))
    )
    skill_lessons = build_skill_lesson_map(db.execute(links_stmt).all())
    targets = lesson_target_mastery(skill_lessons, skill_mastery)
    if not targets:
        return {}

    records = [
        {
            "learner_id": learner_id,
            "lesson_id": lesson_id,
            "mastery_pct": target,
            "attempts": 1,
            "status": ProgressStatus.IN_PROGRESS.value,
            "last_activity_at": now,
        }
        for lesson_id, target in sorted(targets.items())
    ]

    stmt = dialect_insert(db, LessonProgress).values(records)
    stmt = stmt.on_conflict_do_update(
        index_elements=["learner_id", "lesson_id"],
        set_={
            "mastery_pct": case(
                (LessonProgress.mastery_pct > stmt.excluded.mastery_pct, LessonProgress.mastery_pct),
                else_=stmt.excluded.mastery_pct,
            ),
            "attempts": LessonProgress.attempts + 1,
            "status": case(
                (
                    LessonProgress.status == ProgressStatus.COMPLETED.value,
                    ProgressStatus.COMPLETED.value,
                ),
                else_=ProgressStatus.IN_PROGRESS.value,
            ),
            "last_activity_at": stmt.excluded.last_activity_at,
        },
    )
    db.execute(stmt)
    return targets
