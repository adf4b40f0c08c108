"""Response recorder: scores an answer and upserts it into the open attempt."""

import logging
from datetime import datetime

from sqlalchemy import Select, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mastery_engine.core.clock import Clock, utcnow
from mastery_engine.core.errors import (
    RECORD_USER_MESSAGE,
    AttemptAlreadyCompleted,
    AttemptNotFound,
    ResponseNotSaved,
)
from mastery_engine.db.upsert import dialect_insert
from mastery_engine.learning_engine.constants import MIN_TIME_SPENT_SECONDS
from mastery_engine.learning_engine.outcomes import round_half_up
from mastery_engine.models.attempt import AssessmentAttempt, AssessmentResponse, AttemptStatus
from mastery_engine.schemas.assessment import LoadedQuestion

logger = logging.getLogger(__name__)


def score_response(question: LoadedQuestion, option_id: int | None) -> tuple[bool, float]:
    """
    Score a single answer.

    Correct only when the chosen option is flagged correct on this question;
    a skipped (None) or unknown option is incorrect.

    Returns:
        Tuple of (is_correct, score) where score is the question weight or 0
    """
    option = question.option(option_id)
    is_correct = bool(option and option.is_correct)
    return is_correct, question.weight if is_correct else 0.0


def attempt_status_for_update(attempt_id: int) -> Select:
    """Status read that locks the attempt row until the response upsert commits."""
    return select(AssessmentAttempt.status).where(AssessmentAttempt.id == attempt_id).with_for_update()


def _ensure_open_attempt(db: Session, attempt_id: int) -> None:
    # The row lock is held through the upsert; a concurrent finalize waits on it
    try:
        status = db.execute(attempt_status_for_update(attempt_id)).scalar_one_or_none()
    except SQLAlchemyError as e:
        db.rollback()
        raise ResponseNotSaved(f"Failed to load attempt {attempt_id}: {e}") from e

    if status is None:
        db.rollback()
        raise AttemptNotFound(
            f"Attempt {attempt_id} not found",
            details={"attempt_id": attempt_id},
            user_message=RECORD_USER_MESSAGE,
        )
    if status != AttemptStatus.IN_PROGRESS.value:
        db.rollback()
        raise AttemptAlreadyCompleted(
            f"Attempt {attempt_id} is already completed",
            details={"attempt_id": attempt_id},
            user_message=RECORD_USER_MESSAGE,
        )


def _touch_attempt(db: Session, attempt_id: int, question_id: int, answered_at: datetime) -> None:
    """Best-effort: remember the last answered question on the attempt metadata."""
    try:
        attempt = db.get(AssessmentAttempt, attempt_id)
        if attempt is None:
            return
        metadata = dict(attempt.metadata_json or {})
        metadata["last_question_id"] = question_id
        metadata["last_answered_at"] = answered_at.isoformat()
        db.execute(
            update(AssessmentAttempt)
            .where(
                AssessmentAttempt.id == attempt_id,
                AssessmentAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .values(metadata_json=metadata)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Unable to update attempt progress for attempt {attempt_id}: {e}", exc_info=True)


def record_response(
    db: Session,
    attempt_id: int,
    question: LoadedQuestion,
    option_id: int | None,
    elapsed_seconds: float,
    *,
    now: Clock = utcnow,
) -> bool:
    """
    Record (or overwrite) the learner's answer to one question.

    The response row is keyed by (attempt, question): answering the same
    question again within the attempt replaces the earlier choice.

    Args:
        db: Database session
        attempt_id: Open attempt ID
        question: Question as returned by the loader
        option_id: Selected option ID, or None when skipped (an ID not offered on
            this question is stored as skipped)
        elapsed_seconds: Time spent; stored rounded and floored at 1 second
        now: Clock for the answer timestamp

    Returns:
        Whether the answer is correct

    Raises:
        AttemptNotFound: If the attempt does not exist
        AttemptAlreadyCompleted: If the attempt is completed
        ResponseNotSaved: If the response upsert fails
    """
    _ensure_open_attempt(db, attempt_id)

    is_correct, score = score_response(question, option_id)
    option = question.option(option_id)
    answered_at = now()

    record = {
        "attempt_id": attempt_id,
        "question_id": question.bank_question_id,
        "selected_option_id": option.id if option else None,
        "response_content": {"text": option.text} if option else None,
        "is_correct": is_correct,
        "score": score,
        "time_spent_seconds": max(MIN_TIME_SPENT_SECONDS, round_half_up(max(elapsed_seconds, 0))),
        "answered_at": answered_at,
    }

    stmt = dialect_insert(db, AssessmentResponse).values(record)
    stmt = stmt.on_conflict_do_update(
        index_elements=["attempt_id", "question_id"],
        set_={
            "selected_option_id": stmt.excluded.selected_option_id,
            "response_content": stmt.excluded.response_content,
            "is_correct": stmt.excluded.is_correct,
            "score": stmt.excluded.score,
            "time_spent_seconds": stmt.excluded.time_spent_seconds,
            "answered_at": stmt.excluded.answered_at,
            "updated_at": stmt.excluded.answered_at,
        },
    )

    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save response for attempt {attempt_id}: {e}", exc_info=True)
        raise ResponseNotSaved(
            f"Failed to save response to question {question.bank_question_id}",
            details={"attempt_id": attempt_id, "question_id": question.bank_question_id},
        ) from e

    _touch_attempt(db, attempt_id, question.bank_question_id, answered_at)
    return is_correct
