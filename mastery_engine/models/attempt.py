"""Assessment attempt and response models."""

from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.sql import func

from mastery_engine.db.base import Base, JSONType


class AttemptStatus(str, PyEnum):
    """Attempt lifecycle status. COMPLETED is terminal."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AssessmentAttempt(Base):
    """One learner's pass through an assessment definition."""

    __tablename__ = "assessment_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(Uuid(as_uuid=True), nullable=False)
    assessment_id = Column(
        Integer,
        ForeignKey("assessments.id", ondelete="CASCADE"),
        nullable=False,
    )
    attempt_number = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS.value)

    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Scoring (written at finalize)
    total_score = Column(Float, nullable=True)  # earned weight
    mastery_pct = Column(Integer, nullable=True)  # 0..100

    # {last_question_id, last_answered_at, strengths, weaknesses, started_at, finished_at}
    metadata_json = Column("metadata", JSONType, nullable=False, default=dict)

    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "learner_id", "assessment_id", "attempt_number", name="uq_assessment_attempt_number"
        ),
        # At most one open attempt per (learner, assessment)
        Index(
            "uq_assessment_attempts_one_in_progress",
            "learner_id",
            "assessment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_assessment_attempts_learner_assessment", "learner_id", "assessment_id"),
    )


class AssessmentResponse(Base):
    """Learner answer to one question within an attempt (one row per question)."""

    __tablename__ = "assessment_responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(
        Integer,
        ForeignKey("assessment_attempts.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id = Column(Integer, ForeignKey("question_bank.id"), nullable=False)

    selected_option_id = Column(Integer, ForeignKey("question_options.id"), nullable=True)  # null = skipped
    response_content = Column(JSONType, nullable=True)  # {"text": ...}
    is_correct = Column(Boolean, nullable=False, default=False)
    score = Column(Float, nullable=False, default=0)
    time_spent_seconds = Column(Integer, nullable=False, default=1)
    answered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_assessment_response"),
        Index("ix_assessment_responses_attempt_id", "attempt_id"),
    )
