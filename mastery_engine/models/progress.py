"""Lesson and lesson progress models."""

from enum import Enum as PyEnum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)

from mastery_engine.db.base import Base


class ProgressStatus(str, PyEnum):
    """Lesson progress status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Lesson(Base):
    """Catalog lesson."""

    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)


class LessonSkill(Base):
    """Many-to-many link between lessons and skills."""

    __tablename__ = "lesson_skills"

    lesson_id = Column(
        Integer,
        ForeignKey("lessons.id", ondelete="CASCADE"),
        primary_key=True,
    )
    skill_id = Column(
        Integer,
        ForeignKey("skills.id", ondelete="CASCADE"),
        primary_key=True,
    )

    __table_args__ = (Index("ix_lesson_skills_skill_id", "skill_id"),)


class LessonProgress(Base):
    """Per (learner, lesson) progress. Propagation never lowers mastery or un-completes."""

    __tablename__ = "lesson_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(Uuid(as_uuid=True), nullable=False)
    lesson_id = Column(
        Integer,
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False,
    )

    mastery_pct = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ProgressStatus.NOT_STARTED.value)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("learner_id", "lesson_id", name="uq_lesson_progress_learner_lesson"),
        Index("ix_lesson_progress_learner_id", "learner_id"),
    )
