"""Skill mastery tracking models."""

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
from sqlalchemy.sql import func

from mastery_engine.db.base import Base, JSONType


class SkillMastery(Base):
    """Per (learner, skill) mastery percentage. Written only by the blending step."""

    __tablename__ = "skill_mastery"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(Uuid(as_uuid=True), nullable=False)
    skill_id = Column(
        Integer,
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )

    mastery_pct = Column(Integer, nullable=False, default=0)  # 0..100
    last_evidence_at = Column(DateTime(timezone=True), nullable=True)
    evidence = Column(JSONType, nullable=False, default=dict)  # {source, attempt_id, correct, total}

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("learner_id", "skill_id", name="uq_skill_mastery_learner_skill"),
        Index("ix_skill_mastery_learner_id", "learner_id"),
    )


class MasteryEvent(Base):
    """Mastery change log.

    IMPORTANT: This is an append-only table. Do NOT update or delete events.
    """

    __tablename__ = "mastery_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(Uuid(as_uuid=True), nullable=False)
    skill_id = Column(
        Integer,
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )
    attempt_id = Column(
        Integer,
        ForeignKey("assessment_attempts.id", ondelete="SET NULL"),
        nullable=True,
    )
    source = Column(String(64), nullable=False)
    delta_pct = Column(Integer, nullable=False)
    mastery_pct_after = Column(Integer, nullable=False)
    metadata_json = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_mastery_events_learner_skill", "learner_id", "skill_id"),)
