"""Learner profile model."""

from sqlalchemy import Boolean, Column, DateTime, Uuid
from sqlalchemy.sql import func

from mastery_engine.db.base import Base


class LearnerProfile(Base):
    """Learner profile fields the engine touches."""

    __tablename__ = "learner_profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    diagnostic_completed = Column(Boolean, nullable=False, default=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
