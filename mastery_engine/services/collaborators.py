"""Outbound collaborators invoked after an attempt is finalized.

Both are best-effort: the finalizer logs their failures and carries on.
"""

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from mastery_engine.models.learner import LearnerProfile

logger = logging.getLogger(__name__)


class PlanRefresher(Protocol):
    """Refreshes a learner's learning path from next-lesson suggestions."""

    def __call__(self, learner_id: UUID, limit: int) -> list[str]:
        """Return user-facing plan messages."""
        ...


class ProfileFlagger(Protocol):
    """Marks a learner profile as having completed a diagnostic."""

    def __call__(self, db: Session, learner_id: UUID) -> None: ...


class NullPlanRefresher:
    """Plan refresher used when no learning-path service is wired in."""

    def __call__(self, learner_id: UUID, limit: int) -> list[str]:
        return []


def mark_diagnostic_completed(db: Session, learner_id: UUID) -> None:
    """Set ``diagnostic_completed`` on the learner profile (no-op without a profile row)."""
    result = db.execute(
        update(LearnerProfile)
        .where(LearnerProfile.id == learner_id)
        .values(diagnostic_completed=True)
    )
    if result.rowcount == 0:
        logger.info(f"No learner profile to flag for {learner_id}")
