"""Adaptive diagnostic assessment and mastery-propagation engine."""

from mastery_engine.learning_engine.mastery.service import get_lesson_progress, get_skill_mastery
from mastery_engine.ranking.service import get_recommendations
from mastery_engine.services.assessment_loader import load_diagnostic_assessment
from mastery_engine.services.attempt_finalizer import finalize_attempt
from mastery_engine.services.response_recorder import record_response

__version__ = "0.1.0"

__all__ = [
    "finalize_attempt",
    "get_lesson_progress",
    "get_recommendations",
    "get_skill_mastery",
    "load_diagnostic_assessment",
    "record_response",
]
