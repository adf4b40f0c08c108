"""Database models."""

# Import all models here so metadata.create_all sees every table
from mastery_engine.models.assessment import (
    Assessment,
    AssessmentQuestion,
    AssessmentSection,
    QuestionBank,
    QuestionOption,
    QuestionSkill,
    QuestionType,
    Skill,
)
from mastery_engine.models.attempt import AssessmentAttempt, AssessmentResponse, AttemptStatus
from mastery_engine.models.catalog import Module, ModuleStandard, ModuleVisibility, Standard
from mastery_engine.models.learner import LearnerProfile
from mastery_engine.models.mastery import MasteryEvent, SkillMastery
from mastery_engine.models.progress import Lesson, LessonProgress, LessonSkill, ProgressStatus

__all__ = [
    "Assessment",
    "AssessmentSection",
    "AssessmentQuestion",
    "QuestionBank",
    "QuestionOption",
    "QuestionType",
    "Skill",
    "QuestionSkill",
    "AssessmentAttempt",
    "AssessmentResponse",
    "AttemptStatus",
    "Module",
    "ModuleStandard",
    "ModuleVisibility",
    "Standard",
    "LearnerProfile",
    "SkillMastery",
    "MasteryEvent",
    "Lesson",
    "LessonSkill",
    "LessonProgress",
    "ProgressStatus",
]
