"""Pydantic schemas for loaded assessments, answers and results."""

from typing import Literal

from pydantic import BaseModel, Field

from mastery_engine.learning_engine.constants import (
    DEFAULT_QUESTION_DIFFICULTY,
    DEFAULT_QUESTION_WEIGHT,
    AssessmentPurpose,
)
from mastery_engine.models.assessment import QuestionType

Subject = Literal["math", "english", "science", "social_studies"]

# ============================================================================
# Loaded definition
# ============================================================================


class AssessmentOption(BaseModel):
    """Answer option as shown to the learner."""

    id: int
    text: str
    is_correct: bool
    feedback: str | None = None


class LoadedQuestion(BaseModel):
    """Question resolved from a section link plus its bank row, options and skills."""

    id: str = Field(..., description="Display id (bank question id as string)")
    bank_question_id: int
    prompt: str
    type: QuestionType
    options: list[AssessmentOption] = Field(default_factory=list)
    weight: float = Field(DEFAULT_QUESTION_WEIGHT, ge=0)
    difficulty: int = DEFAULT_QUESTION_DIFFICULTY
    concept: str
    skill_ids: list[int] = Field(default_factory=list)
    subject_id: int | None = None
    topic_id: int | None = None

    def option(self, option_id: int | None) -> AssessmentOption | None:
        """Return the option with ``option_id`` or None (skipped / unknown)."""
        if option_id is None:
            return None
        return next((opt for opt in self.options if opt.id == option_id), None)


class ExistingResponse(BaseModel):
    """Previously recorded answer used to resume an attempt."""

    selected_option_id: int | None
    is_correct: bool | None


class LoadedAssessment(BaseModel):
    """Assessment definition plus the learner's open attempt."""

    assessment_id: int
    attempt_id: int
    attempt_number: int
    title: str
    description: str | None = None
    subject: Subject | None = None
    estimated_duration_minutes: int | None = None
    module_id: int | None = None
    purpose: AssessmentPurpose = AssessmentPurpose.UNSPECIFIED
    questions: list[LoadedQuestion]
    existing_responses: dict[int, ExistingResponse] = Field(
        default_factory=dict, description="bank question id -> recorded response"
    )


# ============================================================================
# Answers and results
# ============================================================================


class AssessmentAnswer(BaseModel):
    """One answered question handed to finalization."""

    question_id: str
    bank_question_id: int
    option_id: int | None = None
    is_correct: bool
    time_spent: float = Field(0, ge=0, description="Seconds spent on the question")
    weight: float = Field(DEFAULT_QUESTION_WEIGHT, ge=0)
    concept: str
    skill_ids: list[int] = Field(default_factory=list)

    @classmethod
    def from_question(
        cls,
        question: LoadedQuestion,
        option_id: int | None,
        is_correct: bool,
        time_spent: float = 0,
    ) -> "AssessmentAnswer":
        """Build an answer carrying the question's weight, concept and skills."""
        return cls(
            question_id=question.id,
            bank_question_id=question.bank_question_id,
            option_id=option_id,
            is_correct=is_correct,
            time_spent=time_spent,
            weight=question.weight,
            concept=question.concept,
            skill_ids=list(question.skill_ids),
        )


class AssessmentResult(BaseModel):
    """Outcome of a finalized attempt."""

    score: int = Field(..., ge=0, le=100)
    correct_count: int
    total_count: int
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    plan_messages: list[str] = Field(default_factory=list)
