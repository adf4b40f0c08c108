"""Assessment definition models (read-only to the engine)."""

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
    Text,
)
from sqlalchemy.sql import func

from mastery_engine.db.base import Base, JSONType


class QuestionType(str, PyEnum):
    """Question bank entry type."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    FILL_BLANK = "fill_blank"


class Assessment(Base):
    """Published assessment definition."""

    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subject_id = Column(Integer, nullable=True)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="SET NULL"), nullable=True)
    estimated_duration_minutes = Column(Integer, nullable=True)

    # Purpose flags live here: {"purpose": "diagnostic"}, {"is_adaptive": true}, ...
    metadata_json = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_assessments_created_at", "created_at"),
        Index("ix_assessments_module_id", "module_id"),
    )


class AssessmentSection(Base):
    """Ordered section of an assessment."""

    __tablename__ = "assessment_sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assessment_id = Column(
        Integer,
        ForeignKey("assessments.id", ondelete="CASCADE"),
        nullable=False,
    )
    title = Column(String(255), nullable=True)
    section_order = Column(Integer, nullable=False, default=1)

    __table_args__ = (Index("ix_assessment_sections_assessment_id", "assessment_id"),)


class AssessmentQuestion(Base):
    """Link placing a bank question into a section, with weight and explicit order."""

    __tablename__ = "assessment_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(
        Integer,
        ForeignKey("assessment_sections.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id = Column(Integer, ForeignKey("question_bank.id"), nullable=False)
    question_order = Column(Integer, nullable=False)
    weight = Column(Float, nullable=True)  # null = 1
    metadata_json = Column("metadata", JSONType, nullable=True)  # {module_slug, topic_id}

    __table_args__ = (
        Index("ix_assessment_questions_section_id", "section_id"),
        Index("ix_assessment_questions_question_id", "question_id"),
    )


class QuestionBank(Base):
    """Question bank entry."""

    __tablename__ = "question_bank"

    id = Column(Integer, primary_key=True, autoincrement=True)
    prompt = Column(Text, nullable=False)
    question_type = Column(String(32), nullable=False, default=QuestionType.MULTIPLE_CHOICE.value)
    difficulty = Column(Integer, nullable=True)
    solution_explanation = Column(Text, nullable=True)
    tags = Column(JSONType, nullable=True)  # ["fractions", ...]
    metadata_json = Column("metadata", JSONType, nullable=True)  # {standards: [...]}
    subject_id = Column(Integer, nullable=True)


class QuestionOption(Base):
    """Answer option for a bank question."""

    __tablename__ = "question_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(
        Integer,
        ForeignKey("question_bank.id", ondelete="CASCADE"),
        nullable=False,
    )
    option_order = Column(Integer, nullable=False, default=1)
    content = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    feedback = Column(Text, nullable=True)

    __table_args__ = (Index("ix_question_options_question_id", "question_id"),)


class Skill(Base):
    """Skill a question can provide evidence for."""

    __tablename__ = "skills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)


class QuestionSkill(Base):
    """Many-to-many link between bank questions and skills."""

    __tablename__ = "question_skills"

    question_id = Column(
        Integer,
        ForeignKey("question_bank.id", ondelete="CASCADE"),
        primary_key=True,
    )
    skill_id = Column(
        Integer,
        ForeignKey("skills.id", ondelete="CASCADE"),
        primary_key=True,
    )

    __table_args__ = (Index("ix_question_skills_skill_id", "skill_id"),)
