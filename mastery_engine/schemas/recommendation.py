"""Pydantic schemas for module profiles and recommendations."""

from pydantic import BaseModel, Field


class BaselineProfile(BaseModel):
    """Usage summary of a module's baseline assessment."""

    assessment_id: int
    question_count: int = 0
    attempt_count: int = 0
    completion_rate: float = Field(0.0, ge=0, le=1)
    average_score: float | None = None


class ModuleProfile(BaseModel):
    """Standards coverage and baseline signal for one module."""

    module_id: int
    standards: frozenset[tuple[str, str]] = Field(
        default_factory=frozenset, description="(framework, code) pairs"
    )
    baseline: BaselineProfile | None = None


class Recommendation(BaseModel):
    """Next-module suggestion."""

    id: int
    slug: str
    title: str
    subject: str
    strand: str | None = None
    topic: str | None = None
    grade_band: str
    summary: str | None = None
    open_track: bool = False
    reason: str
    fallback: bool = False
    score: float | None = None
