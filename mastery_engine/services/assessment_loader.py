"""Assessment loader: picks the diagnostic definition and opens or resumes an attempt."""

import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mastery_engine.core.clock import Clock, utcnow
from mastery_engine.core.config import settings
from mastery_engine.core.errors import (
    AssessmentLoadError,
    AssessmentMisconfigured,
    NoAssessmentConfigured,
    QuestionMissingFromBank,
)
from mastery_engine.learning_engine.constants import (
    DEFAULT_CONCEPT_LABEL,
    DEFAULT_QUESTION_DIFFICULTY,
    DEFAULT_QUESTION_WEIGHT,
    AssessmentPurpose,
)
from mastery_engine.models.assessment import (
    Assessment,
    AssessmentQuestion,
    AssessmentSection,
    QuestionBank,
    QuestionOption,
    QuestionSkill,
    QuestionType,
)
from mastery_engine.models.attempt import AssessmentAttempt, AssessmentResponse, AttemptStatus
from mastery_engine.models.catalog import Module
from mastery_engine.schemas.assessment import (
    AssessmentOption,
    ExistingResponse,
    LoadedAssessment,
    LoadedQuestion,
    Subject,
)

logger = logging.getLogger(__name__)

_SUBJECTS = {"math", "english", "science", "social_studies"}


def normalize_subject(value: Any) -> Subject | None:
    """Map a free-form subject name onto the supported subject keys."""
    if not isinstance(value, str):
        return None
    normalized = "_".join(value.strip().lower().split())
    if normalized == "socialstudies":
        normalized = "social_studies"
    return normalized if normalized in _SUBJECTS else None  # type: ignore[return-value]


def pick_assessment(rows: Sequence[Assessment]) -> tuple[Assessment, AssessmentPurpose] | None:
    """
    Apply the selection policy to candidates ordered newest first.

    Diagnostic/adaptive beats baseline, which beats the newest definition.
    """
    if not rows:
        return None
    tagged = [(row, AssessmentPurpose.from_metadata(row.metadata_json)) for row in rows]
    for purpose in (AssessmentPurpose.DIAGNOSTIC, AssessmentPurpose.BASELINE):
        for row, row_purpose in tagged:
            if row_purpose is purpose:
                return row, row_purpose
    return tagged[0]


def derive_concept(
    question: QuestionBank,
    link_metadata: Mapping[str, Any] | None,
    module_title: str | None,
) -> str:
    """
    Display concept label for a question.

    First tag, else first standard code in the question metadata, else the
    link's module slug, else the module title, else a generic label.
    """
    tags = question.tags if isinstance(question.tags, list) else []
    if tags:
        return str(tags[0]) if tags[0] else DEFAULT_CONCEPT_LABEL

    metadata = question.metadata_json if isinstance(question.metadata_json, Mapping) else {}
    standards = metadata.get("standards")
    if isinstance(standards, list) and standards:
        return str(standards[0])

    link_meta = link_metadata if isinstance(link_metadata, Mapping) else {}
    module_slug = link_meta.get("module_slug")
    if isinstance(module_slug, str):
        return module_slug

    return module_title or DEFAULT_CONCEPT_LABEL


def _fetch_candidates(db: Session, limit: int) -> list[Assessment]:
    stmt = (
        select(Assessment)
        .order_by(Assessment.created_at.desc(), Assessment.id.desc())
        .limit(limit)
    )
    try:
        return list(db.execute(stmt).scalars().all())
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Unable to load assessment definitions: {e}") from e


def _fetch_ordered_links(db: Session, assessment_id: int) -> list[AssessmentQuestion]:
    """Section-question links ordered by section order, then question order."""
    try:
        sections = db.execute(
            select(AssessmentSection.id)
            .where(AssessmentSection.assessment_id == assessment_id)
            .order_by(AssessmentSection.section_order, AssessmentSection.id)
        ).scalars().all()
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Failed to load assessment sections: {e}") from e

    if not sections:
        raise AssessmentMisconfigured(
            "Assessment is missing sections or questions.",
            details={"assessment_id": assessment_id},
        )

    try:
        links = db.execute(
            select(AssessmentQuestion).where(AssessmentQuestion.section_id.in_(sections))
        ).scalars().all()
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Failed to load assessment questions: {e}") from e

    section_rank = {section_id: rank for rank, section_id in enumerate(sections)}
    ordered = sorted(
        links,
        key=lambda link: (section_rank[link.section_id], link.question_order, link.id),
    )

    # A question linked twice keeps its first placement (responses are unique per question)
    seen: set[int] = set()
    unique_links = []
    for link in ordered:
        if link.question_id in seen:
            continue
        seen.add(link.question_id)
        unique_links.append(link)

    if not unique_links:
        raise AssessmentMisconfigured(
            "Assessment does not have any questions configured.",
            details={"assessment_id": assessment_id},
        )
    return unique_links


def _fetch_question_rows(
    db: Session,
    question_ids: list[int],
) -> tuple[dict[int, QuestionBank], dict[int, list[AssessmentOption]], dict[int, list[int]]]:
    """Bulk-load bank rows, options (by option order) and skill links."""
    try:
        bank_rows = db.execute(
            select(QuestionBank).where(QuestionBank.id.in_(question_ids))
        ).scalars().all()
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Failed to load assessment questions: {e}") from e

    try:
        option_rows = db.execute(
            select(QuestionOption)
            .where(QuestionOption.question_id.in_(question_ids))
            .order_by(QuestionOption.question_id, QuestionOption.option_order, QuestionOption.id)
        ).scalars().all()
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Failed to load assessment options: {e}") from e

    try:
        skill_rows = db.execute(
            select(QuestionSkill.question_id, QuestionSkill.skill_id)
            .where(QuestionSkill.question_id.in_(question_ids))
            .order_by(QuestionSkill.question_id, QuestionSkill.skill_id)
        ).all()
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Failed to load question skill mappings: {e}") from e

    bank = {row.id: row for row in bank_rows}

    options: dict[int, list[AssessmentOption]] = defaultdict(list)
    for row in option_rows:
        options[row.question_id].append(
            AssessmentOption(
                id=row.id,
                text=row.content,
                is_correct=bool(row.is_correct),
                feedback=row.feedback,
            )
        )

    skills: dict[int, list[int]] = defaultdict(list)
    for question_id, skill_id in skill_rows:
        skills[question_id].append(skill_id)

    return bank, options, skills


def _build_questions(
    assessment: Assessment,
    links: list[AssessmentQuestion],
    bank: dict[int, QuestionBank],
    options: dict[int, list[AssessmentOption]],
    skills: dict[int, list[int]],
    module_title: str | None,
) -> list[LoadedQuestion]:
    questions = []
    for link in links:
        row = bank.get(link.question_id)
        if row is None:
            raise QuestionMissingFromBank(
                f"Question {link.question_id} missing from bank.",
                details={"assessment_id": assessment.id, "question_id": link.question_id},
            )

        try:
            question_type = QuestionType(row.question_type)
        except ValueError as e:
            raise AssessmentMisconfigured(
                f"Question {row.id} has unsupported type '{row.question_type}'.",
                details={"assessment_id": assessment.id, "question_id": row.id},
            ) from e

        link_meta = link.metadata_json if isinstance(link.metadata_json, Mapping) else {}
        topic_id = link_meta.get("topic_id")

        questions.append(
            LoadedQuestion(
                id=str(link.question_id),
                bank_question_id=link.question_id,
                prompt=row.prompt,
                type=question_type,
                options=options.get(link.question_id, []),
                weight=link.weight if link.weight is not None else DEFAULT_QUESTION_WEIGHT,
                difficulty=row.difficulty if row.difficulty is not None else DEFAULT_QUESTION_DIFFICULTY,
                concept=derive_concept(row, link_meta, module_title),
                skill_ids=skills.get(link.question_id, []),
                subject_id=row.subject_id if row.subject_id is not None else assessment.subject_id,
                topic_id=topic_id if isinstance(topic_id, int) and not isinstance(topic_id, bool) else None,
            )
        )
    return questions


def _latest_attempt(db: Session, learner_id: UUID, assessment_id: int) -> AssessmentAttempt | None:
    stmt = (
        select(AssessmentAttempt)
        .where(
            AssessmentAttempt.learner_id == learner_id,
            AssessmentAttempt.assessment_id == assessment_id,
        )
        .order_by(AssessmentAttempt.attempt_number.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def find_or_create_attempt(
    db: Session,
    learner_id: UUID,
    assessment_id: int,
    now: Clock = utcnow,
) -> AssessmentAttempt:
    """
    Reuse the learner's in-progress attempt or start the next numbered one.

    A concurrent loader may insert the same attempt first; the unique
    constraints reject the loser, which rolls back and re-reads the winner.

    Raises:
        AssessmentLoadError: If the read or insert fails
    """
    for retry in range(2):
        try:
            latest = _latest_attempt(db, learner_id, assessment_id)
            if latest is not None and latest.status == AttemptStatus.IN_PROGRESS.value:
                return latest

            attempt = AssessmentAttempt(
                learner_id=learner_id,
                assessment_id=assessment_id,
                attempt_number=(latest.attempt_number if latest else 0) + 1,
                status=AttemptStatus.IN_PROGRESS.value,
                started_at=now(),
                metadata_json={},
            )
            db.add(attempt)
            db.commit()
            logger.info(
                "Started assessment attempt",
                extra={
                    "learner_id": str(learner_id),
                    "assessment_id": assessment_id,
                    "attempt_id": attempt.id,
                    "attempt_number": attempt.attempt_number,
                },
            )
            return attempt
        except IntegrityError as e:
            db.rollback()
            if retry:
                raise AssessmentLoadError(f"Failed to start assessment attempt: {e}") from e
            logger.info(f"Attempt creation raced for learner {learner_id}; re-reading")
        except SQLAlchemyError as e:
            db.rollback()
            raise AssessmentLoadError(f"Failed to load assessment attempts: {e}") from e

    raise AssessmentLoadError("Attempt could not be created.")  # pragma: no cover


def load_existing_responses(db: Session, attempt_id: int) -> dict[int, ExistingResponse]:
    """Responses already recorded for ``attempt_id``, keyed by bank question id."""
    stmt = select(
        AssessmentResponse.question_id,
        AssessmentResponse.selected_option_id,
        AssessmentResponse.is_correct,
    ).where(AssessmentResponse.attempt_id == attempt_id)
    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as e:
        raise AssessmentLoadError(f"Unable to hydrate previous responses: {e}") from e
    return {
        question_id: ExistingResponse(selected_option_id=option_id, is_correct=is_correct)
        for question_id, option_id, is_correct in rows
    }


def load_diagnostic_assessment(
    db: Session,
    learner_id: UUID,
    *,
    now: Clock = utcnow,
    candidate_limit: int | None = None,
) -> LoadedAssessment:
    """
    Load the assessment a learner should take and open (or resume) their attempt.

    Args:
        db: Database session
        learner_id: Authenticated learner ID
        now: Clock used for a newly created attempt's start time
        candidate_limit: How many recent definitions to consider
            (defaults to ``settings.ASSESSMENT_CANDIDATE_LIMIT``)

    Returns:
        Ordered questions, attempt identity and already-recorded responses

    Raises:
        NoAssessmentConfigured: If no assessment definitions exist
        AssessmentMisconfigured: If the definition has no sections or questions
        QuestionMissingFromBank: If a link references an unknown question
        AssessmentLoadError: If any read or the attempt insert fails
    """
    limit = candidate_limit or settings.ASSESSMENT_CANDIDATE_LIMIT
    picked = pick_assessment(_fetch_candidates(db, limit))
    if picked is None:
        raise NoAssessmentConfigured("No assessments have been configured yet.")
    assessment, purpose = picked

    module: Module | None = None
    if assessment.module_id is not None:
        try:
            module = db.get(Module, assessment.module_id)
        except SQLAlchemyError as e:
            raise AssessmentLoadError(f"Failed to load assessment module: {e}") from e
    module_title = module.title if module else None

    links = _fetch_ordered_links(db, assessment.id)
    question_ids = [link.question_id for link in links]
    bank, options, skills = _fetch_question_rows(db, question_ids)
    questions = _build_questions(assessment, links, bank, options, skills, module_title)

    attempt = find_or_create_attempt(db, learner_id, assessment.id, now=now)
    existing = load_existing_responses(db, attempt.id)

    return LoadedAssessment(
        assessment_id=assessment.id,
        attempt_id=attempt.id,
        attempt_number=attempt.attempt_number,
        title=assessment.title,
        description=assessment.description,
        subject=normalize_subject(module.subject if module else None),
        estimated_duration_minutes=assessment.estimated_duration_minutes,
        module_id=assessment.module_id,
        purpose=purpose,
        questions=questions,
        existing_responses=existing,
    )
