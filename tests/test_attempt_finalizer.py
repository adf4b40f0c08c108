"""Tests for attempt finalization: scoring, completion guard, mastery and degraded steps."""

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from mastery_engine.core.errors import AttemptAlreadyCompleted, AttemptNotFound, EmptyAttempt
from mastery_engine.learning_engine.mastery.service import get_lesson_progress, get_skill_mastery
from mastery_engine.models.attempt import AssessmentAttempt, AttemptStatus
from mastery_engine.models.learner import LearnerProfile
from mastery_engine.models.mastery import MasteryEvent
from mastery_engine.schemas.assessment import AssessmentAnswer
from mastery_engine.services import attempt_finalizer
from mastery_engine.services.assessment_loader import load_diagnostic_assessment
from mastery_engine.services.attempt_finalizer import finalize_attempt
from mastery_engine.services.response_recorder import record_response
from tests.helpers.seed import FIXED_NOW, create_learner_profile


class RecordingPlanRefresher:
    def __init__(self, messages=None, error=None):
        self.messages = messages or []
        self.error = error
        self.calls = []

    def __call__(self, learner_id, limit):
        self.calls.append((learner_id, limit))
        if self.error:
            raise self.error
        return self.messages


def _answer_all(db, loaded, clock, correct_flags):
    """Record one answer per question (first option is correct) and build the answer set."""
    answers = []
    for question, correct in zip(loaded.questions, correct_flags):
        option = question.options[0] if correct else question.options[1]
        is_correct = record_response(db, loaded.attempt_id, question, option.id, 5, now=clock)
        answers.append(AssessmentAnswer.from_question(question, option.id, is_correct, time_spent=5))
    return answers


@pytest.fixture
def loaded(db, learner_id, scenario, clock):
    return load_diagnostic_assessment(db, learner_id, now=clock)


class TestFinalizeAttempt:
    def test_full_flow(self, db, learner_id, scenario, loaded, clock):
        create_learner_profile(db, learner_id)
        refresher = RecordingPlanRefresher(messages=["Start with Halves"])
        answers = _answer_all(db, loaded, clock, [True, True, False])

        result = finalize_attempt(
            db, learner_id, loaded, answers, FIXED_NOW, plan_refresher=refresher, now=clock
        )

        # weights 1 + 2 correct of 4
        assert result.score == 75
        assert result.correct_count == 2
        assert result.total_count == 3
        assert result.strengths == ["fractions"]
        assert result.weaknesses == ["decimals"]
        assert result.plan_messages == ["Start with Halves"]
        assert refresher.calls == [(learner_id, 4)]

        db.expire_all()
        attempt = db.get(AssessmentAttempt, loaded.attempt_id)
        assert attempt.status == AttemptStatus.COMPLETED.value
        assert attempt.mastery_pct == 75
        assert attempt.total_score == 3.0
        assert attempt.completed_at is not None
        assert attempt.metadata_json["strengths"] == ["fractions"]
        assert attempt.metadata_json["weaknesses"] == ["decimals"]
        assert attempt.metadata_json["finished_at"] == FIXED_NOW.isoformat()
        # Progress metadata from recording survives completion
        assert attempt.metadata_json["last_question_id"] == scenario.questions[2].id

        # fractions: 3/3 weight -> 40; decimals: 2/3 weight (67%) -> 27
        mastery = get_skill_mastery(db, learner_id)
        assert mastery == {scenario.fractions.id: 40, scenario.decimals.id: 27}
        assert len(db.execute(select(MasteryEvent)).scalars().all()) == 2

        progress = {row.lesson_id: row.mastery_pct for row in get_lesson_progress(db, learner_id)}
        assert progress == {
            scenario.lessons["halves"].id: 40,
            scenario.lessons["mixed"].id: 40,
            scenario.lessons["tenths"].id: 27,
        }

        assert db.get(LearnerProfile, learner_id).diagnostic_completed is True

    def test_new_learner_perfect_score_dampened(self, db, learner_id, scenario, loaded, clock):
        answers = _answer_all(db, loaded, clock, [True, True, True])

        result = finalize_attempt(db, learner_id, loaded, answers, FIXED_NOW, now=clock)

        assert result.score == 100
        assert result.plan_messages == []
        assert get_skill_mastery(db, learner_id) == {scenario.fractions.id: 40, scenario.decimals.id: 40}

    def test_empty_answers(self, db, learner_id, loaded, clock):
        with pytest.raises(EmptyAttempt) as exc:
            finalize_attempt(db, learner_id, loaded, [], FIXED_NOW, now=clock)
        assert exc.value.user_message == "Unable to finish assessment"

        db.expire_all()
        assert db.get(AssessmentAttempt, loaded.attempt_id).status == AttemptStatus.IN_PROGRESS.value

    def test_second_finalize_fails_without_double_blending(self, db, learner_id, scenario, loaded, clock):
        answers = _answer_all(db, loaded, clock, [True, True, True])
        finalize_attempt(db, learner_id, loaded, answers, FIXED_NOW, now=clock)

        with pytest.raises(AttemptAlreadyCompleted) as exc:
            finalize_attempt(db, learner_id, loaded, answers, FIXED_NOW, now=clock)
        assert exc.value.user_message == "Unable to finish assessment"

        assert get_skill_mastery(db, learner_id)[scenario.fractions.id] == 40
        assert len(db.execute(select(MasteryEvent)).scalars().all()) == 2
        assert all(row.attempts == 1 for row in get_lesson_progress(db, learner_id))

    def test_other_learner_cannot_finalize(self, db, learner_id, loaded, clock):
        answers = _answer_all(db, loaded, clock, [True, False, False])
        with pytest.raises(AttemptNotFound) as exc:
            finalize_attempt(db, uuid.uuid4(), loaded, answers, FIXED_NOW, now=clock)
        assert exc.value.user_message == "Unable to finish assessment"

    def test_plan_refresh_failure_is_degraded(self, db, learner_id, loaded, clock):
        refresher = RecordingPlanRefresher(error=RuntimeError("planner down"))
        answers = _answer_all(db, loaded, clock, [True, True, True])

        result = finalize_attempt(
            db, learner_id, loaded, answers, FIXED_NOW, plan_refresher=refresher, plan_suggestion_count=2, now=clock
        )

        assert result.score == 100
        assert result.plan_messages == []
        assert refresher.calls == [(learner_id, 2)]

    def test_profile_flag_failure_is_degraded(self, db, learner_id, scenario, loaded, clock):
        def broken_flagger(db, learner_id):
            raise OperationalError("UPDATE learner_profiles", {}, Exception("locked"))

        answers = _answer_all(db, loaded, clock, [True, True, True])
        result = finalize_attempt(
            db, learner_id, loaded, answers, FIXED_NOW, profile_flagger=broken_flagger, now=clock
        )

        assert result.score == 100
        assert get_skill_mastery(db, learner_id)[scenario.fractions.id] == 40

    def test_mastery_failure_skips_propagation(self, db, learner_id, loaded, clock, monkeypatch):
        def broken_mastery(*args, **kwargs):
            raise OperationalError("INSERT INTO skill_mastery", {}, Exception("disk full"))

        monkeypatch.setattr(attempt_finalizer, "apply_mastery_evidence", broken_mastery)
        answers = _answer_all(db, loaded, clock, [True, False, True])

        result = finalize_attempt(db, learner_id, loaded, answers, FIXED_NOW, now=clock)

        assert result.score == 50
        assert get_skill_mastery(db, learner_id) == {}
        assert get_lesson_progress(db, learner_id) == []
        db.expire_all()
        assert db.get(AssessmentAttempt, loaded.attempt_id).status == AttemptStatus.COMPLETED.value

    def test_propagation_failure_keeps_mastery(self, db, learner_id, scenario, loaded, clock, monkeypatch):
        def broken_propagation(*args, **kwargs):
            raise OperationalError("INSERT INTO lesson_progress", {}, Exception("disk full"))

        monkeypatch.setattr(attempt_finalizer, "propagate_lesson_progress", broken_propagation)
        answers = _answer_all(db, loaded, clock, [True, True, True])

        result = finalize_attempt(db, learner_id, loaded, answers, FIXED_NOW, now=clock)

        assert result.score == 100
        assert get_skill_mastery(db, learner_id)[scenario.decimals.id] == 40
        assert get_lesson_progress(db, learner_id) == []

    def test_unexpected_store_step_error_is_degraded(self, db, learner_id, scenario, loaded, clock, monkeypatch):
        def broken_propagation(*args, **kwargs):
            raise KeyError("lesson")

        monkeypatch.setattr(attempt_finalizer, "propagate_lesson_progress", broken_propagation)
        answers = _answer_all(db, loaded, clock, [True, True, True])

        result = finalize_attempt(db, learner_id, loaded, answers, FIXED_NOW, now=clock)

        assert result.score == 100
        assert get_skill_mastery(db, learner_id)[scenario.fractions.id] == 40
        assert get_lesson_progress(db, learner_id) == []
        db.expire_all()
        assert db.get(AssessmentAttempt, loaded.attempt_id).status == AttemptStatus.COMPLETED.value
