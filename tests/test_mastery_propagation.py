"""Tests for skill mastery blending and lesson progress propagation against the store."""

import uuid

from sqlalchemy import select

from mastery_engine.learning_engine.mastery import service as mastery_service
from mastery_engine.learning_engine.mastery.service import (
    apply_mastery_evidence,
    get_lesson_progress,
    get_skill_mastery,
    propagate_lesson_progress,
)
from mastery_engine.models.mastery import MasteryEvent, SkillMastery
from mastery_engine.models.progress import LessonProgress, ProgressStatus
from tests.helpers.seed import FIXED_NOW, create_attempt, create_lesson, create_skill, make_answer


class TestApplyMasteryEvidence:
    def test_new_learner_perfect_score_lands_at_forty(self, db, learner_id, scenario):
        attempt = create_attempt(db, learner_id, scenario.assessment)
        skill = scenario.fractions.id
        answers = [make_answer("fractions", True, skill_ids=[skill]), make_answer("fractions", True, skill_ids=[skill])]

        blended = apply_mastery_evidence(db, learner_id, answers, attempt.id, FIXED_NOW)
        db.commit()

        assert blended == {skill: 40}
        assert get_skill_mastery(db, learner_id) == {skill: 40}

        row = db.execute(select(SkillMastery).where(SkillMastery.learner_id == learner_id)).scalar_one()
        assert row.evidence == {
            "source": "diagnostic_assessment",
            "attempt_id": attempt.id,
            "correct": 2.0,
            "total": 2.0,
        }

        event = db.execute(select(MasteryEvent)).scalar_one()
        assert event.delta_pct == 40
        assert event.mastery_pct_after == 40
        assert event.attempt_id == attempt.id
        assert event.metadata_json == {"correct": 2.0, "total": 2.0}

    def test_blends_against_stored_prior(self, db, learner_id, scenario):
        attempt = create_attempt(db, learner_id, scenario.assessment)
        skill = scenario.decimals.id
        db.add(SkillMastery(learner_id=learner_id, skill_id=skill, mastery_pct=50, evidence={}))
        db.commit()

        blended = apply_mastery_evidence(
            db, learner_id, [make_answer("decimals", True, skill_ids=[skill])], attempt.id, FIXED_NOW
        )
        db.commit()

        assert blended == {skill: 70}
        assert get_skill_mastery(db, learner_id) == {skill: 70}
        # Upsert keeps one row per (learner, skill)
        assert len(db.execute(select(SkillMastery)).scalars().all()) == 1
        assert db.execute(select(MasteryEvent.delta_pct)).scalar_one() == 20

    def test_event_logging_failure_does_not_block_mastery(self, db, learner_id, scenario):
        # No such attempt: the event rows violate their foreign key
        skill = scenario.fractions.id
        blended = apply_mastery_evidence(
            db, learner_id, [make_answer("fractions", False, skill_ids=[skill])], 99999, FIXED_NOW
        )
        db.commit()

        assert blended == {skill: 0}
        assert get_skill_mastery(db, learner_id) == {skill: 0}
        assert db.execute(select(MasteryEvent)).scalars().all() == []

    def test_no_skill_evidence_is_a_no_op(self, db, learner_id):
        assert apply_mastery_evidence(db, learner_id, [make_answer("x", True)], 1, FIXED_NOW) == {}

    def test_first_seen_skills_get_rows_before_priors_are_locked(self, db, learner_id, scenario, monkeypatch):
        attempt = create_attempt(db, learner_id, scenario.assessment)
        skills = sorted([scenario.fractions.id, scenario.decimals.id])
        rows_at_lock = []
        real_load_priors = mastery_service._load_priors

        def load_priors(session, learner, skill_ids):
            stmt = select(SkillMastery.skill_id).where(SkillMastery.learner_id == learner)
            rows_at_lock.append(sorted(session.execute(stmt).scalars().all()))
            return real_load_priors(session, learner, skill_ids)

        monkeypatch.setattr(mastery_service, "_load_priors", load_priors)
        answers = [make_answer("mixed", True, skill_ids=skills)]

        blended = apply_mastery_evidence(db, learner_id, answers, attempt.id, FIXED_NOW)
        db.commit()

        assert rows_at_lock == [skills]
        assert blended == {skill: 40 for skill in skills}
        assert sorted(db.execute(select(MasteryEvent.delta_pct)).scalars().all()) == [40, 40]

    def test_seeding_rows_keeps_existing_mastery(self, db, learner_id, scenario):
        attempt = create_attempt(db, learner_id, scenario.assessment)
        skill = scenario.fractions.id
        db.add(SkillMastery(learner_id=learner_id, skill_id=skill, mastery_pct=40, evidence={}))
        db.commit()

        blended = apply_mastery_evidence(
            db, learner_id, [make_answer("fractions", True, skill_ids=[skill])], attempt.id, FIXED_NOW
        )
        db.commit()

        # round(40 * 0.6 + 100 * 0.4)
        assert blended == {skill: 64}
        assert get_skill_mastery(db, learner_id) == {skill: 64}


class TestPropagateLessonProgress:
    def test_lesson_takes_best_linked_skill(self, db, learner_id, scenario):
        fractions, decimals = scenario.fractions.id, scenario.decimals.id

        targets = propagate_lesson_progress(db, learner_id, {fractions: 40, decimals: 70}, FIXED_NOW)
        db.commit()

        lessons = scenario.lessons
        assert targets == {
            lessons["halves"].id: 40,
            lessons["mixed"].id: 70,
            lessons["tenths"].id: 70,
        }
        progress = {row.lesson_id: row for row in get_lesson_progress(db, learner_id)}
        assert progress[lessons["mixed"].id].mastery_pct == 70
        assert progress[lessons["mixed"].id].attempts == 1
        assert progress[lessons["mixed"].id].status == ProgressStatus.IN_PROGRESS.value

    def test_never_lowers_mastery_and_counts_attempts(self, db, learner_id):
        skill = create_skill(db, "Area")
        lesson = create_lesson(db, "Area of rectangles", [skill])

        propagate_lesson_progress(db, learner_id, {skill.id: 80}, FIXED_NOW)
        db.commit()
        propagate_lesson_progress(db, learner_id, {skill.id: 30}, FIXED_NOW)
        db.commit()

        db.expire_all()
        row = db.execute(select(LessonProgress).where(LessonProgress.lesson_id == lesson.id)).scalar_one()
        assert row.mastery_pct == 80
        assert row.attempts == 2

        propagate_lesson_progress(db, learner_id, {skill.id: 95}, FIXED_NOW)
        db.commit()
        db.expire_all()
        assert db.get(LessonProgress, row.id).mastery_pct == 95

    def test_completed_lesson_stays_completed(self, db, learner_id):
        skill = create_skill(db, "Volume")
        lesson = create_lesson(db, "Volume", [skill])
        db.add(
            LessonProgress(
                learner_id=learner_id,
                lesson_id=lesson.id,
                mastery_pct=90,
                attempts=3,
                status=ProgressStatus.COMPLETED.value,
            )
        )
        db.commit()

        propagate_lesson_progress(db, learner_id, {skill.id: 10}, FIXED_NOW)
        db.commit()
        db.expire_all()

        [row] = get_lesson_progress(db, learner_id)
        assert row.status == ProgressStatus.COMPLETED.value
        assert row.mastery_pct == 90
        assert row.attempts == 4

    def test_other_learners_untouched(self, db, learner_id, scenario):
        other = uuid.uuid4()
        propagate_lesson_progress(db, other, {scenario.fractions.id: 60}, FIXED_NOW)
        db.commit()

        assert get_lesson_progress(db, learner_id) == []
        assert len(get_lesson_progress(db, other)) == 2
