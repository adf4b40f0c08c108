"""Tests for the DB-backed recommendation service."""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from mastery_engine.core.errors import RecommendationError
from mastery_engine.models.attempt import AttemptStatus
from mastery_engine.models.catalog import ModuleVisibility
from mastery_engine.ranking.service import build_module_profiles, get_recommendations
from tests.helpers.seed import (
    create_assessment,
    create_attempt,
    create_module,
    create_question,
    create_standard,
    link_standards,
)


class TestGetRecommendations:
    def test_missing_or_private_module_returns_empty(self, db):
        assert get_recommendations(db, 12345) == []

        private = create_module(db, visibility=ModuleVisibility.PRIVATE)
        create_module(db)
        assert get_recommendations(db, private.id) == []

    def test_shared_strand_and_standards_rank_first(self, db):
        fractions_std = create_standard(db, "3.NF.A.1")
        current = create_module(db, strand="Fractions")
        plain = create_module(db, strand="Geometry")
        sibling = create_module(db, strand="Fractions", topic="Equivalent fractions")
        link_standards(db, current, fractions_std)
        link_standards(db, sibling, fractions_std)

        recommendations = get_recommendations(db, current.id, last_score=40)

        assert [r.id for r in recommendations] == [sibling.id, plain.id]
        assert recommendations[0].fallback is False
        assert recommendations[0].score > recommendations[1].score
        assert recommendations[0].reason.startswith("Deepen Fractions focus")

    def test_excludes_other_subjects_and_non_public(self, db):
        current = create_module(db)
        create_module(db, subject="science")
        create_module(db, visibility=ModuleVisibility.DRAFT)
        sibling = create_module(db)

        assert [r.id for r in get_recommendations(db, current.id)] == [sibling.id]

    def test_fallbacks_fill_in_grade_order(self, db):
        current = create_module(db, grade_band="K")
        close = create_module(db, grade_band="1")
        # Both score too low to be recommended on merit
        high = create_module(db, grade_band="12")
        middle = create_module(db, grade_band="11-12")

        recommendations = get_recommendations(db, current.id, last_score=40)

        assert len(recommendations) == 3
        assert [r.id for r in recommendations] == [close.id, middle.id, high.id]
        assert [r.fallback for r in recommendations] == [False, True, True]
        assert recommendations[1].reason.startswith("Subject fallback · ")
        assert recommendations[1].score is None

    def test_caps_at_limit(self, db):
        current = create_module(db)
        for _ in range(5):
            create_module(db)

        assert len(get_recommendations(db, current.id)) == 3
        assert len(get_recommendations(db, current.id, limit=2)) == 2

    def test_read_failure_raises(self, db):
        current = create_module(db)
        with patch(
            "mastery_engine.ranking.service._fetch_siblings",
            side_effect=OperationalError("SELECT modules", {}, Exception("connection lost")),
        ):
            with pytest.raises(RecommendationError) as exc:
                get_recommendations(db, current.id)
        assert exc.value.code == "RECOMMENDATION_FAILED"


class TestModuleProfiles:
    def test_standards_and_baseline_summary(self, db, learner_id):
        module = create_module(db)
        other = create_module(db)
        standard = create_standard(db, "3.MD.C.5", framework="CCSS")
        link_standards(db, module, standard)

        question = create_question(db)
        base_time = datetime(2025, 1, 1, 8, 0)
        create_assessment(
            db, [question], title="Old baseline", metadata={"purpose": "baseline"}, module=module, created_at=base_time
        )
        baseline = create_assessment(
            db,
            [question, create_question(db)],
            title="Baseline",
            metadata={"purpose": "baseline"},
            module=module,
            created_at=base_time + timedelta(days=1),
        )
        # Newer, but not a baseline
        create_assessment(
            db, [question], title="Practice", metadata={}, module=module, created_at=base_time + timedelta(days=2)
        )
        create_attempt(db, learner_id, baseline, 1, AttemptStatus.COMPLETED, mastery_pct=80)
        create_attempt(db, learner_id, baseline, 2, AttemptStatus.COMPLETED, mastery_pct=91)
        create_attempt(db, learner_id, baseline, 3, AttemptStatus.IN_PROGRESS)

        profiles = build_module_profiles(db, [module, other])

        assert profiles[module.id].standards == frozenset({("CCSS", "3.MD.C.5")})
        summary = profiles[module.id].baseline
        assert summary.assessment_id == baseline.id
        assert summary.question_count == 2
        assert summary.attempt_count == 3
        assert summary.completion_rate == pytest.approx(2 / 3)
        assert summary.average_score == pytest.approx(85.5)

        assert profiles[other.id].standards == frozenset()
        assert profiles[other.id].baseline is None

    def test_baseline_without_attempts(self, db):
        module = create_module(db)
        create_assessment(db, [create_question(db)], metadata={"purpose": "baseline"}, module=module)

        summary = build_module_profiles(db, [module])[module.id].baseline
        assert summary.attempt_count == 0
        assert summary.completion_rate == 0.0
        assert summary.average_score is None
