"""
Tests for core/service.py — ResultsEngine marks entry, reports and repairs.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import InputValidationError, NotFoundError
from core.grading import GradingConfigStore
from core.models import SubjectResult
from core.ranking import RankPolicy
from core.service import ResultsEngine, build_engine
from core.store import load_seed

SAMPLE_SEED = os.path.join(os.path.dirname(__file__), "..", "sample_data", "sample_school.json")


@pytest.fixture
def engine():
    directory, store = load_seed(SAMPLE_SEED)
    return ResultsEngine(store, directory, grading=GradingConfigStore())


def _copy_marks(engine, source, target):
    for result in engine.store.find_by(source, "ex1"):
        engine.record_marks(target, "ex1", result.subject_id, result.marks_obtained)


class TestComputeSubjectResult:
    """Grade lookup through the engine."""

    def test_o_level(self, engine):
        assert engine.compute_subject_result(82, "O_LEVEL") == {"grade": "A", "points": 1, "remark": "Excellent"}

    def test_a_level(self, engine):
        assert engine.compute_subject_result(82, "A_LEVEL")["points"] == 1

    def test_invalid(self, engine):
        with pytest.raises(InputValidationError):
            engine.compute_subject_result(101, "O_LEVEL")


class TestRecordMarks:
    """Marks entry as insert-or-update."""

    def test_insert_new_result(self, engine):
        created = engine.record_marks("s3", "ex1", "o_mat", 66)
        assert (created["grade"], created["points"]) == ("B", 2)
        assert created["class_id"] == "c_f2a"
        assert created["education_level"] == "O_LEVEL"
        assert len(engine.store.find_by("s3", "ex1")) == 1

    def test_update_existing_instead_of_duplicating(self, engine):
        updated = engine.record_marks("s1", "ex1", "o_mat", 40)
        assert updated["id"] == "r-s1-mat"
        assert (updated["grade"], updated["points"]) == ("D", 4)
        assert len(engine.store.find_by("s1", "ex1", "o_mat")) == 1

    def test_a_level_principal_inferred(self, engine):
        engine.store.delete_by_id("r-a1-phy")
        created = engine.record_marks("a1", "ex1", "a_phy", 81)
        assert created["is_principal"] is True
        assert created["grade"] == "A"

    def test_explicit_principal_flag_kept(self, engine):
        created = engine.record_marks("a1", "ex1", "a_gs", 70, is_principal=False)
        assert created["is_principal"] is False

    @pytest.mark.parametrize("student,exam,subject", [
        ("ghost", "ex1", "o_mat"), ("s1", "ex9", "o_mat"), ("s1", "ex1", "nope"),
    ])
    def test_unknown_references(self, engine, student, exam, subject):
        with pytest.raises(NotFoundError):
            engine.record_marks(student, exam, subject, 50)

    def test_invalid_marks_not_stored(self, engine):
        with pytest.raises(InputValidationError):
            engine.record_marks("s3", "ex1", "o_mat", -5)
        assert engine.store.find_by("s3", "ex1") == []


class TestCorrectAndDelete:
    """Marks correction and result deletion."""

    def test_correct_marks_recomputes(self, engine):
        corrected = engine.correct_marks("r-a2-che", 61)
        assert (corrected["marks_obtained"], corrected["grade"], corrected["points"]) == (61.0, "C", 3)

    def test_correct_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.correct_marks("nope", 50)

    def test_record_deleted_mid_correction(self, engine):
        store = engine.store
        original_update = store.update_fields

        def update_then_vanish(result_id, **changes):
            original_update(result_id, **changes)
            return store.delete_by_id(result_id)

        store.update_fields = update_then_vanish
        with pytest.raises(NotFoundError):
            engine.correct_marks("r-s1-his", 31)
        with pytest.raises(NotFoundError):
            engine.record_marks("s1", "ex1", "o_eng", 55)

    def test_delete(self, engine):
        engine.delete_result("r-s1-mat")
        assert engine.store.get("r-s1-mat") is None
        with pytest.raises(NotFoundError):
            engine.delete_result("r-s1-mat")


class TestReportsThroughEngine:
    """Rank policies applied by the engine."""

    def test_competition_ranking_by_default(self, engine):
        _copy_marks(engine, "s2", "s3")
        report = engine.build_class_report("c_f2a", "ex1")
        ranks = {s["student_id"]: s["summary"]["rank"] for s in report["students"]}
        assert ranks == {"s2": 1, "s3": 1, "s1": 3}

    def test_dense_on_request(self, engine):
        _copy_marks(engine, "s2", "s3")
        report = engine.build_class_report("c_f2a", "ex1", dense=True)
        ranks = {s["student_id"]: s["summary"]["rank"] for s in report["students"]}
        assert ranks == {"s2": 1, "s3": 1, "s1": 2}

    def test_student_and_class_policies_are_independent(self, engine):
        _copy_marks(engine, "s2", "s3")
        engine.class_policy = RankPolicy(dense=True)
        assert engine.build_student_report("s1", "ex1")["summary"]["rank"] == 3
        assert engine.build_class_report("c_f2a", "ex1")["students"][-1]["summary"]["rank"] == 2

    def test_rank_by_best_points(self, engine):
        report = engine.build_class_report("c_f5pcm", "ex1", rank_by="best_points")
        assert report["rank_policy"]["key"] == "best_points"

    def test_unknown_rank_key(self, engine):
        with pytest.raises(InputValidationError):
            engine.build_class_report("c_f2a", "ex1", rank_by="height")


class TestConsistencyThroughEngine:
    """Checks and repairs through the engine."""

    def test_seed_is_consistent(self, engine):
        assert engine.run_consistency_checks()["total_issues"] == 0

    def test_repair(self, engine):
        engine.store.insert(SubjectResult(
            id="dup", student_id="s1", exam_id="ex1", subject_id="o_mat", marks_obtained=10,
            grade="F", points=5, class_id="c_f2a",
        ))
        engine.store.update_fields("r-s2-mat", grade="C", points=3)
        outcome = engine.repair_consistency_issues()
        assert outcome["fixed_duplicates"] == 1
        assert outcome["fixed_derivations"] == 1
        assert engine.store.get("dup") is not None
        assert engine.store.get("r-s1-mat") is None
        assert engine.run_consistency_checks()["total_issues"] == 0


class TestGradingThroughEngine:
    """Grading scale and config replacement."""

    def test_scale(self, engine):
        scale = engine.grading_scale("a-level")
        assert scale["education_level"] == "A_LEVEL"
        assert scale["best_count"] == 3
        assert len(scale["grade_scale"]) == 7

    def test_unknown_level(self, engine):
        with pytest.raises(InputValidationError):
            engine.grading_scale("diploma")

    def test_replace_config_changes_reports(self, engine):
        data = engine.grading_config()
        data["O_LEVEL"]["best_count"] = 8
        engine.replace_grading_config(data)
        summary = engine.build_student_report("s1", "ex1")["summary"]
        assert summary["best_subject_count"] == 8
        assert summary["best_points"] == 23


class TestBuildEngine:
    """Engine wiring from environment variables."""

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("SEED_DATA_PATH", SAMPLE_SEED)
        monkeypatch.setenv("CLASS_RANK_DENSE", "true")
        monkeypatch.delenv("STUDENT_RANK_DENSE", raising=False)
        monkeypatch.delenv("GRADING_CONFIG_PATH", raising=False)
        engine = build_engine()
        assert len(engine.store) == 26
        assert engine.class_policy.dense is True
        assert engine.student_policy.dense is False

    def test_empty_without_seed(self, monkeypatch):
        monkeypatch.delenv("SEED_DATA_PATH", raising=False)
        monkeypatch.delenv("GRADING_CONFIG_PATH", raising=False)
        assert len(build_engine().store) == 0
