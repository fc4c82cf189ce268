"""
Tests for core/selection.py — principal classification and best-N selection.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.grading import default_config, division_for_selection
from core.models import A_LEVEL, O_LEVEL, Subject, SubjectCombination, SubjectResult
from core.selection import (
    Explicit,
    InferredFromCombination,
    Unclassified,
    classify,
    classify_results,
    select_best,
    select_best_subset,
)


def _result(rid, subject_id, marks, points, is_principal=None, level=A_LEVEL, grade="X"):
    return SubjectResult(
        id=rid, student_id="st1", exam_id="ex1", subject_id=subject_id,
        marks_obtained=marks, grade=grade, points=points,
        education_level=level, is_principal=is_principal,
    )


@pytest.fixture
def config():
    return default_config()


@pytest.fixture
def pcm():
    return SubjectCombination(
        id="pcm", name="PCM", code="PCM",
        principal_subject_ids=frozenset({"phy", "che", "mat"}),
        subsidiary_subject_ids=frozenset({"gs", "bam"}),
    )


@pytest.fixture
def subjects():
    return {
        "phy": Subject("phy", "Physics", "PHY"),
        "che": Subject("che", "Chemistry", "CHE"),
        "mat": Subject("mat", "Mathematics", "MAT"),
        "bio": Subject("bio", "Biology", "BIO"),
        "gs": Subject("gs", "General Studies", "GS", principal_eligible=False),
        "bam": Subject("bam", "Basic Applied Mathematics", "BAM", principal_eligible=False),
    }


class TestClassify:
    """Principal flag, combination fallback and ineligible subjects."""

    def test_explicit_flag_wins_over_combination(self, pcm):
        c = classify(_result("r1", "phy", 80, 1, is_principal=False), A_LEVEL, pcm)
        assert c == Explicit(False)

    def test_inferred_from_combination(self, pcm):
        assert classify(_result("r1", "phy", 80, 1), A_LEVEL, pcm) == InferredFromCombination(True, "PCM")
        assert classify(_result("r2", "gs", 80, 1), A_LEVEL, pcm) == InferredFromCombination(False, "PCM")

    def test_unclassified_without_flag_or_combination(self):
        c = classify(_result("r1", "phy", 80, 1), A_LEVEL, None)
        assert isinstance(c, Unclassified)
        assert c.principal is False

    def test_ineligible_subject_never_principal(self, subjects):
        c = classify(_result("r1", "gs", 95, 1, is_principal=True), A_LEVEL, None, subjects["gs"])
        assert c.principal is False
        assert c.source == "explicit"

    def test_o_level_is_unclassified(self, pcm):
        c = classify(_result("r1", "phy", 80, 1, is_principal=True, level=O_LEVEL), O_LEVEL, pcm)
        assert isinstance(c, Unclassified)

    def test_unknown_subject_falls_back_to_id(self):
        [entry] = classify_results([_result("r1", "xyz", 50, 4)], A_LEVEL, None, {})
        assert entry.code == "xyz"
        assert entry.name == "Unknown Subject"


class TestSelectBest:
    """Best-3 principal and best-7 selection with deterministic tie-breaks."""

    def test_a_level_best_three_principals(self, config, subjects):
        results = [
            _result("r1", "phy", 85, 1, True),
            _result("r2", "che", 72, 2, True),
            _result("r3", "mat", 61, 3, True),
            _result("r4", "bio", 55, 4, True),
            _result("r5", "gs", 95, 1, False),
        ]
        chosen = select_best_subset(results, A_LEVEL, None, subjects, config)
        assert [r.id for r in chosen] == ["r1", "r2", "r3"]
        points = [r.points for r in chosen]
        assert sum(points) == 6
        assert division_for_selection(points, A_LEVEL, config)["division"] == "I"

    def test_combination_fallback_when_flags_missing(self, config, pcm, subjects):
        results = [
            _result("r1", "phy", 45, 5),
            _result("r2", "che", 38, 6),
            _result("r3", "mat", 52, 4),
            _result("r4", "gs", 90, 1),
            _result("r5", "bam", 80, 1),
        ]
        chosen = select_best_subset(results, A_LEVEL, pcm, subjects, config)
        assert sorted(r.id for r in chosen) == ["r1", "r2", "r3"]

    def test_o_level_best_seven_of_eight(self, config):
        marks = [80, 70, 60, 50, 40, 35, 78, 27]
        points = [1, 2, 3, 3, 4, 4, 1, 5]
        results = [
            _result(f"r{i}", f"s{i}", m, p, level=O_LEVEL)
            for i, (m, p) in enumerate(zip(marks, points))
        ]
        chosen = select_best_subset(results, O_LEVEL, config=config)
        assert len(chosen) == 7
        assert "r7" not in {r.id for r in chosen}
        assert sum(r.points for r in chosen) == 18

    def test_fewer_than_required_returns_all(self, config):
        results = [_result("r1", "s1", 80, 1, level=O_LEVEL), _result("r2", "s2", 50, 3, level=O_LEVEL)]
        assert len(select_best_subset(results, O_LEVEL, config=config)) == 2

    def test_ties_break_on_marks_then_code(self, config, subjects):
        results = [
            _result("r1", "phy", 82, 1, True),
            _result("r2", "che", 85, 1, True),
            _result("r3", "mat", 82, 1, True),
            _result("r4", "bio", 90, 1, True),
        ]
        classified = classify_results(results, A_LEVEL, None, subjects)
        chosen = select_best(classified, A_LEVEL, config)
        # BIO 90, CHE 85, then MAT and PHY tie on marks: MAT sorts first
        assert [c.code for c in chosen] == ["BIO", "CHE", "MAT"]

    def test_selection_independent_of_input_order(self, config, subjects):
        results = [
            _result("r1", "phy", 82, 1, True),
            _result("r2", "che", 82, 1, True),
            _result("r3", "mat", 82, 1, True),
            _result("r4", "bio", 82, 1, True),
        ]
        forward = select_best_subset(results, A_LEVEL, None, subjects, config)
        backward = select_best_subset(list(reversed(results)), A_LEVEL, None, subjects, config)
        assert [r.id for r in forward] == [r.id for r in backward]

    def test_insufficient_principals_warns(self, config, subjects):
        warnings = []
        results = [_result("r1", "phy", 82, 1, True), _result("r2", "gs", 70, 2, True)]
        chosen = select_best_subset(results, A_LEVEL, None, subjects, config, warnings)
        assert [r.id for r in chosen] == ["r1"]
        assert [w.code for w in warnings] == ["insufficient_principal_subjects"]
        assert warnings[0].student_id == "st1"
