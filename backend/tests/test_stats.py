"""
Tests for core/stats.py — mark statistics, subject stats, class overview.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.stats import compute_class_overview, compute_subject_stats, describe_marks

DIVISIONS = ["I", "II", "III", "IV", "0"]
GRADES = ["A", "B", "C", "D", "F"]


def _row(student_id, code, marks, grade, points, passed=True):
    return {
        "student_id": student_id, "subject_id": code.lower(), "code": code, "subject": code.title(),
        "marks": marks, "grade": grade, "points": points, "passed": passed,
    }


class TestDescribeMarks:
    """Tests for describe_marks."""

    def test_known_values(self):
        result = describe_marks([70, 80, 80, 90])
        assert result["mean"] == 80.0
        assert result["median"] == 80.0
        assert result["mode"] == 80.0
        assert result["std"] == 7.07
        assert result["count"] == 4

    def test_ignores_non_numeric(self):
        assert describe_marks([50, None, "x"])["count"] == 1

    def test_empty(self):
        assert describe_marks([]) == {"mean": 0.0, "median": 0.0, "mode": 0.0, "std": 0.0, "count": 0}


class TestComputeSubjectStats:
    """Tests for compute_subject_stats."""

    def test_per_subject(self):
        rows = [
            _row("a", "MATH", 80, "A", 1), _row("b", "MATH", 40, "D", 4),
            _row("a", "ENG", 20, "F", 5, passed=False), _row("b", "ENG", 60, "C", 3),
        ]
        stats = {s["code"]: s for s in compute_subject_stats(rows, GRADES)}
        assert stats["MATH"]["mean"] == 60.0
        assert stats["MATH"]["gpa"] == 2.5
        assert stats["MATH"]["grade_distribution"] == {"A": 1, "B": 0, "C": 0, "D": 1, "F": 0}
        assert stats["ENG"]["pass_rate"] == 50.0
        assert stats["ENG"]["lowest"] == 20.0

    def test_sorted_by_mean(self):
        rows = [_row("a", "ENG", 50, "C", 3), _row("a", "MATH", 90, "A", 1)]
        assert [s["code"] for s in compute_subject_stats(rows, GRADES)] == ["MATH", "ENG"]

    def test_empty(self):
        assert compute_subject_stats([], GRADES) == []


class TestComputeClassOverview:
    """Tests for compute_class_overview."""

    def test_overview(self):
        summaries = [
            {"average_marks": 80.0, "best_points": 7, "division": "I"},
            {"average_marks": 40.0, "best_points": 34, "division": "0"},
        ]
        result = compute_class_overview(summaries, DIVISIONS)
        assert result["class_average"] == 60.0
        assert result["class_pass_rate"] == 50.0
        assert result["examination_gpa"] == 20.5
        assert result["division_distribution"]["0"] == 1

    def test_empty(self):
        result = compute_class_overview([], DIVISIONS)
        assert result["class_average"] == 0.0
        assert result["division_distribution"] == {d: 0 for d in DIVISIONS}
