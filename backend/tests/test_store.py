"""
Tests for core/store.py — in-memory result store, directory and seed loading.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import StoreError
from core.models import A_LEVEL, SubjectResult
from core.store import InMemoryResultStore, build_from_seed, load_seed

SAMPLE_SEED = os.path.join(os.path.dirname(__file__), "..", "sample_data", "sample_school.json")
T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _result(rid, student_id="st1", subject_id="mat", exam_id="ex1", class_id=None):
    return SubjectResult(
        id=rid, student_id=student_id, exam_id=exam_id, subject_id=subject_id,
        marks_obtained=50, grade="C", points=3, class_id=class_id, updated_at=T0,
    )


class TestInMemoryResultStore:
    """Tests for InMemoryResultStore."""

    def test_insert_and_get_returns_copies(self):
        store = InMemoryResultStore()
        store.insert(_result("r1"))
        fetched = store.get("r1")
        fetched.marks_obtained = 99
        assert store.get("r1").marks_obtained == 50

    def test_insert_assigns_id(self):
        created = InMemoryResultStore().insert(_result(""))
        assert created.id

    def test_duplicate_id_rejected(self):
        store = InMemoryResultStore([_result("r1")])
        with pytest.raises(StoreError):
            store.insert(_result("r1"))

    def test_find_by(self):
        store = InMemoryResultStore([_result("r2"), _result("r1", subject_id="eng"), _result("r3", student_id="st2")])
        assert [r.id for r in store.find_by("st1", "ex1")] == ["r1", "r2"]
        assert [r.id for r in store.find_by("st1", "ex1", "mat")] == ["r2"]

    def test_find_all_by_class_or_members(self):
        store = InMemoryResultStore([
            _result("r1", class_id="c1"),
            _result("r2", student_id="st2"),
            _result("r3", student_id="st3", exam_id="ex2", class_id="c1"),
        ])
        assert [r.id for r in store.find_all_by("ex1", "c1", ["st2"])] == ["r1", "r2"]

    def test_update_fields_touches_updated_at(self):
        store = InMemoryResultStore([_result("r1")])
        assert store.update_fields("r1", grade="B") is True
        updated = store.get("r1")
        assert updated.grade == "B"
        assert updated.updated_at > T0

    def test_update_unknown_field_rejected(self):
        store = InMemoryResultStore([_result("r1")])
        with pytest.raises(StoreError):
            store.update_fields("r1", student_id="st9")

    def test_update_missing_record(self):
        assert InMemoryResultStore().update_fields("nope", grade="A") is False

    def test_delete(self):
        store = InMemoryResultStore([_result("r1"), _result("r2"), _result("r3")])
        assert store.delete_by_id("r1") is True
        assert store.delete_by_id("r1") is False
        assert store.delete_many(["r2", "r3", "r4"]) == 2
        assert len(store) == 0

    def test_iter_chunks(self):
        store = InMemoryResultStore([_result(f"r{i}", subject_id=str(i)) for i in range(5)])
        sizes = [len(chunk) for chunk in store.iter_chunks(2)]
        assert sizes == [2, 2, 1]

    def test_duplicate_groups(self):
        store = InMemoryResultStore([
            _result("r1"), _result("r2"), _result("r3", subject_id="eng"),
            _result("r4", student_id=None),
        ])
        groups = store.duplicate_groups(chunk_size=2)
        assert len(groups) == 1
        assert groups[0]["key"] == {"student_id": "st1", "exam_id": "ex1", "subject_id": "mat"}
        assert [m["id"] for m in groups[0]["members"]] == ["r1", "r2"]

    def test_duplicate_groups_empty_store(self):
        assert InMemoryResultStore().duplicate_groups() == []


class TestSeed:
    """Seed loading into the directory and store."""

    def test_load_sample_seed(self):
        directory, store = load_seed(SAMPLE_SEED)
        assert len(directory.students) == 5
        assert len(store) == 26
        assert directory.get_student("a1").education_level == A_LEVEL
        assert directory.get_subject("a_gs").principal_eligible is False
        assert "a_phy" in directory.get_combination("a1").principal_subject_ids
        assert [s.id for s in directory.students_in_class("c_f2a")] == ["s1", "s2", "s3"]

    def test_seed_accepts_camel_case_results(self):
        _, store = build_from_seed({
            "results": [
                {"id": "r1", "studentId": "s1", "examId": "e1", "subjectId": "m", "marks": 70,
                 "educationLevel": "a-level", "updated_at": "2024-03-01T08:00:00+00:00"},
            ],
        })
        result = store.get("r1")
        assert (result.student_id, result.marks_obtained, result.education_level) == ("s1", 70, A_LEVEL)
        assert result.updated_at == datetime(2024, 3, 1, 8, tzinfo=timezone.utc)

    def test_existing_student_ids(self):
        directory, _ = load_seed(SAMPLE_SEED)
        assert directory.existing_student_ids({"s1", "ghost"}) == {"s1"}
