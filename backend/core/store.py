"""
store.py — Result store and reference directory.

The engine talks to two collaborators:
- a result store (subject results: find, insert, update, delete, chunked scan,
  duplicate grouping)
- a directory (students, exams, classes, subjects, subject combinations: read-only)

In-memory implementations are provided for the API process and for tests.
Neither offers multi-record transactions; callers treat every write as its own
unit of work.
"""

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

import pandas as pd

from core.errors import StoreError
from core.models import (
    Exam,
    SchoolClass,
    Student,
    Subject,
    SubjectCombination,
    SubjectResult,
    normalize_level,
    utcnow,
)

logger = logging.getLogger(__name__)

DUPLICATE_KEY = ("student_id", "exam_id", "subject_id")
UPDATABLE_FIELDS = {
    "marks_obtained", "grade", "points", "education_level", "is_principal", "class_id", "updated_at",
}


def new_result_id() -> str:
    return uuid.uuid4().hex


# ── Result store ────────────────────────────────────────────────────

class InMemoryResultStore:
    """Dict-backed result store. Returns copies so callers never hold live records."""

    def __init__(self, results: Optional[Iterable[SubjectResult]] = None):
        self._lock = threading.RLock()
        self._results: Dict[str, SubjectResult] = {}
        for result in results or []:
            self.insert(result)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def get(self, result_id: str) -> Optional[SubjectResult]:
        with self._lock:
            found = self._results.get(result_id)
            return found.with_changes() if found else None

    def find_by(self, student_id: str, exam_id: str, subject_id: Optional[str] = None) -> List[SubjectResult]:
        with self._lock:
            return [
                r.with_changes()
                for _, r in sorted(self._results.items())
                if r.student_id == student_id
                and r.exam_id == exam_id
                and (subject_id is None or r.subject_id == subject_id)
            ]

    def find_all_by(
        self,
        exam_id: str,
        class_id: Optional[str] = None,
        student_ids: Optional[Iterable[str]] = None,
    ) -> List[SubjectResult]:
        """Results for an exam belonging to a class (by result.class_id or by the class's student ids)."""
        members = set(student_ids or [])
        with self._lock:
            return [
                r.with_changes()
                for _, r in sorted(self._results.items())
                if r.exam_id == exam_id
                and ((class_id is not None and r.class_id == class_id) or r.student_id in members)
            ]

    def insert(self, result: SubjectResult) -> SubjectResult:
        with self._lock:
            if not result.id:
                result = result.with_changes(id=new_result_id())
            if result.id in self._results:
                raise StoreError(f"Result '{result.id}' already exists.")
            self._results[result.id] = result.with_changes()
            return result.with_changes()

    def update_fields(self, result_id: str, **changes: Any) -> bool:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise StoreError(f"Fields cannot be updated: {sorted(unknown)}")
        changes.setdefault("updated_at", utcnow())
        with self._lock:
            current = self._results.get(result_id)
            if current is None:
                return False
            self._results[result_id] = current.with_changes(**changes)
            return True

    def delete_by_id(self, result_id: str) -> bool:
        with self._lock:
            return self._results.pop(result_id, None) is not None

    def delete_many(self, result_ids: Iterable[str]) -> int:
        with self._lock:
            return sum(1 for rid in list(result_ids) if self._results.pop(rid, None) is not None)

    def iter_chunks(self, size: int = 500) -> Iterator[List[SubjectResult]]:
        """Scan every result in id order, `size` records at a time."""
        if size < 1:
            raise ValueError("Chunk size must be at least 1.")
        with self._lock:
            ids = sorted(self._results)
        for start in range(0, len(ids), size):
            with self._lock:
                chunk = [self._results[i].with_changes() for i in ids[start:start + size] if i in self._results]
            if chunk:
                yield chunk

    def duplicate_groups(self, keys: Sequence[str] = DUPLICATE_KEY, chunk_size: int = 500) -> List[Dict[str, Any]]:
        """
        Groups of results sharing every key field (records missing a key are skipped).
        Each group: {"key": {...}, "members": [{"id", "updated_at", "marks_obtained"}]}.
        """
        frames = []
        for chunk in self.iter_chunks(chunk_size):
            frames.append(pd.DataFrame(
                [
                    {
                        "id": r.id,
                        "updated_at": r.updated_at,
                        "marks_obtained": r.marks_obtained,
                        **{k: getattr(r, k) for k in keys},
                    }
                    for r in chunk
                ]
            ))
        if not frames:
            return []

        df = pd.concat(frames, ignore_index=True).dropna(subset=list(keys))
        counts = df.groupby(list(keys))["id"].transform("size")
        dupes = df[counts > 1]

        groups = []
        for key_values, group in dupes.groupby(list(keys), sort=True):
            if not isinstance(key_values, tuple):
                key_values = (key_values,)
            groups.append({
                "key": dict(zip(keys, key_values)),
                "members": [
                    {"id": row.id, "updated_at": row.updated_at, "marks_obtained": row.marks_obtained}
                    for row in group.sort_values("id").itertuples(index=False)
                ],
            })
        return groups


# ── Directory ───────────────────────────────────────────────────────

class InMemoryDirectory:
    """Read-only lookups for the records owned by the school's CRUD layer."""

    def __init__(
        self,
        students: Iterable[Student] = (),
        exams: Iterable[Exam] = (),
        classes: Iterable[SchoolClass] = (),
        subjects: Iterable[Subject] = (),
        combinations: Optional[Dict[str, SubjectCombination]] = None,
    ):
        self.students = {s.id: s for s in students}
        self.exams = {e.id: e for e in exams}
        self.classes = {c.id: c for c in classes}
        self.subjects = {s.id: s for s in subjects}
        # student_id -> combination
        self.combinations = dict(combinations or {})

    def get_student(self, student_id: str) -> Optional[Student]:
        return self.students.get(student_id)

    def get_exam(self, exam_id: str) -> Optional[Exam]:
        return self.exams.get(exam_id)

    def get_class(self, class_id: str) -> Optional[SchoolClass]:
        return self.classes.get(class_id)

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        return self.subjects.get(subject_id)

    def get_combination(self, student_id: str) -> Optional[SubjectCombination]:
        return self.combinations.get(student_id)

    def students_in_class(self, class_id: str) -> List[Student]:
        return sorted((s for s in self.students.values() if s.class_id == class_id), key=lambda s: s.id)

    def existing_student_ids(self, student_ids: Iterable[str]) -> Set[str]:
        return {sid for sid in student_ids if sid in self.students}


# ── Seed loading ────────────────────────────────────────────────────

def _student(data: Dict[str, Any]) -> Student:
    return Student(
        id=str(data["id"]),
        name=data.get("name", ""),
        education_level=normalize_level(data.get("education_level", data.get("educationLevel"))) or "O_LEVEL",
        class_id=data.get("class_id", data.get("classId")),
        form=data.get("form"),
    )


def _combination(data: Dict[str, Any]) -> SubjectCombination:
    return SubjectCombination(
        id=str(data["id"]),
        name=data.get("name", ""),
        code=data.get("code", ""),
        principal_subject_ids=frozenset(data.get("principal_subject_ids", [])),
        subsidiary_subject_ids=frozenset(data.get("subsidiary_subject_ids", [])),
    )


def build_from_seed(data: Dict[str, Any]) -> Tuple[InMemoryDirectory, InMemoryResultStore]:
    """Build a directory and result store from a seed document."""
    directory = InMemoryDirectory(
        students=[_student(s) for s in data.get("students", [])],
        exams=[Exam(**e) for e in data.get("exams", [])],
        classes=[
            SchoolClass(
                id=str(c["id"]),
                name=c.get("name", ""),
                education_level=normalize_level(c.get("education_level")) or "O_LEVEL",
            )
            for c in data.get("classes", [])
        ],
        subjects=[Subject(**s) for s in data.get("subjects", [])],
        combinations={
            str(c["student_id"]): _combination(c) for c in data.get("combinations", [])
        },
    )
    results = []
    for raw in data.get("results", []):
        raw = dict(raw)
        raw.setdefault("id", new_result_id())
        results.append(SubjectResult.from_dict(raw))
    return directory, InMemoryResultStore(results)


def load_seed(path: Union[str, Path]) -> Tuple[InMemoryDirectory, InMemoryResultStore]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    directory, store = build_from_seed(data)
    logger.info("Loaded seed %s: %d students, %d results", path, len(directory.students), len(store))
    return directory, store
