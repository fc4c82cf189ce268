"""
models.py — Records read and written by the results engine.

Students, exams, classes, subjects and subject combinations are owned by the
school's CRUD layer; the engine only reads them. Subject results are the one
record type the engine creates, corrects and deletes.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

O_LEVEL = "O_LEVEL"
A_LEVEL = "A_LEVEL"
EDUCATION_LEVELS = (O_LEVEL, A_LEVEL)

REQUIRED_RESULT_FIELDS = ("student_id", "exam_id", "subject_id", "marks_obtained", "grade", "points")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_level(value: Any) -> Optional[str]:
    """Map loose spellings ("A-Level", "a_level", "ALEVEL") to O_LEVEL / A_LEVEL."""
    if value is None:
        return None
    cleaned = str(value).strip().upper().replace("-", "_").replace(" ", "_")
    if cleaned in ("O_LEVEL", "OLEVEL", "O"):
        return O_LEVEL
    if cleaned in ("A_LEVEL", "ALEVEL", "A"):
        return A_LEVEL
    return None


# ── Result records ──────────────────────────────────────────────────

@dataclass
class SubjectResult:
    id: str
    student_id: Optional[str]
    exam_id: Optional[str]
    subject_id: Optional[str]
    marks_obtained: Optional[float]
    grade: Optional[str] = None
    points: Optional[int] = None
    education_level: Optional[str] = O_LEVEL
    is_principal: Optional[bool] = None
    class_id: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def missing_fields(self) -> list:
        return [name for name in REQUIRED_RESULT_FIELDS if getattr(self, name) is None]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubjectResult":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        # Seed files and older exports use camelCase and "marks".
        kwargs.setdefault("student_id", data.get("studentId"))
        kwargs.setdefault("exam_id", data.get("examId"))
        kwargs.setdefault("subject_id", data.get("subjectId"))
        kwargs.setdefault("class_id", data.get("classId"))
        kwargs.setdefault("is_principal", data.get("isPrincipal"))
        if "marks_obtained" not in kwargs:
            kwargs["marks_obtained"] = data.get("marksObtained", data.get("marks"))
        if "education_level" in kwargs or "educationLevel" in data:
            kwargs["education_level"] = normalize_level(
                kwargs.get("education_level", data.get("educationLevel"))
            )
        updated = kwargs.get("updated_at")
        if isinstance(updated, str):
            kwargs["updated_at"] = datetime.fromisoformat(updated)
        elif updated is None:
            kwargs.pop("updated_at", None)
        return cls(**kwargs)

    def with_changes(self, **changes) -> "SubjectResult":
        return replace(self, **changes)


# ── Reference records (read-only) ───────────────────────────────────

@dataclass(frozen=True)
class Student:
    id: str
    name: str
    education_level: str = O_LEVEL
    class_id: Optional[str] = None
    form: Optional[int] = None


@dataclass(frozen=True)
class Exam:
    id: str
    name: str
    academic_year: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass(frozen=True)
class SchoolClass:
    id: str
    name: str
    education_level: str = O_LEVEL


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    code: str
    principal_eligible: bool = True


@dataclass(frozen=True)
class SubjectCombination:
    id: str
    name: str
    code: str
    principal_subject_ids: FrozenSet[str] = frozenset()
    subsidiary_subject_ids: FrozenSet[str] = frozenset()
