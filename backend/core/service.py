"""
service.py — ResultsEngine, the entry point callers use.

Wraps the result store, the directory and the grading config store behind
the operations route handlers and admin tooling need:
- compute_subject_result / record_marks / correct_marks / delete_result
- build_student_report / build_class_report
- run_consistency_checks / repair_consistency_issues
- grading_scale / grading_config / replace_grading_config
"""

import logging
import os
import threading
from typing import Any, Dict, Mapping, Optional

from core.consistency import DEFAULT_CHUNK_SIZE, ConsistencyMonitor, ConsistencyRepairer, keep_order
from core.errors import InputValidationError, NotFoundError
from core.grading import (
    GradingConfigStore,
    config_store,
    get_all_grade_thresholds,
    grade_and_points,
    load_grading_config,
)
from core.models import A_LEVEL, SubjectResult, normalize_level, utcnow
from core.ranking import AVERAGE_MARKS, RankPolicy
from core.report_builder import build_class_report, build_student_report
from core.store import InMemoryDirectory, InMemoryResultStore, load_seed, new_result_id

logger = logging.getLogger(__name__)


class ResultsEngine:
    def __init__(
        self,
        store,
        directory,
        grading: Optional[GradingConfigStore] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        student_policy: Optional[RankPolicy] = None,
        class_policy: Optional[RankPolicy] = None,
    ):
        self.store = store
        self.directory = directory
        self.grading = grading or config_store
        self.chunk_size = chunk_size
        # Student and class reports may rank ties differently; both are set explicitly.
        self.student_policy = student_policy or RankPolicy(AVERAGE_MARKS, descending=True, dense=False)
        self.class_policy = class_policy or RankPolicy(AVERAGE_MARKS, descending=True, dense=False)
        self.monitor = ConsistencyMonitor(store, directory, self.grading, chunk_size)
        self.repairer = ConsistencyRepairer(store, self.monitor, chunk_size)
        self._repair_lock = threading.Lock()

    # ── Marks ───────────────────────────────────────────────────────

    def compute_subject_result(self, marks: Any, education_level: str) -> Dict[str, Any]:
        return grade_and_points(marks, education_level, self.grading.current())

    def record_marks(
        self,
        student_id: str,
        exam_id: str,
        subject_id: str,
        marks: Any,
        is_principal: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Enter marks for (student, exam, subject). An existing result for the
        triple is updated in place rather than duplicated.
        """
        student = self.directory.get_student(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        if self.directory.get_exam(exam_id) is None:
            raise NotFoundError("Exam", exam_id)
        if self.directory.get_subject(subject_id) is None:
            raise NotFoundError("Subject", subject_id)

        level = normalize_level(student.education_level)
        derived = grade_and_points(marks, level, self.grading.current())

        if level == A_LEVEL and is_principal is None:
            combination = self.directory.get_combination(student_id)
            if combination is not None and subject_id in combination.principal_subject_ids | combination.subsidiary_subject_ids:
                is_principal = subject_id in combination.principal_subject_ids
        elif level != A_LEVEL:
            is_principal = None

        existing = self.store.find_by(student_id, exam_id, subject_id)
        fields = {
            "marks_obtained": float(marks),
            "grade": derived["grade"],
            "points": derived["points"],
            "is_principal": is_principal,
            "class_id": student.class_id,
            "education_level": level,
        }
        if existing:
            keep = keep_order([{"id": r.id, "updated_at": r.updated_at} for r in existing])[0]["id"]
            self.store.update_fields(keep, **fields)
            if len(existing) > 1:
                logger.warning(
                    "Student %s has %d results for exam %s subject %s; updated %s",
                    student_id, len(existing), exam_id, subject_id, keep,
                )
            logger.info("Updated result %s for student %s, subject %s, exam %s", keep, student_id, subject_id, exam_id)
            return self._fetch(keep)

        created = self.store.insert(SubjectResult(
            id=new_result_id(),
            student_id=student_id,
            exam_id=exam_id,
            subject_id=subject_id,
            updated_at=utcnow(),
            **fields,
        ))
        logger.info("Created result %s for student %s, subject %s, exam %s", created.id, student_id, subject_id, exam_id)
        return created.to_dict()

    def correct_marks(self, result_id: str, marks: Any) -> Dict[str, Any]:
        """Replace a result's marks; grade and points are recomputed with them."""
        current = self.store.get(result_id)
        if current is None:
            raise NotFoundError("Result", result_id)
        level = normalize_level(current.education_level)
        if level is None and current.student_id is not None:
            student = self.directory.get_student(current.student_id)
            level = normalize_level(student.education_level) if student else None
        if level is None:
            raise InputValidationError(f"Result '{result_id}' has no usable education level.")

        derived = grade_and_points(marks, level, self.grading.current())
        self.store.update_fields(
            result_id,
            marks_obtained=float(marks),
            grade=derived["grade"],
            points=derived["points"],
            education_level=level,
        )
        logger.info("Corrected result %s: marks %s -> %s", result_id, current.marks_obtained, marks)
        return self._fetch(result_id)

    def _fetch(self, result_id: str) -> Dict[str, Any]:
        # The record can vanish between our write and this read.
        result = self.store.get(result_id)
        if result is None:
            raise NotFoundError("Result", result_id)
        return result.to_dict()

    def delete_result(self, result_id: str) -> None:
        if not self.store.delete_by_id(result_id):
            raise NotFoundError("Result", result_id)
        logger.info("Deleted result %s", result_id)

    # ── Reports ─────────────────────────────────────────────────────

    def build_student_report(self, student_id: str, exam_id: str, dense: Optional[bool] = None) -> Dict[str, Any]:
        policy = self.student_policy
        if dense is not None:
            policy = RankPolicy(policy.key, policy.descending, dense)
        return build_student_report(student_id, exam_id, self.store, self.directory, self.grading.current(), policy)

    def build_class_report(
        self,
        class_id: str,
        exam_id: str,
        rank_by: Optional[str] = None,
        dense: Optional[bool] = None,
    ) -> Dict[str, Any]:
        policy = self.class_policy
        if rank_by is not None or dense is not None:
            policy = RankPolicy.for_key(rank_by or policy.key, policy.dense if dense is None else dense)
        return build_class_report(class_id, exam_id, self.store, self.directory, self.grading.current(), policy)

    # ── Consistency ─────────────────────────────────────────────────

    def run_consistency_checks(self) -> Dict[str, Any]:
        return self.monitor.run_all_checks()

    def repair_consistency_issues(self, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        # One repair run at a time; checks and reports stay concurrent.
        with self._repair_lock:
            return self.repairer.repair_all(cancel)

    # ── Grading config ──────────────────────────────────────────────

    def grading_scale(self, education_level: str) -> Dict[str, Any]:
        level = normalize_level(education_level)
        if level is None:
            raise InputValidationError(f"Unknown education level: {education_level!r}.")
        config = self.grading.current()
        return {
            "education_level": level,
            "best_count": config.best_count(level),
            "grade_scale": get_all_grade_thresholds(level, config),
            "divisions": config.to_dict()[level]["divisions"],
        }

    def grading_config(self) -> Dict[str, Any]:
        return self.grading.current().to_dict()

    def replace_grading_config(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        snapshot = self.grading.replace(data)
        logger.info("Grading config replaced")
        return snapshot.to_dict()


# ── Wiring ──────────────────────────────────────────────────────────

def _env_flag(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


def build_engine() -> ResultsEngine:
    """Engine for the API process, configured from the environment."""
    seed_path = os.getenv("SEED_DATA_PATH", "").strip()
    if seed_path:
        directory, store = load_seed(seed_path)
    else:
        directory, store = InMemoryDirectory(), InMemoryResultStore()
        logger.info("SEED_DATA_PATH not set; starting with an empty result store")

    grading_path = os.getenv("GRADING_CONFIG_PATH", "").strip()
    grading = GradingConfigStore(load_grading_config(grading_path) if grading_path else None)

    chunk_size = int(os.getenv("REPAIR_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE)))
    return ResultsEngine(
        store,
        directory,
        grading=grading,
        chunk_size=chunk_size,
        student_policy=RankPolicy(AVERAGE_MARKS, descending=True, dense=_env_flag("STUDENT_RANK_DENSE")),
        class_policy=RankPolicy(AVERAGE_MARKS, descending=True, dense=_env_flag("CLASS_RANK_DENSE")),
    )
