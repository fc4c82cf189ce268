"""
consistency.py — Result store consistency checks and repairs.

Checks (each independent, each returns {"findings": [...], "count": n}):
- Duplicates: more than one result for (student, exam, subject)
- Incorrect derivations: stored grade/points differ from the grade table
- Missing fields: required fields absent, or marks / education level unusable
- Orphans: results whose student no longer exists

Repairs run in a fixed order (duplicates, derivations, orphans). Every step
re-reads the store, works in bounded chunks, counts per-record failures
instead of aborting, and can be cancelled between chunks. Re-running a
step after a crash picks up whatever was left.
"""

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import pandas as pd

from core.errors import ConfigurationError, InputValidationError, StoreError
from core.grading import GradingConfigStore, config_store, grade_and_points, validate_marks
from core.models import normalize_level

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500


def _chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


def _timestamp(value) -> float:
    ts = pd.Timestamp(value) if value is not None else pd.NaT
    return float("-inf") if pd.isna(ts) else ts.timestamp()


def keep_order(members: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Duplicate members in retention order: most recently updated first, then smallest id."""
    return sorted(members, key=lambda m: (-_timestamp(m.get("updated_at")), str(m["id"])))


# ── Monitor ─────────────────────────────────────────────────────────

class ConsistencyMonitor:
    def __init__(self, store, directory, grading: Optional[GradingConfigStore] = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.store = store
        self.directory = directory
        self.grading = grading or config_store
        self.chunk_size = chunk_size

    def check_duplicates(self) -> Dict[str, Any]:
        findings = []
        for group in self.store.duplicate_groups(chunk_size=self.chunk_size):
            ordered = keep_order(group["members"])
            findings.append({
                **{k: str(v) for k, v in group["key"].items()},
                "result_ids": [str(m["id"]) for m in ordered],
                "keep_id": str(ordered[0]["id"]),
                "size": len(ordered),
                "marks": sorted({float(m["marks_obtained"]) for m in ordered
                                 if m["marks_obtained"] is not None and not pd.isna(m["marks_obtained"])}),
            })
        logger.info("Found %d sets of duplicate results", len(findings))
        return {"findings": findings, "count": len(findings)}

    def check_incorrect_derivations(self) -> Dict[str, Any]:
        config = self.grading.current()
        findings = []
        for chunk in self.store.iter_chunks(self.chunk_size):
            for result in chunk:
                level = normalize_level(result.education_level)
                if level is None or result.marks_obtained is None:
                    continue
                try:
                    expected = grade_and_points(result.marks_obtained, level, config)
                except InputValidationError:
                    # Reported by check_missing_fields
                    continue
                except ConfigurationError as exc:
                    logger.error("Cannot derive grade for result %s: %s", result.id, exc)
                    continue
                if result.grade != expected["grade"] or result.points != expected["points"]:
                    findings.append({
                        "id": result.id,
                        "student_id": result.student_id,
                        "exam_id": result.exam_id,
                        "subject_id": result.subject_id,
                        "education_level": level,
                        "marks": result.marks_obtained,
                        "current_grade": result.grade,
                        "expected_grade": expected["grade"],
                        "current_points": result.points,
                        "expected_points": expected["points"],
                    })
        logger.info("Found %d results with incorrect grades or points", len(findings))
        return {"findings": findings, "count": len(findings)}

    def check_missing_fields(self) -> Dict[str, Any]:
        findings = []
        for chunk in self.store.iter_chunks(self.chunk_size):
            for result in chunk:
                missing = result.missing_fields()
                invalid = []
                if result.marks_obtained is not None:
                    try:
                        validate_marks(result.marks_obtained)
                    except InputValidationError:
                        invalid.append("marks_obtained")
                if normalize_level(result.education_level) is None:
                    invalid.append("education_level")
                if missing or invalid:
                    findings.append({"id": result.id, "missing_fields": missing, "invalid_fields": invalid})
        logger.info("Found %d results with missing or invalid required fields", len(findings))
        return {"findings": findings, "count": len(findings)}

    def check_orphans(self) -> Dict[str, Any]:
        findings = []
        for chunk in self.store.iter_chunks(self.chunk_size):
            referenced = {r.student_id for r in chunk if r.student_id is not None}
            existing = self.directory.existing_student_ids(referenced)
            for result in chunk:
                if result.student_id is not None and result.student_id not in existing:
                    findings.append({"id": result.id, "student_id": result.student_id, "reason": "Missing student"})
        logger.info("Found %d orphaned results", len(findings))
        return {"findings": findings, "count": len(findings)}

    def run_all_checks(self) -> Dict[str, Any]:
        logger.info("Running all result consistency checks")
        duplicates = self.check_duplicates()
        incorrect = self.check_incorrect_derivations()
        missing = self.check_missing_fields()
        orphans = self.check_orphans()
        total = duplicates["count"] + incorrect["count"] + missing["count"] + orphans["count"]
        logger.info("Found %d total result consistency issues", total)
        return {
            "duplicates": duplicates,
            "incorrect_derivations": incorrect,
            "missing_fields": missing,
            "orphans": orphans,
            "total_issues": total,
        }


# ── Repairer ────────────────────────────────────────────────────────

class ConsistencyRepairer:
    def __init__(self, store, monitor: ConsistencyMonitor, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.store = store
        self.monitor = monitor
        self.chunk_size = chunk_size

    def fix_duplicates(self, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Keep one member per duplicate group, delete the rest."""
        fixed = failures = 0
        findings = self.monitor.check_duplicates()["findings"]
        for chunk in _chunked(findings, self.chunk_size):
            if _cancelled(cancel):
                return {"fixed": fixed, "failures": failures, "cancelled": True}
            for finding in chunk:
                doomed = [rid for rid in finding["result_ids"] if rid != finding["keep_id"]]
                try:
                    deleted = self.store.delete_many(doomed)
                except StoreError as exc:
                    failures += len(doomed)
                    logger.error("Failed to delete duplicates %s: %s", doomed, exc)
                    continue
                fixed += deleted
                logger.info("Kept result %s, deleted %d duplicate(s) %s", finding["keep_id"], deleted, doomed)
        return {"fixed": fixed, "failures": failures, "cancelled": False}

    def fix_incorrect_derivations(self, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Overwrite grade and points from marks; marks are never touched."""
        config = self.monitor.grading.current()
        fixed = failures = 0
        findings = self.monitor.check_incorrect_derivations()["findings"]
        for chunk in _chunked(findings, self.chunk_size):
            if _cancelled(cancel):
                return {"fixed": fixed, "failures": failures, "cancelled": True}
            for finding in chunk:
                current = self.store.get(finding["id"])
                if current is None or current.marks_obtained is None:
                    continue
                try:
                    expected = grade_and_points(current.marks_obtained, current.education_level, config)
                    if current.grade == expected["grade"] and current.points == expected["points"]:
                        continue
                    updated = self.store.update_fields(
                        current.id, grade=expected["grade"], points=expected["points"]
                    )
                except (StoreError, ConfigurationError, InputValidationError) as exc:
                    failures += 1
                    logger.error("Failed to fix grade/points for result %s: %s", current.id, exc)
                    continue
                if updated:
                    fixed += 1
                    logger.info(
                        "Result %s: grade %s -> %s, points %s -> %s",
                        current.id, current.grade, expected["grade"], current.points, expected["points"],
                    )
        return {"fixed": fixed, "failures": failures, "cancelled": False}

    def fix_orphans(self, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Delete results whose student no longer exists."""
        fixed = failures = 0
        findings = self.monitor.check_orphans()["findings"]
        for chunk in _chunked(findings, self.chunk_size):
            if _cancelled(cancel):
                return {"fixed": fixed, "failures": failures, "cancelled": True}
            for finding in chunk:
                try:
                    deleted = self.store.delete_by_id(finding["id"])
                except StoreError as exc:
                    failures += 1
                    logger.error("Failed to delete orphaned result %s: %s", finding["id"], exc)
                    continue
                if deleted:
                    fixed += 1
                    logger.info("Deleted orphaned result %s (student %s)", finding["id"], finding["student_id"])
        return {"fixed": fixed, "failures": failures, "cancelled": False}

    def repair_all(self, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        logger.info("Fixing all result consistency issues")
        outcome = {"fixed_duplicates": 0, "fixed_derivations": 0, "fixed_orphans": 0}
        failures = 0
        cancelled = False

        steps = (
            ("fixed_duplicates", self.fix_duplicates),
            ("fixed_derivations", self.fix_incorrect_derivations),
            ("fixed_orphans", self.fix_orphans),
        )
        for name, step in steps:
            if _cancelled(cancel):
                cancelled = True
                break
            result = step(cancel)
            outcome[name] = result["fixed"]
            failures += result["failures"]
            if result["cancelled"]:
                cancelled = True
                break

        outcome["total_fixed"] = outcome["fixed_duplicates"] + outcome["fixed_derivations"] + outcome["fixed_orphans"]
        outcome["failures"] = failures
        outcome["cancelled"] = cancelled
        logger.info(
            "Fixed %d duplicate, %d derivation and %d orphaned result(s); %d failure(s)%s",
            outcome["fixed_duplicates"], outcome["fixed_derivations"], outcome["fixed_orphans"],
            failures, " (cancelled)" if cancelled else "",
        )
        return outcome
