"""
report_builder.py — Student and class result reports.

Builds JSON-safe report dicts from stored subject results:
- Student report: subject table, principal/subsidiary split (A-Level),
  summary block (totals, best-N points, division, rank), grade distribution
- Empty template when a student has no results in the exam
- Class report: per-student rows ranked within the class, subject statistics,
  subject positions, class average, division distribution, pass rate, GPA

Reports are recomputed on every request; nothing here is persisted.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.consistency import keep_order
from core.errors import ConfigurationError, DataQualityWarning, InputValidationError, NotFoundError
from core.grading import (
    NO_DIVISION,
    GradingConfig,
    config_store,
    division_for_selection,
    get_all_grade_thresholds,
    grade_and_points,
    is_passed,
)
from core.models import A_LEVEL, Exam, SchoolClass, Student, SubjectResult, normalize_level
from core.ranking import RankPolicy, rank_by_policy, subject_positions
from core.selection import ClassifiedResult, classify_results, select_best
from core.stats import _safe_float, _sanitize, compute_class_overview, compute_subject_stats, zero_distribution

logger = logging.getLogger(__name__)

STUDENT_REPORT_POLICY = RankPolicy()
CLASS_REPORT_POLICY = RankPolicy()


# ── Helpers ─────────────────────────────────────────────────────────

def _exam_details(exam: Exam) -> Dict[str, Any]:
    return {
        "id": exam.id,
        "name": exam.name,
        "academic_year": exam.academic_year,
        "start_date": exam.start_date,
        "end_date": exam.end_date,
    }


def _student_details(student: Student, school_class: Optional[SchoolClass]) -> Dict[str, Any]:
    return {
        "id": student.id,
        "name": student.name,
        "class_id": student.class_id,
        "class_name": school_class.name if school_class else None,
        "form": student.form,
        "education_level": student.education_level,
    }


def _policy_details(policy: RankPolicy) -> Dict[str, Any]:
    return {"key": policy.key, "descending": policy.descending, "dense": policy.dense}


def _warn(warnings: List[DataQualityWarning], code: str, message: str, student_id: Optional[str]) -> None:
    logger.warning("%s (student %s)", message, student_id)
    warnings.append(DataQualityWarning(code, message, student_id))


def _collapse_duplicates(
    results: Sequence[SubjectResult],
    warnings: List[DataQualityWarning],
) -> List[SubjectResult]:
    """One result per subject: the member the duplicate repair would keep."""
    by_subject: Dict[Any, List[SubjectResult]] = {}
    for result in results:
        by_subject.setdefault(result.subject_id, []).append(result)

    kept = []
    for subject_id, members in by_subject.items():
        if len(members) == 1:
            kept.append(members[0])
            continue
        keep_id = keep_order([{"id": m.id, "updated_at": m.updated_at} for m in members])[0]["id"]
        _warn(
            warnings, "duplicate_result",
            f"{len(members)} results for subject {subject_id}; only {keep_id} is counted.",
            members[0].student_id,
        )
        kept.extend(m for m in members if m.id == keep_id)
    return kept


def _usable_results(
    results: Sequence[SubjectResult],
    level: str,
    config: GradingConfig,
    warnings: List[DataQualityWarning],
) -> List[SubjectResult]:
    """Drop results without usable marks; fill in grade/points that were never stored."""
    usable = []
    for result in results:
        if result.marks_obtained is None:
            _warn(warnings, "missing_marks", f"Result {result.id} has no marks and was skipped.", result.student_id)
            continue
        if result.grade is None or result.points is None:
            try:
                derived = grade_and_points(result.marks_obtained, level, config)
            except InputValidationError as exc:
                _warn(warnings, "invalid_marks", f"Result {result.id} skipped: {exc}", result.student_id)
                continue
            result = result.with_changes(grade=derived["grade"], points=derived["points"])
        usable.append(result)
    return usable


def _subject_row(entry: ClassifiedResult, level: str, best_ids: set, config: GradingConfig) -> Dict[str, Any]:
    result = entry.result
    table = config.grade_table(level)
    remark = next((b.remark for b in table.bands if b.grade == result.grade), "-")
    return {
        "result_id": result.id,
        "subject_id": result.subject_id,
        "subject": entry.name,
        "code": entry.code,
        "marks": result.marks_obtained,
        "grade": result.grade,
        "points": result.points,
        "remark": remark,
        "is_principal": entry.is_principal if level == A_LEVEL else None,
        "classification": entry.classification.source if level == A_LEVEL else None,
        "passed": is_passed(result.grade, level, principal=entry.is_principal or level != A_LEVEL),
        "in_best": result.id in best_ids,
    }


def empty_summary(level: str, config: GradingConfig) -> Dict[str, Any]:
    return {
        "total_marks": 0,
        "average_marks": 0.0,
        "total_points": 0,
        "best_points": 0,
        "best_subject_count": 0,
        "missing_slots": 0,
        "division": NO_DIVISION,
        "rank": None,
        "total_students": 0,
        "grade_distribution": zero_distribution(config.grade_table(level).grades),
    }


def summarize_student(
    student: Student,
    results: Sequence[SubjectResult],
    directory,
    config: GradingConfig,
    warnings: List[DataQualityWarning],
) -> Dict[str, Any]:
    """
    Subject rows and an unranked summary for one student's results in one exam.
    Raises ConfigurationError if the grade or division tables cannot place the student.
    """
    level = normalize_level(student.education_level)
    usable = _usable_results(_collapse_duplicates(results, warnings), level, config, warnings)

    combination = None
    if level == A_LEVEL:
        combination = directory.get_combination(student.id)
        if combination is None:
            _warn(
                warnings, "missing_subject_combination",
                "No subject combination on record; only explicitly flagged results count as principal.",
                student.id,
            )

    subjects = {}
    for result in usable:
        subject = directory.get_subject(result.subject_id)
        if subject is not None:
            subjects[result.subject_id] = subject

    classified = classify_results(usable, level, combination, subjects)
    best = select_best(classified, level, config, warnings)
    best_ids = {b.result.id for b in best}

    rows = [_subject_row(c, level, best_ids, config) for c in sorted(classified, key=lambda c: (c.code, str(c.result.id)))]

    if not rows:
        return {"student_id": student.id, "rows": [], "summary": empty_summary(level, config), "best": []}

    selection = division_for_selection([b.points for b in best], level, config)
    total_marks = sum(float(r["marks"]) for r in rows)
    summary = {
        "total_marks": _safe_float(total_marks),
        "average_marks": _safe_float(total_marks / len(rows)),
        "total_points": int(sum(int(r["points"]) for r in rows)),
        "best_points": selection["best_points"],
        "best_subject_count": len(best),
        "missing_slots": selection["missing_slots"],
        "division": selection["division"],
        "rank": None,
        "total_students": 0,
        "grade_distribution": _grade_distribution(rows, config.grade_table(level).grades),
    }
    return {"student_id": student.id, "rows": rows, "summary": summary, "best": [b.code for b in best]}


def _grade_distribution(rows: Sequence[Dict[str, Any]], grades: Sequence[str]) -> Dict[str, int]:
    counts = zero_distribution(grades)
    for row in rows:
        if row["grade"] in counts:
            counts[row["grade"]] += 1
    return counts


def _group_by_student(results: Sequence[SubjectResult]) -> Dict[str, List[SubjectResult]]:
    grouped: Dict[str, List[SubjectResult]] = {}
    for result in results:
        grouped.setdefault(result.student_id, []).append(result)
    return grouped


def _class_cohort(
    class_id: Optional[str],
    exam_id: str,
    store,
    directory,
    must_include: Optional[Student] = None,
) -> Tuple[List[Student], Dict[str, List[SubjectResult]]]:
    students = directory.students_in_class(class_id) if class_id else []
    if must_include is not None and all(s.id != must_include.id for s in students):
        students.append(must_include)
    results = store.find_all_by(exam_id, class_id, [s.id for s in students])
    return students, _group_by_student(results)


# ── Student Report ──────────────────────────────────────────────────

def build_student_report(
    student_id: str,
    exam_id: str,
    store,
    directory,
    config: Optional[GradingConfig] = None,
    policy: RankPolicy = STUDENT_REPORT_POLICY,
) -> Dict[str, Any]:
    """Report for one student in one exam, ranked within their class."""
    config = config or config_store.current()
    student = directory.get_student(student_id)
    if student is None:
        raise NotFoundError("Student", student_id)
    exam = directory.get_exam(exam_id)
    if exam is None:
        raise NotFoundError("Exam", exam_id)

    level = normalize_level(student.education_level)
    school_class = directory.get_class(student.class_id) if student.class_id else None
    students, grouped = _class_cohort(student.class_id, exam_id, store, directory, must_include=student)

    warnings: List[DataQualityWarning] = []
    own = summarize_student(student, grouped.get(student.id, []), directory, config, warnings)

    cohort = [own["summary"] | {"student_id": student.id}] if own["rows"] else []
    for other in students:
        if other.id == student.id or not grouped.get(other.id):
            continue
        try:
            bundle = summarize_student(other, grouped[other.id], directory, config, [])
        except ConfigurationError as exc:
            logger.error("Left student %s out of the ranking cohort: %s", other.id, exc)
            continue
        if bundle["rows"]:
            cohort.append(bundle["summary"] | {"student_id": other.id})

    report: Dict[str, Any] = {
        "report_type": "student",
        "education_level": level,
        "student": _student_details(student, school_class),
        "exam": _exam_details(exam),
        "is_empty": not own["rows"],
        "subject_results": own["rows"],
        "principal_subjects": [r for r in own["rows"] if r["is_principal"]] if level == A_LEVEL else [],
        "subsidiary_subjects": [r for r in own["rows"] if not r["is_principal"]] if level == A_LEVEL else [],
        "best_subjects": own["best"],
        "summary": own["summary"],
        "grade_scale": get_all_grade_thresholds(level, config),
        "rank_policy": _policy_details(policy),
        "warnings": [w.as_dict() for w in warnings],
    }

    report["summary"]["total_students"] = len(cohort)
    if report["is_empty"]:
        report["message"] = "No results recorded for this student in this exam."
    else:
        ranks = rank_by_policy(cohort, policy)
        report["summary"]["rank"] = ranks.get(student.id)
    return _sanitize(report)


# ── Class Report ────────────────────────────────────────────────────

def build_class_report(
    class_id: str,
    exam_id: str,
    store,
    directory,
    config: Optional[GradingConfig] = None,
    policy: RankPolicy = CLASS_REPORT_POLICY,
) -> Dict[str, Any]:
    """Report for every student of a class in one exam plus class-wide aggregates."""
    config = config or config_store.current()
    school_class = directory.get_class(class_id)
    if school_class is None:
        raise NotFoundError("Class", class_id)
    exam = directory.get_exam(exam_id)
    if exam is None:
        raise NotFoundError("Exam", exam_id)

    level = normalize_level(school_class.education_level)
    students, grouped = _class_cohort(class_id, exam_id, store, directory)
    enrolled = {s.id for s in students}

    warnings: List[DataQualityWarning] = []
    errors: List[Dict[str, Any]] = []
    for stray in sorted(sid for sid in grouped if sid not in enrolled):
        _warn(warnings, "result_outside_class",
              f"Results tagged with class {class_id} belong to a student not enrolled in it.", stray)

    rows: List[Dict[str, Any]] = []
    ranked: List[Dict[str, Any]] = []
    subject_rows: List[Dict[str, Any]] = []
    without_results: List[str] = []

    for student in students:
        student_results = grouped.get(student.id, [])
        row = {"student_id": student.id, "name": student.name, "form": student.form}
        student_level = normalize_level(student.education_level) or level
        if not student_results:
            without_results.append(student.id)
            rows.append(row | {"subject_results": [], "best_subjects": [],
                               "summary": empty_summary(student_level, config)})
            continue
        try:
            bundle = summarize_student(student, student_results, directory, config, warnings)
        except ConfigurationError as exc:
            logger.error("Could not compute results for student %s: %s", student.id, exc)
            errors.append({"student_id": student.id, "error": str(exc)})
            rows.append(row | {"subject_results": [], "best_subjects": [],
                               "summary": empty_summary(student_level, config), "error": str(exc)})
            continue
        if not bundle["rows"]:
            without_results.append(student.id)
        else:
            ranked.append(bundle["summary"] | {"student_id": student.id})
            subject_rows.extend(
                {"student_id": student.id, **{k: r[k] for k in
                 ("subject_id", "code", "subject", "marks", "grade", "points", "passed")}}
                for r in bundle["rows"]
            )
        rows.append(row | {"subject_results": bundle["rows"], "best_subjects": bundle["best"],
                           "summary": bundle["summary"]})

    ranks = rank_by_policy(ranked, policy)
    positions = subject_positions(subject_rows)
    codes = {str(r["subject_id"]): r["code"] for r in subject_rows}
    for row in rows:
        row["summary"]["rank"] = ranks.get(row["student_id"])
        row["summary"]["total_students"] = len(ranked)
        row["subject_positions"] = {
            codes[subject_id]: by_student[row["student_id"]]
            for subject_id, by_student in sorted(positions.items())
            if row["student_id"] in by_student
        }

    # Ranked students first in rank order, the rest by id
    rows.sort(key=lambda r: (r["summary"]["rank"] is None, r["summary"]["rank"] or 0, r["student_id"]))

    grades = config.grade_table(level).grades
    overview = compute_class_overview(ranked, config.division_table(level).divisions)

    report = {
        "report_type": "class",
        "education_level": level,
        "class": {"id": school_class.id, "name": school_class.name, "education_level": level},
        "exam": _exam_details(exam),
        "students": rows,
        "subjects": compute_subject_stats(subject_rows, grades),
        **overview,
        "total_students": len(ranked),
        "enrolled_students": len(students),
        "students_without_results": sorted(without_results),
        "grade_scale": get_all_grade_thresholds(level, config),
        "rank_policy": _policy_details(policy),
        "warnings": [w.as_dict() for w in warnings],
        "errors": errors,
    }
    return _sanitize(report)
