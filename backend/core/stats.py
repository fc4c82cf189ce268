"""
stats.py — pandas/numpy/scipy statistics for class reports.

Computes:
- Mark statistics (mean, median, mode, standard deviation)
- Per-subject stats (mean, median, highest/lowest, grade distribution, GPA, pass rate)
- Class overview (class average, division distribution, pass rate, examination GPA)
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats as sp_stats

PASSING_DIVISIONS = ("I", "II", "III", "IV")


# ── Helpers ─────────────────────────────────────────────────────────

def _safe_float(val) -> Optional[float]:
    """Convert to float or return None."""
    try:
        v = float(val)
        return None if np.isnan(v) or np.isinf(v) else round(v, 2)
    except (TypeError, ValueError):
        return None


def _sanitize(obj):
    """Recursively coerce numpy/pandas scalars to JSON-safe Python types."""
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating, float)):
        v = float(obj)
        return None if (np.isnan(v) or np.isinf(v)) else v
    return obj


def zero_distribution(labels: Iterable[str]) -> Dict[str, int]:
    return {label: 0 for label in labels}


def count_into(labels: Sequence[str], values: Iterable[Any]) -> Dict[str, int]:
    """Histogram over a fixed label set; values outside it are ignored."""
    counts = zero_distribution(labels)
    for v in values:
        if v in counts:
            counts[v] += 1
    return counts


# ── Mark statistics ─────────────────────────────────────────────────

def describe_marks(marks: Iterable[Any]) -> Dict[str, Optional[float]]:
    """Mean, median, mode and population standard deviation of a set of marks."""
    series = pd.to_numeric(pd.Series(list(marks), dtype="object"), errors="coerce").dropna()
    if series.empty:
        return {"mean": 0.0, "median": 0.0, "mode": 0.0, "std": 0.0, "count": 0}

    values = series.to_numpy(dtype=float)
    mode = sp_stats.mode(values, keepdims=False).mode
    return {
        "mean": _safe_float(values.mean()),
        "median": _safe_float(np.median(values)),
        "mode": _safe_float(mode),
        "std": _safe_float(values.std(ddof=0)),
        "count": int(len(values)),
    }


# ── Subject Statistics ──────────────────────────────────────────────

SUBJECT_ROW_COLUMNS = ["student_id", "subject_id", "code", "subject", "marks", "grade", "points", "passed"]


def compute_subject_stats(rows: Sequence[Mapping[str, Any]], grades: Sequence[str]) -> List[Dict[str, Any]]:
    """
    Per-subject statistics across a class.

    rows: one entry per (student, subject) with the SUBJECT_ROW_COLUMNS keys.
    grades: the education level's grade letters, best first.
    """
    if not rows:
        return []

    df = pd.DataFrame(list(rows), columns=SUBJECT_ROW_COLUMNS)
    df["marks"] = pd.to_numeric(df["marks"], errors="coerce")
    df["points"] = pd.to_numeric(df["points"], errors="coerce")

    subjects_data = []
    for (subject_id, code, name), group in df.groupby(["subject_id", "code", "subject"], sort=True):
        marks = group["marks"].dropna()
        if marks.empty:
            continue
        passed = group["passed"].astype(bool)
        subjects_data.append({
            "subject_id": str(subject_id),
            "code": str(code),
            "subject": str(name),
            "student_count": int(len(marks)),
            "mean": _safe_float(marks.mean()),
            "median": _safe_float(marks.median()),
            "std": _safe_float(marks.std(ddof=0)),
            "highest": _safe_float(marks.max()),
            "lowest": _safe_float(marks.min()),
            "grade_distribution": count_into(grades, group["grade"]),
            "gpa": _safe_float(group["points"].mean()),
            "pass_count": int(passed.sum()),
            "pass_rate": _safe_float(passed.sum() / len(group) * 100),
        })

    # Sort by mean descending, code breaks ties
    subjects_data.sort(key=lambda x: (-(x["mean"] or 0), x["code"]))
    return _sanitize(subjects_data)


# ── Class Overview ──────────────────────────────────────────────────

def compute_class_overview(
    summaries: Sequence[Mapping[str, Any]],
    divisions: Sequence[str],
) -> Dict[str, Any]:
    """
    Class-wide aggregates over students that have results.

    summaries: per-student summary blocks (average_marks, best_points, division).
    divisions: the level's division codes, best first.
    """
    if not summaries:
        return {
            "class_average": 0.0,
            "division_distribution": zero_distribution(divisions),
            "class_pass_rate": 0.0,
            "examination_gpa": 0.0,
            "average_statistics": describe_marks([]),
        }

    df = pd.DataFrame(
        [
            {
                "average_marks": s["average_marks"],
                "best_points": s["best_points"],
                "division": s["division"],
            }
            for s in summaries
        ]
    )
    passed = df["division"].isin(PASSING_DIVISIONS)

    return _sanitize({
        "class_average": _safe_float(df["average_marks"].mean()),
        "division_distribution": count_into(divisions, df["division"]),
        "class_pass_rate": _safe_float(passed.sum() / len(df) * 100),
        "examination_gpa": _safe_float(df["best_points"].mean()),
        "average_statistics": describe_marks(df["average_marks"]),
    })
