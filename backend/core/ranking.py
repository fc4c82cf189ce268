"""
ranking.py — Cohort ranking.

Ranks a cohort (students sharing one class and one exam) on a numeric key:
- Direction is always given by the caller; the engine never infers it
- Competition ranking ("1, 2, 2, 4") by default, dense ("1, 2, 2, 3") on request
- Keys are compared at 2 decimal places, the precision reports display
- Output order among tied students follows student id
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import pandas as pd

from core.errors import InputValidationError

AVERAGE_MARKS = "average_marks"
BEST_POINTS = "best_points"
RANK_KEYS = (AVERAGE_MARKS, BEST_POINTS)


@dataclass(frozen=True)
class RankPolicy:
    """Which summary field a report ranks on, in which direction, with which tie convention."""

    key: str = AVERAGE_MARKS
    descending: bool = True
    dense: bool = False

    @classmethod
    def for_key(cls, key: str, dense: bool = False) -> "RankPolicy":
        if key == AVERAGE_MARKS:
            return cls(AVERAGE_MARKS, descending=True, dense=dense)
        if key == BEST_POINTS:
            # Fewer points is a better result.
            return cls(BEST_POINTS, descending=False, dense=dense)
        raise InputValidationError(f"Unknown rank key '{key}'. Use one of {list(RANK_KEYS)}.")


def rank(cohort: Sequence[Mapping[str, Any]], *, descending: bool, dense: bool = False) -> List[Dict[str, Any]]:
    """
    Rank cohort items of the form {"student_id", "key"}.

    Returns [{"student_id", "rank"}] best first. totalStudents for a report is
    simply len(cohort).
    """
    if not cohort:
        return []

    df = pd.DataFrame(
        [{"student_id": str(item["student_id"]), "key": item.get("key")} for item in cohort]
    )
    if df["student_id"].duplicated().any():
        dupes = sorted(df.loc[df["student_id"].duplicated(), "student_id"].unique())
        raise InputValidationError(f"Cohort lists students more than once: {dupes}")

    keys = pd.to_numeric(df["key"], errors="coerce")
    if keys.isna().any():
        bad = df.loc[keys.isna(), "student_id"].tolist()
        raise InputValidationError(f"Cohort has missing or non-numeric keys for {bad}")

    df["key"] = keys.round(2)
    df["rank"] = df["key"].rank(method="dense" if dense else "min", ascending=not descending).astype(int)
    df = df.sort_values(["rank", "student_id"], kind="mergesort")

    return [{"student_id": sid, "rank": int(r)} for sid, r in zip(df["student_id"], df["rank"])]


def rank_by_policy(summaries: Iterable[Mapping[str, Any]], policy: RankPolicy) -> Dict[str, int]:
    """Rank {"student_id", <policy.key>, ...} summaries; returns student_id -> rank."""
    cohort = [{"student_id": s["student_id"], "key": s[policy.key]} for s in summaries]
    return {row["student_id"]: row["rank"] for row in rank(cohort, descending=policy.descending, dense=policy.dense)}


def subject_positions(rows: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, int]]:
    """
    Position of each student within each subject, by marks (higher is better).
    rows: {"student_id", "subject_id", "marks"}. Returns subject_id -> {student_id: position}.
    """
    by_subject: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        by_subject.setdefault(str(row["subject_id"]), []).append(
            {"student_id": row["student_id"], "key": row["marks"]}
        )
    return {
        subject_id: {r["student_id"]: r["rank"] for r in rank(cohort, descending=True)}
        for subject_id, cohort in by_subject.items()
    }
