"""
grading.py — Grade and division tables for O-Level and A-Level.

Provides:
- GradeTable / DivisionTable: validated, immutable band tables per education level
- GradingConfig: one snapshot of every table, swapped whole by GradingConfigStore
- grade_and_points: marks -> grade, points, remark
- division_for / division_for_selection: best-N point total -> division
- Remarks, pass rules and the grade scale legend used by reports
"""

import json
import math
import numbers
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from core.errors import ConfigurationError, InputValidationError
from core.models import A_LEVEL, EDUCATION_LEVELS, O_LEVEL, normalize_level

FAIL_DIVISION = "0"
NO_DIVISION = "N/A"


# ── Bands and tables ────────────────────────────────────────────────

@dataclass(frozen=True)
class GradeBand:
    min: float
    max: float
    grade: str
    points: int
    remark: str = ""


@dataclass(frozen=True)
class DivisionBand:
    min: int
    max: int
    division: str


def _check_contiguous(level: str, kind: str, bands: Sequence[Any]) -> None:
    """Bands are sorted by min; each must start within one unit after the previous ends."""
    for band in bands:
        if band.min > band.max:
            raise ConfigurationError(f"{level} {kind} band {band} has min above max.")
    for prev, nxt in zip(bands, bands[1:]):
        step = nxt.min - prev.max
        if step <= 0:
            raise ConfigurationError(f"{level} {kind} bands overlap between {prev.max} and {nxt.min}.")
        if step > 1:
            raise ConfigurationError(f"{level} {kind} bands leave a gap between {prev.max} and {nxt.min}.")


@dataclass(frozen=True)
class GradeTable:
    education_level: str
    bands: Tuple[GradeBand, ...]

    def __post_init__(self):
        if not self.bands:
            raise ConfigurationError(f"{self.education_level} grade table has no bands.")
        ordered = tuple(sorted(self.bands, key=lambda b: b.min))
        object.__setattr__(self, "bands", ordered)
        _check_contiguous(self.education_level, "grade", ordered)
        if ordered[0].min != 0 or ordered[-1].max != 100:
            raise ConfigurationError(
                f"{self.education_level} grade table must cover 0-100, "
                f"covers {ordered[0].min}-{ordered[-1].max}."
            )
        letters = [b.grade for b in ordered]
        if len(set(letters)) != len(letters):
            raise ConfigurationError(f"{self.education_level} grade table repeats a grade letter.")
        for band in ordered:
            if not isinstance(band.points, int) or isinstance(band.points, bool) or band.points < 1:
                raise ConfigurationError(f"{self.education_level} grade {band.grade} needs positive integer points.")

    def lookup(self, marks: float) -> GradeBand:
        if marks < self.bands[0].min or marks > self.bands[-1].max:
            raise ConfigurationError(f"No {self.education_level} grade band matches marks {marks}.")
        for band in reversed(self.bands):
            if marks >= band.min:
                return band
        raise ConfigurationError(f"No {self.education_level} grade band matches marks {marks}.")

    @property
    def grades(self) -> List[str]:
        """Grade letters best first."""
        return [b.grade for b in reversed(self.bands)]

    @property
    def worst_points(self) -> int:
        return max(b.points for b in self.bands)

    def points_for_grade(self, grade: str) -> Optional[int]:
        for band in self.bands:
            if band.grade == grade:
                return band.points
        return None


@dataclass(frozen=True)
class DivisionTable:
    education_level: str
    bands: Tuple[DivisionBand, ...]
    fail_division: str = FAIL_DIVISION

    def __post_init__(self):
        if not self.bands:
            raise ConfigurationError(f"{self.education_level} division table has no bands.")
        ordered = tuple(sorted(self.bands, key=lambda b: b.min))
        object.__setattr__(self, "bands", ordered)
        _check_contiguous(self.education_level, "division", ordered)

    def lookup(self, point_total: float) -> str:
        if point_total > self.bands[-1].max:
            return self.fail_division
        if point_total < self.bands[0].min:
            raise ConfigurationError(
                f"{self.education_level} point total {point_total} is below every division band."
            )
        for band in reversed(self.bands):
            if point_total >= band.min:
                return band.division
        raise ConfigurationError(f"No {self.education_level} division band matches {point_total}.")

    @property
    def divisions(self) -> List[str]:
        """Division codes best first, terminal fail division last."""
        ordered = [b.division for b in self.bands]
        if self.fail_division not in ordered:
            ordered.append(self.fail_division)
        return ordered


# ── Default NECTA tables ────────────────────────────────────────────

O_LEVEL_GRADES = (
    GradeBand(75, 100, "A", 1, "Excellent"),
    GradeBand(65, 74, "B", 2, "Very Good"),
    GradeBand(45, 64, "C", 3, "Good"),
    GradeBand(30, 44, "D", 4, "Satisfactory"),
    GradeBand(0, 29, "F", 5, "Fail"),
)

A_LEVEL_GRADES = (
    GradeBand(80, 100, "A", 1, "Excellent"),
    GradeBand(70, 79, "B", 2, "Very Good"),
    GradeBand(60, 69, "C", 3, "Good"),
    GradeBand(50, 59, "D", 4, "Satisfactory"),
    GradeBand(40, 49, "E", 5, "Pass"),
    GradeBand(35, 39, "S", 6, "Subsidiary Pass"),
    GradeBand(0, 34, "F", 7, "Fail"),
)

# Best-7 totals run 7-35.
O_LEVEL_DIVISIONS = (
    DivisionBand(7, 17, "I"),
    DivisionBand(18, 21, "II"),
    DivisionBand(22, 25, "III"),
    DivisionBand(26, 33, "IV"),
    DivisionBand(34, 35, FAIL_DIVISION),
)

# Best-3 principal totals run 3-21.
A_LEVEL_DIVISIONS = (
    DivisionBand(3, 9, "I"),
    DivisionBand(10, 12, "II"),
    DivisionBand(13, 17, "III"),
    DivisionBand(18, 19, "IV"),
    DivisionBand(20, 21, FAIL_DIVISION),
)

BEST_SUBJECT_COUNTS = {O_LEVEL: 7, A_LEVEL: 3}


# ── Configuration snapshot ──────────────────────────────────────────

@dataclass(frozen=True)
class GradingConfig:
    grade_tables: Mapping[str, GradeTable]
    division_tables: Mapping[str, DivisionTable]
    best_subject_counts: Mapping[str, int] = field(default_factory=lambda: dict(BEST_SUBJECT_COUNTS))

    def __post_init__(self):
        for level in EDUCATION_LEVELS:
            if level not in self.grade_tables:
                raise ConfigurationError(f"Missing grade table for {level}.")
            if level not in self.division_tables:
                raise ConfigurationError(f"Missing division table for {level}.")
            count = self.best_subject_counts.get(level)
            if not isinstance(count, int) or count < 1:
                raise ConfigurationError(f"Best subject count for {level} must be a positive integer.")
        object.__setattr__(self, "grade_tables", MappingProxyType(dict(self.grade_tables)))
        object.__setattr__(self, "division_tables", MappingProxyType(dict(self.division_tables)))
        object.__setattr__(self, "best_subject_counts", MappingProxyType(dict(self.best_subject_counts)))

    def grade_table(self, education_level: str) -> GradeTable:
        return self.grade_tables[_validate_level(education_level)]

    def division_table(self, education_level: str) -> DivisionTable:
        return self.division_tables[_validate_level(education_level)]

    def best_count(self, education_level: str) -> int:
        return self.best_subject_counts[_validate_level(education_level)]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for level in EDUCATION_LEVELS:
            division_table = self.division_tables[level]
            out[level] = {
                "best_count": self.best_subject_counts[level],
                "grades": [
                    {"min": b.min, "max": b.max, "grade": b.grade, "points": b.points, "remark": b.remark}
                    for b in self.grade_tables[level].bands
                ],
                "divisions": [
                    {"min": b.min, "max": b.max, "division": b.division}
                    for b in division_table.bands
                ],
                "fail_division": division_table.fail_division,
            }
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GradingConfig":
        grade_tables, division_tables, counts = {}, {}, {}
        for raw_level, spec in data.items():
            level = normalize_level(raw_level)
            if level is None:
                raise ConfigurationError(f"Unknown education level '{raw_level}' in grading config.")
            try:
                grade_tables[level] = GradeTable(
                    level, tuple(GradeBand(**band) for band in spec["grades"])
                )
                division_tables[level] = DivisionTable(
                    level,
                    tuple(DivisionBand(**band) for band in spec["divisions"]),
                    fail_division=spec.get("fail_division", FAIL_DIVISION),
                )
            except (KeyError, TypeError) as exc:
                raise ConfigurationError(f"Malformed {level} grading config: {exc}") from exc
            counts[level] = spec.get("best_count", BEST_SUBJECT_COUNTS[level])
        return cls(grade_tables, division_tables, counts)


def default_config() -> GradingConfig:
    return GradingConfig(
        grade_tables={
            O_LEVEL: GradeTable(O_LEVEL, O_LEVEL_GRADES),
            A_LEVEL: GradeTable(A_LEVEL, A_LEVEL_GRADES),
        },
        division_tables={
            O_LEVEL: DivisionTable(O_LEVEL, O_LEVEL_DIVISIONS),
            A_LEVEL: DivisionTable(A_LEVEL, A_LEVEL_DIVISIONS),
        },
    )


def load_grading_config(path: Union[str, Path]) -> GradingConfig:
    """Read a grading config JSON document (same shape as GradingConfig.to_dict())."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read grading config '{path}': {exc}") from exc
    return GradingConfig.from_dict(data)


class GradingConfigStore:
    """
    Holds the current GradingConfig snapshot.

    Readers take the reference once per calculation; replace() builds and
    validates a complete snapshot before swapping it in.
    """

    def __init__(self, config: Optional[GradingConfig] = None):
        self._lock = threading.Lock()
        self._config = config or default_config()

    def current(self) -> GradingConfig:
        with self._lock:
            return self._config

    def replace(self, config: Union[GradingConfig, Mapping[str, Any]]) -> GradingConfig:
        snapshot = config if isinstance(config, GradingConfig) else GradingConfig.from_dict(config)
        with self._lock:
            self._config = snapshot
        return snapshot

    def replace_level(self, education_level: str, spec: Mapping[str, Any]) -> GradingConfig:
        """Swap one level's tables; the other level is carried over from the current snapshot."""
        level = _validate_level(education_level)
        with self._lock:
            data = self._config.to_dict()
            data[level] = dict(spec)
            snapshot = GradingConfig.from_dict(data)
            self._config = snapshot
        return snapshot

    def reset(self) -> GradingConfig:
        return self.replace(default_config())


config_store = GradingConfigStore()


# ── Validation helpers ──────────────────────────────────────────────

def _validate_level(education_level: Any) -> str:
    level = normalize_level(education_level)
    if level is None:
        raise InputValidationError(f"Unknown education level: {education_level!r}.")
    return level


def validate_marks(marks: Any) -> float:
    """Marks must be a real number in [0, 100]; nothing is clamped."""
    if isinstance(marks, bool) or not isinstance(marks, numbers.Real):
        raise InputValidationError(f"Marks must be a number, got {marks!r}.")
    value = float(marks)
    if math.isnan(value) or value < 0 or value > 100:
        raise InputValidationError(f"Marks must be between 0 and 100, got {marks!r}.")
    return value


# ── Calculators ─────────────────────────────────────────────────────

def grade_and_points(
    marks: Any,
    education_level: str,
    config: Optional[GradingConfig] = None,
) -> Dict[str, Any]:
    """Return {"grade", "points", "remark"} for a mark under the level's grade table."""
    value = validate_marks(marks)
    level = _validate_level(education_level)
    band = (config or config_store.current()).grade_table(level).lookup(value)
    return {"grade": band.grade, "points": band.points, "remark": band.remark}


def division_for(
    point_total: float,
    education_level: str,
    config: Optional[GradingConfig] = None,
) -> str:
    """Division for a best-N point total; totals beyond every band are the fail division."""
    if isinstance(point_total, bool) or not isinstance(point_total, numbers.Real):
        raise InputValidationError(f"Point total must be a number, got {point_total!r}.")
    level = _validate_level(education_level)
    return (config or config_store.current()).division_table(level).lookup(point_total)


def division_for_selection(
    points: Sequence[int],
    education_level: str,
    config: Optional[GradingConfig] = None,
) -> Dict[str, Any]:
    """
    Division for an already-selected best-N subset.

    Slots the student did not fill count at the level's worst point value,
    so an incomplete sitting never ranks above a complete one.
    """
    cfg = config or config_store.current()
    level = _validate_level(education_level)
    required = cfg.best_count(level)
    missing = max(0, required - len(points))
    best_points = int(sum(points))
    padded = best_points + missing * cfg.grade_table(level).worst_points
    return {
        "best_points": best_points,
        "padded_points": padded,
        "missing_slots": missing,
        "division": cfg.division_table(level).lookup(padded),
    }


def get_remarks(grade: Optional[str], education_level: str, config: Optional[GradingConfig] = None) -> str:
    table = (config or config_store.current()).grade_table(education_level)
    for band in table.bands:
        if band.grade == grade:
            return band.remark
    return "-"


def is_passed(grade: Optional[str], education_level: str, principal: bool = True) -> bool:
    """O-Level passes A-D; A-Level principal passes A-E, subsidiary passes A-S."""
    level = _validate_level(education_level)
    if level == O_LEVEL:
        return grade in ("A", "B", "C", "D")
    if principal:
        return grade in ("A", "B", "C", "D", "E")
    return grade in ("A", "B", "C", "D", "E", "S")


def get_all_grade_thresholds(
    education_level: str,
    config: Optional[GradingConfig] = None,
) -> List[Dict[str, Any]]:
    """Return the full grade scale, best grade first, for legends and reference."""
    table = (config or config_store.current()).grade_table(education_level)
    return [
        {
            "min": band.min,
            "max": band.max,
            "label": band.grade,
            "points": band.points,
            "description": band.remark,
        }
        for band in reversed(table.bands)
    ]


def get_mean_grade(scores, education_level: str, config: Optional[GradingConfig] = None) -> Dict[str, Any]:
    """Compute mean score and return its grade info."""
    valid = []
    for s in scores:
        try:
            valid.append(validate_marks(s))
        except InputValidationError:
            continue
    if not valid:
        return {"mean": None, "grade": "-", "points": 0}
    mean = sum(valid) / len(valid)
    info = grade_and_points(mean, education_level, config)
    info["mean"] = round(mean, 2)
    return info
