"""
selection.py — Principal classification and best-N subject selection.

A-Level results do not always carry a reliable principal flag. Each result is
classified once per report build into one of:
- Explicit: the result's own is_principal flag
- InferredFromCombination: the student's subject combination lists the subject
- Unclassified: neither source says anything; treated as not principal

Selection then takes the best 3 principal results (A-Level) or the best 7
results (O-Level). Ordering is points ascending, marks descending, subject code,
result id: it never depends on the order the store returned rows in.
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Union

from core.errors import DataQualityWarning
from core.grading import GradingConfig, config_store
from core.models import A_LEVEL, Subject, SubjectCombination, SubjectResult, normalize_level

logger = logging.getLogger(__name__)


# ── Classification ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Explicit:
    principal: bool
    source: str = "explicit"


@dataclass(frozen=True)
class InferredFromCombination:
    principal: bool
    combination_code: str
    source: str = "inferred"


@dataclass(frozen=True)
class Unclassified:
    principal: bool = False
    source: str = "unclassified"


Classification = Union[Explicit, InferredFromCombination, Unclassified]


@dataclass(frozen=True)
class ClassifiedResult:
    result: SubjectResult
    code: str
    name: str
    classification: Classification

    @property
    def is_principal(self) -> bool:
        return self.classification.principal

    @property
    def points(self) -> int:
        return int(self.result.points)

    @property
    def marks(self) -> float:
        return float(self.result.marks_obtained)


def classify(
    result: SubjectResult,
    education_level: str,
    combination: Optional[SubjectCombination] = None,
    subject: Optional[Subject] = None,
) -> Classification:
    if normalize_level(education_level) != A_LEVEL:
        return Unclassified()

    if result.is_principal is not None:
        classification: Classification = Explicit(bool(result.is_principal))
    elif combination is not None and result.subject_id in combination.principal_subject_ids:
        classification = InferredFromCombination(True, combination.code)
    elif combination is not None and result.subject_id in combination.subsidiary_subject_ids:
        classification = InferredFromCombination(False, combination.code)
    else:
        classification = Unclassified()

    # General Studies and the like never count, whatever the flag says.
    if classification.principal and subject is not None and not subject.principal_eligible:
        if isinstance(classification, Explicit):
            return Explicit(False)
        return InferredFromCombination(False, classification.combination_code)
    return classification


def classify_results(
    results: Sequence[SubjectResult],
    education_level: str,
    combination: Optional[SubjectCombination] = None,
    subjects: Optional[Mapping[str, Subject]] = None,
) -> List[ClassifiedResult]:
    subjects = subjects or {}
    classified = []
    for result in results:
        subject = subjects.get(result.subject_id)
        classified.append(
            ClassifiedResult(
                result=result,
                code=subject.code if subject else str(result.subject_id),
                name=subject.name if subject else "Unknown Subject",
                classification=classify(result, education_level, combination, subject),
            )
        )
    return classified


# ── Best-N selection ────────────────────────────────────────────────

def _selection_key(entry: ClassifiedResult):
    return (entry.points, -entry.marks, entry.code, str(entry.result.id))


def select_best(
    classified: Sequence[ClassifiedResult],
    education_level: str,
    config: Optional[GradingConfig] = None,
    warnings: Optional[List[DataQualityWarning]] = None,
) -> List[ClassifiedResult]:
    """Best-N subset of already-classified results; points and marks must be present."""
    cfg = config or config_store.current()
    level = normalize_level(education_level)
    required = cfg.best_count(level)

    pool = [c for c in classified if c.is_principal] if level == A_LEVEL else list(classified)
    chosen = sorted(pool, key=_selection_key)[:required]

    if level == A_LEVEL and len(pool) < required:
        student_id = classified[0].result.student_id if classified else None
        warning = DataQualityWarning(
            "insufficient_principal_subjects",
            f"Only {len(pool)} principal subject result(s) found; {required} are needed for a full division.",
            student_id,
        )
        logger.warning("%s (student %s)", warning.message, student_id)
        if warnings is not None:
            warnings.append(warning)
    return chosen


def select_best_subset(
    results: Sequence[SubjectResult],
    education_level: str,
    combination: Optional[SubjectCombination] = None,
    subjects: Optional[Mapping[str, Subject]] = None,
    config: Optional[GradingConfig] = None,
    warnings: Optional[List[DataQualityWarning]] = None,
) -> List[SubjectResult]:
    """
    Select the results counted toward a student's aggregate points.

    A-Level: best 3 principal results (flag first, combination as fallback).
    O-Level: best 7 results. Fewer available -> all of them.
    """
    classified = classify_results(results, education_level, combination, subjects)
    return [c.result for c in select_best(classified, education_level, config, warnings)]
