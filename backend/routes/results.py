"""
Result routes — grade calculation and marks entry.
"""

from fastapi import APIRouter, Depends

from core.service import ResultsEngine
from routes.deps import get_engine, require, translate_errors

router = APIRouter()


@router.post("/grade")
async def grade(payload: dict, engine: ResultsEngine = Depends(get_engine)):
    """Grade, points and remark for a mark at an education level."""
    marks, level = require(payload, "marks", "education_level")
    with translate_errors():
        return engine.compute_subject_result(marks, level)


@router.post("")
async def record_marks(payload: dict, engine: ResultsEngine = Depends(get_engine)):
    """Enter marks for a student's subject in an exam (updates the existing result if any)."""
    student_id, exam_id, subject_id, marks = require(payload, "student_id", "exam_id", "subject_id", "marks")
    with translate_errors():
        return engine.record_marks(
            str(student_id), str(exam_id), str(subject_id), marks,
            is_principal=payload.get("is_principal"),
        )


@router.patch("/{result_id}")
async def correct_marks(result_id: str, payload: dict, engine: ResultsEngine = Depends(get_engine)):
    """Correct a result's marks; grade and points follow."""
    (marks,) = require(payload, "marks")
    with translate_errors():
        return engine.correct_marks(result_id, marks)


@router.delete("/{result_id}")
async def delete_result(result_id: str, engine: ResultsEngine = Depends(get_engine)):
    with translate_errors():
        engine.delete_result(result_id)
    return {"deleted": result_id}
