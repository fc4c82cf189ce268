"""
Report routes — student and class result reports.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from core.service import ResultsEngine
from routes.deps import get_engine, translate_errors

router = APIRouter()


@router.get("/student/{student_id}/{exam_id}")
async def student_report(
    student_id: str,
    exam_id: str,
    dense: Optional[bool] = None,
    engine: ResultsEngine = Depends(get_engine),
):
    """One student's results in one exam, ranked within their class."""
    with translate_errors():
        return engine.build_student_report(student_id, exam_id, dense=dense)


@router.get("/class/{class_id}/{exam_id}")
async def class_report(
    class_id: str,
    exam_id: str,
    dense: Optional[bool] = None,
    rank_by: Optional[str] = None,
    engine: ResultsEngine = Depends(get_engine),
):
    """Every student in a class for one exam, with subject statistics and divisions."""
    with translate_errors():
        return engine.build_class_report(class_id, exam_id, rank_by=rank_by, dense=dense)
