"""
Consistency routes — check and repair stored results.
"""

from fastapi import APIRouter, Depends

from core.service import ResultsEngine
from routes.deps import get_engine, translate_errors

router = APIRouter()


@router.get("/check")
def check(engine: ResultsEngine = Depends(get_engine)):
    """Duplicates, incorrect grades/points, missing fields and orphaned results."""
    with translate_errors():
        return engine.run_consistency_checks()


@router.post("/repair")
def repair(engine: ResultsEngine = Depends(get_engine)):
    """Delete duplicates, fix grades/points, then delete orphans."""
    with translate_errors():
        return engine.repair_consistency_issues()
