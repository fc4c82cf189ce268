"""
Grading routes — grade scales and the editable grading tables.
"""

from fastapi import APIRouter, Depends, HTTPException

from core.errors import ConfigurationError, InputValidationError
from core.service import ResultsEngine
from routes.deps import get_engine, translate_errors

router = APIRouter()


@router.get("/scale/{education_level}")
async def scale(education_level: str, engine: ResultsEngine = Depends(get_engine)):
    with translate_errors():
        return engine.grading_scale(education_level)


@router.get("/config")
async def get_grading_config(engine: ResultsEngine = Depends(get_engine)):
    return engine.grading_config()


@router.put("/config")
async def put_grading_config(payload: dict, engine: ResultsEngine = Depends(get_engine)):
    """Replace both levels' tables at once. Rejected configs leave the current one in place."""
    if not payload:
        raise HTTPException(400, "No grading config provided.")
    with translate_errors():
        try:
            return engine.replace_grading_config(payload)
        except ConfigurationError as exc:
            raise InputValidationError(str(exc)) from exc
