"""
Shared route helpers — engine lookup and error translation.
"""

import logging
from contextlib import contextmanager

from fastapi import HTTPException, Request

from core.errors import ConfigurationError, InputValidationError, NotFoundError, StoreError
from core.service import ResultsEngine

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> ResultsEngine:
    return request.app.state.engine


@contextmanager
def translate_errors():
    """Map engine errors onto HTTP status codes."""
    try:
        yield
    except InputValidationError as exc:
        raise HTTPException(400, str(exc))
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    except (ConfigurationError, StoreError) as exc:
        logger.error("Request failed: %s", exc)
        raise HTTPException(500, str(exc))


def require(payload: dict, *keys: str) -> list:
    """Pull required keys out of a JSON payload, 400 if any is missing."""
    missing = [k for k in keys if payload.get(k) is None]
    if missing:
        raise HTTPException(400, f"Missing required field(s): {', '.join(missing)}")
    return [payload[k] for k in keys]
