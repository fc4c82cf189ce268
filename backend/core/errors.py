"""
errors.py — Error taxonomy for the results engine.

- InputValidationError: marks out of range, malformed identifiers
- NotFoundError: missing student / exam / class / result
- ConfigurationError: grade or division table with a gap or overlap
- StoreError: a result-store write that failed
- DataQualityWarning: collected alongside a best-effort result, never raised
"""

from typing import Any, Dict, Optional


class ResultsError(Exception):
    """Base class for every error raised by the results engine."""


class InputValidationError(ResultsError, ValueError):
    pass


class NotFoundError(ResultsError, LookupError):
    def __init__(self, kind: str, identifier: Any):
        super().__init__(f"{kind} '{identifier}' not found.")
        self.kind = kind
        self.identifier = identifier


class ConfigurationError(ResultsError):
    pass


class StoreError(ResultsError):
    pass


class DataQualityWarning(UserWarning):
    """
    A problem in the underlying data that does not block a report,
    e.g. a missing subject combination or fewer than three principal subjects.
    """

    def __init__(self, code: str, message: str, student_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.student_id = student_id

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "student_id": self.student_id}
