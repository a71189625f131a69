"""
Domain errors raised by the exam engine services.

Routes translate these into HTTP responses; every error carries a
machine-readable ``error_type`` plus optional context (cutoff timestamps,
required price, ...) so clients can render an actionable message.
"""

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder


class ExamEngineError(Exception):
    """Base class for all exam engine errors."""

    status_code: int = 500
    default_error_type: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        **context: Any
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type or self.default_error_type
        self.context = context

    def to_detail(self) -> Dict[str, Any]:
        """Serialize the error for an HTTP response body."""
        detail = {
            "success": False,
            "message": self.message,
            "error_type": self.error_type,
        }
        detail.update(jsonable_encoder(self.context))
        return detail


class ValidationError(ExamEngineError):
    """Malformed or missing input (400)."""

    status_code = 400
    default_error_type = "VALIDATION_ERROR"


class AccessDenied(ExamEngineError):
    """Payment required, outside the time window, or attempts exhausted (403)."""

    status_code = 403
    default_error_type = "ACCESS_DENIED"


class NotFound(ExamEngineError):
    """Exam, registration or attempt absent (404)."""

    status_code = 404
    default_error_type = "NOT_FOUND"


class Conflict(ExamEngineError):
    """Duplicate registration or an attempt key held by another attempt (409)."""

    status_code = 409
    default_error_type = "CONFLICT"


class Internal(ExamEngineError):
    """Unexpected store failure (500)."""

    status_code = 500
    default_error_type = "INTERNAL_ERROR"
