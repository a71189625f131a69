"""HTTP routes for the exam engine"""

import logging

from fastapi import HTTPException

from ..errors import ExamEngineError

logger = logging.getLogger(__name__)


def http_error(error: ExamEngineError) -> HTTPException:
    """Translate a domain error into an HTTPException carrying its detail body."""
    if error.status_code >= 500:
        logger.error(f"{error.error_type}: {error.message}")
    return HTTPException(status_code=error.status_code, detail=error.to_detail())


def internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {error}", exc_info=True)
    return HTTPException(
        status_code=500,
        detail={"success": False, "message": f"Failed to {action}", "error_type": "INTERNAL_ERROR"}
    )
