"""Admin-side exam housekeeping"""

import logging
from typing import Any, Dict, List

from ..errors import NotFound
from ..models import ExamRegistration
from ..repositories import Repositories

logger = logging.getLogger(__name__)


class ExamAdminService:
    def __init__(self, repos: Repositories):
        self.repos = repos

    async def list_registrations(self, exam_id: str) -> List[ExamRegistration]:
        if not await self.repos.exams.get(exam_id):
            raise NotFound("Exam not found", error_type="EXAM_NOT_FOUND")
        return await self.repos.registrations.list_for_exam(exam_id)

    async def delete_exam(self, exam_id: str) -> Dict[str, Any]:
        """Delete an exam together with its registrations and attempts."""
        if not await self.repos.exams.get(exam_id):
            raise NotFound("Exam not found", error_type="EXAM_NOT_FOUND")

        registrations = await self.repos.registrations.delete_for_exam(exam_id)
        attempts = await self.repos.attempts.delete_for_exam(exam_id)
        await self.repos.exams.delete(exam_id)

        logger.info(
            f"Deleted exam {exam_id} with {registrations} registrations and {attempts} attempts"
        )
        return {"deleted_registrations": registrations, "deleted_attempts": attempts}
