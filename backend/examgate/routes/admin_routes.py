"""
Admin exam routes.

Endpoints:
- GET /api/admin/exams/results
- GET /api/admin/exams/results/{attempt_id}
- POST /api/admin/exams/publish
- POST /api/admin/exams/unpublish
- POST /api/admin/exams/publish-all
- POST /api/admin/exams/approve-retake
- POST /api/admin/exams/abandon-attempt
- POST /api/admin/exams/mark-completed-inactive
- POST /api/admin/exams/reactivate
- GET /api/admin/exams/{exam_id}/registrations
- GET /api/admin/exams/{exam_id}/attempts
- DELETE /api/admin/exams/{exam_id}
"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import ExamServices, get_now, get_services, require_admin
from ..errors import ExamEngineError
from ..models import User, PublishRequest, PublishAllRequest, StudentExamRequest
from . import http_error, internal_error

logger = logging.getLogger(__name__)


def create_admin_routes() -> APIRouter:
    """Create admin exam routes."""

    router = APIRouter(prefix="/api/admin/exams", tags=["admin"])

    # ============ RESULTS ============

    @router.get("/results")
    async def get_results_overview(
        exam_id: Optional[str] = None,
        exam_date: Optional[date] = None,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services)
    ):
        """Completed attempts grouped by exam and attempt date."""
        try:
            overview = await services.publication.results_overview(exam_id=exam_id, day=exam_date)
            return {"success": True, **overview}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch exam results", e)

    @router.get("/results/{attempt_id}")
    async def get_result_details(
        attempt_id: str,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services)
    ):
        try:
            details = await services.publication.result_details(attempt_id)
            return {"success": True, **details}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch student result details", e)

    @router.post("/publish")
    async def publish_results(
        body: PublishRequest,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Publish results of one exam for attempts started on a date."""
        try:
            count = await services.publication.publish(
                body.exam_id, body.exam_date, admin_id=admin.user_id, now=now
            )
            return {
                "success": True,
                "message": f"Published {count} results",
                "published_count": count
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("publish results", e)

    @router.post("/unpublish")
    async def unpublish_results(
        body: PublishRequest,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        try:
            count = await services.publication.unpublish(
                body.exam_id, body.exam_date, admin_id=admin.user_id, now=now
            )
            return {
                "success": True,
                "message": f"Unpublished {count} results",
                "unpublished_count": count
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("unpublish results", e)

    @router.post("/publish-all")
    async def publish_all_for_date(
        body: PublishAllRequest,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Publish every result for a date, optionally limited to one exam category."""
        try:
            result = await services.publication.publish_all_for_date(
                body.exam_date, body.exam_type, admin_id=admin.user_id, now=now
            )
            return {
                "success": True,
                "message": f"Published {result['published_count']} results for {body.exam_date}",
                **result
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("publish results for this date", e)

    # ============ ATTEMPTS ============

    @router.post("/approve-retake")
    async def approve_retake(
        body: StudentExamRequest,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        try:
            attempt = await services.allocator.approve_retake(
                body.exam_id, body.student_id, admin.user_id, now=now
            )
            return {"success": True, "message": "Retake approved successfully", "exam_attempt": attempt}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("approve retake", e)

    @router.post("/abandon-attempt")
    async def abandon_attempt(
        body: StudentExamRequest,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Close a student's in-progress attempt without scoring it."""
        try:
            attempt = await services.allocator.abandon(body.student_id, body.exam_id, now=now)
            return {"success": True, "message": "Attempt abandoned", "exam_attempt": attempt}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("abandon attempt", e)

    # ============ EXAM HOUSEKEEPING ============

    @router.post("/mark-completed-inactive")
    async def mark_completed_inactive(
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        try:
            count = await services.registration.mark_completed_inactive(now=now)
            return {
                "success": True,
                "message": "Completed exams marked as inactive successfully",
                "deactivated_count": count
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("mark completed exams as inactive", e)

    @router.post("/reactivate")
    async def reactivate_exams(
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        try:
            count = await services.registration.reactivate_incorrectly_inactive(now=now)
            message = (
                f"Reactivated {count} exams that were incorrectly marked as inactive"
                if count else "No exams need to be reactivated"
            )
            return {"success": True, "message": message, "reactivated_count": count}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("reactivate exams", e)

    @router.get("/{exam_id}/registrations")
    async def get_exam_registrations(
        exam_id: str,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services)
    ):
        try:
            registrations = await services.admin.list_registrations(exam_id)
            return {"success": True, "registrations": registrations}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch registrations", e)

    @router.get("/{exam_id}/attempts")
    async def get_exam_attempts(
        exam_id: str,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services)
    ):
        try:
            attempts = await services.publication.list_attempts(exam_id)
            return {"success": True, "attempts": attempts}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch exam attempts", e)

    @router.delete("/{exam_id}")
    async def delete_exam(
        exam_id: str,
        admin: User = Depends(require_admin),
        services: ExamServices = Depends(get_services)
    ):
        """Delete an exam with its registrations and attempts."""
        try:
            result = await services.admin.delete_exam(exam_id)
            logger.info(f"Exam {exam_id} deleted by {admin.user_id}")
            return {"success": True, "message": "Exam deleted successfully", **result}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("delete exam", e)

    return router
