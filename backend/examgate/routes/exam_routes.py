"""
Student exam routes.

Endpoints:
- GET /api/exams/available
- GET /api/exams/my-results
- POST /api/exams/payment-attempt
- POST /api/exams/{exam_id}/register
- GET /api/exams/{exam_id}/start
- POST /api/exams/{exam_id}/answer
- POST /api/exams/{exam_id}/submit
- GET /api/exams/{exam_id}/results
- GET /api/exams/{exam_id}/review
- GET /api/exams/{exam_id}/payment-attempts
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import ExamServices, get_now, get_services, require_student
from ..errors import ExamEngineError
from ..models import (
    User,
    RegisterRequest,
    SaveAnswerRequest,
    SubmitRequest,
    CreditPurchaseRequest,
)
from . import http_error, internal_error

logger = logging.getLogger(__name__)


def create_exam_routes() -> APIRouter:
    """Create student-facing exam routes."""

    router = APIRouter(prefix="/api/exams", tags=["exams"])

    @router.get("/available")
    async def get_available_exams(
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """List exams the student can register for or has registered for."""
        try:
            exams = await services.registration.list_available(user.user_id, now=now)
            return {"success": True, "exams": exams}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch available exams", e)

    @router.get("/my-results")
    async def get_my_results(
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services)
    ):
        """Published results across all exams."""
        try:
            results = await services.publication.my_results(user.user_id)
            return {"success": True, **results}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch exam results", e)

    @router.post("/payment-attempt")
    async def create_payment_attempt(
        body: CreditPurchaseRequest,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Record an extra attempt bought with a completed payment."""
        try:
            credit = await services.credits.record_purchase(
                student_id=user.user_id,
                exam_id=body.exam_id,
                payment_id=body.payment_id,
                payment_amount=body.payment_amount,
                now=now
            )
            return {
                "success": True,
                "message": "Exam payment attempt created successfully",
                "data": credit
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("create exam payment attempt", e)

    @router.post("/{exam_id}/register", status_code=201)
    async def register_for_exam(
        exam_id: str,
        body: RegisterRequest,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Register the student for one slot of an exam."""
        try:
            result = await services.registration.register(
                user.user_id, exam_id, body.slot_id, now=now
            )
            return {
                "success": True,
                "message": "Successfully registered for exam",
                **result
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("register for exam", e)

    @router.get("/{exam_id}/start")
    async def start_exam(
        exam_id: str,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Start or resume the student's attempt."""
        try:
            result = await services.allocator.start(user.user_id, exam_id, now=now)
            return {"success": True, **result}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("start exam", e)

    @router.post("/{exam_id}/answer")
    async def save_answer(
        exam_id: str,
        body: SaveAnswerRequest,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Autosave a single answer."""
        try:
            await services.allocator.save_answer(
                user.user_id, exam_id, body.question_id, body.answer, now=now
            )
            return {"success": True, "message": "Answer saved successfully"}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("save answer", e)

    @router.post("/{exam_id}/submit")
    async def submit_exam(
        exam_id: str,
        body: SubmitRequest,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services),
        now: datetime = Depends(get_now)
    ):
        """Score and complete the student's attempt."""
        try:
            result = await services.scoring.submit(
                user.user_id,
                exam_id,
                answers=body.answers,
                marked_questions=body.marked_questions,
                now=now
            )
            return {
                "success": True,
                "message": "Exam submitted successfully. Results will be available once published.",
                **result
            }

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("submit exam", e)

    @router.get("/{exam_id}/results")
    async def get_exam_results(
        exam_id: str,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services)
    ):
        """Published results of this exam for the student."""
        try:
            results = await services.publication.student_results(user.user_id, exam_id)
            return {"success": True, "results": results}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch exam results", e)

    @router.get("/{exam_id}/review")
    async def get_review_questions(
        exam_id: str,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services)
    ):
        """Questions with correct answers once a result is published."""
        try:
            review = await services.publication.review_questions(user.user_id, exam_id)
            return {"success": True, **review}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch exam questions", e)

    @router.get("/{exam_id}/payment-attempts")
    async def get_payment_attempts(
        exam_id: str,
        user: User = Depends(require_student),
        services: ExamServices = Depends(get_services)
    ):
        """Credits the student holds for this exam."""
        try:
            credits = await services.credits.list_credits(user.user_id, exam_id)
            return {"success": True, "data": credits}

        except ExamEngineError as e:
            raise http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            raise internal_error("fetch exam payment attempts", e)

    return router
