"""Extra-attempt credits bought against completed payments."""

import logging
from datetime import datetime
from typing import List, Optional

from ..errors import Conflict, NotFound, ValidationError
from ..models import CreditStatus, ExamPaymentAttempt
from ..repositories import DuplicateKeyError, Repositories
from ..utils import new_id, utc_now

logger = logging.getLogger(__name__)


class CreditService:
    def __init__(self, repos: Repositories):
        self.repos = repos

    async def record_purchase(
        self,
        student_id: str,
        exam_id: str,
        payment_id: str,
        payment_amount: float = 0,
        now: Optional[datetime] = None
    ) -> ExamPaymentAttempt:
        """
        Record a credit for a completed payment.

        The credit's attempt number is pre-assigned past both earlier credits
        and attempts already taken, so consuming it never lands on a used key.
        """
        now = now or utc_now()
        if not payment_id:
            raise ValidationError("payment_id is required", error_type="MISSING_PAYMENT_ID")

        exam = await self.repos.exams.get(exam_id)
        if not exam:
            raise NotFound("Exam not found", error_type="EXAM_NOT_FOUND")

        payment = await self.repos.payments.find_completed_payment(payment_id, student_id)
        if not payment:
            raise NotFound(
                "No completed payment found for this student",
                error_type="PAYMENT_NOT_FOUND",
                payment_id=payment_id
            )
        if payment.exam_id != exam_id:
            raise ValidationError(
                "Payment was not made for this exam",
                error_type="PAYMENT_EXAM_MISMATCH",
                payment_id=payment_id,
                payment_exam_id=payment.exam_id
            )

        existing = await self.repos.credits.list_for_student(student_id, exam_id)
        if any(c.payment_id == payment_id for c in existing):
            raise Conflict("Payment already recorded as an attempt", error_type="PAYMENT_ALREADY_USED")

        attempt_number = max(
            await self.repos.credits.next_attempt_number(student_id, exam_id),
            await self.repos.attempts.max_attempt_number(student_id, exam_id) + 1,
        )
        credit = ExamPaymentAttempt(
            credit_id=new_id(),
            student_id=student_id,
            exam_id=exam_id,
            course_id=exam.course_id,
            payment_id=payment_id,
            attempt_number=attempt_number,
            payment_amount=payment_amount or payment.amount,
            payment_date=now,
            status=CreditStatus.PAID,
        )
        try:
            await self.repos.credits.insert(credit)
        except DuplicateKeyError:
            raise Conflict(
                "Another purchase claimed this attempt number; retry",
                error_type="CREDIT_CONFLICT"
            )

        logger.info(
            f"Credit {credit.credit_id} (attempt {attempt_number}) recorded for {student_id} "
            f"on {exam_id} from payment {payment_id}"
        )
        return credit

    async def list_credits(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        return await self.repos.credits.list_for_student(student_id, exam_id)
