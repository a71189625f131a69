"""
Payment ledger: one access decision from every payment source.

Payment signals (course payments, enrollments, exam payments, unused
credits, the legacy flagship-exam flag) are gathered in a single repository
call and resolved here in a fixed order; the first matching source wins.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..errors import AccessDenied
from ..models import (
    Exam,
    ExamPaymentAttempt,
    ExamRegistration,
    PaymentStatus,
    CoursePayment,
    ExamPayment,
    CreditAttempt,
    LegacyFlag,
    PaymentSignal,
)
from ..repositories import Repositories

logger = logging.getLogger(__name__)


class AccessSource(str, Enum):
    FREE = "free"
    CREDIT = "credit"
    COURSE_PAYMENT = "course_payment"
    ENROLLMENT = "enrollment"
    EXAM_PAYMENT = "exam_payment"
    LEGACY_FLAG = "legacy_flag"
    REGISTRATION_PAID = "registration_paid"
    NONE = "none"


@dataclass
class AccessDecision:
    has_access: bool
    source: AccessSource
    credit: Optional[ExamPaymentAttempt] = None
    payment_id: Optional[str] = None


def resolve(exam: Exam, signals: List[PaymentSignal]) -> AccessDecision:
    """
    Pure resolution over already-gathered signals.

    Order: free exam, unused credit (lowest attempt number), then course
    payment/enrollment for course-bound exams, or exam payment followed by
    the legacy flag for standalone exams.
    """
    if not exam.requires_payment:
        return AccessDecision(True, AccessSource.FREE)

    credits = [s.credit for s in signals if isinstance(s, CreditAttempt)]
    if credits:
        credit = min(credits, key=lambda c: c.attempt_number)
        return AccessDecision(True, AccessSource.CREDIT, credit=credit, payment_id=credit.payment_id)

    if exam.is_course_bound:
        for signal in signals:
            if isinstance(signal, CoursePayment) and signal.course_id == exam.course_id:
                if signal.via == "enrollment":
                    return AccessDecision(True, AccessSource.ENROLLMENT)
                return AccessDecision(True, AccessSource.COURSE_PAYMENT, payment_id=signal.reference)
        return AccessDecision(False, AccessSource.NONE)

    for signal in signals:
        if isinstance(signal, ExamPayment) and signal.exam_id == exam.exam_id:
            return AccessDecision(True, AccessSource.EXAM_PAYMENT, payment_id=signal.payment_id)
    for signal in signals:
        if isinstance(signal, LegacyFlag):
            return AccessDecision(True, AccessSource.LEGACY_FLAG, payment_id=signal.payment_id)

    return AccessDecision(False, AccessSource.NONE)


def with_registration_override(
    decision: AccessDecision, registration: Optional[ExamRegistration]
) -> AccessDecision:
    """A registration already confirmed paid grants access even if the sources disagree."""
    if decision.has_access:
        return decision
    if registration and registration.payment_status == PaymentStatus.PAID:
        logger.info(
            f"Access for {registration.student_id} on {registration.exam_id} granted "
            f"from paid registration {registration.registration_id}"
        )
        return AccessDecision(True, AccessSource.REGISTRATION_PAID, payment_id=registration.payment_id)
    return decision


def payment_required(exam: Exam) -> AccessDenied:
    payment_type = "course" if exam.is_course_bound else "exam"
    if payment_type == "course":
        message = "You must purchase the course to access this exam"
    else:
        message = f"Payment required to access this exam. Please pay {exam.price:g} to continue"
    return AccessDenied(
        message,
        error_type="PAYMENT_REQUIRED",
        requires_payment=True,
        payment_type=payment_type,
        price=exam.price,
        course_id=exam.course_id,
        exam_id=exam.exam_id,
    )


class PaymentLedger:
    """Access resolution backed by the payment repository."""

    def __init__(self, repos: Repositories):
        self.repos = repos

    async def resolve_access(self, student_id: str, exam: Exam) -> AccessDecision:
        if not exam.requires_payment:
            return AccessDecision(True, AccessSource.FREE)

        signals = await self.repos.payments.find_signals(student_id, exam.exam_id, exam.course_id)
        decision = resolve(exam, signals)
        logger.debug(
            f"Access for {student_id} on {exam.exam_id}: {decision.source.value} "
            f"({len(signals)} signals)"
        )
        return decision
