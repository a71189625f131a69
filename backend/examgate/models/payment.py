"""Payment, enrollment and credit Pydantic models"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CreditStatus(str, Enum):
    PAID = "paid"
    EXAM_STARTED = "exam_started"
    EXAM_COMPLETED = "exam_completed"
    EXAM_ABANDONED = "exam_abandoned"


class ExamPaymentAttempt(BaseModel):
    """Pre-purchased extra attempt ("credit"), consumed at most once"""
    model_config = ConfigDict(extra="ignore")
    credit_id: str
    student_id: str
    exam_id: str
    course_id: Optional[str] = None
    payment_id: str
    attempt_number: int = 1
    payment_amount: float = 0
    payment_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: CreditStatus = CreditStatus.PAID
    is_used: bool = False
    used_at: Optional[datetime] = None
    exam_attempt_id: Optional[str] = None


class PaymentRecord(BaseModel):
    """Completed payment written by the payment subsystem"""
    model_config = ConfigDict(extra="ignore")
    payment_id: str
    student_id: str
    course_id: Optional[str] = None
    exam_id: Optional[str] = None
    amount: float = 0
    status: str = "pending"  # pending, completed, failed, refunded
    is_flagship_exam: bool = False
    payment_date: Optional[datetime] = None


class Enrollment(BaseModel):
    model_config = ConfigDict(extra="ignore")
    student_id: str
    course_id: str
    is_active: bool = True


# ============ LEDGER SIGNALS ============
# Tagged union of the payment sources the access resolver understands.

@dataclass(frozen=True)
class CoursePayment:
    course_id: str
    reference: Optional[str] = None
    via: str = "payment"  # payment or enrollment


@dataclass(frozen=True)
class ExamPayment:
    exam_id: str
    payment_id: str


@dataclass(frozen=True)
class CreditAttempt:
    credit: ExamPaymentAttempt


@dataclass(frozen=True)
class LegacyFlag:
    payment_id: str


PaymentSignal = Union[CoursePayment, ExamPayment, CreditAttempt, LegacyFlag]
