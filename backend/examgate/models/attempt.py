"""Registration and attempt Pydantic models"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ExamRegistration(BaseModel):
    """Binds one student to one exam and one slot"""
    model_config = ConfigDict(extra="ignore")
    registration_id: str
    student_id: str
    exam_id: str
    course_id: Optional[str] = None
    slot_id: str
    slot_start_time: str
    slot_end_time: str
    registration_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    is_active: bool = True


class ExamAttempt(BaseModel):
    """One scored sitting of an exam by one student for one slot"""
    model_config = ConfigDict(extra="ignore")
    attempt_id: str
    student_id: str
    exam_id: str
    course_id: Optional[str] = None
    attempt_number: int = 1
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    duration: int  # minutes
    total_marks: float
    time_remaining: int = 0  # seconds
    last_saved_at: Optional[datetime] = None

    answers: Dict[str, str] = {}  # question_id -> selected answer
    marked_questions: List[str] = []

    score: float = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    unattempted: int = 0
    percentage: float = 0
    is_passed: bool = False
    is_qualified: bool = False

    # Slot snapshot, copied at creation
    slot_id: Optional[str] = None
    slot_start_time: Optional[str] = None
    slot_end_time: Optional[str] = None

    # Admin retake override
    can_retake: bool = False
    retake_approved_by: Optional[str] = None
    retake_approved_at: Optional[datetime] = None

    # Result publishing
    published: bool = False
    published_at: Optional[datetime] = None
    published_by: Optional[str] = None

    credit_id: Optional[str] = None

    def result_view(self) -> dict:
        return self.model_dump(
            include={
                "attempt_id", "exam_id", "attempt_number", "start_time", "end_time",
                "score", "total_marks", "correct_answers", "wrong_answers",
                "unattempted", "percentage", "is_passed", "is_qualified",
                "published_at",
            }
        )
