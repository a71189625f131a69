"""
Repository interfaces.

Two interchangeable implementations exist (MongoDB via Motor, and in-memory);
one is chosen at startup from ``settings.REPOSITORY_BACKEND``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import (
    Exam,
    SlotRegistrant,
    Question,
    ExamRegistration,
    ExamAttempt,
    ExamPaymentAttempt,
    CreditStatus,
    PaymentRecord,
    PaymentSignal,
)


class DuplicateKeyError(Exception):
    """A unique index rejected the write."""


class ExamRepository(ABC):
    @abstractmethod
    async def get(self, exam_id: str) -> Optional[Exam]: ...

    @abstractmethod
    async def list_all(self) -> List[Exam]: ...

    @abstractmethod
    async def insert(self, exam: Exam) -> Exam: ...

    @abstractmethod
    async def set_active(self, exam_ids: List[str], is_active: bool) -> int:
        """Flip is_active on the given exams. Returns modified count."""

    @abstractmethod
    async def add_slot_registrant(
        self, exam_id: str, slot_id: str, registrant: SlotRegistrant
    ) -> bool: ...

    @abstractmethod
    async def delete(self, exam_id: str) -> bool: ...


class RegistrationRepository(ABC):
    @abstractmethod
    async def find_active(self, student_id: str, exam_id: str) -> Optional[ExamRegistration]: ...

    @abstractmethod
    async def insert(self, registration: ExamRegistration) -> ExamRegistration:
        """Insert, raising DuplicateKeyError on (student_id, exam_id) collision."""

    @abstractmethod
    async def count_paid_for_slot(self, exam_id: str, slot_id: str) -> int: ...

    @abstractmethod
    async def list_for_exam(self, exam_id: str) -> List[ExamRegistration]: ...

    @abstractmethod
    async def delete_for_exam(self, exam_id: str) -> int: ...


class AttemptRepository(ABC):
    @abstractmethod
    async def get(self, attempt_id: str) -> Optional[ExamAttempt]: ...

    @abstractmethod
    async def list_for_slot(
        self, student_id: str, exam_id: str, slot_id: str
    ) -> List[ExamAttempt]:
        """Attempts for (student, exam, slot), highest attempt_number first."""

    @abstractmethod
    async def find_in_progress(self, student_id: str, exam_id: str) -> Optional[ExamAttempt]: ...

    @abstractmethod
    async def max_attempt_number(self, student_id: str, exam_id: str) -> int:
        """Highest attempt_number across every slot of the exam, 0 if none."""

    @abstractmethod
    async def insert_if_absent(self, attempt: ExamAttempt) -> ExamAttempt:
        """
        Upsert keyed on (student_id, exam_id, attempt_number) that only inserts.

        Returns the stored document: the new attempt, or whichever attempt
        already held the key.
        """

    @abstractmethod
    async def save_answer(
        self, attempt_id: str, question_id: str, answer: str, saved_at: datetime
    ) -> bool: ...

    @abstractmethod
    async def complete(self, attempt_id: str, fields: Dict[str, Any]) -> Optional[ExamAttempt]:
        """Apply ``fields`` only while the attempt is still in progress."""

    @abstractmethod
    async def abandon(self, attempt_id: str, at: datetime) -> bool: ...

    @abstractmethod
    async def find_latest(self, student_id: str, exam_id: str) -> Optional[ExamAttempt]:
        """Attempt with the highest attempt_number across every slot, any status."""

    @abstractmethod
    async def approve_retake(self, attempt_id: str, admin_id: str, at: datetime) -> bool: ...

    @abstractmethod
    async def list_completed(
        self,
        exam_ids: Optional[List[str]] = None,
        student_id: Optional[str] = None,
        published: Optional[bool] = None,
        started_from: Optional[datetime] = None,
        started_before: Optional[datetime] = None
    ) -> List[ExamAttempt]:
        """Completed attempts matching every given filter, newest first."""

    @abstractmethod
    async def set_published(
        self,
        exam_ids: List[str],
        started_from: datetime,
        started_before: datetime,
        published: bool,
        admin_id: Optional[str],
        at: datetime
    ) -> int:
        """Flip completed attempts currently in the opposite state. Returns modified count."""

    @abstractmethod
    async def delete_for_exam(self, exam_id: str) -> int: ...


class CreditRepository(ABC):
    @abstractmethod
    async def list_available(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        """Unused credits, lowest attempt_number first."""

    @abstractmethod
    async def list_for_student(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]: ...

    @abstractmethod
    async def next_attempt_number(self, student_id: str, exam_id: str) -> int: ...

    @abstractmethod
    async def insert(self, credit: ExamPaymentAttempt) -> ExamPaymentAttempt: ...

    @abstractmethod
    async def mark_used(self, credit_id: str, exam_attempt_id: str, at: datetime) -> bool:
        """Consume an unused credit. Returns False if it was already used."""

    @abstractmethod
    async def set_status_for_attempt(self, exam_attempt_id: str, status: CreditStatus) -> bool: ...


class PaymentRepository(ABC):
    @abstractmethod
    async def find_signals(
        self, student_id: str, exam_id: str, course_id: Optional[str]
    ) -> List[PaymentSignal]:
        """Every payment signal relevant to (student, exam, course), gathered in one pass."""

    @abstractmethod
    async def find_completed_payment(
        self, payment_id: str, student_id: str
    ) -> Optional[PaymentRecord]: ...


class QuestionRepository(ABC):
    @abstractmethod
    async def for_exam(self, exam: Exam) -> List[Question]:
        """Questions via the exam's question paper, else its direct id list."""


class SessionRepository(ABC):
    @abstractmethod
    async def find_user(self, session_token: str, now: datetime) -> Optional[Dict[str, Any]]:
        """User document for a live session token, or None."""


@dataclass
class Repositories:
    exams: ExamRepository
    registrations: RegistrationRepository
    attempts: AttemptRepository
    credits: CreditRepository
    payments: PaymentRepository
    questions: QuestionRepository
    sessions: SessionRepository
