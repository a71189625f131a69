"""
In-memory repositories.

Same contract as the Mongo implementation, including the unique keys on
registrations, attempts and credits. Selected with REPOSITORY_BACKEND=memory
for local runs and tests; data lives only as long as the process.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import (
    Exam,
    SlotRegistrant,
    Question,
    QuestionPaper,
    ExamRegistration,
    ExamAttempt,
    AttemptStatus,
    PaymentStatus,
    ExamPaymentAttempt,
    CreditStatus,
    PaymentRecord,
    Enrollment,
    CoursePayment,
    ExamPayment,
    CreditAttempt,
    LegacyFlag,
    PaymentSignal,
)
from ..utils import ensure_aware
from .base import (
    DuplicateKeyError,
    ExamRepository,
    RegistrationRepository,
    AttemptRepository,
    CreditRepository,
    PaymentRepository,
    QuestionRepository,
    SessionRepository,
    Repositories,
)


def _copy(model):
    return model.model_copy(deep=True)


# ============ EXAMS ============

class MemoryExamRepository(ExamRepository):
    def __init__(self):
        self.items: Dict[str, Exam] = {}

    async def get(self, exam_id: str) -> Optional[Exam]:
        exam = self.items.get(exam_id)
        return _copy(exam) if exam else None

    async def list_all(self) -> List[Exam]:
        return [_copy(e) for e in sorted(self.items.values(), key=lambda e: e.exam_date)]

    async def insert(self, exam: Exam) -> Exam:
        if exam.exam_id in self.items:
            raise DuplicateKeyError(f"exam {exam.exam_id} exists")
        self.items[exam.exam_id] = _copy(exam)
        return exam

    async def set_active(self, exam_ids: List[str], is_active: bool) -> int:
        modified = 0
        for exam_id in exam_ids:
            exam = self.items.get(exam_id)
            if exam and exam.is_active != is_active:
                exam.is_active = is_active
                modified += 1
        return modified

    async def add_slot_registrant(
        self, exam_id: str, slot_id: str, registrant: SlotRegistrant
    ) -> bool:
        exam = self.items.get(exam_id)
        slot = exam.get_slot(slot_id) if exam else None
        if not slot:
            return False
        slot.registered_students.append(_copy(registrant))
        return True

    async def delete(self, exam_id: str) -> bool:
        return self.items.pop(exam_id, None) is not None


# ============ REGISTRATIONS ============

class MemoryRegistrationRepository(RegistrationRepository):
    def __init__(self):
        self.items: Dict[tuple, ExamRegistration] = {}

    async def find_active(self, student_id: str, exam_id: str) -> Optional[ExamRegistration]:
        registration = self.items.get((student_id, exam_id))
        if registration and registration.is_active:
            return _copy(registration)
        return None

    async def insert(self, registration: ExamRegistration) -> ExamRegistration:
        key = (registration.student_id, registration.exam_id)
        if key in self.items:
            raise DuplicateKeyError(f"registration {key} exists")
        self.items[key] = _copy(registration)
        return registration

    async def count_paid_for_slot(self, exam_id: str, slot_id: str) -> int:
        return sum(
            1 for r in self.items.values()
            if r.exam_id == exam_id
            and r.slot_id == slot_id
            and r.payment_status == PaymentStatus.PAID
            and r.is_active
        )

    async def list_for_exam(self, exam_id: str) -> List[ExamRegistration]:
        found = [r for r in self.items.values() if r.exam_id == exam_id and r.is_active]
        found.sort(key=lambda r: r.registration_date, reverse=True)
        return [_copy(r) for r in found]

    async def delete_for_exam(self, exam_id: str) -> int:
        keys = [k for k, r in self.items.items() if r.exam_id == exam_id]
        for key in keys:
            del self.items[key]
        return len(keys)


# ============ ATTEMPTS ============

class MemoryAttemptRepository(AttemptRepository):
    def __init__(self):
        self.items: Dict[tuple, ExamAttempt] = {}

    def _by_id(self, attempt_id: str) -> Optional[ExamAttempt]:
        for attempt in self.items.values():
            if attempt.attempt_id == attempt_id:
                return attempt
        return None

    async def get(self, attempt_id: str) -> Optional[ExamAttempt]:
        attempt = self._by_id(attempt_id)
        return _copy(attempt) if attempt else None

    async def list_for_slot(
        self, student_id: str, exam_id: str, slot_id: str
    ) -> List[ExamAttempt]:
        found = [
            a for a in self.items.values()
            if a.student_id == student_id and a.exam_id == exam_id and a.slot_id == slot_id
        ]
        found.sort(key=lambda a: a.attempt_number, reverse=True)
        return [_copy(a) for a in found]

    async def find_in_progress(self, student_id: str, exam_id: str) -> Optional[ExamAttempt]:
        for attempt in self.items.values():
            if (attempt.student_id == student_id and attempt.exam_id == exam_id
                    and attempt.status == AttemptStatus.IN_PROGRESS):
                return _copy(attempt)
        return None

    async def max_attempt_number(self, student_id: str, exam_id: str) -> int:
        return max(
            (a.attempt_number for a in self.items.values()
             if a.student_id == student_id and a.exam_id == exam_id),
            default=0
        )

    async def insert_if_absent(self, attempt: ExamAttempt) -> ExamAttempt:
        key = (attempt.student_id, attempt.exam_id, attempt.attempt_number)
        if key not in self.items:
            self.items[key] = _copy(attempt)
        return _copy(self.items[key])

    async def save_answer(
        self, attempt_id: str, question_id: str, answer: str, saved_at: datetime
    ) -> bool:
        attempt = self._by_id(attempt_id)
        if not attempt or attempt.status != AttemptStatus.IN_PROGRESS:
            return False
        attempt.answers[question_id] = answer
        attempt.last_saved_at = saved_at
        return True

    async def complete(self, attempt_id: str, fields: Dict[str, Any]) -> Optional[ExamAttempt]:
        attempt = self._by_id(attempt_id)
        if not attempt or attempt.status != AttemptStatus.IN_PROGRESS:
            return None
        for name, value in fields.items():
            setattr(attempt, name, value)
        attempt.status = AttemptStatus.COMPLETED
        return _copy(attempt)

    async def abandon(self, attempt_id: str, at: datetime) -> bool:
        attempt = self._by_id(attempt_id)
        if not attempt or attempt.status != AttemptStatus.IN_PROGRESS:
            return False
        attempt.status = AttemptStatus.ABANDONED
        attempt.end_time = at
        return True

    async def find_latest(self, student_id: str, exam_id: str) -> Optional[ExamAttempt]:
        found = [
            a for a in self.items.values()
            if a.student_id == student_id and a.exam_id == exam_id
        ]
        if not found:
            return None
        return _copy(max(found, key=lambda a: a.attempt_number))

    async def approve_retake(self, attempt_id: str, admin_id: str, at: datetime) -> bool:
        attempt = self._by_id(attempt_id)
        if not attempt:
            return False
        attempt.can_retake = True
        attempt.retake_approved_by = admin_id
        attempt.retake_approved_at = at
        return True

    async def list_completed(
        self,
        exam_ids: Optional[List[str]] = None,
        student_id: Optional[str] = None,
        published: Optional[bool] = None,
        started_from: Optional[datetime] = None,
        started_before: Optional[datetime] = None
    ) -> List[ExamAttempt]:
        found = []
        for attempt in self.items.values():
            if attempt.status != AttemptStatus.COMPLETED:
                continue
            if exam_ids is not None and attempt.exam_id not in exam_ids:
                continue
            if student_id is not None and attempt.student_id != student_id:
                continue
            if published is not None and attempt.published != published:
                continue
            started = ensure_aware(attempt.start_time)
            if started_from is not None and started < started_from:
                continue
            if started_before is not None and started >= started_before:
                continue
            found.append(attempt)
        found.sort(key=lambda a: a.start_time, reverse=True)
        return [_copy(a) for a in found]

    async def set_published(
        self,
        exam_ids: List[str],
        started_from: datetime,
        started_before: datetime,
        published: bool,
        admin_id: Optional[str],
        at: datetime
    ) -> int:
        modified = 0
        for attempt in self.items.values():
            started = ensure_aware(attempt.start_time)
            if (attempt.exam_id in exam_ids
                    and attempt.status == AttemptStatus.COMPLETED
                    and started_from <= started < started_before
                    and attempt.published != published):
                attempt.published = published
                attempt.published_at = at if published else None
                attempt.published_by = admin_id if published else None
                modified += 1
        return modified

    async def delete_for_exam(self, exam_id: str) -> int:
        keys = [k for k, a in self.items.items() if a.exam_id == exam_id]
        for key in keys:
            del self.items[key]
        return len(keys)


# ============ CREDITS ============

class MemoryCreditRepository(CreditRepository):
    def __init__(self):
        self.items: Dict[tuple, ExamPaymentAttempt] = {}

    def _for(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        found = [
            c for c in self.items.values()
            if c.student_id == student_id and c.exam_id == exam_id
        ]
        return sorted(found, key=lambda c: c.attempt_number)

    async def list_available(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        return [
            _copy(c) for c in self._for(student_id, exam_id)
            if not c.is_used and c.status == CreditStatus.PAID
        ]

    async def list_for_student(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        return [_copy(c) for c in self._for(student_id, exam_id)]

    async def next_attempt_number(self, student_id: str, exam_id: str) -> int:
        existing = self._for(student_id, exam_id)
        return existing[-1].attempt_number + 1 if existing else 1

    async def insert(self, credit: ExamPaymentAttempt) -> ExamPaymentAttempt:
        key = (credit.student_id, credit.exam_id, credit.attempt_number)
        if key in self.items:
            raise DuplicateKeyError(f"credit {key} exists")
        self.items[key] = _copy(credit)
        return credit

    async def mark_used(self, credit_id: str, exam_attempt_id: str, at: datetime) -> bool:
        for credit in self.items.values():
            if credit.credit_id == credit_id and not credit.is_used:
                credit.is_used = True
                credit.used_at = at
                credit.exam_attempt_id = exam_attempt_id
                credit.status = CreditStatus.EXAM_STARTED
                return True
        return False

    async def set_status_for_attempt(self, exam_attempt_id: str, status: CreditStatus) -> bool:
        for credit in self.items.values():
            if credit.exam_attempt_id == exam_attempt_id:
                credit.status = status
                return True
        return False


# ============ PAYMENT SOURCES ============

class MemoryPaymentRepository(PaymentRepository):
    def __init__(self, credits: MemoryCreditRepository):
        self.payments: List[PaymentRecord] = []
        self.enrollments: List[Enrollment] = []
        self.credits = credits

    def add_payment(self, payment: PaymentRecord):
        self.payments.append(_copy(payment))

    def add_enrollment(self, enrollment: Enrollment):
        self.enrollments.append(_copy(enrollment))

    async def find_signals(
        self, student_id: str, exam_id: str, course_id: Optional[str]
    ) -> List[PaymentSignal]:
        signals: List[PaymentSignal] = [
            CreditAttempt(credit=c) for c in await self.credits.list_available(student_id, exam_id)
        ]
        for payment in self.payments:
            if payment.student_id != student_id or payment.status != "completed":
                continue
            if course_id and payment.course_id == course_id:
                signals.append(CoursePayment(course_id=course_id, reference=payment.payment_id))
            elif payment.exam_id == exam_id:
                signals.append(ExamPayment(exam_id=exam_id, payment_id=payment.payment_id))
            elif payment.is_flagship_exam and not payment.exam_id and not payment.course_id:
                signals.append(LegacyFlag(payment_id=payment.payment_id))
        if course_id and any(
            e.student_id == student_id and e.course_id == course_id and e.is_active
            for e in self.enrollments
        ):
            signals.append(CoursePayment(course_id=course_id, via="enrollment"))
        return signals

    async def find_completed_payment(
        self, payment_id: str, student_id: str
    ) -> Optional[PaymentRecord]:
        for payment in self.payments:
            if (payment.payment_id == payment_id and payment.student_id == student_id
                    and payment.status == "completed"):
                return _copy(payment)
        return None


# ============ QUESTION BANK ============

class MemoryQuestionRepository(QuestionRepository):
    def __init__(self):
        self.questions: Dict[str, Question] = {}
        self.papers: Dict[str, QuestionPaper] = {}

    def add_question(self, question: Question):
        self.questions[question.question_id] = _copy(question)

    def add_paper(self, paper: QuestionPaper):
        self.papers[paper.question_paper_id] = _copy(paper)

    async def for_exam(self, exam: Exam) -> List[Question]:
        question_ids = list(exam.question_ids)
        paper = self.papers.get(exam.question_paper_id) if exam.question_paper_id else None
        if paper:
            question_ids = paper.question_ids
        return [_copy(self.questions[qid]) for qid in question_ids if qid in self.questions]


# ============ SESSIONS ============

class MemorySessionRepository(SessionRepository):
    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}

    def add_session(self, session_token: str, user: Dict[str, Any],
                    expires_at: Optional[datetime] = None):
        self.users[user["user_id"]] = dict(user)
        self.sessions[session_token] = {
            "session_token": session_token,
            "user_id": user["user_id"],
            "expires_at": expires_at,
        }

    async def find_user(self, session_token: str, now: datetime) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(session_token)
        if not session:
            return None
        expires_at = session.get("expires_at")
        if expires_at is not None and ensure_aware(expires_at) < now:
            return None
        user = self.users.get(session["user_id"])
        return dict(user) if user else None


def build_memory_repositories() -> Repositories:
    credits = MemoryCreditRepository()
    return Repositories(
        exams=MemoryExamRepository(),
        registrations=MemoryRegistrationRepository(),
        attempts=MemoryAttemptRepository(),
        credits=credits,
        payments=MemoryPaymentRepository(credits),
        questions=MemoryQuestionRepository(),
        sessions=MemorySessionRepository(),
    )
