from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from examgate.app import create_app
from examgate.models import (
    Exam,
    Slot,
    Question,
    QuestionPaper,
    PaymentRecord,
    Enrollment,
    ExamPaymentAttempt,
)
from examgate.repositories import build_memory_repositories

EXAM_DATE = datetime(2024, 5, 1, tzinfo=timezone.utc)
SLOT_START = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

STUDENT_TOKEN = "student-token"
OTHER_STUDENT_TOKEN = "other-student-token"
ADMIN_TOKEN = "admin-token"


class FakeClock:
    """Settable clock handed to the app and services."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_exam(**overrides) -> Exam:
    data = dict(
        exam_id="exam-1",
        title="Python Fundamentals",
        subject="Programming",
        exam_date=EXAM_DATE,
        duration=60,
        total_marks=10,
        passing_marks=50,
        slots=[Slot(slot_id="slot-1", start_time="10:00", end_time="11:00")],
        requires_payment=False,
        price=0,
        max_attempts=1,
        question_paper_id="paper-1",
    )
    data.update(overrides)
    return Exam(**data)


def seed_questions(repos, count: int = 10, paper_id: str = "paper-1"):
    ids = []
    for i in range(1, count + 1):
        qid = f"q{i}"
        repos.questions.add_question(Question(
            question_id=qid,
            question=f"Question {i}?",
            options=["A", "B", "C", "D"],
            correct_answer="A",
        ))
        ids.append(qid)
    repos.questions.add_paper(QuestionPaper(question_paper_id=paper_id, question_ids=ids))
    return ids


def add_completed_payment(repos, student_id="student-1", **fields) -> PaymentRecord:
    payment = PaymentRecord(
        payment_id=fields.pop("payment_id", "pay-1"),
        student_id=student_id,
        status="completed",
        **fields
    )
    repos.payments.add_payment(payment)
    return payment


def add_enrollment(repos, student_id="student-1", course_id="course-1"):
    repos.payments.add_enrollment(Enrollment(student_id=student_id, course_id=course_id))


async def add_credit(repos, attempt_number: int, student_id="student-1", exam_id="exam-1",
                     credit_id="credit-1") -> ExamPaymentAttempt:
    credit = ExamPaymentAttempt(
        credit_id=credit_id,
        student_id=student_id,
        exam_id=exam_id,
        payment_id=f"pay-{credit_id}",
        attempt_number=attempt_number,
    )
    await repos.credits.insert(credit)
    return credit


@pytest.fixture
def repos():
    repositories = build_memory_repositories()
    repositories.sessions.add_session(STUDENT_TOKEN, {
        "user_id": "student-1", "email": "student@example.com", "name": "Student One",
        "role": "student",
    })
    repositories.sessions.add_session(OTHER_STUDENT_TOKEN, {
        "user_id": "student-2", "email": "student2@example.com", "name": "Student Two",
        "role": "student",
    })
    repositories.sessions.add_session(ADMIN_TOKEN, {
        "user_id": "admin-1", "email": "admin@example.com", "name": "Admin",
        "role": "admin",
    })
    return repositories


@pytest.fixture
def clock():
    return FakeClock(SLOT_START - timedelta(hours=1))


@pytest.fixture
def client(repos, clock):
    app = create_app(repositories=repos, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def auth(token: str = STUDENT_TOKEN) -> dict:
    return {"Authorization": f"Bearer {token}"}
