import asyncio

import pytest

from examgate.errors import AccessDenied
from examgate.models import (
    CoursePayment,
    CreditAttempt,
    ExamPayment,
    ExamPaymentAttempt,
    ExamRegistration,
    LegacyFlag,
    PaymentRecord,
    PaymentStatus,
)
from examgate.services.payment_ledger import (
    AccessSource,
    PaymentLedger,
    payment_required,
    resolve,
    with_registration_override,
)

from conftest import add_completed_payment, add_credit, add_enrollment, make_exam


def _credit(number, credit_id=None):
    return ExamPaymentAttempt(
        credit_id=credit_id or f"c{number}",
        student_id="student-1",
        exam_id="exam-1",
        payment_id=f"p{number}",
        attempt_number=number,
    )


def test_free_exam_always_has_access():
    decision = resolve(make_exam(requires_payment=False), [])

    assert decision.has_access
    assert decision.source == AccessSource.FREE


def test_credit_wins_and_lowest_number_is_returned():
    exam = make_exam(requires_payment=True, price=100)
    signals = [
        ExamPayment(exam_id="exam-1", payment_id="p"),
        CreditAttempt(credit=_credit(3)),
        CreditAttempt(credit=_credit(2)),
    ]

    decision = resolve(exam, signals)

    assert decision.source == AccessSource.CREDIT
    assert decision.credit.attempt_number == 2


def test_course_exam_requires_course_signal():
    exam = make_exam(requires_payment=True, course_id="course-1", price=100)

    assert not resolve(exam, [ExamPayment(exam_id="exam-1", payment_id="p")]).has_access
    assert not resolve(exam, [CoursePayment(course_id="other")]).has_access

    paid = resolve(exam, [CoursePayment(course_id="course-1", reference="p1")])
    assert paid.source == AccessSource.COURSE_PAYMENT
    assert paid.payment_id == "p1"

    enrolled = resolve(exam, [CoursePayment(course_id="course-1", via="enrollment")])
    assert enrolled.source == AccessSource.ENROLLMENT


def test_standalone_exam_prefers_exam_payment_over_legacy_flag():
    exam = make_exam(requires_payment=True, price=100)

    decision = resolve(exam, [LegacyFlag(payment_id="legacy"), ExamPayment(exam_id="exam-1", payment_id="p")])
    assert decision.source == AccessSource.EXAM_PAYMENT

    legacy = resolve(exam, [LegacyFlag(payment_id="legacy")])
    assert legacy.source == AccessSource.LEGACY_FLAG

    assert resolve(exam, []).source == AccessSource.NONE


def test_paid_registration_overrides_denial():
    denied = resolve(make_exam(requires_payment=True), [])
    registration = ExamRegistration(
        registration_id="r1", student_id="student-1", exam_id="exam-1",
        slot_id="slot-1", slot_start_time="10:00", slot_end_time="11:00",
        payment_status=PaymentStatus.PAID,
    )

    decision = with_registration_override(denied, registration)
    assert decision.has_access
    assert decision.source == AccessSource.REGISTRATION_PAID

    registration.payment_status = PaymentStatus.PENDING
    assert not with_registration_override(denied, registration).has_access


def test_payment_required_carries_context():
    error = payment_required(make_exam(requires_payment=True, course_id="course-1", price=499))

    assert isinstance(error, AccessDenied)
    detail = error.to_detail()
    assert detail["error_type"] == "PAYMENT_REQUIRED"
    assert detail["payment_type"] == "course"
    assert detail["price"] == 499
    assert detail["course_id"] == "course-1"


def test_resolve_access_reads_every_source(repos):
    ledger = PaymentLedger(repos)
    standalone = make_exam(requires_payment=True, price=100)
    course_exam = make_exam(exam_id="exam-2", requires_payment=True, course_id="course-1")

    assert not asyncio.run(ledger.resolve_access("student-1", standalone)).has_access

    add_completed_payment(repos, payment_id="legacy", is_flagship_exam=True)
    assert asyncio.run(ledger.resolve_access("student-1", standalone)).source == AccessSource.LEGACY_FLAG

    add_completed_payment(repos, payment_id="exam-pay", exam_id="exam-1")
    assert asyncio.run(ledger.resolve_access("student-1", standalone)).source == AccessSource.EXAM_PAYMENT

    asyncio.run(add_credit(repos, attempt_number=1))
    decision = asyncio.run(ledger.resolve_access("student-1", standalone))
    assert decision.source == AccessSource.CREDIT
    assert decision.credit.credit_id == "credit-1"

    assert not asyncio.run(ledger.resolve_access("student-1", course_exam)).has_access
    add_enrollment(repos)
    assert asyncio.run(ledger.resolve_access("student-1", course_exam)).source == AccessSource.ENROLLMENT


@pytest.mark.parametrize("status", ["pending", "failed", "refunded"])
def test_incomplete_payments_are_ignored(repos, status):
    repos.payments.add_payment(
        PaymentRecord(payment_id="p", student_id="student-1", exam_id="exam-1", status=status)
    )
    decision = asyncio.run(PaymentLedger(repos).resolve_access("student-1", make_exam(requires_payment=True)))

    assert not decision.has_access
