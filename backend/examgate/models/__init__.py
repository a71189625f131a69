"""Pydantic models for the exam engine"""

from .exam import SlotRegistrant, Slot, Exam, Question, QuestionPaper
from .attempt import PaymentStatus, AttemptStatus, ExamRegistration, ExamAttempt
from .payment import (
    CreditStatus,
    ExamPaymentAttempt,
    PaymentRecord,
    Enrollment,
    CoursePayment,
    ExamPayment,
    CreditAttempt,
    LegacyFlag,
    PaymentSignal
)
from .user import User
from .requests import (
    RegisterRequest,
    SaveAnswerRequest,
    SubmitRequest,
    CreditPurchaseRequest,
    PublishRequest,
    ExamCategory,
    PublishAllRequest,
    StudentExamRequest
)

__all__ = [
    # Exam models
    "SlotRegistrant",
    "Slot",
    "Exam",
    "Question",
    "QuestionPaper",

    # Attempt models
    "PaymentStatus",
    "AttemptStatus",
    "ExamRegistration",
    "ExamAttempt",

    # Payment models
    "CreditStatus",
    "ExamPaymentAttempt",
    "PaymentRecord",
    "Enrollment",
    "CoursePayment",
    "ExamPayment",
    "CreditAttempt",
    "LegacyFlag",
    "PaymentSignal",

    # Users
    "User",

    # Request bodies
    "RegisterRequest",
    "SaveAnswerRequest",
    "SubmitRequest",
    "CreditPurchaseRequest",
    "PublishRequest",
    "ExamCategory",
    "PublishAllRequest",
    "StudentExamRequest",
]
