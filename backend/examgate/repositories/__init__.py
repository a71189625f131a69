"""Storage layer: repository interfaces and their Mongo / in-memory implementations"""

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
from .memory import build_memory_repositories
from .mongo import build_mongo_repositories, create_indexes

__all__ = [
    "DuplicateKeyError",
    "ExamRepository",
    "RegistrationRepository",
    "AttemptRepository",
    "CreditRepository",
    "PaymentRepository",
    "QuestionRepository",
    "SessionRepository",
    "Repositories",
    "build_memory_repositories",
    "build_mongo_repositories",
    "create_indexes",
]
