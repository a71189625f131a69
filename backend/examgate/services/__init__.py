"""Services implementing exam access control and the attempt lifecycle."""

from .payment_ledger import AccessSource, AccessDecision, PaymentLedger
from .registration import RegistrationService
from .attempt_allocator import AttemptAllocator
from .scoring import ScoringEngine
from .publication import PublicationGate
from .credits import CreditService
from .exam_admin import ExamAdminService

__all__ = [
    "AccessSource",
    "AccessDecision",
    "PaymentLedger",
    "RegistrationService",
    "AttemptAllocator",
    "ScoringEngine",
    "PublicationGate",
    "CreditService",
    "ExamAdminService"
]
