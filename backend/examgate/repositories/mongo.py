"""MongoDB repositories (Motor)."""

import asyncio
import functools
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
from pymongo.errors import PyMongoError

from ..errors import Internal
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

logger = logging.getLogger(__name__)

NO_ID = {"_id": 0}


def _doc(model: BaseModel) -> Dict[str, Any]:
    """Model -> Mongo document with enums stored as their values."""
    data = model.model_dump()
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


def _store_call(func):
    """Map driver errors onto repository/domain errors."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except MongoDuplicateKeyError as e:
            raise DuplicateKeyError(str(e)) from e
        except PyMongoError as e:
            logger.error(f"{func.__qualname__} failed: {e}")
            raise Internal("Database operation failed", error_type="STORE_ERROR") from e
    return wrapper


async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes, including the unique keys the engine relies on."""
    try:
        # Exams
        await db.exams.create_index("exam_id", unique=True)
        await db.exams.create_index([("course_id", 1), ("is_active", 1)])

        # Registrations: one per student per exam
        await db.exam_registrations.create_index([("student_id", 1), ("exam_id", 1)], unique=True)
        await db.exam_registrations.create_index([("exam_id", 1), ("slot_id", 1), ("payment_status", 1)])

        # Attempts: the only mutual-exclusion primitive for racing starts
        await db.exam_attempts.create_index(
            [("student_id", 1), ("exam_id", 1), ("attempt_number", 1)], unique=True
        )
        await db.exam_attempts.create_index("attempt_id", unique=True)
        await db.exam_attempts.create_index([("exam_id", 1), ("status", 1), ("start_time", 1)])

        # Credits
        await db.exam_payment_attempts.create_index(
            [("student_id", 1), ("exam_id", 1), ("attempt_number", 1)], unique=True
        )
        await db.exam_payment_attempts.create_index("credit_id", unique=True)

        # Payment sources (owned by the payment subsystem)
        await db.payments.create_index([("student_id", 1), ("status", 1)])
        await db.enrollments.create_index([("student_id", 1), ("course_id", 1)])

        # Question bank
        await db.questions.create_index("question_id", unique=True)
        await db.question_papers.create_index("question_paper_id", unique=True)

        # Sessions
        await db.user_sessions.create_index("session_token", unique=True)

    except Exception as e:
        logger.warning(f"Index creation warning: {e}")
        # Don't fail startup if indexes already exist


# ============ EXAMS ============

class MongoExamRepository(ExamRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db.exams

    @_store_call
    async def get(self, exam_id: str) -> Optional[Exam]:
        doc = await self.col.find_one({"exam_id": exam_id}, NO_ID)
        return Exam(**doc) if doc else None

    @_store_call
    async def list_all(self) -> List[Exam]:
        docs = await self.col.find({}, NO_ID).sort("exam_date", 1).to_list(None)
        return [Exam(**d) for d in docs]

    @_store_call
    async def insert(self, exam: Exam) -> Exam:
        await self.col.insert_one(_doc(exam))
        return exam

    @_store_call
    async def set_active(self, exam_ids: List[str], is_active: bool) -> int:
        if not exam_ids:
            return 0
        result = await self.col.update_many(
            {"exam_id": {"$in": exam_ids}, "is_active": {"$ne": is_active}},
            {"$set": {"is_active": is_active}}
        )
        return result.modified_count

    @_store_call
    async def add_slot_registrant(
        self, exam_id: str, slot_id: str, registrant: SlotRegistrant
    ) -> bool:
        result = await self.col.update_one(
            {"exam_id": exam_id, "slots.slot_id": slot_id},
            {"$push": {"slots.$.registered_students": registrant.model_dump()}}
        )
        return result.modified_count > 0

    @_store_call
    async def delete(self, exam_id: str) -> bool:
        result = await self.col.delete_one({"exam_id": exam_id})
        return result.deleted_count > 0


# ============ REGISTRATIONS ============

class MongoRegistrationRepository(RegistrationRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db.exam_registrations

    @_store_call
    async def find_active(self, student_id: str, exam_id: str) -> Optional[ExamRegistration]:
        doc = await self.col.find_one(
            {"student_id": student_id, "exam_id": exam_id, "is_active": True}, NO_ID
        )
        return ExamRegistration(**doc) if doc else None

    @_store_call
    async def insert(self, registration: ExamRegistration) -> ExamRegistration:
        await self.col.insert_one(_doc(registration))
        return registration

    @_store_call
    async def count_paid_for_slot(self, exam_id: str, slot_id: str) -> int:
        return await self.col.count_documents({
            "exam_id": exam_id,
            "slot_id": slot_id,
            "payment_status": PaymentStatus.PAID.value,
            "is_active": True
        })

    @_store_call
    async def list_for_exam(self, exam_id: str) -> List[ExamRegistration]:
        docs = await self.col.find(
            {"exam_id": exam_id, "is_active": True}, NO_ID
        ).sort("registration_date", -1).to_list(None)
        return [ExamRegistration(**d) for d in docs]

    @_store_call
    async def delete_for_exam(self, exam_id: str) -> int:
        result = await self.col.delete_many({"exam_id": exam_id})
        return result.deleted_count


# ============ ATTEMPTS ============

class MongoAttemptRepository(AttemptRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db.exam_attempts

    @_store_call
    async def get(self, attempt_id: str) -> Optional[ExamAttempt]:
        doc = await self.col.find_one({"attempt_id": attempt_id}, NO_ID)
        return ExamAttempt(**doc) if doc else None

    @_store_call
    async def list_for_slot(
        self, student_id: str, exam_id: str, slot_id: str
    ) -> List[ExamAttempt]:
        docs = await self.col.find(
            {"student_id": student_id, "exam_id": exam_id, "slot_id": slot_id}, NO_ID
        ).sort("attempt_number", -1).to_list(None)
        return [ExamAttempt(**d) for d in docs]

    @_store_call
    async def find_in_progress(self, student_id: str, exam_id: str) -> Optional[ExamAttempt]:
        doc = await self.col.find_one(
            {
                "student_id": student_id,
                "exam_id": exam_id,
                "status": AttemptStatus.IN_PROGRESS.value
            },
            NO_ID
        )
        return ExamAttempt(**doc) if doc else None

    @_store_call
    async def max_attempt_number(self, student_id: str, exam_id: str) -> int:
        doc = await self.col.find_one(
            {"student_id": student_id, "exam_id": exam_id},
            {"_id": 0, "attempt_number": 1},
            sort=[("attempt_number", -1)]
        )
        return doc["attempt_number"] if doc else 0

    @_store_call
    async def insert_if_absent(self, attempt: ExamAttempt) -> ExamAttempt:
        key = {
            "student_id": attempt.student_id,
            "exam_id": attempt.exam_id,
            "attempt_number": attempt.attempt_number
        }
        try:
            doc = await self.col.find_one_and_update(
                key,
                {"$setOnInsert": _doc(attempt)},
                upsert=True,
                projection=NO_ID,
                return_document=ReturnDocument.AFTER
            )
        except MongoDuplicateKeyError:
            # Lost the upsert race; the winner's row is the answer
            doc = await self.col.find_one(key, NO_ID)
        return ExamAttempt(**doc)

    @_store_call
    async def save_answer(
        self, attempt_id: str, question_id: str, answer: str, saved_at: datetime
    ) -> bool:
        result = await self.col.update_one(
            {"attempt_id": attempt_id, "status": AttemptStatus.IN_PROGRESS.value},
            {"$set": {f"answers.{question_id}": answer, "last_saved_at": saved_at}}
        )
        return result.matched_count > 0

    @_store_call
    async def complete(self, attempt_id: str, fields: Dict[str, Any]) -> Optional[ExamAttempt]:
        update = dict(fields)
        update["status"] = AttemptStatus.COMPLETED.value
        doc = await self.col.find_one_and_update(
            {"attempt_id": attempt_id, "status": AttemptStatus.IN_PROGRESS.value},
            {"$set": update},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )
        return ExamAttempt(**doc) if doc else None

    @_store_call
    async def abandon(self, attempt_id: str, at: datetime) -> bool:
        result = await self.col.update_one(
            {"attempt_id": attempt_id, "status": AttemptStatus.IN_PROGRESS.value},
            {"$set": {"status": AttemptStatus.ABANDONED.value, "end_time": at}}
        )
        return result.modified_count > 0

    @_store_call
    async def find_latest(self, student_id: str, exam_id: str) -> Optional[ExamAttempt]:
        doc = await self.col.find_one(
            {"student_id": student_id, "exam_id": exam_id},
            NO_ID,
            sort=[("attempt_number", -1)]
        )
        return ExamAttempt(**doc) if doc else None

    @_store_call
    async def approve_retake(self, attempt_id: str, admin_id: str, at: datetime) -> bool:
        result = await self.col.update_one(
            {"attempt_id": attempt_id},
            {"$set": {
                "can_retake": True,
                "retake_approved_by": admin_id,
                "retake_approved_at": at
            }}
        )
        return result.matched_count > 0

    @_store_call
    async def list_completed(
        self,
        exam_ids: Optional[List[str]] = None,
        student_id: Optional[str] = None,
        published: Optional[bool] = None,
        started_from: Optional[datetime] = None,
        started_before: Optional[datetime] = None
    ) -> List[ExamAttempt]:
        query: Dict[str, Any] = {"status": AttemptStatus.COMPLETED.value}
        if exam_ids is not None:
            query["exam_id"] = {"$in": exam_ids}
        if student_id is not None:
            query["student_id"] = student_id
        if published is not None:
            query["published"] = published
        if started_from is not None or started_before is not None:
            query["start_time"] = {}
            if started_from is not None:
                query["start_time"]["$gte"] = started_from
            if started_before is not None:
                query["start_time"]["$lt"] = started_before

        docs = await self.col.find(query, NO_ID).sort("start_time", -1).to_list(None)
        return [ExamAttempt(**d) for d in docs]

    @_store_call
    async def set_published(
        self,
        exam_ids: List[str],
        started_from: datetime,
        started_before: datetime,
        published: bool,
        admin_id: Optional[str],
        at: datetime
    ) -> int:
        if not exam_ids:
            return 0
        if published:
            update = {"published": True, "published_at": at, "published_by": admin_id}
        else:
            update = {"published": False, "published_at": None, "published_by": None}

        result = await self.col.update_many(
            {
                "exam_id": {"$in": exam_ids},
                "status": AttemptStatus.COMPLETED.value,
                "start_time": {"$gte": started_from, "$lt": started_before},
                "published": not published
            },
            {"$set": update}
        )
        return result.modified_count

    @_store_call
    async def delete_for_exam(self, exam_id: str) -> int:
        result = await self.col.delete_many({"exam_id": exam_id})
        return result.deleted_count


# ============ CREDITS ============

class MongoCreditRepository(CreditRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db.exam_payment_attempts

    @_store_call
    async def list_available(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        docs = await self.col.find(
            {
                "student_id": student_id,
                "exam_id": exam_id,
                "is_used": False,
                "status": CreditStatus.PAID.value
            },
            NO_ID
        ).sort("attempt_number", 1).to_list(None)
        return [ExamPaymentAttempt(**d) for d in docs]

    @_store_call
    async def list_for_student(self, student_id: str, exam_id: str) -> List[ExamPaymentAttempt]:
        docs = await self.col.find(
            {"student_id": student_id, "exam_id": exam_id}, NO_ID
        ).sort("attempt_number", 1).to_list(None)
        return [ExamPaymentAttempt(**d) for d in docs]

    @_store_call
    async def next_attempt_number(self, student_id: str, exam_id: str) -> int:
        last = await self.col.find_one(
            {"student_id": student_id, "exam_id": exam_id},
            NO_ID,
            sort=[("attempt_number", -1)]
        )
        return last["attempt_number"] + 1 if last else 1

    @_store_call
    async def insert(self, credit: ExamPaymentAttempt) -> ExamPaymentAttempt:
        await self.col.insert_one(_doc(credit))
        return credit

    @_store_call
    async def mark_used(self, credit_id: str, exam_attempt_id: str, at: datetime) -> bool:
        result = await self.col.update_one(
            {"credit_id": credit_id, "is_used": False},
            {"$set": {
                "is_used": True,
                "used_at": at,
                "exam_attempt_id": exam_attempt_id,
                "status": CreditStatus.EXAM_STARTED.value
            }}
        )
        return result.modified_count > 0

    @_store_call
    async def set_status_for_attempt(self, exam_attempt_id: str, status: CreditStatus) -> bool:
        result = await self.col.update_one(
            {"exam_attempt_id": exam_attempt_id},
            {"$set": {"status": status.value}}
        )
        return result.modified_count > 0


# ============ PAYMENT SOURCES ============

class MongoPaymentRepository(PaymentRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.payments = db.payments
        self.enrollments = db.enrollments
        self.credits = db.exam_payment_attempts

    @_store_call
    async def find_signals(
        self, student_id: str, exam_id: str, course_id: Optional[str]
    ) -> List[PaymentSignal]:
        payment_keys: List[Dict[str, Any]] = [
            {"exam_id": exam_id},
            {"is_flagship_exam": True, "exam_id": None, "course_id": None},
        ]
        if course_id:
            payment_keys.append({"course_id": course_id})

        async def _enrollments():
            if not course_id:
                return []
            return await self.enrollments.find(
                {"student_id": student_id, "course_id": course_id, "is_active": True}, NO_ID
            ).to_list(None)

        payments, enrollments, credits = await asyncio.gather(
            self.payments.find(
                {"student_id": student_id, "status": "completed", "$or": payment_keys}, NO_ID
            ).to_list(None),
            _enrollments(),
            self.credits.find(
                {
                    "student_id": student_id,
                    "exam_id": exam_id,
                    "is_used": False,
                    "status": CreditStatus.PAID.value
                },
                NO_ID
            ).sort("attempt_number", 1).to_list(None),
        )

        signals: List[PaymentSignal] = []
        for doc in credits:
            signals.append(CreditAttempt(credit=ExamPaymentAttempt(**doc)))
        for doc in payments:
            payment = PaymentRecord(**doc)
            if course_id and payment.course_id == course_id:
                signals.append(CoursePayment(course_id=course_id, reference=payment.payment_id))
            elif payment.exam_id == exam_id:
                signals.append(ExamPayment(exam_id=exam_id, payment_id=payment.payment_id))
            elif payment.is_flagship_exam:
                signals.append(LegacyFlag(payment_id=payment.payment_id))
        if enrollments:
            signals.append(CoursePayment(course_id=course_id, via="enrollment"))
        return signals

    @_store_call
    async def find_completed_payment(
        self, payment_id: str, student_id: str
    ) -> Optional[PaymentRecord]:
        doc = await self.payments.find_one(
            {"payment_id": payment_id, "student_id": student_id, "status": "completed"}, NO_ID
        )
        return PaymentRecord(**doc) if doc else None


# ============ QUESTION BANK ============

class MongoQuestionRepository(QuestionRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.questions = db.questions
        self.papers = db.question_papers

    @_store_call
    async def for_exam(self, exam: Exam) -> List[Question]:
        question_ids = list(exam.question_ids)
        if exam.question_paper_id:
            paper_doc = await self.papers.find_one(
                {"question_paper_id": exam.question_paper_id}, NO_ID
            )
            if paper_doc:
                question_ids = QuestionPaper(**paper_doc).question_ids

        if not question_ids:
            return []

        docs = await self.questions.find(
            {"question_id": {"$in": question_ids}}, NO_ID
        ).to_list(None)
        by_id = {d["question_id"]: Question(**d) for d in docs}
        return [by_id[qid] for qid in question_ids if qid in by_id]


# ============ SESSIONS ============

class MongoSessionRepository(SessionRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.sessions = db.user_sessions
        self.users = db.users

    @_store_call
    async def find_user(self, session_token: str, now: datetime) -> Optional[Dict[str, Any]]:
        session = await self.sessions.find_one({"session_token": session_token}, NO_ID)
        if not session:
            return None

        expires_at = session.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        if expires_at is not None and ensure_aware(expires_at) < now:
            return None

        return await self.users.find_one({"user_id": session["user_id"]}, NO_ID)


def build_mongo_repositories(db: AsyncIOMotorDatabase) -> Repositories:
    return Repositories(
        exams=MongoExamRepository(db),
        registrations=MongoRegistrationRepository(db),
        attempts=MongoAttemptRepository(db),
        credits=MongoCreditRepository(db),
        payments=MongoPaymentRepository(db),
        questions=MongoQuestionRepository(db),
        sessions=MongoSessionRepository(db),
    )
