"""
Attempt allocator.

Per (student, exam, slot) an attempt moves NONE -> IN_PROGRESS and then once
to COMPLETED or ABANDONED. Racing start requests converge on one row through
the unique (student_id, exam_id, attempt_number) key.
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from ..errors import AccessDenied, Conflict, Internal, NotFound, ValidationError
from ..models import AttemptStatus, CreditStatus, ExamAttempt, ExamPaymentAttempt
from ..repositories import Repositories
from ..utils import new_id, utc_now
from .payment_ledger import PaymentLedger, payment_required, with_registration_override
from .slot_window import check_flagship_heuristic, window_for

logger = logging.getLogger(__name__)


class AttemptAllocator:
    def __init__(
        self,
        repos: Repositories,
        tz: tzinfo = timezone.utc,
        flagship_keyword: str = ""
    ):
        self.repos = repos
        self.tz = tz
        self.flagship_keyword = flagship_keyword
        self.ledger = PaymentLedger(repos)

    async def start(
        self, student_id: str, exam_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Start, or resume, the student's attempt for their registered slot.

        Returns:
            Dict with exam, questions (answers stripped), exam_attempt,
            saved_answers and marked_questions
        """
        now = now or utc_now()

        registration = await self.repos.registrations.find_active(student_id, exam_id)
        if not registration:
            raise AccessDenied("You are not registered for this exam", error_type="NOT_REGISTERED")

        exam = await self.repos.exams.get(exam_id)
        if not exam or not exam.is_active:
            raise NotFound("Exam not found or not active", error_type="EXAM_NOT_FOUND")

        decision = await self.ledger.resolve_access(student_id, exam)
        decision = with_registration_override(decision, registration)
        if not decision.has_access:
            raise payment_required(exam)

        slot = exam.get_slot(registration.slot_id)
        if not slot:
            raise NotFound(
                "Registered slot no longer exists",
                error_type="SLOT_NOT_FOUND",
                slot_id=registration.slot_id
            )

        check_flagship_heuristic(exam, self.flagship_keyword)
        window = window_for(exam, slot, self.tz)
        if now < window.slot_start:
            raise AccessDenied(
                "Exam has not started yet. Please wait until the start time.",
                error_type="EXAM_NOT_STARTED",
                can_access=False,
                start_time=window.slot_start,
                current_time=now,
                exam=exam.public_view()
            )
        if now > window.exam_end:
            raise AccessDenied(
                "Exam access period has expired",
                error_type="EXAM_WINDOW_CLOSED",
                can_access=False,
                end_time=window.exam_end,
                current_time=now
            )

        questions = await self.repos.questions.for_exam(exam)
        if not questions:
            raise ValidationError("No questions found for this exam", error_type="NO_QUESTIONS")

        attempts = await self.repos.attempts.list_for_slot(student_id, exam_id, slot.slot_id)
        latest = attempts[0] if attempts else None
        max_attempt_number = latest.attempt_number if latest else 0

        in_progress = next((a for a in attempts if a.status == AttemptStatus.IN_PROGRESS), None)
        if in_progress:
            attempt = in_progress
            logger.info(f"Resuming attempt {attempt.attempt_id} for {student_id} on {exam_id}")
        else:
            highest_taken = await self.repos.attempts.max_attempt_number(student_id, exam_id)
            credit, stale_credits = await self._pick_credit(student_id, exam_id, highest_taken)

            permitted = (
                max_attempt_number < exam.max_attempts
                or credit is not None
                or (latest is not None and latest.can_retake)
            )
            if not permitted:
                if stale_credits:
                    raise Conflict(
                        f"Attempt {stale_credits[0].attempt_number} for this exam is already taken",
                        error_type="ATTEMPT_CONFLICT",
                        attempt_number=stale_credits[0].attempt_number
                    )
                raise AccessDenied(
                    "You have reached the maximum number of attempts for this exam",
                    error_type="MAX_ATTEMPTS_REACHED",
                    max_attempts=exam.max_attempts
                )

            attempt_number = credit.attempt_number if credit else highest_taken + 1
            candidate = ExamAttempt(
                attempt_id=new_id(),
                student_id=student_id,
                exam_id=exam_id,
                course_id=exam.course_id,
                attempt_number=attempt_number,
                status=AttemptStatus.IN_PROGRESS,
                start_time=now,
                duration=exam.duration,
                total_marks=exam.total_marks,
                time_remaining=exam.duration * 60,
                slot_id=slot.slot_id,
                slot_start_time=slot.start_time,
                slot_end_time=slot.end_time,
                credit_id=credit.credit_id if credit else None,
            )
            attempt = await self.repos.attempts.insert_if_absent(candidate)

            if attempt.status != AttemptStatus.IN_PROGRESS or attempt.slot_id != slot.slot_id:
                raise Conflict(
                    f"Attempt {attempt_number} for this exam is already taken",
                    error_type="ATTEMPT_CONFLICT",
                    attempt_number=attempt_number
                )

            if attempt.attempt_id == candidate.attempt_id:
                logger.info(
                    f"Created attempt {attempt_number} ({attempt.attempt_id}) for {student_id} "
                    f"on {exam_id} slot {slot.slot_id}"
                )
                if credit:
                    await self._consume_credit(credit.credit_id, attempt.attempt_id, now)

        return {
            "exam": exam.public_view(),
            "questions": [q.without_answer() for q in questions],
            "exam_attempt": attempt,
            "saved_answers": attempt.answers,
            "marked_questions": attempt.marked_questions,
        }

    async def _pick_credit(
        self, student_id: str, exam_id: str, highest_taken: int
    ) -> Tuple[Optional[ExamPaymentAttempt], List[ExamPaymentAttempt]]:
        """
        Lowest-numbered unused credit whose attempt number is still free.

        Credits whose number an existing attempt already holds are skipped
        and returned separately; they are left unused for reconciliation.
        """
        stale = []
        for credit in await self.repos.credits.list_available(student_id, exam_id):
            if credit.attempt_number > highest_taken:
                return credit, stale
            logger.warning(
                f"Credit {credit.credit_id} of {student_id} on {exam_id} points at attempt "
                f"{credit.attempt_number}, already taken; skipping"
            )
            stale.append(credit)
        return None, stale

    async def _consume_credit(self, credit_id: str, attempt_id: str, at: datetime):
        # Separate write from attempt creation; the attempt stays valid if this fails
        try:
            consumed = await self.repos.credits.mark_used(credit_id, attempt_id, at)
        except Internal as e:
            logger.warning(f"Failed to consume credit {credit_id} for attempt {attempt_id}: {e}")
            return
        if not consumed:
            logger.warning(f"Credit {credit_id} was already used; attempt {attempt_id} kept")

    async def save_answer(
        self,
        student_id: str,
        exam_id: str,
        question_id: str,
        answer: str,
        now: Optional[datetime] = None
    ):
        now = now or utc_now()
        if not question_id:
            raise ValidationError("question_id is required", error_type="MISSING_QUESTION_ID")

        attempt = await self.repos.attempts.find_in_progress(student_id, exam_id)
        if not attempt:
            raise NotFound("No active exam attempt found", error_type="ATTEMPT_NOT_FOUND")

        # question_id becomes part of a document path, so only known ids are written
        exam = await self.repos.exams.get(exam_id)
        questions = await self.repos.questions.for_exam(exam) if exam else []
        if question_id not in {q.question_id for q in questions}:
            raise ValidationError(
                "Question does not belong to this exam",
                error_type="INVALID_QUESTION_ID",
                question_id=question_id
            )

        saved = await self.repos.attempts.save_answer(attempt.attempt_id, question_id, answer, now)
        if not saved:
            raise NotFound("No active exam attempt found", error_type="ATTEMPT_NOT_FOUND")

    async def abandon(
        self, student_id: str, exam_id: str, now: Optional[datetime] = None
    ) -> ExamAttempt:
        """Admin action: close a student's in-progress attempt without scoring it."""
        now = now or utc_now()
        attempt = await self.repos.attempts.find_in_progress(student_id, exam_id)
        if not attempt or not await self.repos.attempts.abandon(attempt.attempt_id, now):
            raise NotFound("No active exam attempt found", error_type="ATTEMPT_NOT_FOUND")

        await self.repos.credits.set_status_for_attempt(attempt.attempt_id, CreditStatus.EXAM_ABANDONED)
        logger.info(f"Attempt {attempt.attempt_id} of {student_id} on {exam_id} abandoned")
        return await self.repos.attempts.get(attempt.attempt_id)

    async def approve_retake(
        self,
        exam_id: str,
        student_id: str,
        admin_id: str,
        now: Optional[datetime] = None
    ) -> ExamAttempt:
        """
        Flag the student's highest-numbered attempt as retakeable.

        That is the attempt the start permission check reads, so approving any
        other attempt would have no effect.
        """
        now = now or utc_now()
        attempt = await self.repos.attempts.find_latest(student_id, exam_id)
        if not attempt:
            raise NotFound("No finished attempt found for this student", error_type="ATTEMPT_NOT_FOUND")
        if attempt.status == AttemptStatus.IN_PROGRESS:
            raise Conflict(
                "The student's latest attempt is still in progress",
                error_type="ATTEMPT_IN_PROGRESS",
                attempt_id=attempt.attempt_id
            )

        await self.repos.attempts.approve_retake(attempt.attempt_id, admin_id, now)
        logger.info(f"Retake approved for {student_id} on {exam_id} by {admin_id}")
        return await self.repos.attempts.get(attempt.attempt_id)
