"""
Registration service.

Binds a student to one slot of an exam, lists exams a student can still
register for, and runs the lazy is_active sweep over exams.
"""

import asyncio
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional

from ..errors import AccessDenied, Conflict, ExamEngineError, NotFound, ValidationError
from ..models import Exam, ExamRegistration, PaymentStatus, SlotRegistrant
from ..repositories import DuplicateKeyError, Repositories
from ..utils import new_id, utc_now
from .payment_ledger import PaymentLedger, payment_required
from .slot_window import check_flagship_heuristic, is_exam_finished, window_for

logger = logging.getLogger(__name__)


class RegistrationService:
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

    async def register(
        self,
        student_id: str,
        exam_id: str,
        slot_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Register a student for one slot of an exam.

        Args:
            student_id: Registering student
            exam_id: Exam to register for
            slot_id: Chosen slot
            now: Clock override

        Returns:
            Dict with the stored registration and the access source that paid for it

        Raises:
            ValidationError: missing/unknown slot, malformed slot times, slot full
            NotFound: exam missing or inactive
            Conflict: already registered for this exam
            AccessDenied: registration closed or payment required
        """
        now = now or utc_now()
        if not slot_id:
            raise ValidationError("slot_id is required", error_type="MISSING_SLOT_ID")

        exam = await self.repos.exams.get(exam_id)
        if not exam or not exam.is_active:
            raise NotFound("Exam not found or not active", error_type="EXAM_NOT_FOUND")

        existing = await self.repos.registrations.find_active(student_id, exam_id)
        if existing:
            raise Conflict(
                "You are already registered for this exam",
                error_type="ALREADY_REGISTERED",
                registration_id=existing.registration_id
            )

        slot = exam.get_slot(slot_id)
        if not slot or not slot.is_active:
            raise ValidationError("Invalid or inactive slot selected", error_type="INVALID_SLOT")

        check_flagship_heuristic(exam, self.flagship_keyword)
        window = window_for(exam, slot, self.tz)
        if now > window.registration_cutoff:
            raise AccessDenied(
                "Registration for this slot has closed",
                error_type="REGISTRATION_CLOSED",
                registration_cutoff=window.registration_cutoff,
                current_time=now
            )

        # Read-compare-write; concurrent registrations can overbook transiently
        registered = await self.repos.registrations.count_paid_for_slot(exam_id, slot_id)
        if registered >= slot.max_participants:
            raise ValidationError(
                "Selected slot is full",
                error_type="SLOT_FULL",
                max_participants=slot.max_participants
            )

        decision = await self.ledger.resolve_access(student_id, exam)
        if not decision.has_access:
            raise payment_required(exam)

        registration = ExamRegistration(
            registration_id=new_id(),
            student_id=student_id,
            exam_id=exam_id,
            course_id=exam.course_id,
            slot_id=slot_id,
            slot_start_time=slot.start_time,
            slot_end_time=slot.end_time,
            registration_date=now,
            payment_status=PaymentStatus.PAID,
            payment_id=decision.payment_id
        )
        try:
            await self.repos.registrations.insert(registration)
        except DuplicateKeyError:
            raise Conflict(
                "You are already registered for this exam",
                error_type="ALREADY_REGISTERED"
            )

        await self.repos.exams.add_slot_registrant(
            exam_id, slot_id, SlotRegistrant(student_id=student_id, registered_at=now)
        )
        logger.info(
            f"Student {student_id} registered for exam {exam_id} slot {slot_id} "
            f"(access: {decision.source.value})"
        )

        return {
            "registration": registration,
            "access_source": decision.source.value,
        }

    # ============ LISTING ============

    async def list_available(
        self, student_id: str, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Active exams the student can see, with registration state, access and open slots.

        Runs the is_active sweep first. Exams without open slots are dropped
        unless the student already holds a registration for them.
        """
        now = now or utc_now()
        await self.mark_completed_inactive(now)

        exams = [e for e in await self.repos.exams.list_all() if e.is_active]
        entries = await asyncio.gather(
            *(self._listing_entry(student_id, exam, now) for exam in exams)
        )
        return [entry for entry in entries if entry is not None]

    async def _listing_entry(
        self, student_id: str, exam: Exam, now: datetime
    ) -> Optional[Dict[str, Any]]:
        registration, decision, credits = await asyncio.gather(
            self.repos.registrations.find_active(student_id, exam.exam_id),
            self.ledger.resolve_access(student_id, exam),
            self.repos.credits.list_for_student(student_id, exam.exam_id),
        )

        open_slots = []
        for slot in exam.slots:
            if not slot.is_active or len(slot.registered_students) >= slot.max_participants:
                continue
            try:
                window = window_for(exam, slot, self.tz)
            except ValidationError as e:
                logger.warning(f"Skipping slot {slot.slot_id} of exam {exam.exam_id}: {e.message}")
                continue
            if now < window.listing_cutoff:
                open_slots.append({
                    **slot.model_dump(exclude={"registered_students"}),
                    "registered_count": len(slot.registered_students),
                    "slot_start": window.slot_start,
                    "registration_cutoff": window.registration_cutoff,
                })

        if not open_slots and not registration:
            return None

        return {
            **exam.public_view(),
            "requires_payment": exam.requires_payment,
            "price": exam.price,
            "max_attempts": exam.max_attempts,
            "is_registered": registration is not None,
            "registration": registration,
            "available_slots": open_slots,
            "is_free_for_user": decision.has_access,
            "effective_price": 0 if decision.has_access else exam.price,
            "access_source": decision.source.value,
            "payment_attempts": credits,
        }

    # ============ ACTIVE SWEEP ============

    async def _partition(self, now: datetime) -> Dict[bool, List[str]]:
        """Exam ids by whether their last window has closed."""
        finished: Dict[bool, List[str]] = {True: [], False: []}
        for exam in await self.repos.exams.list_all():
            try:
                done = is_exam_finished(exam, now, self.tz)
            except ExamEngineError as e:
                logger.warning(f"Cannot compute closing time for exam {exam.exam_id}: {e.message}")
                continue
            if done == exam.is_active:
                finished[done].append(exam.exam_id)
        return finished

    async def mark_completed_inactive(self, now: Optional[datetime] = None) -> int:
        """Deactivate active exams whose latest slot window has closed."""
        now = now or utc_now()
        to_close = (await self._partition(now))[True]
        count = await self.repos.exams.set_active(to_close, False)
        if count:
            logger.info(f"Marked {count} completed exams inactive")
        return count

    async def reactivate_incorrectly_inactive(self, now: Optional[datetime] = None) -> int:
        """Reactivate inactive exams whose windows have not actually closed."""
        now = now or utc_now()
        to_open = (await self._partition(now))[False]
        count = await self.repos.exams.set_active(to_open, True)
        if count:
            logger.info(f"Reactivated {count} exams that were incorrectly inactive")
        return count
