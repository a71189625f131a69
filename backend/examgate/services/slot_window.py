"""
Slot window arithmetic.

Pure functions over an exam's date, a slot's "HH:MM" start/end strings and the
exam duration. No I/O.

    slot_start            = exam_date @ slot.start_time
    slot_end              = exam_date @ slot.end_time (next day if earlier than start)
    listing_cutoff        = slot_start - 30 s
    registration_cutoff   = slot_start - 5 min
    grace_period_end      = slot_start + 5 min
    exam_end              = grace_period_end             (ordinary exams)
                          = slot_end + duration          (flagship exams)
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Union

from ..errors import ValidationError
from ..models import Exam, Slot
from ..utils import ensure_aware

logger = logging.getLogger(__name__)

LISTING_CUTOFF_BEFORE_START = timedelta(seconds=30)
REGISTRATION_CUTOFF_BEFORE_START = timedelta(minutes=5)
GRACE_PERIOD = timedelta(minutes=5)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class SlotWindow:
    slot_start: datetime
    slot_end: datetime
    listing_cutoff: datetime
    registration_cutoff: datetime
    grace_period_end: datetime
    exam_end: datetime


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" string, raising ValidationError when malformed."""
    match = _HHMM.match(value or "")
    if not match:
        raise ValidationError(
            f"Invalid slot time '{value}', expected HH:MM",
            error_type="INVALID_TIME_FORMAT",
            value=value
        )
    return time(int(match.group(1)), int(match.group(2)))


def exam_day(exam_date: Union[date, datetime]) -> date:
    """
    Calendar day of the exam.

    Exam dates are stored as UTC midnight, so the UTC date is the scheduled
    day. Naive values are taken as they are. Slot times are then placed on
    that day in the scheduling timezone.
    """
    if isinstance(exam_date, datetime):
        if exam_date.tzinfo is None:
            return exam_date.date()
        return exam_date.astimezone(timezone.utc).date()
    return exam_date


def combine(exam_date: Union[date, datetime], hhmm: str, tz: tzinfo = timezone.utc) -> datetime:
    return datetime.combine(exam_day(exam_date), parse_hhmm(hhmm), tzinfo=tz)


def resolve_window(
    exam_date: Union[date, datetime],
    slot: Slot,
    duration: int,
    is_flagship: bool = False,
    tz: tzinfo = timezone.utc
) -> SlotWindow:
    """
    Compute every boundary of a slot.

    Args:
        exam_date: Scheduled exam date (only its calendar day is used)
        slot: Slot with "HH:MM" start/end strings
        duration: Exam duration in minutes
        is_flagship: Explicit flagship flag; extends the window to slot_end + duration
        tz: Timezone the slot times are expressed in

    Returns:
        SlotWindow with all boundaries as aware datetimes
    """
    slot_start = combine(exam_date, slot.start_time, tz)
    slot_end = combine(exam_date, slot.end_time, tz)

    if slot_end == slot_start:
        raise ValidationError(
            f"Slot {slot.slot_id} ends when it starts",
            error_type="INVALID_SLOT",
            slot_id=slot.slot_id
        )
    if slot_end < slot_start:
        # Slot spans midnight
        slot_end += timedelta(days=1)

    grace_period_end = slot_start + GRACE_PERIOD
    if is_flagship:
        exam_end = slot_end + timedelta(minutes=duration)
    else:
        exam_end = grace_period_end

    return SlotWindow(
        slot_start=slot_start,
        slot_end=slot_end,
        listing_cutoff=slot_start - LISTING_CUTOFF_BEFORE_START,
        registration_cutoff=slot_start - REGISTRATION_CUTOFF_BEFORE_START,
        grace_period_end=grace_period_end,
        exam_end=exam_end,
    )


def window_for(exam: Exam, slot: Slot, tz: tzinfo = timezone.utc) -> SlotWindow:
    return resolve_window(exam.exam_date, slot, exam.duration, exam.is_flagship_exam, tz)


def check_flagship_heuristic(exam: Exam, keyword: str) -> bool:
    """
    Log when the exam title looks like a flagship exam but the flag disagrees.

    Only the explicit ``is_flagship_exam`` flag drives window arithmetic; older
    call sites matched a title keyword instead. Returns True on a mismatch.
    """
    if not keyword:
        return False
    looks_flagship = keyword.lower() in (exam.title or "").lower()
    if looks_flagship != exam.is_flagship_exam:
        logger.warning(
            f"Exam {exam.exam_id} title '{exam.title}' disagrees with is_flagship_exam="
            f"{exam.is_flagship_exam}; using the flag"
        )
        return True
    return False


def exam_closing_time(exam: Exam, tz: tzinfo = timezone.utc) -> datetime:
    """
    Latest closing time across the exam's active slots.

    Each slot closes at max(exam_end, slot_end + duration), so the sweep never
    deactivates an exam while any student may still be inside a window. Falls
    back to exam_date + duration when the exam has no active slots.
    """
    latest: Optional[datetime] = None
    for slot in exam.slots:
        if not slot.is_active:
            continue
        window = window_for(exam, slot, tz)
        slot_close = max(window.exam_end, window.slot_end + timedelta(minutes=exam.duration))
        if latest is None or slot_close > latest:
            latest = slot_close

    if latest is None:
        latest = ensure_aware(exam.exam_date) + timedelta(minutes=exam.duration)
    return latest


def is_exam_finished(exam: Exam, now: datetime, tz: tzinfo = timezone.utc) -> bool:
    return now > exam_closing_time(exam, tz)
