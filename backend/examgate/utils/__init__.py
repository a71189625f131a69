"""Utility functions for the exam engine."""

import uuid
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Tuple


def new_id() -> str:
    """Generate a new document identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Attach ``tz`` to naive datetimes (Mongo returns naive UTC by default)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """
    Return [start, end) of a calendar day in ``tz``, expressed in UTC.

    Used to group attempts by the calendar date they were started on.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_date(value: datetime, tz: tzinfo) -> date:
    """Calendar date of ``value`` as seen in ``tz``."""
    return ensure_aware(value).astimezone(tz).date()


def format_percentage(obtained: float, total: float) -> float:
    """Format percentage with 2 decimals."""
    if total == 0:
        return 0.0
    return round((obtained / total) * 100, 2)
