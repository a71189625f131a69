from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from examgate.errors import ValidationError
from examgate.models import Slot
from examgate.services.slot_window import (
    GRACE_PERIOD,
    LISTING_CUTOFF_BEFORE_START,
    REGISTRATION_CUTOFF_BEFORE_START,
    check_flagship_heuristic,
    exam_closing_time,
    is_exam_finished,
    parse_hhmm,
    resolve_window,
)

from conftest import EXAM_DATE, make_exam


def _slot(start, end, slot_id="s"):
    return Slot(slot_id=slot_id, start_time=start, end_time=end)


def test_ordinary_exam_window():
    window = resolve_window(EXAM_DATE, _slot("10:00", "11:00"), duration=60)

    assert window.slot_start == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert window.slot_end == datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)
    assert window.listing_cutoff == window.slot_start - timedelta(seconds=30)
    assert window.registration_cutoff == window.slot_start - timedelta(minutes=5)
    assert window.grace_period_end == window.slot_start + timedelta(minutes=5)
    assert window.exam_end == window.grace_period_end


def test_flagship_exam_window_extends_past_slot_end():
    window = resolve_window(EXAM_DATE, _slot("10:00", "11:00"), duration=90, is_flagship=True)

    assert window.exam_end == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def test_cutoff_constants():
    assert LISTING_CUTOFF_BEFORE_START == timedelta(seconds=30)
    assert REGISTRATION_CUTOFF_BEFORE_START == timedelta(minutes=5)
    assert GRACE_PERIOD == timedelta(minutes=5)


@pytest.mark.parametrize("start,end,flagship", [
    ("00:00", "00:01", False),
    ("09:30", "12:00", True),
    ("23:00", "01:00", False),
    ("23:00", "01:00", True),
    ("12:00", "12:05", True),
])
def test_window_ends_after_start(start, end, flagship):
    window = resolve_window(date(2024, 5, 1), _slot(start, end), duration=30, is_flagship=flagship)

    assert window.exam_end > window.slot_start
    assert window.grace_period_end > window.slot_start
    assert window.slot_end > window.slot_start


def test_slot_spanning_midnight_ends_next_day():
    window = resolve_window(EXAM_DATE, _slot("23:00", "01:00"), duration=60)

    assert window.slot_end == datetime(2024, 5, 2, 1, 0, tzinfo=timezone.utc)


def test_equal_start_and_end_is_invalid():
    with pytest.raises(ValidationError) as exc:
        resolve_window(EXAM_DATE, _slot("10:00", "10:00"), duration=60)
    assert exc.value.error_type == "INVALID_SLOT"


@pytest.mark.parametrize("value", ["", "10", "24:00", "10:60", "9:30", "ab:cd", "10:00:00"])
def test_malformed_times_rejected(value):
    with pytest.raises(ValidationError) as exc:
        parse_hhmm(value)
    assert exc.value.error_type == "INVALID_TIME_FORMAT"
    assert exc.value.status_code == 400


def test_slot_times_follow_exam_timezone():
    kolkata = ZoneInfo("Asia/Kolkata")
    window = resolve_window(date(2024, 5, 1), _slot("10:00", "11:00"), duration=60, tz=kolkata)

    assert window.slot_start.astimezone(timezone.utc) == datetime(2024, 5, 1, 4, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("exam_date", [
    EXAM_DATE,
    datetime(2024, 5, 1),
    make_exam(exam_date="2024-05-01").exam_date,
])
def test_exam_day_is_kept_west_of_utc(exam_date):
    new_york = ZoneInfo("America/New_York")
    window = resolve_window(exam_date, _slot("10:00", "11:00"), duration=60, tz=new_york)

    assert window.slot_start == datetime(2024, 5, 1, 10, 0, tzinfo=new_york)
    assert window.slot_start.astimezone(timezone.utc) == datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)


def test_closing_time_uses_latest_active_slot():
    exam = make_exam(slots=[
        _slot("10:00", "11:00", "early"),
        _slot("14:00", "15:00", "late"),
        Slot(slot_id="off", start_time="20:00", end_time="21:00", is_active=False),
    ])

    assert exam_closing_time(exam) == datetime(2024, 5, 1, 16, 0, tzinfo=timezone.utc)


def test_closing_time_without_active_slots_falls_back_to_exam_date():
    exam = make_exam(slots=[])

    assert exam_closing_time(exam) == EXAM_DATE + timedelta(minutes=60)


def test_is_exam_finished():
    exam = make_exam()
    closing = exam_closing_time(exam)

    assert not is_exam_finished(exam, closing)
    assert is_exam_finished(exam, closing + timedelta(seconds=1))


def test_flagship_heuristic_only_logs(caplog):
    exam = make_exam(title="TEGA Main Exam", is_flagship_exam=False)

    assert check_flagship_heuristic(exam, "tega") is True
    assert "disagrees" in caplog.text

    flagged = make_exam(title="TEGA Main Exam", is_flagship_exam=True)
    assert check_flagship_heuristic(flagged, "tega") is False
    assert check_flagship_heuristic(exam, "") is False
