import asyncio
from datetime import date, datetime, timezone

import pytest

from examgate.errors import AccessDenied, NotFound
from examgate.models import AttemptStatus, ExamAttempt, ExamCategory
from examgate.services import PublicationGate

from conftest import make_exam, seed_questions

MAY_1 = date(2024, 5, 1)


def _attempt(repos, attempt_id, start, exam_id="exam-1", student_id="student-1",
             number=1, status=AttemptStatus.COMPLETED, published=False, score=6):
    attempt = ExamAttempt(
        attempt_id=attempt_id,
        student_id=student_id,
        exam_id=exam_id,
        attempt_number=number,
        status=status,
        start_time=start,
        duration=60,
        total_marks=10,
        score=score,
        percentage=score * 10,
        published=published,
        answers={"q1": "A"},
    )
    asyncio.run(repos.attempts.insert_if_absent(attempt))
    return attempt


@pytest.fixture
def gate(repos):
    asyncio.run(repos.exams.insert(make_exam()))
    return PublicationGate(repos)


def test_publish_flips_only_that_dates_unpublished_attempts(repos, gate):
    _attempt(repos, "a1", datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc), student_id="s1")
    _attempt(repos, "a2", datetime(2024, 5, 1, 23, 59, tzinfo=timezone.utc), student_id="s2")
    _attempt(repos, "a3", datetime(2024, 5, 2, 0, 1, tzinfo=timezone.utc), student_id="s3")
    _attempt(repos, "a4", datetime(2024, 5, 1, 10, 3, tzinfo=timezone.utc), student_id="s4",
             status=AttemptStatus.IN_PROGRESS)
    _attempt(repos, "a5", datetime(2024, 5, 1, 10, 4, tzinfo=timezone.utc), student_id="s5",
             published=True)

    count = asyncio.run(gate.publish("exam-1", MAY_1, admin_id="admin-1"))

    assert count == 2
    a1 = asyncio.run(repos.attempts.get("a1"))
    assert a1.published is True
    assert a1.published_by == "admin-1"
    assert a1.published_at is not None
    assert asyncio.run(repos.attempts.get("a3")).published is False
    assert asyncio.run(repos.attempts.get("a4")).published is False

    assert asyncio.run(gate.publish("exam-1", MAY_1, admin_id="admin-1")) == 0


def test_unpublish_is_inverse_and_idempotent(repos, gate):
    _attempt(repos, "a1", datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc), published=True)

    assert asyncio.run(gate.unpublish("exam-1", MAY_1)) == 1
    a1 = asyncio.run(repos.attempts.get("a1"))
    assert a1.published is False
    assert a1.published_at is None
    assert asyncio.run(gate.unpublish("exam-1", MAY_1)) == 0


def test_publish_unknown_exam(gate):
    with pytest.raises(NotFound):
        asyncio.run(gate.publish("missing", MAY_1))


def test_publish_all_filters_by_category(repos, gate):
    asyncio.run(repos.exams.insert(make_exam(exam_id="flag", is_flagship_exam=True)))
    asyncio.run(repos.exams.insert(make_exam(exam_id="course", course_id="course-1")))
    start = datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc)
    _attempt(repos, "f1", start, exam_id="flag")
    _attempt(repos, "c1", start, exam_id="course")
    _attempt(repos, "e1", start, exam_id="exam-1")

    result = asyncio.run(gate.publish_all_for_date(MAY_1, ExamCategory.FLAGSHIP))
    assert result["published_count"] == 1
    assert asyncio.run(repos.attempts.get("f1")).published is True
    assert asyncio.run(repos.attempts.get("c1")).published is False

    result = asyncio.run(gate.publish_all_for_date(MAY_1, ExamCategory.COURSE))
    assert result["published_count"] == 1
    assert asyncio.run(repos.attempts.get("c1")).published is True

    result = asyncio.run(gate.publish_all_for_date(MAY_1, ExamCategory.ALL))
    assert result["published_count"] == 1
    assert asyncio.run(repos.attempts.get("e1")).published is True


def test_student_results_only_show_published(repos, gate):
    _attempt(repos, "a1", datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc))

    assert asyncio.run(gate.student_results("student-1", "exam-1")) == []
    my = asyncio.run(gate.my_results("student-1"))
    assert my["results"] == []
    assert my["pending_results"] == 1

    asyncio.run(gate.publish("exam-1", MAY_1))

    results = asyncio.run(gate.student_results("student-1", "exam-1"))
    assert [r["attempt_id"] for r in results] == ["a1"]
    my = asyncio.run(gate.my_results("student-1"))
    assert my["total_published"] == 1
    assert my["results"][0]["exam"]["exam_id"] == "exam-1"


def test_review_requires_published_result(repos, gate):
    seed_questions(repos)
    _attempt(repos, "a1", datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc))

    with pytest.raises(AccessDenied):
        asyncio.run(gate.review_questions("student-1", "exam-1"))

    asyncio.run(gate.publish("exam-1", MAY_1))
    review = asyncio.run(gate.review_questions("student-1", "exam-1"))

    assert review["questions"][0]["correct_answer"] == "A"
    assert review["questions"][0]["selected_answer"] == "A"
    assert review["questions"][1]["selected_answer"] is None


def test_results_overview_groups_by_attempt_date(repos, gate):
    _attempt(repos, "a1", datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc), student_id="s1",
             published=True)
    _attempt(repos, "a2", datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc), student_id="s2")
    _attempt(repos, "a3", datetime(2024, 5, 2, 0, 30, tzinfo=timezone.utc), student_id="s3")

    overview = asyncio.run(gate.results_overview())

    assert overview["total_exams"] == 2
    assert overview["total_students"] == 3
    newest, oldest = overview["results"]
    assert newest["exam_date"] == "2024-05-02"
    assert oldest["exam_date"] == "2024-05-01"
    assert oldest["published_students"] == 1
    assert oldest["unpublished_students"] == 1

    filtered = asyncio.run(gate.results_overview(day=MAY_1))
    assert filtered["total_students"] == 2
