"""
Publication gate.

Completed attempts stay invisible to students until an admin publishes them.
Publishing works on (exam, calendar date of the attempt's start_time) so a
slot running past midnight is grouped by when students actually sat it.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional

from ..errors import AccessDenied, NotFound
from ..models import Exam, ExamAttempt, ExamCategory
from ..repositories import Repositories
from ..utils import day_bounds, local_date, utc_now

logger = logging.getLogger(__name__)


def matches_category(exam: Exam, category: ExamCategory) -> bool:
    if category == ExamCategory.FLAGSHIP:
        return exam.is_flagship_exam
    if category == ExamCategory.COURSE:
        return exam.is_course_bound and not exam.is_flagship_exam
    return True


class PublicationGate:
    def __init__(self, repos: Repositories, tz: tzinfo = timezone.utc):
        self.repos = repos
        self.tz = tz

    async def _require_exam(self, exam_id: str) -> Exam:
        exam = await self.repos.exams.get(exam_id)
        if not exam:
            raise NotFound("Exam not found", error_type="EXAM_NOT_FOUND")
        return exam

    # ============ ADMIN: PUBLISH ============

    async def set_published(
        self,
        exam_id: str,
        exam_date: date,
        published: bool,
        admin_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> int:
        """
        Publish or unpublish the completed attempts of one exam started on ``exam_date``.

        Only attempts in the opposite state are touched, so repeating the
        call modifies nothing and returns 0.
        """
        now = now or utc_now()
        await self._require_exam(exam_id)
        started_from, started_before = day_bounds(exam_date, self.tz)

        count = await self.repos.attempts.set_published(
            [exam_id], started_from, started_before, published, admin_id, now
        )
        action = "Published" if published else "Unpublished"
        logger.info(f"{action} {count} results for exam {exam_id} on {exam_date} (admin {admin_id})")
        return count

    async def publish(self, exam_id: str, exam_date: date, admin_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> int:
        return await self.set_published(exam_id, exam_date, True, admin_id, now)

    async def unpublish(self, exam_id: str, exam_date: date, admin_id: Optional[str] = None,
                        now: Optional[datetime] = None) -> int:
        return await self.set_published(exam_id, exam_date, False, admin_id, now)

    async def publish_all_for_date(
        self,
        exam_date: date,
        exam_type: ExamCategory = ExamCategory.ALL,
        admin_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Publish every unpublished result started on ``exam_date`` for exams of one category."""
        now = now or utc_now()
        exams = [e for e in await self.repos.exams.list_all() if matches_category(e, exam_type)]
        started_from, started_before = day_bounds(exam_date, self.tz)

        count = await self.repos.attempts.set_published(
            [e.exam_id for e in exams], started_from, started_before, True, admin_id, now
        )
        logger.info(
            f"Published {count} results for {exam_date} across {len(exams)} "
            f"{exam_type.value} exams (admin {admin_id})"
        )
        return {"published_count": count, "exam_count": len(exams)}

    # ============ STUDENT VIEWS ============

    async def student_results(self, student_id: str, exam_id: str) -> List[Dict[str, Any]]:
        """Published attempts of one exam for the student."""
        await self._require_exam(exam_id)
        attempts = await self.repos.attempts.list_completed(
            exam_ids=[exam_id], student_id=student_id, published=True
        )
        return [a.result_view() for a in attempts]

    async def my_results(self, student_id: str) -> Dict[str, Any]:
        """Published results across exams, grouped by exam, plus a count of pending ones."""
        attempts = await self.repos.attempts.list_completed(student_id=student_id)
        published = [a for a in attempts if a.published]

        grouped: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for attempt in published:
            if attempt.exam_id not in grouped:
                exam = await self.repos.exams.get(attempt.exam_id)
                grouped[attempt.exam_id] = {
                    "exam": exam.public_view() if exam else {"exam_id": attempt.exam_id},
                    "attempts": [],
                }
            grouped[attempt.exam_id]["attempts"].append(attempt.result_view())

        return {
            "results": list(grouped.values()),
            "total_published": len(published),
            "pending_results": len(attempts) - len(published),
        }

    async def review_questions(self, student_id: str, exam_id: str) -> Dict[str, Any]:
        """Questions with correct answers, available once a result is published."""
        exam = await self._require_exam(exam_id)
        attempts = await self.repos.attempts.list_completed(
            exam_ids=[exam_id], student_id=student_id, published=True
        )
        if not attempts:
            raise AccessDenied(
                "Results for this exam have not been published yet",
                error_type="RESULTS_NOT_PUBLISHED"
            )

        latest = attempts[0]
        questions = await self.repos.questions.for_exam(exam)
        return {
            "exam": exam.public_view(),
            "attempt": latest.result_view(),
            "questions": [
                {**q.model_dump(), "selected_answer": latest.answers.get(q.question_id)}
                for q in questions
            ],
        }

    # ============ ADMIN VIEWS ============

    async def list_attempts(self, exam_id: str) -> List[ExamAttempt]:
        await self._require_exam(exam_id)
        return await self.repos.attempts.list_completed(exam_ids=[exam_id])

    async def result_details(self, attempt_id: str) -> Dict[str, Any]:
        attempt = await self.repos.attempts.get(attempt_id)
        if not attempt:
            raise NotFound("Exam attempt not found", error_type="ATTEMPT_NOT_FOUND")
        exam = await self.repos.exams.get(attempt.exam_id)
        return {"result": attempt, "exam": exam.public_view() if exam else None}

    async def results_overview(
        self, exam_id: Optional[str] = None, day: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Completed attempts grouped by (exam, attempt date) with publish counts.

        Args:
            exam_id: Restrict to one exam
            day: Restrict to attempts started on this date

        Returns:
            Dict with grouped results, newest date first
        """
        started_from = started_before = None
        if day is not None:
            started_from, started_before = day_bounds(day, self.tz)

        attempts = await self.repos.attempts.list_completed(
            exam_ids=[exam_id] if exam_id else None,
            started_from=started_from,
            started_before=started_before
        )

        exams: Dict[str, Optional[Exam]] = {}
        groups: Dict[tuple, Dict[str, Any]] = {}
        for attempt in attempts:
            if attempt.exam_id not in exams:
                exams[attempt.exam_id] = await self.repos.exams.get(attempt.exam_id)
            exam = exams[attempt.exam_id]
            attempt_day = local_date(attempt.start_time, self.tz)

            key = (attempt.exam_id, attempt_day)
            if key not in groups:
                groups[key] = {
                    "exam": exam.public_view() if exam else {"exam_id": attempt.exam_id},
                    "exam_date": attempt_day.isoformat(),
                    "total_students": 0,
                    "published_students": 0,
                    "unpublished_students": 0,
                    "results": [],
                }
            group = groups[key]
            group["total_students"] += 1
            if attempt.published:
                group["published_students"] += 1
            else:
                group["unpublished_students"] += 1
            group["results"].append({
                **attempt.result_view(),
                "student_id": attempt.student_id,
                "published": attempt.published,
                "published_by": attempt.published_by,
            })

        results = sorted(groups.values(), key=lambda g: g["exam_date"], reverse=True)
        return {
            "results": results,
            "total_exams": len(results),
            "total_students": len(attempts),
        }
