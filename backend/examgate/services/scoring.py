"""
Scoring engine.

Merges autosaved and submitted answers, grades them against the question
bank and freezes the attempt as completed. Results stay unpublished until an
admin publishes them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import Conflict, NotFound
from ..models import CreditStatus, Exam, Question
from ..repositories import Repositories
from ..utils import format_percentage, utc_now

logger = logging.getLogger(__name__)

QUALIFYING_PERCENTAGE = 50


@dataclass
class ScoreSheet:
    correct_answers: int
    wrong_answers: int
    unattempted: int
    score: float
    percentage: float
    is_passed: bool
    is_qualified: bool


def merge_answers(saved: Dict[str, str], submitted: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Autosaved answers overlaid by the submission; the submission wins."""
    return {**(saved or {}), **(submitted or {})}


def grade(exam: Exam, questions: List[Question], answers: Dict[str, str]) -> ScoreSheet:
    """
    Grade merged answers by exact string comparison.

    Every correct answer counts one mark; per-question marks and negative
    marks are not applied. ``passing_marks`` is compared as a percentage.
    """
    correct = wrong = 0
    for question in questions:
        answer = answers.get(question.question_id)
        if answer is None or answer == "":
            continue
        if answer == question.correct_answer:
            correct += 1
        else:
            wrong += 1

    score = correct
    # Thresholds compare the exact ratio; only the reported value is rounded
    ratio = score / exam.total_marks * 100 if exam.total_marks else 0.0
    return ScoreSheet(
        correct_answers=correct,
        wrong_answers=wrong,
        unattempted=len(questions) - correct - wrong,
        score=score,
        percentage=format_percentage(score, exam.total_marks),
        is_passed=ratio >= exam.passing_marks,
        is_qualified=ratio >= QUALIFYING_PERCENTAGE,
    )


class ScoringEngine:
    def __init__(self, repos: Repositories):
        self.repos = repos

    async def submit(
        self,
        student_id: str,
        exam_id: str,
        answers: Optional[Dict[str, str]] = None,
        marked_questions: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Score and complete the student's in-progress attempt.

        Returns:
            Dict with the result summary and the completed attempt
        """
        now = now or utc_now()

        attempt = await self.repos.attempts.find_in_progress(student_id, exam_id)
        if not attempt:
            raise NotFound("No active exam attempt found", error_type="ATTEMPT_NOT_FOUND")

        exam = await self.repos.exams.get(exam_id)
        if not exam:
            raise NotFound("Exam not found", error_type="EXAM_NOT_FOUND")

        questions = await self.repos.questions.for_exam(exam)
        merged = merge_answers(attempt.answers, answers)
        sheet = grade(exam, questions, merged)

        completed = await self.repos.attempts.complete(attempt.attempt_id, {
            "answers": merged,
            "marked_questions": (
                marked_questions if marked_questions is not None else attempt.marked_questions
            ),
            "end_time": now,
            "time_remaining": 0,
            "score": sheet.score,
            "correct_answers": sheet.correct_answers,
            "wrong_answers": sheet.wrong_answers,
            "unattempted": sheet.unattempted,
            "percentage": sheet.percentage,
            "is_passed": sheet.is_passed,
            "is_qualified": sheet.is_qualified,
            "published": False,
        })
        if not completed:
            # A concurrent submit already froze this attempt
            raise Conflict("Exam attempt was already submitted", error_type="ALREADY_SUBMITTED")

        if completed.credit_id:
            await self.repos.credits.set_status_for_attempt(
                completed.attempt_id, CreditStatus.EXAM_COMPLETED
            )

        logger.info(
            f"Attempt {completed.attempt_id} of {student_id} on {exam_id} completed: "
            f"{sheet.score}/{exam.total_marks} ({sheet.percentage}%)"
        )

        return {
            "result": {
                "score": sheet.score,
                "total_marks": exam.total_marks,
                "percentage": sheet.percentage,
                "is_passed": sheet.is_passed,
                "is_qualified": sheet.is_qualified,
                "correct_answers": sheet.correct_answers,
                "wrong_answers": sheet.wrong_answers,
                "unattempted": sheet.unattempted,
                "total_questions": len(questions),
                "published": False,
            },
            "exam_attempt": completed,
        }
