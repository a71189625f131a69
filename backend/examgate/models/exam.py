"""Exam, slot and question Pydantic models"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SlotRegistrant(BaseModel):
    """A student holding a seat in a slot"""
    student_id: str
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Slot(BaseModel):
    """Time window within the exam date, e.g. 10:00-11:30"""
    model_config = ConfigDict(extra="ignore")
    slot_id: str
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    max_participants: int = 30
    registered_students: List[SlotRegistrant] = []
    is_active: bool = True


class Exam(BaseModel):
    model_config = ConfigDict(extra="ignore")
    exam_id: str
    title: str
    subject: Optional[str] = None
    course_id: Optional[str] = None  # None for standalone exams
    description: Optional[str] = None
    instructions: Optional[str] = None
    exam_date: datetime
    duration: int  # minutes
    total_marks: float
    passing_marks: float
    slots: List[Slot] = []
    is_active: bool = True
    requires_payment: bool = True
    price: float = 0
    max_attempts: int = 1
    is_flagship_exam: bool = False
    question_paper_id: Optional[str] = None
    question_ids: List[str] = []
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_course_bound(self) -> bool:
        return bool(self.course_id)

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        for slot in self.slots:
            if slot.slot_id == slot_id:
                return slot
        return None

    def public_view(self) -> dict:
        """Exam fields safe to show a student before the exam starts."""
        return self.model_dump(
            include={
                "exam_id", "title", "subject", "course_id", "description",
                "instructions", "exam_date", "duration", "total_marks",
                "passing_marks", "is_flagship_exam",
            }
        )


class Question(BaseModel):
    """Multiple choice question from the question bank"""
    model_config = ConfigDict(extra="ignore")
    question_id: str
    question: str
    options: List[str] = []
    correct_answer: str
    marks: float = 1
    negative_marks: float = 0
    explanation: Optional[str] = None

    def without_answer(self) -> dict:
        return self.model_dump(include={"question_id", "question", "options", "marks"})


class QuestionPaper(BaseModel):
    model_config = ConfigDict(extra="ignore")
    question_paper_id: str
    name: Optional[str] = None
    question_ids: List[str] = []
