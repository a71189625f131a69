"""Request body models for the HTTP surface"""

from datetime import date
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    slot_id: str = ""


class SaveAnswerRequest(BaseModel):
    question_id: str
    answer: str


class SubmitRequest(BaseModel):
    answers: Dict[str, str] = {}
    marked_questions: List[str] = []


class CreditPurchaseRequest(BaseModel):
    exam_id: str
    payment_id: str
    payment_amount: float = 0


class PublishRequest(BaseModel):
    exam_id: str
    exam_date: date


class ExamCategory(str, Enum):
    FLAGSHIP = "flagship"
    COURSE = "course"
    ALL = "all"


class PublishAllRequest(BaseModel):
    exam_date: date
    exam_type: ExamCategory = ExamCategory.ALL


class StudentExamRequest(BaseModel):
    """Admin action targeting one student's attempt on one exam"""
    exam_id: str
    student_id: str
