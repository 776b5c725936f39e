"""Submission and grading schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from attempt_service.db.models import (
    AttemptStatusEnum,
    PassStatusEnum,
    QuestionTypeEnum,
    TestTypeEnum,
)


class FinalAnswerRead(BaseModel):
    question_id: uuid.UUID
    position: int
    question_type: QuestionTypeEnum
    question_text: str
    question_marks: float
    topic: str | None = None
    difficulty: str | None = None
    explanation: str | None = None
    selected_option: int | None = None
    selected_option_text: str | None = None
    correct_option: int | None = None
    text_content: str | None = None
    word_count: int
    time_spent: int
    change_count: int
    was_reviewed: bool
    is_correct: bool | None = None
    marks_awarded: float | None = None
    feedback: str | None = None

    model_config = {"from_attributes": True}


class SubmissionSummaryRead(BaseModel):
    """Row in a teacher's submission list or a student's best attempt."""

    id: uuid.UUID
    test_id: uuid.UUID
    student_id: str
    student_name: str
    attempt_number: int
    status: AttemptStatusEnum
    submitted_ms: int
    auto_graded_score: float
    total_score: float | None = None
    max_score: float
    percentage: float
    pass_status: PassStatusEnum
    manual_grading_pending: bool
    is_degraded: bool

    model_config = {"from_attributes": True}


class SubmissionRead(SubmissionSummaryRead):
    class_id: str | None = None
    test_type: TestTypeEnum
    started_ms: int | None = None
    total_time_spent: int
    offline_time: int
    time_per_question: dict[str, Any] = {}
    questions_attempted: int
    questions_skipped: int
    questions_reviewed: int
    total_changes: int
    integrity_report: dict[str, Any] = {}
    teacher_feedback: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    answers: list[FinalAnswerRead] = []


class EssayGrade(BaseModel):
    question_id: uuid.UUID
    marks_awarded: float = Field(..., ge=0)
    feedback: str | None = None


class EssayGradesUpdate(BaseModel):
    """PUT /api/teacher/submissions/{attempt_id}/essay-grades"""

    grades: list[EssayGrade] = Field(..., min_length=1)
    feedback: str | None = None
