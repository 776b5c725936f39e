"""Test definition schemas."""

import uuid

from pydantic import BaseModel, Field

from attempt_service.db.models import QuestionTypeEnum, TestTypeEnum
from attempt_service.services.timeutil import TimeValue


class QuestionDefinition(BaseModel):
    question_type: QuestionTypeEnum
    text: str
    marks: float = Field(1.0, gt=0)
    options: list[str] = []
    option_ids: list[str] = []
    correct_option: int | None = None
    explanation: str | None = None
    topic: str | None = None
    difficulty: str | None = None


class TestDefinition(BaseModel):
    """A test as handed over by the authoring side."""

    __test__ = False

    title: str
    description: str | None = None
    teacher_id: str
    subject_id: str | None = None
    class_ids: list[str] = []
    test_type: TestTypeEnum
    duration_minutes: int | None = Field(None, gt=0)
    attempts_allowed: int | None = Field(None, ge=1)
    passing_percentage: float | None = Field(None, ge=0, le=100)
    scheduled_start_time: TimeValue | None = None
    buffer_minutes: int | None = Field(None, ge=0)
    available_from: TimeValue | None = None
    available_to: TimeValue | None = None
    questions: list[QuestionDefinition] = []


class QuestionRead(BaseModel):
    """Question as shown to a student: no answer key."""

    id: uuid.UUID
    position: int
    question_type: QuestionTypeEnum
    text: str
    marks: float
    options: list[str] | None = None
    option_ids: list[str] | None = None

    model_config = {"from_attributes": True}


class TestRead(BaseModel):
    __test__ = False

    id: uuid.UUID
    title: str
    description: str | None = None
    test_type: TestTypeEnum
    duration_minutes: int | None = None
    attempts_allowed: int | None = None
    total_marks: float
    scheduled_start_ms: int | None = None
    student_join_ms: int | None = None
    actual_end_ms: int | None = None
    available_from_ms: int | None = None
    available_to_ms: int | None = None
    questions: list[QuestionRead] = []

    model_config = {"from_attributes": True}
