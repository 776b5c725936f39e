"""Attempt schemas."""

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

from attempt_service.db.models import AttemptStatusEnum, PassStatusEnum


class AttemptStartRequest(BaseModel):
    """POST /api/student/tests/{test_id}/attempts"""

    student_name: str = ""
    class_id: str | None = None


class AttemptRead(BaseModel):
    id: uuid.UUID
    test_id: uuid.UUID
    student_id: str
    student_name: str
    class_id: str | None = None
    attempt_number: int
    status: AttemptStatusEnum
    created_ms: int
    started_ms: int | None = None
    last_active_ms: int
    submitted_ms: int | None = None
    total_time_allowed: int
    time_spent: int
    time_remaining: int
    current_question_index: int
    questions_attempted: int
    disconnection_count: int
    suspicious_activity_count: int
    score: float | None = None
    max_score: float
    percentage: float | None = None
    pass_status: PassStatusEnum | None = None

    model_config = {"from_attributes": True}


class AttemptInfoRead(BaseModel):
    attempt_number: int
    attempts_used: int
    attempts_allowed: int
    can_re_attempt: bool
    reason: str | None = None
    previous_attempts: list[AttemptRead] = []
    next_attempt_number: int
    last_attempt_status: AttemptStatusEnum | None = None
    time_until_next_attempt: int | None = None
    history_available: bool = True

    model_config = {"from_attributes": True}


class AttemptSummaryRead(BaseModel):
    test_id: uuid.UUID
    student_id: str
    total_attempts: int
    attempts_allowed: int
    can_create_new_attempt: bool
    reason: str | None = None
    best_score: float | None = None
    last_attempt_status: AttemptStatusEnum | None = None
    last_attempt_ms: int | None = None
    has_completed_attempts: bool = False
    attempts: list[AttemptRead] = []

    model_config = {"from_attributes": True}


class TimeCalculationRead(BaseModel):
    total_time_allowed: int
    time_spent: int
    time_remaining: int
    offline_time: int
    is_expired: bool
    can_continue: bool
    deadline_ms: int | None = None

    model_config = {"from_attributes": True}


class AttemptStateRead(BaseModel):
    """Everything a client needs to resume an attempt."""

    attempt: AttemptRead
    time: TimeCalculationRead
    session: dict[str, Any] | None = None
    answers: dict[str, Any] = {}

    model_config = {"from_attributes": True}


class AnswerSave(BaseModel):
    """PUT /api/attempts/{attempt_id}/answers/{question_id}"""

    selected_option: int | str | None = None
    text_content: str | None = None
    time_on_question: int | None = Field(None, ge=0)


class AnswerRead(BaseModel):
    question_id: str
    question_type: str
    selected_option: int | None = None
    text_content: str | None = None
    last_modified_ms: int
    time_spent: int
    change_count: int


class NavigateRequest(BaseModel):
    question_index: int = Field(..., ge=0)


class NavigateRead(BaseModel):
    current_question_index: int
    questions_visited: list[str]


class ReviewToggle(BaseModel):
    is_marked: bool = True


class ReviewRead(BaseModel):
    questions_marked_for_review: list[str]


ActivityType = Literal[
    "tab_switch",
    "copy_paste",
    "right_click",
    "keyboard_shortcut",
    "fullscreen_exit",
    "fullscreen_enter",
]


class ActivityReport(BaseModel):
    """POST /api/attempts/{attempt_id}/activity"""

    activity_type: ActivityType
    detail: str | None = Field(None, max_length=100)


class ActivityCountersRead(BaseModel):
    tab_switch_count: int
    copy_paste_attempts: int
    right_click_attempts: int
    keyboard_shortcuts: list[str]
    is_fullscreen: bool
    suspicious_activity_count: int


class DisconnectReport(BaseModel):
    reason: str | None = Field(None, max_length=200)
