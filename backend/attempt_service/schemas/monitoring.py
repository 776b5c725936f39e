"""Monitoring schemas."""

import uuid

from pydantic import BaseModel

from attempt_service.db.models import AttemptStatusEnum


class StudentMonitorRead(BaseModel):
    attempt_id: uuid.UUID
    student_id: str
    student_name: str
    attempt_number: int
    status: AttemptStatusEnum
    is_online: bool
    current_question_index: int
    questions_answered: int
    progress: float
    time_remaining: int
    last_activity_ms: int | None = None
    tab_switch_count: int
    disconnection_count: int
    is_suspicious: bool

    model_config = {"from_attributes": True}


class MonitoringRead(BaseModel):
    test_id: uuid.UUID
    total_students: int
    started: int
    active: int
    paused: int
    completed: int
    students: list[StudentMonitorRead] = []
    realtime_available: bool

    model_config = {"from_attributes": True}
