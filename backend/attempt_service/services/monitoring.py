"""Teacher-facing views over attempts: live monitoring and submission lists."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from attempt_service.config import settings
from attempt_service.db.models import (
    COMPLETED_STATUSES,
    Attempt,
    AttemptStatusEnum,
    Submission,
    Test,
)
from attempt_service.services.attempt_policy import get_test
from attempt_service.services.attempt_session import calculate_time
from attempt_service.services.errors import RealtimeUnavailableError
from attempt_service.services.realtime_store import (
    RealtimeStore,
    answers_path,
    session_path,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudentMonitor:
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
    last_activity_ms: int | None
    tab_switch_count: int
    disconnection_count: int
    is_suspicious: bool


@dataclass(frozen=True)
class MonitoringSnapshot:
    test_id: uuid.UUID
    total_students: int
    started: int
    active: int
    paused: int
    completed: int
    students: list[StudentMonitor] = field(default_factory=list)
    realtime_available: bool = True


def _answered_count(answers: dict[str, Any]) -> int:
    return sum(
        1
        for a in answers.values()
        if a.get("selected_option") is not None or (a.get("text_content") or "").strip()
    )


def get_test_monitoring(
    db: Session, realtime: RealtimeStore, test_id: uuid.UUID, now_ms: int
) -> MonitoringSnapshot:
    """Snapshot of every attempt at a test, enriched with live session data."""
    test = get_test(db, test_id)
    attempts = (
        db.query(Attempt)
        .filter(Attempt.test_id == test_id)
        .order_by(Attempt.student_id, Attempt.attempt_number)
        .all()
    )
    total_questions = len(test.questions)
    realtime_ok = True
    students: list[StudentMonitor] = []

    for attempt in attempts:
        if attempt.status not in (
            AttemptStatusEnum.NOT_STARTED,
            AttemptStatusEnum.IN_PROGRESS,
            AttemptStatusEnum.PAUSED,
        ):
            continue
        session: dict[str, Any] = {}
        answers: dict[str, Any] = {}
        if realtime_ok:
            try:
                session = realtime.get(session_path(attempt.id)) or {}
                answers = realtime.get(answers_path(attempt.id)) or {}
            except RealtimeUnavailableError as e:
                logger.warning("Monitoring without realtime data for test %s: %s", test_id, e)
                realtime_ok = False

        answered = _answered_count(answers)
        tab_switches = int(session.get("tab_switch_count") or 0)
        students.append(
            StudentMonitor(
                attempt_id=attempt.id,
                student_id=attempt.student_id,
                student_name=attempt.student_name,
                attempt_number=attempt.attempt_number,
                status=attempt.status,
                is_online=bool(session.get("is_online", False)),
                current_question_index=int(
                    session.get("current_question_index", attempt.current_question_index) or 0
                ),
                questions_answered=answered,
                progress=round(answered / total_questions * 100, 2) if total_questions else 0.0,
                time_remaining=calculate_time(attempt, now_ms).time_remaining,
                last_activity_ms=session.get("last_activity_ms") or attempt.last_active_ms,
                tab_switch_count=tab_switches,
                disconnection_count=attempt.disconnection_count,
                is_suspicious=tab_switches > settings.INTEGRITY_TAB_SWITCH_WARN,
            )
        )

    return MonitoringSnapshot(
        test_id=test_id,
        total_students=len({a.student_id for a in attempts}),
        started=sum(1 for a in attempts if a.started_ms is not None),
        active=sum(1 for a in attempts if a.status == AttemptStatusEnum.IN_PROGRESS),
        paused=sum(1 for a in attempts if a.status == AttemptStatusEnum.PAUSED),
        completed=sum(1 for a in attempts if a.status in COMPLETED_STATUSES),
        students=students,
        realtime_available=realtime_ok,
    )


def list_test_submissions(db: Session, test_id: uuid.UUID) -> list[Submission]:
    get_test(db, test_id)
    return (
        db.query(Submission)
        .filter(Submission.test_id == test_id)
        .order_by(Submission.submitted_ms.desc())
        .all()
    )


def teacher_owns_test(test: Test, teacher_id: str) -> bool:
    return test.teacher_id == teacher_id
