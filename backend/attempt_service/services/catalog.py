"""Loading test definitions into the durable store.

This is the ingestion boundary for time values: window bounds arrive as
datetimes, epoch numbers, ISO strings or exported timestamp mappings and
are stored as epoch milliseconds. Live tests get their join and end times
derived from the scheduled start.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from attempt_service.config import settings
from attempt_service.db.models import QuestionTypeEnum, Test, TestQuestion, TestTypeEnum
from attempt_service.schemas.test import TestDefinition
from attempt_service.services.errors import InvalidOperationError
from attempt_service.services.timeutil import minutes_to_ms, to_epoch_ms

logger = logging.getLogger(__name__)


def _optional_ms(value) -> int | None:
    return None if value is None else to_epoch_ms(value)


def register_test(db: Session, definition: TestDefinition) -> Test:
    """Validate a test definition and persist it with its questions."""
    if definition.test_type == TestTypeEnum.LIVE:
        if definition.scheduled_start_time is None or not definition.duration_minutes:
            raise InvalidOperationError("Live tests need a scheduled start and a duration")

    test = Test(
        title=definition.title,
        description=definition.description,
        teacher_id=definition.teacher_id,
        subject_id=definition.subject_id,
        class_ids=list(definition.class_ids),
        test_type=definition.test_type,
        duration_minutes=definition.duration_minutes,
        attempts_allowed=(
            definition.attempts_allowed if definition.test_type == TestTypeEnum.FLEXIBLE else 1
        ),
        passing_percentage=definition.passing_percentage,
        available_from_ms=_optional_ms(definition.available_from),
        available_to_ms=_optional_ms(definition.available_to),
    )

    if definition.test_type == TestTypeEnum.LIVE:
        start_ms = to_epoch_ms(definition.scheduled_start_time)
        buffer = (
            definition.buffer_minutes
            if definition.buffer_minutes is not None
            else settings.LIVE_BUFFER_MINUTES
        )
        test.scheduled_start_ms = start_ms
        test.buffer_minutes = buffer
        test.student_join_ms = start_ms - minutes_to_ms(settings.LIVE_JOIN_WINDOW_MINUTES)
        test.actual_end_ms = start_ms + minutes_to_ms(definition.duration_minutes + buffer)

    for position, q in enumerate(definition.questions):
        if q.question_type == QuestionTypeEnum.MCQ:
            if len(q.options) < 2:
                raise InvalidOperationError(f"Question {position + 1} needs at least two options")
            if q.correct_option is None or not 0 <= q.correct_option < len(q.options):
                raise InvalidOperationError(f"Question {position + 1} has no valid correct option")
        test.questions.append(
            TestQuestion(
                position=position,
                question_type=q.question_type,
                text=q.text,
                marks=q.marks,
                options=list(q.options) or None,
                option_ids=list(q.option_ids) or None,
                correct_option=q.correct_option,
                explanation=q.explanation,
                topic=q.topic,
                difficulty=q.difficulty,
            )
        )
    test.total_marks = sum(q.marks for q in definition.questions)

    db.add(test)
    db.commit()
    db.refresh(test)
    logger.info(
        "Registered %s test %s (%d questions, %.1f marks)",
        test.test_type.value,
        test.id,
        len(test.questions),
        test.total_marks,
    )
    return test
