"""Attempt policy: may this student start (another) attempt at this test?

Rules, checked in order (the first failure is the reason returned):

1. attempts used < attempts allowed (flexible tests: configured limit,
   default 1; live tests: always 1)
2. the test is inside its availability window
3. the latest previous attempt has completed (submitted / auto_submitted)

History is counted from attempt *rows*, so an attempt that was created but
never submitted still consumes a slot.

If the attempt history cannot be read, the informational view degrades to
"no prior attempts" while any start request is rejected.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attempt_service.config import settings
from attempt_service.db.models import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    Attempt,
    AttemptStatusEnum,
    Submission,
    Test,
    TestTypeEnum,
)
from attempt_service.services.errors import NotFoundError
from attempt_service.services.timeutil import minutes_to_ms

logger = logging.getLogger(__name__)

REASON_LIMIT_REACHED = "Attempt limit reached ({used}/{allowed})"
REASON_NOT_AVAILABLE = "Test is not currently available"
REASON_PREVIOUS_INCOMPLETE = "Previous attempt must be completed before starting a new one"
REASON_HISTORY_UNAVAILABLE = "Attempt history could not be verified, please try again"


@dataclass(frozen=True)
class AttemptInfo:
    attempt_number: int
    attempts_used: int
    attempts_allowed: int
    can_re_attempt: bool
    reason: str | None
    previous_attempts: list[Attempt] = field(default_factory=list)
    next_attempt_number: int = 1
    last_attempt_status: AttemptStatusEnum | None = None
    # No cooldown between attempts is enforced.
    time_until_next_attempt: int | None = None
    history_available: bool = True


@dataclass(frozen=True)
class AttemptStartDecision:
    can_start: bool
    reason: str | None
    attempt_info: AttemptInfo


@dataclass(frozen=True)
class AttemptSummary:
    test_id: uuid.UUID
    student_id: str
    total_attempts: int
    attempts_allowed: int
    can_create_new_attempt: bool
    reason: str | None
    best_score: float | None
    last_attempt_status: AttemptStatusEnum | None
    last_attempt_ms: int | None
    has_completed_attempts: bool
    attempts: list[Attempt] = field(default_factory=list)


# ── Test rules ────────────────────────────────────────────────────────────────


def get_test(db: Session, test_id: uuid.UUID) -> Test:
    test = db.query(Test).filter(Test.id == test_id).first()
    if test is None:
        raise NotFoundError("Test not found")
    return test


def attempts_allowed_for(test: Test) -> int:
    if test.test_type == TestTypeEnum.FLEXIBLE:
        return test.attempts_allowed or 1
    return 1


def availability_window(test: Test) -> tuple[int | None, int | None]:
    """Return the (opens, closes) bounds in epoch ms; None means unbounded."""
    if test.test_type == TestTypeEnum.LIVE:
        opens = test.student_join_ms
        if opens is None and test.scheduled_start_ms is not None:
            opens = test.scheduled_start_ms - minutes_to_ms(settings.LIVE_JOIN_WINDOW_MINUTES)
        return opens, test.actual_end_ms
    return test.available_from_ms, test.available_to_ms


def is_test_available(test: Test, now_ms: int) -> bool:
    opens, closes = availability_window(test)
    if opens is not None and now_ms < opens:
        return False
    if closes is not None and now_ms > closes:
        return False
    return True


# ── History ───────────────────────────────────────────────────────────────────


def _query_attempt_history(
    db: Session, test_id: uuid.UUID, student_id: str
) -> list[Attempt]:
    return (
        db.query(Attempt)
        .filter(Attempt.test_id == test_id, Attempt.student_id == student_id)
        .order_by(Attempt.attempt_number.desc())
        .all()
    )


def _load_attempt_history(
    db: Session, test_id: uuid.UUID, student_id: str
) -> list[Attempt] | None:
    """Latest-first attempt history, or None when the store could not answer."""
    try:
        return _query_attempt_history(db, test_id, student_id)
    except SQLAlchemyError as e:
        logger.warning(
            "Attempt history unavailable for test=%s student=%s: %s", test_id, student_id, e
        )
        db.rollback()
        return None


def _evaluate(
    test: Test, history: list[Attempt] | None, now_ms: int
) -> tuple[bool, str | None]:
    if history is None:
        return False, REASON_HISTORY_UNAVAILABLE

    allowed = attempts_allowed_for(test)
    used = len(history)
    if used >= allowed:
        return False, REASON_LIMIT_REACHED.format(used=used, allowed=allowed)

    if not is_test_available(test, now_ms):
        return False, REASON_NOT_AVAILABLE

    if history and history[0].status not in COMPLETED_STATUSES:
        return False, REASON_PREVIOUS_INCOMPLETE

    return True, None


def _build_info(test: Test, history: list[Attempt] | None, now_ms: int) -> AttemptInfo:
    can_start, reason = _evaluate(test, history, now_ms)
    attempts = history or []
    used = len(attempts)
    return AttemptInfo(
        attempt_number=used + 1,
        attempts_used=used,
        attempts_allowed=attempts_allowed_for(test),
        can_re_attempt=can_start,
        reason=reason,
        previous_attempts=attempts,
        next_attempt_number=used + 1,
        last_attempt_status=attempts[0].status if attempts else None,
        time_until_next_attempt=None,
        history_available=history is not None,
    )


# ── Public API ────────────────────────────────────────────────────────────────


def get_attempt_info(
    db: Session, test_id: uuid.UUID, student_id: str, now_ms: int
) -> AttemptInfo:
    test = get_test(db, test_id)
    history = _load_attempt_history(db, test_id, student_id)
    return _build_info(test, history, now_ms)


def validate_attempt_start(
    db: Session, test_id: uuid.UUID, student_id: str, now_ms: int
) -> AttemptStartDecision:
    info = get_attempt_info(db, test_id, student_id, now_ms)
    if not info.can_re_attempt:
        logger.info(
            "Attempt start rejected test=%s student=%s: %s", test_id, student_id, info.reason
        )
    return AttemptStartDecision(
        can_start=info.can_re_attempt, reason=info.reason, attempt_info=info
    )


def _list_submissions(db: Session, test_id: uuid.UUID, student_id: str) -> list[Submission]:
    return (
        db.query(Submission)
        .filter(Submission.test_id == test_id, Submission.student_id == student_id)
        .order_by(Submission.attempt_number)
        .all()
    )


def get_best_attempt(
    db: Session, test_id: uuid.UUID, student_id: str
) -> Submission | None:
    """Highest percentage wins; equal percentages fall back to raw auto-graded score."""
    submissions = [
        s
        for s in _list_submissions(db, test_id, student_id)
        if s.status in COMPLETED_STATUSES
    ]
    if not submissions:
        return None
    return max(submissions, key=lambda s: (s.percentage or 0.0, s.auto_graded_score or 0.0))


def get_latest_attempt(db: Session, test_id: uuid.UUID, student_id: str) -> Attempt | None:
    return (
        db.query(Attempt)
        .filter(Attempt.test_id == test_id, Attempt.student_id == student_id)
        .order_by(Attempt.attempt_number.desc())
        .first()
    )


def has_completed_attempts(db: Session, test_id: uuid.UUID, student_id: str) -> bool:
    return (
        db.query(Attempt.id)
        .filter(
            Attempt.test_id == test_id,
            Attempt.student_id == student_id,
            Attempt.status.in_(COMPLETED_STATUSES),
        )
        .first()
        is not None
    )


def get_active_attempt(db: Session, test_id: uuid.UUID, student_id: str) -> Attempt | None:
    return (
        db.query(Attempt)
        .filter(
            Attempt.test_id == test_id,
            Attempt.student_id == student_id,
            Attempt.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Attempt.attempt_number.desc())
        .first()
    )


def get_attempt_summary(
    db: Session, test_id: uuid.UUID, student_id: str, now_ms: int
) -> AttemptSummary:
    test = get_test(db, test_id)
    history = _query_attempt_history(db, test_id, student_id)
    can_start, reason = _evaluate(test, history, now_ms)

    scores = [
        s.percentage
        for s in _list_submissions(db, test_id, student_id)
        if s.status in COMPLETED_STATUSES and s.percentage is not None
    ]
    latest = get_latest_attempt(db, test_id, student_id)
    return AttemptSummary(
        test_id=test_id,
        student_id=student_id,
        total_attempts=len(history),
        attempts_allowed=attempts_allowed_for(test),
        can_create_new_attempt=can_start,
        reason=reason,
        best_score=max(scores) if scores else None,
        last_attempt_status=latest.status if latest else None,
        last_attempt_ms=(latest.submitted_ms or latest.created_ms) if latest else None,
        has_completed_attempts=has_completed_attempts(db, test_id, student_id),
        attempts=list(reversed(history)),
    )
