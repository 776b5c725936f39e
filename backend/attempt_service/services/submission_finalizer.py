"""Submission finalizer: turns an active attempt into its final record.

Manual submits, the scheduled deadline task, the expiry sweep and teacher
terminations all end up in :func:`finalize_submission`. It runs in two
phases:

1. **Lock**: a conditional UPDATE moves the attempt from an active status
   to the final one. Exactly one caller wins; everyone else sees a terminal
   attempt and falls through to phase 2.
2. **Record**: read the realtime session (best effort), grade, assess
   integrity and insert the ``submissions`` row keyed by attempt id. A
   duplicate insert means another caller finished first; its row is
   returned unchanged.

An attempt that is terminal but has no submission (a crash between the
two phases) is completed by the next call, so retries are always safe.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attempt_service.db.models import (
    ACTIVE_STATUSES,
    FINAL_STATUSES,
    Attempt,
    AttemptStatusEnum,
    Submission,
    SubmissionAnswer,
)
from attempt_service.services import grading
from attempt_service.services.attempt_session import (
    archive_events,
    archive_session,
    calculate_time,
    get_attempt,
    guarded_update,
    offline_ms_at,
)
from attempt_service.services.errors import (
    AttemptConflictError,
    InvalidOperationError,
    RealtimeUnavailableError,
)
from attempt_service.services.integrity import build_integrity_report
from attempt_service.services.realtime_store import (
    RealtimeStore,
    answers_path,
    log_path,
    session_path,
    time_path,
)
from attempt_service.services.timeutil import now_ms as current_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizeResult:
    submission: Submission
    created: bool


@dataclass
class _RealtimeSnapshot:
    session: dict[str, Any] | None = None
    answers: dict[str, Any] | None = None
    time_per_question: dict[str, Any] | None = None
    log: list[dict[str, Any]] | None = None

    @property
    def complete(self) -> bool:
        # A hash holding only stray fields (e.g. a late counter write) is not a session.
        return bool(self.session) and "attempt_id" in self.session


def _resolve_status(
    attempt: Attempt, requested: AttemptStatusEnum, now_ms: int
) -> AttemptStatusEnum:
    """A manual submit that arrives at or after the deadline counts as automatic."""
    if requested == AttemptStatusEnum.SUBMITTED and calculate_time(attempt, now_ms).is_expired:
        return AttemptStatusEnum.AUTO_SUBMITTED
    return requested


def _lock_attempt(
    db: Session, attempt: Attempt, final_status: AttemptStatusEnum, now_ms: int
) -> bool:
    calc = calculate_time(attempt, now_ms)
    end_ms = now_ms
    if final_status == AttemptStatusEnum.AUTO_SUBMITTED and calc.deadline_ms is not None:
        end_ms = min(now_ms, calc.deadline_ms)
    return guarded_update(
        db,
        attempt,
        ACTIVE_STATUSES,
        status=final_status,
        submitted_ms=end_ms,
        last_active_ms=now_ms,
        offline_ms=offline_ms_at(attempt, end_ms),
        disconnected_ms=None,
        time_spent=calc.time_spent,
        time_remaining=calc.time_remaining,
    )


def _read_realtime(realtime: RealtimeStore, attempt_id: uuid.UUID) -> _RealtimeSnapshot:
    snapshot = _RealtimeSnapshot()
    try:
        snapshot.session = realtime.get(session_path(attempt_id))
        snapshot.answers = realtime.get(answers_path(attempt_id)) or {}
        snapshot.time_per_question = realtime.get(time_path(attempt_id)) or {}
        snapshot.log = realtime.read_log(log_path(attempt_id))
    except RealtimeUnavailableError as e:
        logger.warning("Realtime data unavailable for attempt %s: %s", attempt_id, e)
        return _RealtimeSnapshot()
    return snapshot


def _build_submission(
    attempt: Attempt, snapshot: _RealtimeSnapshot
) -> tuple[Submission, grading.GradingResult]:
    test = attempt.test
    degraded = not snapshot.complete
    session = snapshot.session or {}
    graded = grading.score_answers(
        test.questions,
        snapshot.answers or {},
        snapshot.time_per_question,
        session.get("questions_marked_for_review") or [],
    )

    # Clock values were frozen on the attempt row when it was locked.
    calc = calculate_time(attempt, attempt.submitted_ms)
    max_score = attempt.max_score or test.total_marks or 0.0
    percentage = grading.percentage_of(graded.auto_graded_score, max_score)
    pass_status = grading.pass_status_for(
        percentage, graded.manual_grading_pending, test.passing_percentage
    )

    submission = Submission(
        id=attempt.id,
        test_id=attempt.test_id,
        student_id=attempt.student_id,
        student_name=attempt.student_name,
        class_id=attempt.class_id,
        attempt_number=attempt.attempt_number,
        test_type=test.test_type,
        status=attempt.status,
        started_ms=attempt.started_ms,
        submitted_ms=attempt.submitted_ms,
        total_time_spent=calc.time_spent,
        offline_time=calc.offline_time,
        time_per_question=dict(snapshot.time_per_question or {}),
        questions_attempted=graded.questions_attempted,
        questions_skipped=graded.questions_skipped,
        questions_reviewed=sum(1 for a in graded.answers if a.was_reviewed),
        total_changes=graded.total_changes,
        auto_graded_score=graded.auto_graded_score,
        manual_grading_pending=graded.manual_grading_pending,
        total_score=None if graded.manual_grading_pending else graded.auto_graded_score,
        max_score=max_score,
        percentage=percentage,
        pass_status=pass_status,
        integrity_report=build_integrity_report(
            snapshot.session,
            disconnections=attempt.disconnection_count,
            offline_time=calc.offline_time,
            session_available=not degraded,
        ),
        is_degraded=degraded,
    )
    submission.answers = [
        SubmissionAnswer(
            question_id=a.question_id,
            position=a.position,
            question_type=a.question_type,
            question_text=a.question_text,
            question_marks=a.question_marks,
            topic=a.topic,
            difficulty=a.difficulty,
            explanation=a.explanation,
            selected_option=a.selected_option,
            selected_option_text=a.selected_option_text,
            correct_option=a.correct_option,
            text_content=a.text_content,
            word_count=a.word_count,
            time_spent=a.time_spent,
            change_count=a.change_count,
            was_reviewed=a.was_reviewed,
            is_correct=a.is_correct,
            marks_awarded=a.marks_awarded,
        )
        for a in graded.answers
    ]
    return submission, graded


def _existing_submission(db: Session, attempt_id: uuid.UUID) -> Submission | None:
    return db.query(Submission).filter(Submission.id == attempt_id).first()


def finalize_submission(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    requested_status: AttemptStatusEnum = AttemptStatusEnum.SUBMITTED,
    now_ms: int | None = None,
) -> FinalizeResult:
    """Finalize an attempt exactly once; repeated calls return the first result."""
    if requested_status not in FINAL_STATUSES:
        raise InvalidOperationError(f"Cannot finalize an attempt as {requested_status.value}")
    now_ms = current_ms() if now_ms is None else now_ms
    attempt = get_attempt(db, attempt_id)

    # ── Phase 1: lock ────────────────────────────────────────────────────
    if attempt.status in ACTIVE_STATUSES:
        final_status = _resolve_status(attempt, requested_status, now_ms)
        if _lock_attempt(db, attempt, final_status, now_ms):
            logger.info("Attempt %s locked as %s", attempt.id, final_status.value)
        else:
            logger.info("Attempt %s was finalized concurrently (%s)", attempt.id, attempt.status.value)

    if attempt.status == AttemptStatusEnum.ABANDONED:
        raise AttemptConflictError("Attempt was abandoned and has no submission")

    existing = _existing_submission(db, attempt.id)
    if existing is not None:
        return FinalizeResult(submission=existing, created=False)

    # ── Phase 2: record ──────────────────────────────────────────────────
    snapshot = _read_realtime(realtime, attempt.id)
    submission, graded = _build_submission(attempt, snapshot)
    attempt.questions_attempted = graded.questions_attempted
    attempt.score = submission.total_score
    attempt.percentage = submission.percentage
    attempt.pass_status = submission.pass_status
    if snapshot.session:
        attempt.current_question_index = int(snapshot.session.get("current_question_index") or 0)
    db.add(submission)
    if snapshot.log:
        archive_events(db, attempt.id, snapshot.log)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _existing_submission(db, attempt_id)
        if existing is None:
            raise
        logger.info("Submission for attempt %s already recorded", attempt_id)
        return FinalizeResult(submission=existing, created=False)

    db.refresh(submission)
    logger.info(
        "Submission recorded for attempt %s: status=%s score=%.2f/%.2f degraded=%s",
        attempt.id,
        submission.status.value,
        submission.auto_graded_score,
        submission.max_score,
        submission.is_degraded,
    )
    archive_session(realtime, attempt, now_ms)
    return FinalizeResult(submission=submission, created=True)


def enforce_deadline(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    now_ms: int | None = None,
) -> Submission | None:
    """Auto-submit the attempt if its deadline has passed.

    Returns the submission (new or existing), or None while time remains or
    the attempt never started.
    """
    now_ms = current_ms() if now_ms is None else now_ms
    attempt = get_attempt(db, attempt_id)
    if attempt.status in FINAL_STATUSES:
        # Terminal already; completes the record if an earlier run stopped halfway.
        return finalize_submission(db, realtime, attempt.id, attempt.status, now_ms).submission
    if attempt.status not in ACTIVE_STATUSES:
        return None
    if not calculate_time(attempt, now_ms).is_expired:
        return None
    logger.info("Deadline passed for attempt %s, auto-submitting", attempt.id)
    return finalize_submission(
        db, realtime, attempt.id, AttemptStatusEnum.AUTO_SUBMITTED, now_ms
    ).submission


def find_expired_attempts(db: Session, now_ms: int) -> list[uuid.UUID]:
    """Ids of started, still-active attempts whose deadline has passed."""
    rows = (
        db.query(Attempt.id, Attempt.started_ms, Attempt.total_time_allowed)
        .filter(
            Attempt.status.in_((AttemptStatusEnum.IN_PROGRESS, AttemptStatusEnum.PAUSED)),
            Attempt.started_ms.isnot(None),
        )
        .all()
    )
    return [
        row.id for row in rows if row.started_ms + row.total_time_allowed * 1000 <= now_ms
    ]
