"""Attempt session routes: called by the student's client while taking a test."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from attempt_service.api.deps import Identity, http_error, require_student
from attempt_service.celery_app import celery_app
from attempt_service.config import settings
from attempt_service.db.models import Attempt, AttemptStatusEnum, Submission
from attempt_service.db.session import get_db
from attempt_service.schemas.attempt import (
    ActivityCountersRead,
    ActivityReport,
    AnswerRead,
    AnswerSave,
    AttemptRead,
    AttemptStateRead,
    DisconnectReport,
    NavigateRead,
    NavigateRequest,
    ReviewRead,
    ReviewToggle,
    TimeCalculationRead,
)
from attempt_service.schemas.submission import SubmissionRead
from attempt_service.services import attempt_session
from attempt_service.services.errors import AttemptExpiredError, AttemptServiceError
from attempt_service.services.realtime_store import RealtimeStore, get_realtime_store
from attempt_service.services.submission_finalizer import finalize_submission
from attempt_service.services.timeutil import from_epoch_ms, now_ms
from attempt_service.tasks import auto_submit_attempt

logger = logging.getLogger(__name__)
router = APIRouter()


# ── helpers ───────────────────────────────────────────────────────────────────


def _owned_attempt(db: Session, attempt_id: uuid.UUID, identity: Identity) -> Attempt:
    """Return the attempt if it belongs to the caller, else 404 / 403."""
    try:
        attempt = attempt_session.get_attempt(db, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    if attempt.student_id != identity.uid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not your attempt"
        )
    return attempt


def _expired(db: Session, realtime: RealtimeStore, attempt_id: uuid.UUID) -> HTTPException:
    """Auto-submit an attempt whose time ran out and build the 409 for the caller."""
    finalize_submission(db, realtime, attempt_id, AttemptStatusEnum.AUTO_SUBMITTED, now_ms())
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Time is up; the attempt was auto-submitted",
    )


def schedule_auto_submit(db: Session, attempt: Attempt) -> None:
    """Queue the deadline task for a freshly started attempt."""
    if settings.CELERY_TASK_ALWAYS_EAGER:
        # Eager mode would run the task right now; the sweep and lazy checks cover it.
        logger.debug("Eager Celery: deadline for %s enforced lazily", attempt.id)
        return
    deadline_ms = attempt.deadline_ms
    if deadline_ms is None:
        return
    try:
        result = auto_submit_attempt.apply_async(
            args=[str(attempt.id)], eta=from_epoch_ms(deadline_ms)
        )
    except Exception as e:
        logger.warning("Could not schedule auto-submit for %s (non-fatal): %s", attempt.id, e)
        return
    attempt_session.set_auto_submit_task(db, attempt, result.id)
    logger.info("Auto-submit for %s scheduled at %s", attempt.id, from_epoch_ms(deadline_ms))


def revoke_auto_submit(task_id: str | None) -> None:
    if not task_id:
        return
    try:
        celery_app.control.revoke(task_id)
    except Exception as e:
        logger.warning("Could not revoke auto-submit task %s (non-fatal): %s", task_id, e)


# ── Reads ─────────────────────────────────────────────────────────────────────


@router.get("/{attempt_id}", response_model=AttemptStateRead)
def get_attempt_state(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    """Attempt, server-side clock and saved answers (used to resume)."""
    _owned_attempt(db, attempt_id, identity)
    state = attempt_session.get_attempt_state(db, realtime, attempt_id, now_ms())
    if state.time.is_expired and state.attempt.status in (
        AttemptStatusEnum.IN_PROGRESS,
        AttemptStatusEnum.PAUSED,
    ):
        finalize_submission(
            db, realtime, attempt_id, AttemptStatusEnum.AUTO_SUBMITTED, now_ms()
        )
        state = attempt_session.get_attempt_state(db, realtime, attempt_id, now_ms())
    return AttemptStateRead.model_validate(state)


@router.get("/{attempt_id}/submission", response_model=SubmissionRead)
def get_own_submission(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
):
    _owned_attempt(db, attempt_id, identity)
    submission = db.query(Submission).filter(Submission.id == attempt_id).first()
    if submission is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found"
        )
    return submission


# ── Presence ──────────────────────────────────────────────────────────────────


@router.post("/{attempt_id}/heartbeat", response_model=TimeCalculationRead)
def heartbeat(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    """Keep-alive. The first heartbeat starts the attempt's clock."""
    _owned_attempt(db, attempt_id, identity)
    try:
        result = attempt_session.record_heartbeat(db, realtime, attempt_id, now_ms())
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e

    if result.clock_started:
        schedule_auto_submit(db, result.attempt)
    return TimeCalculationRead.model_validate(result.time)


@router.post("/{attempt_id}/disconnect", response_model=TimeCalculationRead)
def disconnect(
    attempt_id: uuid.UUID,
    body: DisconnectReport | None = None,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    _owned_attempt(db, attempt_id, identity)
    try:
        calc = attempt_session.record_disconnect(
            db, realtime, attempt_id, now_ms(), reason=body.reason if body else None
        )
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    return TimeCalculationRead.model_validate(calc)


@router.post("/{attempt_id}/reconnect", response_model=TimeCalculationRead)
def reconnect(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    _owned_attempt(db, attempt_id, identity)
    try:
        calc = attempt_session.record_reconnect(db, realtime, attempt_id, now_ms())
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    return TimeCalculationRead.model_validate(calc)


# ── Answers, navigation & activity ────────────────────────────────────────────


@router.put("/{attempt_id}/answers/{question_id}", response_model=AnswerRead)
def save_answer(
    attempt_id: uuid.UUID,
    question_id: uuid.UUID,
    body: AnswerSave,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    _owned_attempt(db, attempt_id, identity)
    try:
        return attempt_session.save_answer(
            db,
            realtime,
            attempt_id,
            question_id,
            now_ms(),
            selected_option=body.selected_option,
            text_content=body.text_content,
            time_on_question=body.time_on_question,
        )
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e


@router.post("/{attempt_id}/navigate", response_model=NavigateRead)
def navigate(
    attempt_id: uuid.UUID,
    body: NavigateRequest,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    _owned_attempt(db, attempt_id, identity)
    try:
        return attempt_session.navigate_to_question(
            db, realtime, attempt_id, body.question_index, now_ms()
        )
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e


@router.post("/{attempt_id}/review/{question_id}", response_model=ReviewRead)
def toggle_review(
    attempt_id: uuid.UUID,
    question_id: uuid.UUID,
    body: ReviewToggle,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    _owned_attempt(db, attempt_id, identity)
    try:
        marked = attempt_session.toggle_review_mark(
            db, realtime, attempt_id, question_id, body.is_marked, now_ms()
        )
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    return ReviewRead(questions_marked_for_review=marked)


@router.post("/{attempt_id}/activity", response_model=ActivityCountersRead)
def report_activity(
    attempt_id: uuid.UUID,
    body: ActivityReport,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    """Record a tab switch, copy/paste, right click, shortcut or fullscreen change."""
    _owned_attempt(db, attempt_id, identity)
    try:
        return attempt_session.track_suspicious_activity(
            db, realtime, attempt_id, body.activity_type, now_ms(), detail=body.detail
        )
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e


# ── Lifecycle ─────────────────────────────────────────────────────────────────


@router.post("/{attempt_id}/submit", response_model=SubmissionRead)
def submit_attempt(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    """Finalize the attempt. Repeated calls return the same submission."""
    attempt = _owned_attempt(db, attempt_id, identity)
    task_id = attempt.auto_submit_task_id
    try:
        result = finalize_submission(
            db, realtime, attempt_id, AttemptStatusEnum.SUBMITTED, now_ms()
        )
    except AttemptServiceError as e:
        raise http_error(e) from e
    if result.created:
        revoke_auto_submit(task_id)
    return result.submission


@router.post("/{attempt_id}/abandon", response_model=AttemptRead)
def abandon_attempt(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    """Give up without a submission. The attempt still counts toward the limit."""
    attempt = _owned_attempt(db, attempt_id, identity)
    task_id = attempt.auto_submit_task_id
    try:
        attempt = attempt_session.abandon_attempt(db, realtime, attempt_id, now_ms())
    except AttemptExpiredError:
        raise _expired(db, realtime, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    revoke_auto_submit(task_id)
    return attempt
