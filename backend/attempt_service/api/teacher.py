"""Teacher routes: submissions, manual grading, termination and monitoring."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from attempt_service.api.attempts import revoke_auto_submit
from attempt_service.api.deps import Identity, http_error, require_teacher
from attempt_service.db.models import AttemptStatusEnum, Submission, Test
from attempt_service.db.session import get_db
from attempt_service.schemas.monitoring import MonitoringRead
from attempt_service.schemas.submission import (
    EssayGradesUpdate,
    SubmissionRead,
    SubmissionSummaryRead,
)
from attempt_service.services import attempt_session, grading, monitoring
from attempt_service.services.attempt_policy import get_test
from attempt_service.services.errors import AttemptServiceError
from attempt_service.services.realtime_store import RealtimeStore, get_realtime_store
from attempt_service.services.submission_finalizer import finalize_submission
from attempt_service.services.timeutil import now_ms

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_owner(test: Test, identity: Identity) -> None:
    if identity.role == "admin":
        return
    if not monitoring.teacher_owns_test(test, identity.teacher_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not your test"
        )


def _owned_test(db: Session, test_id: uuid.UUID, identity: Identity) -> Test:
    try:
        test = get_test(db, test_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    _check_owner(test, identity)
    return test


def _owned_submission(db: Session, attempt_id: uuid.UUID, identity: Identity) -> Submission:
    submission = db.query(Submission).filter(Submission.id == attempt_id).first()
    if submission is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found"
        )
    _check_owner(submission.attempt.test, identity)
    return submission


# ── Submissions ───────────────────────────────────────────────────────────────


@router.get("/tests/{test_id}/submissions", response_model=list[SubmissionSummaryRead])
def list_submissions(
    test_id: uuid.UUID,
    identity: Identity = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    _owned_test(db, test_id, identity)
    return monitoring.list_test_submissions(db, test_id)


@router.get("/submissions/{attempt_id}", response_model=SubmissionRead)
def get_submission(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    return _owned_submission(db, attempt_id, identity)


@router.put("/submissions/{attempt_id}/essay-grades", response_model=SubmissionRead)
def grade_essays(
    attempt_id: uuid.UUID,
    body: EssayGradesUpdate,
    identity: Identity = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    """Award marks to essay answers; the final score settles once all are graded."""
    _owned_submission(db, attempt_id, identity)
    try:
        return grading.grade_essays(
            db, attempt_id, body.grades, identity.teacher_id, feedback=body.feedback
        )
    except AttemptServiceError as e:
        raise http_error(e) from e


# ── Live control ──────────────────────────────────────────────────────────────


@router.post("/attempts/{attempt_id}/terminate", response_model=SubmissionRead)
def terminate_attempt(
    attempt_id: uuid.UUID,
    identity: Identity = Depends(require_teacher),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    """End a student's attempt now; what they answered so far is graded."""
    try:
        attempt = attempt_session.get_attempt(db, attempt_id)
    except AttemptServiceError as e:
        raise http_error(e) from e
    _check_owner(attempt.test, identity)

    task_id = attempt.auto_submit_task_id
    try:
        result = finalize_submission(
            db, realtime, attempt_id, AttemptStatusEnum.TERMINATED, now_ms()
        )
    except AttemptServiceError as e:
        raise http_error(e) from e
    if result.created:
        logger.info("Attempt %s terminated by %s", attempt_id, identity.uid)
        revoke_auto_submit(task_id)
    return result.submission


@router.get("/tests/{test_id}/monitoring", response_model=MonitoringRead)
def monitor_test(
    test_id: uuid.UUID,
    identity: Identity = Depends(require_teacher),
    db: Session = Depends(get_db),
    realtime: RealtimeStore = Depends(get_realtime_store),
):
    _owned_test(db, test_id, identity)
    snapshot = monitoring.get_test_monitoring(db, realtime, test_id, now_ms())
    return MonitoringRead.model_validate(snapshot)
