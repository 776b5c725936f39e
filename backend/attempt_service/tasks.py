"""Background tasks executed by Celery workers."""

import logging
import uuid

from attempt_service.celery_app import celery_app
from attempt_service.db.session import get_session_factory
from attempt_service.services.errors import NotFoundError
from attempt_service.services.realtime_store import get_realtime_store
from attempt_service.services.submission_finalizer import (
    enforce_deadline,
    find_expired_attempts,
)
from attempt_service.services.timeutil import now_ms

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="auto_submit_attempt", max_retries=3)
def auto_submit_attempt(self, attempt_id: str) -> dict:
    """Auto-submit one attempt at its deadline.

    Scheduled with ``eta`` = deadline when the attempt's clock starts. Runs
    that fire early, or after the student already submitted, are no-ops.
    """
    factory = get_session_factory()
    db = factory()
    try:
        submission = enforce_deadline(db, get_realtime_store(), uuid.UUID(attempt_id))
        if submission is None:
            logger.info("Attempt %s not due yet: nothing to auto-submit", attempt_id)
            return {"success": True, "attempt_id": attempt_id, "submitted": False}
        return {
            "success": True,
            "attempt_id": attempt_id,
            "submitted": True,
            "status": submission.status.value,
        }

    except NotFoundError:
        logger.error("Attempt %s not found: skipping auto-submit", attempt_id)
        return {"success": False, "error": "attempt_not_found"}

    except Exception as exc:
        logger.exception("Auto-submit failed for attempt %s", attempt_id)
        db.rollback()
        # Retry with exponential back-off (5s, 15s, 45s)
        raise self.retry(exc=exc, countdown=5 * (3**self.request.retries))

    finally:
        db.close()


@celery_app.task(name="sweep_expired_attempts")
def sweep_expired_attempts() -> dict:
    """Auto-submit every started attempt whose deadline has already passed."""
    factory = get_session_factory()
    db = factory()
    realtime = get_realtime_store()
    now = now_ms()
    submitted = 0
    failed = 0
    try:
        for attempt_id in find_expired_attempts(db, now):
            try:
                enforce_deadline(db, realtime, attempt_id, now)
                submitted += 1
            except Exception:
                logger.exception("Sweep could not auto-submit attempt %s", attempt_id)
                db.rollback()
                failed += 1
        if submitted or failed:
            logger.info("Expiry sweep: %d auto-submitted, %d failed", submitted, failed)
        return {"success": True, "auto_submitted": submitted, "failed": failed}
    finally:
        db.close()
