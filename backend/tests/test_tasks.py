"""Tests for the Celery deadline tasks (called directly, no broker)."""

import uuid
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from attempt_service.db.models import Attempt, AttemptStatusEnum, Submission
from attempt_service.services.attempt_session import create_attempt, record_heartbeat
from attempt_service.services.timeutil import now_ms
from attempt_service.tasks import auto_submit_attempt, sweep_expired_attempts


@pytest.fixture
def task_env(db: Session, realtime):
    """Point the tasks at the test session and realtime store."""
    with patch("attempt_service.tasks.get_session_factory", return_value=lambda: db), patch(
        "attempt_service.tasks.get_realtime_store", return_value=realtime
    ):
        yield


def _started(db: Session, realtime, test, student: str, started_ms: int) -> uuid.UUID:
    attempt = create_attempt(db, realtime, test.id, student, started_ms).attempt
    record_heartbeat(db, realtime, attempt.id, started_ms)
    return attempt.id


class TestAutoSubmitAttempt:
    def test_submits_expired_attempt(self, db: Session, realtime, make_test, task_env):
        test = make_test(duration_minutes=10)
        attempt_id = _started(db, realtime, test, "student-1", now_ms() - 11 * 60_000)

        result = auto_submit_attempt(str(attempt_id))
        assert result == {
            "success": True,
            "attempt_id": str(attempt_id),
            "submitted": True,
            "status": "auto_submitted",
        }
        assert db.query(Submission).filter(Submission.id == attempt_id).count() == 1

    def test_early_run_is_noop(self, db: Session, realtime, make_test, task_env):
        test = make_test(duration_minutes=10)
        attempt_id = _started(db, realtime, test, "student-1", now_ms())

        result = auto_submit_attempt(str(attempt_id))
        assert result["submitted"] is False
        attempt = db.query(Attempt).filter(Attempt.id == attempt_id).first()
        assert attempt.status == AttemptStatusEnum.IN_PROGRESS

    def test_already_submitted_returns_existing(self, db: Session, realtime, make_test, task_env):
        test = make_test(duration_minutes=10)
        attempt_id = _started(db, realtime, test, "student-1", now_ms() - 11 * 60_000)

        auto_submit_attempt(str(attempt_id))
        again = auto_submit_attempt(str(attempt_id))
        assert again["status"] == "auto_submitted"
        assert db.query(Submission).count() == 1

    def test_unknown_attempt(self, task_env):
        result = auto_submit_attempt(str(uuid.uuid4()))
        assert result == {"success": False, "error": "attempt_not_found"}


class TestSweepExpiredAttempts:
    def test_sweep(self, db: Session, realtime, make_test, task_env):
        test = make_test(duration_minutes=10)
        long_ago = now_ms() - 30 * 60_000
        expired_a = _started(db, realtime, test, "student-1", long_ago)
        expired_b = _started(db, realtime, test, "student-2", long_ago)
        fresh = _started(db, realtime, test, "student-3", now_ms())

        result = sweep_expired_attempts()
        assert result == {"success": True, "auto_submitted": 2, "failed": 0}

        statuses = {
            a.id: a.status for a in db.query(Attempt).all()
        }
        assert statuses[expired_a] == AttemptStatusEnum.AUTO_SUBMITTED
        assert statuses[expired_b] == AttemptStatusEnum.AUTO_SUBMITTED
        assert statuses[fresh] == AttemptStatusEnum.IN_PROGRESS

    def test_nothing_to_do(self, task_env):
        assert sweep_expired_attempts() == {"success": True, "auto_submitted": 0, "failed": 0}
