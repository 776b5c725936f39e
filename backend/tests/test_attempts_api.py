"""Integration tests for the attempt session endpoints.

Covers:
  GET  /api/attempts/{id}
  GET  /api/attempts/{id}/submission
  POST /api/attempts/{id}/heartbeat | disconnect | reconnect
  PUT  /api/attempts/{id}/answers/{question_id}
  POST /api/attempts/{id}/navigate | review/{question_id} | activity
  POST /api/attempts/{id}/submit | abandon

Celery is mocked; the deadline is exercised by moving ``started_ms`` back.
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import auth_headers
from attempt_service.config import settings
from attempt_service.db.models import Attempt
from attempt_service.services.realtime_store import session_path

STUDENT = auth_headers("student-1")
OTHER_STUDENT = auth_headers("student-2")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _begin(client: TestClient, test) -> tuple[str, list[dict]]:
    """Start an attempt, send the first heartbeat; return (attempt_id, questions)."""
    questions = client.get(f"/api/student/tests/{test.id}", headers=STUDENT).json()["questions"]
    resp = client.post(
        f"/api/student/tests/{test.id}/attempts", json={"student_name": "Ada"}, headers=STUDENT
    )
    assert resp.status_code == 201, resp.text
    attempt_id = resp.json()["id"]
    resp = client.post(f"/api/attempts/{attempt_id}/heartbeat", headers=STUDENT)
    assert resp.status_code == 200, resp.text
    return attempt_id, questions


def _rewind(db: Session, attempt_id: str, seconds: int) -> None:
    """Pretend the attempt's clock started *seconds* earlier."""
    attempt = db.query(Attempt).filter(Attempt.id == uuid.UUID(attempt_id)).first()
    attempt.started_ms -= seconds * 1000
    db.commit()


def _answer(client: TestClient, attempt_id: str, question_id: str, **body):
    return client.put(
        f"/api/attempts/{attempt_id}/answers/{question_id}", json=body, headers=STUDENT
    )


# ── Ownership ──────────────────────────────────────────────────────────────────


class TestOwnership:
    def test_other_student_forbidden(self, client: TestClient, make_test):
        attempt_id, _ = _begin(client, make_test())
        resp = client.post(f"/api/attempts/{attempt_id}/heartbeat", headers=OTHER_STUDENT)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Not your attempt"

    def test_unknown_attempt(self, client: TestClient):
        resp = client.get(f"/api/attempts/{uuid.uuid4()}", headers=STUDENT)
        assert resp.status_code == 404


# ── Presence ───────────────────────────────────────────────────────────────────


class TestPresence:
    def test_heartbeat_starts_clock(self, client: TestClient, make_test):
        attempt_id, _ = _begin(client, make_test())

        resp = client.get(f"/api/attempts/{attempt_id}", headers=STUDENT)
        assert resp.status_code == 200
        data = resp.json()
        assert data["attempt"]["status"] == "in_progress"
        assert data["attempt"]["started_ms"] is not None
        assert data["time"]["total_time_allowed"] == 3600
        assert data["time"]["can_continue"] is True
        assert data["session"]["is_online"] is True

    def test_disconnect_and_reconnect(self, client: TestClient, realtime, make_test):
        attempt_id, _ = _begin(client, make_test())

        resp = client.post(
            f"/api/attempts/{attempt_id}/disconnect", json={"reason": "wifi"}, headers=STUDENT
        )
        assert resp.status_code == 200
        assert realtime.get(session_path(attempt_id))["status"] == "paused"

        resp = client.post(f"/api/attempts/{attempt_id}/reconnect", headers=STUDENT)
        assert resp.status_code == 200
        time = resp.json()
        assert time["time_spent"] + time["offline_time"] + time["time_remaining"] == time["total_time_allowed"]

        state = client.get(f"/api/attempts/{attempt_id}", headers=STUDENT).json()
        assert state["attempt"]["status"] == "in_progress"
        assert state["attempt"]["disconnection_count"] == 1

    def test_disconnect_without_body(self, client: TestClient, make_test):
        attempt_id, _ = _begin(client, make_test())
        assert client.post(f"/api/attempts/{attempt_id}/disconnect", headers=STUDENT).status_code == 200


# ── Answers, navigation & activity ─────────────────────────────────────────────


class TestAnswering:
    def test_save_and_resume(self, client: TestClient, make_test):
        attempt_id, questions = _begin(client, make_test())

        resp = _answer(client, attempt_id, questions[1]["id"], selected_option="B", time_on_question=9)
        assert resp.status_code == 200, resp.text
        assert resp.json()["selected_option"] == 1

        state = client.get(f"/api/attempts/{attempt_id}", headers=STUDENT).json()
        assert state["answers"][questions[1]["id"]]["selected_option"] == 1

    def test_invalid_option(self, client: TestClient, make_test):
        attempt_id, questions = _begin(client, make_test())
        resp = _answer(client, attempt_id, questions[0]["id"], selected_option="Q")
        assert resp.status_code == 400

    def test_answer_before_heartbeat(self, client: TestClient, make_test):
        test = make_test()
        questions = client.get(f"/api/student/tests/{test.id}", headers=STUDENT).json()["questions"]
        attempt_id = client.post(
            f"/api/student/tests/{test.id}/attempts", json={}, headers=STUDENT
        ).json()["id"]

        resp = _answer(client, attempt_id, questions[0]["id"], selected_option=0)
        assert resp.status_code == 400

    def test_navigate_review_activity(self, client: TestClient, make_test):
        attempt_id, questions = _begin(client, make_test())

        resp = client.post(
            f"/api/attempts/{attempt_id}/navigate", json={"question_index": 2}, headers=STUDENT
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "current_question_index": 2,
            "questions_visited": [questions[2]["id"]],
        }

        resp = client.post(
            f"/api/attempts/{attempt_id}/review/{questions[2]['id']}",
            json={"is_marked": True},
            headers=STUDENT,
        )
        assert resp.json() == {"questions_marked_for_review": [questions[2]["id"]]}

        resp = client.post(
            f"/api/attempts/{attempt_id}/activity",
            json={"activity_type": "tab_switch"},
            headers=STUDENT,
        )
        assert resp.status_code == 200
        assert resp.json()["tab_switch_count"] == 1
        assert resp.json()["suspicious_activity_count"] == 1

    def test_unknown_activity_type(self, client: TestClient, make_test):
        attempt_id, _ = _begin(client, make_test())
        resp = client.post(
            f"/api/attempts/{attempt_id}/activity",
            json={"activity_type": "screenshot"},
            headers=STUDENT,
        )
        assert resp.status_code == 422


# ── Submit & abandon ───────────────────────────────────────────────────────────


class TestSubmit:
    def test_submit_is_idempotent(self, client: TestClient, make_test):
        attempt_id, questions = _begin(client, make_test())
        for i, question in enumerate(questions):
            _answer(client, attempt_id, question["id"], selected_option=i)

        first = client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)
        second = client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)
        assert first.status_code == 200, first.text
        assert second.status_code == 200
        assert first.json() == second.json()

        data = first.json()
        assert data["status"] == "submitted"
        assert data["auto_graded_score"] == 15.0
        assert data["percentage"] == 100.0
        assert data["pass_status"] == "passed"
        assert len(data["answers"]) == 3

        resp = client.get(f"/api/attempts/{attempt_id}/submission", headers=STUDENT)
        assert resp.json()["id"] == attempt_id

    def test_writes_after_submit_conflict(self, client: TestClient, make_test):
        attempt_id, questions = _begin(client, make_test())
        client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)

        resp = _answer(client, attempt_id, questions[0]["id"], selected_option=0)
        assert resp.status_code == 409
        assert client.post(f"/api/attempts/{attempt_id}/heartbeat", headers=STUDENT).status_code == 409

    def test_submission_missing_before_submit(self, client: TestClient, make_test):
        attempt_id, _ = _begin(client, make_test())
        resp = client.get(f"/api/attempts/{attempt_id}/submission", headers=STUDENT)
        assert resp.status_code == 404

    def test_abandon(self, client: TestClient, make_test):
        attempt_id, _ = _begin(client, make_test())
        resp = client.post(f"/api/attempts/{attempt_id}/abandon", headers=STUDENT)
        assert resp.status_code == 200
        assert resp.json()["status"] == "abandoned"

        resp = client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)
        assert resp.status_code == 409


class TestDeadline:
    def test_expired_write_auto_submits(self, client: TestClient, db: Session, make_test):
        attempt_id, questions = _begin(client, make_test(duration_minutes=10))
        _answer(client, attempt_id, questions[0]["id"], selected_option=0)
        _rewind(db, attempt_id, 11 * 60)

        resp = _answer(client, attempt_id, questions[1]["id"], selected_option=1)
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Time is up; the attempt was auto-submitted"

        submission = client.get(f"/api/attempts/{attempt_id}/submission", headers=STUDENT).json()
        assert submission["status"] == "auto_submitted"
        assert submission["auto_graded_score"] == 5.0
        assert submission["total_time_spent"] <= 600

    def test_state_read_auto_submits(self, client: TestClient, db: Session, make_test):
        attempt_id, _ = _begin(client, make_test(duration_minutes=10))
        _rewind(db, attempt_id, 20 * 60)

        state = client.get(f"/api/attempts/{attempt_id}", headers=STUDENT).json()
        assert state["attempt"]["status"] == "auto_submitted"
        assert state["time"]["time_remaining"] == 0
        assert state["time"]["can_continue"] is False

    def test_late_submit_is_auto(self, client: TestClient, db: Session, make_test):
        attempt_id, _ = _begin(client, make_test(duration_minutes=10))
        _rewind(db, attempt_id, 15 * 60)

        resp = client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)
        assert resp.status_code == 200
        assert resp.json()["status"] == "auto_submitted"


class TestAutoSubmitScheduling:
    def test_scheduled_on_first_heartbeat(self, client: TestClient, db: Session, make_test, mock_celery_tasks, monkeypatch):
        monkeypatch.setattr(settings, "CELERY_TASK_ALWAYS_EAGER", False)
        attempt_id, _ = _begin(client, make_test())

        task = mock_celery_tasks["auto_submit_attempt"]
        task.apply_async.assert_called_once()
        assert task.apply_async.call_args.kwargs["args"] == [attempt_id]
        attempt = db.query(Attempt).filter(Attempt.id == uuid.UUID(attempt_id)).first()
        assert attempt.auto_submit_task_id == "fake-task-id"

        # Later heartbeats do not schedule again.
        client.post(f"/api/attempts/{attempt_id}/heartbeat", headers=STUDENT)
        assert task.apply_async.call_count == 1

    def test_revoked_on_submit(self, client: TestClient, make_test, mock_celery_tasks, monkeypatch):
        monkeypatch.setattr(settings, "CELERY_TASK_ALWAYS_EAGER", False)
        attempt_id, _ = _begin(client, make_test())

        client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)
        mock_celery_tasks["celery_app"].control.revoke.assert_called_once_with("fake-task-id")

    def test_eager_mode_skips_scheduling(self, client: TestClient, make_test, mock_celery_tasks, monkeypatch):
        monkeypatch.setattr(settings, "CELERY_TASK_ALWAYS_EAGER", True)
        _begin(client, make_test())
        mock_celery_tasks["auto_submit_attempt"].apply_async.assert_not_called()


@pytest.mark.parametrize("action", ["heartbeat", "reconnect", "disconnect", "abandon"])
def test_actions_require_student_role(client: TestClient, make_test, action):
    attempt_id, _ = _begin(client, make_test())
    resp = client.post(
        f"/api/attempts/{attempt_id}/{action}", headers=auth_headers("teacher-1", role="teacher")
    )
    assert resp.status_code == 403
