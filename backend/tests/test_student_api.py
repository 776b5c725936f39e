"""Integration tests for the student test endpoints.

Covers:
  GET  /api/student/tests/{test_id}
  GET  /api/student/tests/{test_id}/attempt-info
  POST /api/student/tests/{test_id}/attempts
  GET  /api/student/tests/{test_id}/attempts/active
  GET  /api/student/tests/{test_id}/attempts/best
  GET  /api/student/tests/{test_id}/attempts/summary
"""

import uuid

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import DAY_MS, auth_headers
from attempt_service.services.timeutil import now_ms

STUDENT = auth_headers("student-1")


def _start(client: TestClient, test_id, headers=STUDENT):
    return client.post(
        f"/api/student/tests/{test_id}/attempts",
        json={"student_name": "Ada Lovelace", "class_id": "S6A"},
        headers=headers,
    )


# ── Auth ───────────────────────────────────────────────────────────────────────


class TestAuth:
    def test_missing_token(self, client: TestClient, make_test):
        test = make_test()
        resp = client.get(f"/api/student/tests/{test.id}")
        assert resp.status_code == 401

    def test_invalid_token(self, client: TestClient, make_test):
        test = make_test()
        resp = client.get(
            f"/api/student/tests/{test.id}", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    def test_teacher_cannot_start(self, client: TestClient, make_test):
        test = make_test()
        resp = _start(client, test.id, headers=auth_headers("teacher-1", role="teacher"))
        assert resp.status_code == 403


# ── Test definition ────────────────────────────────────────────────────────────


class TestGetTest:
    def test_hides_answer_key(self, client: TestClient, make_test):
        test = make_test()
        resp = client.get(f"/api/student/tests/{test.id}", headers=STUDENT)
        assert resp.status_code == 200
        data = resp.json()
        assert data["title"] == "Biology mid-term"
        assert data["total_marks"] == 15.0
        assert len(data["questions"]) == 3
        assert all("correct_option" not in q for q in data["questions"])

    def test_unknown_test(self, client: TestClient):
        resp = client.get(f"/api/student/tests/{uuid.uuid4()}", headers=STUDENT)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Test not found"


# ── Starting attempts ──────────────────────────────────────────────────────────


class TestStartAttempt:
    def test_start(self, client: TestClient, make_test):
        test = make_test()
        resp = _start(client, test.id)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["attempt_number"] == 1
        assert data["status"] == "not_started"
        assert data["student_id"] == "student-1"
        assert data["student_name"] == "Ada Lovelace"
        assert data["total_time_allowed"] == 3600

    def test_limit_reached(self, client: TestClient, make_test):
        test = make_test(attempts_allowed=1)
        attempt_id = _start(client, test.id).json()["id"]
        client.post(f"/api/attempts/{attempt_id}/submit", headers=STUDENT)

        resp = _start(client, test.id)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Attempt limit reached (1/1)"

    def test_previous_incomplete(self, client: TestClient, make_test):
        test = make_test(attempts_allowed=2)
        _start(client, test.id)

        resp = _start(client, test.id)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Previous attempt must be completed before starting a new one"

    def test_window_closed(self, client: TestClient, make_test):
        now = now_ms()
        test = make_test(available_from=now - 3 * DAY_MS, available_to=now - DAY_MS)
        resp = _start(client, test.id)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Test is not currently available"

    def test_second_attempt_after_submit(self, client: TestClient, make_test):
        test = make_test(attempts_allowed=2)
        first = _start(client, test.id).json()
        client.post(f"/api/attempts/{first['id']}/submit", headers=STUDENT)

        resp = _start(client, test.id)
        assert resp.status_code == 201
        assert resp.json()["attempt_number"] == 2


# ── History views ──────────────────────────────────────────────────────────────


class TestAttemptInfo:
    def test_info(self, client: TestClient, make_test):
        test = make_test(attempts_allowed=3)
        first = _start(client, test.id).json()
        client.post(f"/api/attempts/{first['id']}/submit", headers=STUDENT)

        resp = client.get(f"/api/student/tests/{test.id}/attempt-info", headers=STUDENT)
        assert resp.status_code == 200
        data = resp.json()
        assert data["attempts_used"] == 1
        assert data["attempts_allowed"] == 3
        assert data["can_re_attempt"] is True
        assert data["next_attempt_number"] == 2
        assert data["last_attempt_status"] == "submitted"
        assert data["history_available"] is True
        assert [a["attempt_number"] for a in data["previous_attempts"]] == [1]

    def test_active_attempt(self, client: TestClient, make_test):
        test = make_test()
        resp = client.get(f"/api/student/tests/{test.id}/attempts/active", headers=STUDENT)
        assert resp.status_code == 200
        assert resp.json() is None

        attempt_id = _start(client, test.id).json()["id"]
        resp = client.get(f"/api/student/tests/{test.id}/attempts/active", headers=STUDENT)
        assert resp.json()["id"] == attempt_id

    def test_best_and_summary(self, client: TestClient, db: Session, make_test):
        test = make_test(attempts_allowed=2)
        questions = client.get(f"/api/student/tests/{test.id}", headers=STUDENT).json()["questions"]

        first = _start(client, test.id).json()["id"]
        client.post(f"/api/attempts/{first}/heartbeat", headers=STUDENT)
        client.put(
            f"/api/attempts/{first}/answers/{questions[0]['id']}",
            json={"selected_option": 0},
            headers=STUDENT,
        )
        client.post(f"/api/attempts/{first}/submit", headers=STUDENT)

        second = _start(client, test.id).json()["id"]
        client.post(f"/api/attempts/{second}/submit", headers=STUDENT)

        best = client.get(f"/api/student/tests/{test.id}/attempts/best", headers=STUDENT).json()
        assert best["id"] == first
        assert best["percentage"] == 33.33

        summary = client.get(f"/api/student/tests/{test.id}/attempts/summary", headers=STUDENT).json()
        assert summary["total_attempts"] == 2
        assert summary["can_create_new_attempt"] is False
        assert summary["reason"] == "Attempt limit reached (2/2)"
        assert summary["best_score"] == 33.33
        assert summary["has_completed_attempts"] is True
        assert [a["attempt_number"] for a in summary["attempts"]] == [1, 2]
