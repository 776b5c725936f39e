"""Attempt session tracking.

Lifecycle of one attempt::

    not_started ──heartbeat──▶ in_progress ◀──reconnect── paused
                                   │  └──────disconnect──────▲
                                   ▼
              submitted | auto_submitted | terminated | abandoned

Durable state (status, clock, offline accounting) lives on the ``attempts``
row and every status change is a conditional UPDATE, so a write racing the
finalizer can never move a terminal attempt back to an active status.
Fast-changing state (presence, answers, counters, activity log) lives in
the realtime store.

Time accounting works in whole seconds and always satisfies::

    time_spent + offline_time + time_remaining == total_time_allowed

The deadline is wall clock (``started_ms + total_time_allowed``); offline
periods are reported but do not extend it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attempt_service.config import settings
from attempt_service.db.models import (
    ACTIVE_STATUSES,
    Attempt,
    AttemptEvent,
    AttemptStatusEnum,
    QuestionTypeEnum,
    Test,
    TestQuestion,
    TestTypeEnum,
)
from attempt_service.services import grading
from attempt_service.services.attempt_policy import (
    AttemptStartDecision,
    get_test,
    validate_attempt_start,
)
from attempt_service.services.errors import (
    AttemptConflictError,
    AttemptExpiredError,
    AttemptLockedError,
    InvalidOperationError,
    NotFoundError,
    RealtimeUnavailableError,
)
from attempt_service.services.realtime_store import (
    RealtimeStore,
    answers_path,
    archive_path,
    log_path,
    session_path,
    time_path,
)

logger = logging.getLogger(__name__)

ACTIVITY_TYPES = (
    "tab_switch",
    "copy_paste",
    "right_click",
    "keyboard_shortcut",
    "fullscreen_exit",
    "fullscreen_enter",
)
_COUNTER_FIELDS = {
    "tab_switch": "tab_switch_count",
    "copy_paste": "copy_paste_attempts",
    "right_click": "right_click_attempts",
}


@dataclass(frozen=True)
class TimeCalculation:
    total_time_allowed: int
    time_spent: int
    time_remaining: int
    offline_time: int
    is_expired: bool
    can_continue: bool
    deadline_ms: int | None


@dataclass(frozen=True)
class AttemptStartResult:
    decision: AttemptStartDecision
    attempt: Attempt | None


@dataclass(frozen=True)
class HeartbeatResult:
    attempt: Attempt
    time: TimeCalculation
    clock_started: bool


@dataclass(frozen=True)
class AttemptState:
    attempt: Attempt
    time: TimeCalculation
    session: dict[str, Any] | None
    answers: dict[str, Any]


# ── Time ──────────────────────────────────────────────────────────────────────


def time_allowed_for(test: Test, now_ms: int) -> int:
    """Seconds a new attempt gets; live attempts are clipped to the test's end."""
    if test.test_type == TestTypeEnum.LIVE:
        seconds = (test.duration_minutes or settings.DEFAULT_FLEXIBLE_DURATION_MINUTES) * 60
        if test.actual_end_ms is not None:
            seconds = min(seconds, max(0, (test.actual_end_ms - now_ms) // 1000))
        return seconds
    return (test.duration_minutes or settings.DEFAULT_FLEXIBLE_DURATION_MINUTES) * 60


def offline_ms_at(attempt: Attempt, now_ms: int) -> int:
    offline = attempt.offline_ms or 0
    if attempt.status == AttemptStatusEnum.PAUSED and attempt.disconnected_ms is not None:
        offline += max(0, now_ms - attempt.disconnected_ms)
    return offline


def calculate_time(attempt: Attempt, now_ms: int) -> TimeCalculation:
    """Derive the attempt's clock from server-observed timestamps."""
    total = attempt.total_time_allowed
    if attempt.started_ms is None:
        return TimeCalculation(
            total_time_allowed=total,
            time_spent=0,
            time_remaining=total,
            offline_time=0,
            is_expired=False,
            can_continue=True,
            deadline_ms=None,
        )

    deadline = attempt.started_ms + total * 1000
    # The clock stops at the deadline, or at submission for terminal attempts.
    end_ms = min(now_ms, deadline)
    if attempt.submitted_ms is not None:
        end_ms = min(end_ms, attempt.submitted_ms)
    elapsed_ms = max(0, end_ms - attempt.started_ms)
    offline_ms = min(offline_ms_at(attempt, end_ms), elapsed_ms)

    elapsed = elapsed_ms // 1000
    offline = offline_ms // 1000
    expired = now_ms >= deadline
    return TimeCalculation(
        total_time_allowed=total,
        time_spent=elapsed - offline,
        time_remaining=total - elapsed,
        offline_time=offline,
        is_expired=expired,
        can_continue=not expired and attempt.status in ACTIVE_STATUSES,
        deadline_ms=deadline,
    )


# ── Loading & guarded writes ──────────────────────────────────────────────────


def get_attempt(db: Session, attempt_id: uuid.UUID) -> Attempt:
    attempt = db.query(Attempt).filter(Attempt.id == attempt_id).first()
    if attempt is None:
        raise NotFoundError("Attempt not found")
    return attempt


def _raise_if_locked(attempt: Attempt) -> None:
    if attempt.status not in ACTIVE_STATUSES:
        raise AttemptLockedError(f"Attempt is already {attempt.status.value}")


def _load_writable(db: Session, attempt_id: uuid.UUID, now_ms: int) -> Attempt:
    attempt = get_attempt(db, attempt_id)
    _raise_if_locked(attempt)
    if calculate_time(attempt, now_ms).is_expired:
        raise AttemptExpiredError("Time is up for this attempt")
    return attempt


def _confirm_still_active(db: Session, realtime: RealtimeStore, attempt: Attempt) -> None:
    """Re-read the status after a realtime write.

    The finalizer may lock the attempt between the initial check and the write;
    such a write never made it into the submission and must not be acknowledged.
    """
    db.refresh(attempt)
    if attempt.status in ACTIVE_STATUSES:
        return
    logger.info("Rejected late write to attempt %s (%s)", attempt.id, attempt.status.value)
    try:
        if realtime.get(archive_path(attempt.id)) is not None:
            # Session already archived; drop the keys the late write recreated.
            realtime.delete(
                session_path(attempt.id),
                answers_path(attempt.id),
                time_path(attempt.id),
                log_path(attempt.id),
            )
    except RealtimeUnavailableError as e:
        logger.warning("Could not clean up late write for attempt %s: %s", attempt.id, e)
    _raise_if_locked(attempt)


def guarded_update(
    db: Session,
    attempt: Attempt,
    allowed: tuple[AttemptStatusEnum, ...],
    **values: Any,
) -> bool:
    """UPDATE the attempt only while its status is in *allowed*; commit either way.

    Returns False (and reloads the attempt) when another writer got there first.
    """
    result = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt.id, Attempt.status.in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(attempt)
    return result.rowcount == 1


# ── Realtime helpers ──────────────────────────────────────────────────────────


def _initial_session(attempt: Attempt, test: Test, now_ms: int) -> dict[str, Any]:
    return {
        "attempt_id": str(attempt.id),
        "test_id": str(attempt.test_id),
        "student_id": attempt.student_id,
        "student_name": attempt.student_name,
        "class_id": attempt.class_id,
        "attempt_number": attempt.attempt_number,
        "status": attempt.status.value,
        "is_online": False,
        "current_question_index": attempt.current_question_index,
        "total_questions": len(test.questions),
        "questions_visited": [],
        "questions_marked_for_review": [],
        "tab_switch_count": 0,
        "copy_paste_attempts": 0,
        "right_click_attempts": 0,
        "keyboard_shortcuts": [],
        "disconnection_count": attempt.disconnection_count,
        "is_fullscreen": True,
        "last_heartbeat_ms": None,
        "last_activity_ms": now_ms,
        "created_ms": now_ms,
    }


def _ensure_session(realtime: RealtimeStore, attempt: Attempt, now_ms: int) -> dict[str, Any]:
    """Return the realtime session, rebuilding it from the durable row if it is gone."""
    session = realtime.get(session_path(attempt.id))
    if session is None:
        logger.info("Rebuilding realtime session for attempt %s", attempt.id)
        session = _initial_session(attempt, attempt.test, now_ms)
        realtime.set(session_path(attempt.id), session)
    return session


def _log_event(
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    event_type: str,
    now_ms: int,
    *,
    question_id: str | None = None,
    previous_value: Any = None,
    new_value: Any = None,
    time_on_question: int | None = None,
    data: dict[str, Any] | None = None,
) -> int:
    return realtime.append(
        log_path(attempt_id),
        {
            "event_type": event_type,
            "occurred_ms": now_ms,
            "question_id": question_id,
            "previous_value": previous_value,
            "new_value": new_value,
            "time_on_question": time_on_question,
            "data": data,
        },
    )


def archive_events(db: Session, attempt_id: uuid.UUID, log: list[dict[str, Any]]) -> int:
    """Stage the realtime activity log as durable ``attempt_events`` rows (no commit)."""
    for sequence, record in enumerate(log, start=1):
        db.add(
            AttemptEvent(
                attempt_id=attempt_id,
                sequence=sequence,
                occurred_ms=int(record.get("occurred_ms") or 0),
                event_type=str(record.get("event_type") or "unknown"),
                question_id=record.get("question_id"),
                previous_value=record.get("previous_value"),
                new_value=record.get("new_value"),
                time_on_question=record.get("time_on_question"),
                data=record.get("data"),
            )
        )
    return len(log)


def archive_session(realtime: RealtimeStore, attempt: Attempt, now_ms: int) -> None:
    """Move the live session under ``archived/`` and drop the working keys.

    Best effort: the durable record is already complete when this runs.
    """
    try:
        session = realtime.get(session_path(attempt.id)) or {}
        session.update(
            {"status": attempt.status.value, "is_online": False, "archived_ms": now_ms}
        )
        realtime.set(
            archive_path(attempt.id), session, ttl=settings.REALTIME_ARCHIVE_TTL_SECONDS
        )
        realtime.delete(
            session_path(attempt.id),
            answers_path(attempt.id),
            time_path(attempt.id),
            log_path(attempt.id),
        )
    except RealtimeUnavailableError as e:
        logger.warning("Realtime archival failed for attempt %s (non-fatal): %s", attempt.id, e)


def _find_question(attempt: Attempt, question_id: uuid.UUID) -> TestQuestion:
    for question in attempt.test.questions:
        if question.id == question_id:
            return question
    raise NotFoundError("Question not found in this test")


# ── Creation ──────────────────────────────────────────────────────────────────


def create_attempt(
    db: Session,
    realtime: RealtimeStore,
    test_id: uuid.UUID,
    student_id: str,
    now_ms: int,
    student_name: str = "",
    class_id: str | None = None,
) -> AttemptStartResult:
    """Check the policy and, if allowed, create attempt N+1 in ``not_started``.

    Two concurrent creators compute the same attempt number; the unique
    constraint on (test, student, number) lets exactly one of them in.
    """
    decision = validate_attempt_start(db, test_id, student_id, now_ms)
    if not decision.can_start:
        return AttemptStartResult(decision=decision, attempt=None)

    test = get_test(db, test_id)
    total = time_allowed_for(test, now_ms)
    attempt = Attempt(
        test_id=test.id,
        student_id=student_id,
        student_name=student_name,
        class_id=class_id,
        attempt_number=decision.attempt_info.next_attempt_number,
        status=AttemptStatusEnum.NOT_STARTED,
        created_ms=now_ms,
        last_active_ms=now_ms,
        total_time_allowed=total,
        time_remaining=total,
        max_score=test.total_marks,
    )
    db.add(attempt)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning(
            "Concurrent attempt creation for test=%s student=%s number=%d",
            test_id,
            student_id,
            decision.attempt_info.next_attempt_number,
        )
        raise AttemptConflictError("Another attempt was started at the same time")
    db.commit()
    db.refresh(attempt)
    logger.info(
        "Created attempt %s (#%d) for test=%s student=%s",
        attempt.id,
        attempt.attempt_number,
        test_id,
        student_id,
    )

    try:
        realtime.set(session_path(attempt.id), _initial_session(attempt, test, now_ms))
    except RealtimeUnavailableError as e:
        # Rebuilt lazily on the first heartbeat.
        logger.warning("Realtime session init failed for %s (non-fatal): %s", attempt.id, e)

    return AttemptStartResult(decision=decision, attempt=attempt)


# ── Presence & clock ──────────────────────────────────────────────────────────


def _resume(db: Session, realtime: RealtimeStore, attempt: Attempt, now_ms: int) -> None:
    gap = max(0, now_ms - attempt.disconnected_ms) if attempt.disconnected_ms else 0
    resumed = guarded_update(
        db,
        attempt,
        (AttemptStatusEnum.PAUSED,),
        status=AttemptStatusEnum.IN_PROGRESS,
        offline_ms=(attempt.offline_ms or 0) + gap,
        disconnected_ms=None,
        last_active_ms=now_ms,
    )
    if not resumed:
        _raise_if_locked(attempt)
        return
    _log_event(realtime, attempt.id, "reconnect", now_ms, data={"offline_ms": gap})
    logger.info("Attempt %s reconnected after %d ms offline", attempt.id, gap)


def record_heartbeat(
    db: Session, realtime: RealtimeStore, attempt_id: uuid.UUID, now_ms: int
) -> HeartbeatResult:
    """Mark the student online; the first heartbeat starts the clock."""
    attempt = _load_writable(db, attempt_id, now_ms)
    _ensure_session(realtime, attempt, now_ms)
    clock_started = False

    if attempt.status == AttemptStatusEnum.NOT_STARTED:
        total = attempt.total_time_allowed
        if attempt.test.test_type == TestTypeEnum.LIVE:
            total = min(total, time_allowed_for(attempt.test, now_ms))
        clock_started = guarded_update(
            db,
            attempt,
            (AttemptStatusEnum.NOT_STARTED,),
            status=AttemptStatusEnum.IN_PROGRESS,
            started_ms=now_ms,
            last_active_ms=now_ms,
            total_time_allowed=total,
            time_remaining=total,
        )
        if clock_started:
            _log_event(realtime, attempt.id, "start", now_ms)
            logger.info("Attempt %s started, %ds allowed", attempt.id, total)
        else:
            _raise_if_locked(attempt)
    elif attempt.status == AttemptStatusEnum.PAUSED:
        _resume(db, realtime, attempt, now_ms)

    calc = calculate_time(attempt, now_ms)
    persist_after = settings.HEARTBEAT_PERSIST_INTERVAL_SECONDS * 1000
    if not clock_started and now_ms - attempt.last_active_ms >= persist_after:
        if not guarded_update(
            db,
            attempt,
            ACTIVE_STATUSES,
            last_active_ms=now_ms,
            time_spent=calc.time_spent,
            time_remaining=calc.time_remaining,
        ):
            _raise_if_locked(attempt)

    realtime.update(
        session_path(attempt.id),
        {
            "status": attempt.status.value,
            "is_online": True,
            "last_heartbeat_ms": now_ms,
            "time_remaining": calc.time_remaining,
        },
    )
    return HeartbeatResult(attempt=attempt, time=calc, clock_started=clock_started)


def record_disconnect(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    now_ms: int,
    reason: str | None = None,
) -> TimeCalculation:
    attempt = _load_writable(db, attempt_id, now_ms)
    _ensure_session(realtime, attempt, now_ms)

    if attempt.status == AttemptStatusEnum.IN_PROGRESS:
        paused = guarded_update(
            db,
            attempt,
            (AttemptStatusEnum.IN_PROGRESS,),
            status=AttemptStatusEnum.PAUSED,
            disconnected_ms=now_ms,
            disconnection_count=Attempt.disconnection_count + 1,
            last_active_ms=now_ms,
        )
        if paused:
            realtime.increment(session_path(attempt.id), "disconnection_count")
            _log_event(realtime, attempt.id, "disconnect", now_ms, data={"reason": reason})
            logger.info("Attempt %s paused (disconnect: %s)", attempt.id, reason or "unknown")
        else:
            _raise_if_locked(attempt)

    realtime.update(
        session_path(attempt.id), {"status": attempt.status.value, "is_online": False}
    )
    return calculate_time(attempt, now_ms)


def record_reconnect(
    db: Session, realtime: RealtimeStore, attempt_id: uuid.UUID, now_ms: int
) -> TimeCalculation:
    attempt = _load_writable(db, attempt_id, now_ms)
    _ensure_session(realtime, attempt, now_ms)
    if attempt.status == AttemptStatusEnum.PAUSED:
        _resume(db, realtime, attempt, now_ms)
    realtime.update(
        session_path(attempt.id),
        {"status": attempt.status.value, "is_online": True, "last_heartbeat_ms": now_ms},
    )
    return calculate_time(attempt, now_ms)


# ── Answers & navigation ──────────────────────────────────────────────────────


def _require_in_progress(attempt: Attempt) -> None:
    if attempt.status == AttemptStatusEnum.NOT_STARTED:
        raise InvalidOperationError("Attempt has not started yet; send a heartbeat first")
    if attempt.status == AttemptStatusEnum.PAUSED:
        raise InvalidOperationError("Attempt is paused; reconnect first")


def save_answer(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    question_id: uuid.UUID,
    now_ms: int,
    selected_option: int | str | None = None,
    text_content: str | None = None,
    time_on_question: int | None = None,
) -> dict[str, Any]:
    """Store the latest answer for a question and log the change."""
    attempt = _load_writable(db, attempt_id, now_ms)
    _require_in_progress(attempt)
    question = _find_question(attempt, question_id)
    _ensure_session(realtime, attempt, now_ms)

    qid = str(question.id)
    current = realtime.get_field(answers_path(attempt.id), qid) or {}

    if question.question_type == QuestionTypeEnum.MCQ:
        if text_content is not None:
            raise InvalidOperationError("Multiple-choice answers take selected_option only")
        new_value = None
        if selected_option is not None:
            new_value = grading.resolve_selected_option(question, selected_option)
            if new_value is None:
                raise InvalidOperationError("Selected option is not one of this question's options")
        previous_value = current.get("selected_option")
        change_type = "select" if new_value is not None else "deselect"
        stored = {"selected_option": new_value, "text_content": None}
    else:
        if selected_option is not None:
            raise InvalidOperationError("Essay answers take text_content only")
        new_value = text_content or ""
        previous_value = current.get("text_content")
        change_type = "text_change"
        stored = {"selected_option": None, "text_content": new_value}

    time_spent = max(int(time_on_question or 0), int(current.get("time_spent") or 0))
    _log_event(
        realtime,
        attempt.id,
        change_type,
        now_ms,
        question_id=qid,
        previous_value=previous_value,
        new_value=new_value,
        time_on_question=time_on_question,
    )

    answer = {
        "question_id": qid,
        "question_type": question.question_type.value,
        **stored,
        "last_modified_ms": now_ms,
        "time_spent": time_spent,
        "change_count": int(current.get("change_count") or 0) + 1,
    }
    realtime.update(answers_path(attempt.id), {qid: answer})
    realtime.update(time_path(attempt.id), {qid: time_spent})
    realtime.update(session_path(attempt.id), {"last_activity_ms": now_ms})
    _confirm_still_active(db, realtime, attempt)
    return answer


def navigate_to_question(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    question_index: int,
    now_ms: int,
) -> dict[str, Any]:
    attempt = _load_writable(db, attempt_id, now_ms)
    _require_in_progress(attempt)
    questions = attempt.test.questions
    if not 0 <= question_index < len(questions):
        raise InvalidOperationError(f"Question index {question_index} is out of range")

    session = _ensure_session(realtime, attempt, now_ms)
    previous_index = session.get("current_question_index", 0)
    qid = str(questions[question_index].id)
    visited = list(session.get("questions_visited") or [])
    if qid not in visited:
        visited.append(qid)

    realtime.update(
        session_path(attempt.id),
        {
            "current_question_index": question_index,
            "questions_visited": visited,
            "last_activity_ms": now_ms,
        },
    )
    _log_event(
        realtime,
        attempt.id,
        "navigate",
        now_ms,
        question_id=qid,
        previous_value=previous_index,
        new_value=question_index,
    )
    _confirm_still_active(db, realtime, attempt)
    return {"current_question_index": question_index, "questions_visited": visited}


def toggle_review_mark(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    question_id: uuid.UUID,
    is_marked: bool,
    now_ms: int,
) -> list[str]:
    attempt = _load_writable(db, attempt_id, now_ms)
    _require_in_progress(attempt)
    question = _find_question(attempt, question_id)
    session = _ensure_session(realtime, attempt, now_ms)

    qid = str(question.id)
    marked = list(session.get("questions_marked_for_review") or [])
    was_marked = qid in marked
    if is_marked and not was_marked:
        marked.append(qid)
    elif not is_marked and was_marked:
        marked.remove(qid)

    realtime.update(
        session_path(attempt.id),
        {"questions_marked_for_review": marked, "last_activity_ms": now_ms},
    )
    _log_event(
        realtime,
        attempt.id,
        "review_mark" if is_marked else "review_unmark",
        now_ms,
        question_id=qid,
        previous_value=was_marked,
        new_value=is_marked,
    )
    _confirm_still_active(db, realtime, attempt)
    return marked


def track_suspicious_activity(
    db: Session,
    realtime: RealtimeStore,
    attempt_id: uuid.UUID,
    activity_type: str,
    now_ms: int,
    detail: str | None = None,
) -> dict[str, Any]:
    """Count an integrity-relevant browser event and return the session counters."""
    if activity_type not in ACTIVITY_TYPES:
        raise InvalidOperationError(f"Unknown activity type: {activity_type}")
    attempt = _load_writable(db, attempt_id, now_ms)
    session = _ensure_session(realtime, attempt, now_ms)
    path = session_path(attempt.id)

    if activity_type in _COUNTER_FIELDS:
        session[_COUNTER_FIELDS[activity_type]] = realtime.increment(
            path, _COUNTER_FIELDS[activity_type]
        )
    elif activity_type == "keyboard_shortcut":
        shortcuts = list(session.get("keyboard_shortcuts") or [])
        shortcuts.append(detail or "unknown")
        session["keyboard_shortcuts"] = shortcuts
        realtime.update(path, {"keyboard_shortcuts": shortcuts})
    else:
        session["is_fullscreen"] = activity_type == "fullscreen_enter"
        realtime.update(path, {"is_fullscreen": session["is_fullscreen"]})

    _log_event(realtime, attempt.id, activity_type, now_ms, data={"detail": detail})
    if activity_type != "fullscreen_enter":
        if not guarded_update(
            db,
            attempt,
            ACTIVE_STATUSES,
            suspicious_activity_count=Attempt.suspicious_activity_count + 1,
        ):
            _raise_if_locked(attempt)
        logger.info("Suspicious activity on attempt %s: %s", attempt.id, activity_type)
    else:
        _confirm_still_active(db, realtime, attempt)

    return {
        "tab_switch_count": session.get("tab_switch_count", 0),
        "copy_paste_attempts": session.get("copy_paste_attempts", 0),
        "right_click_attempts": session.get("right_click_attempts", 0),
        "keyboard_shortcuts": session.get("keyboard_shortcuts", []),
        "is_fullscreen": session.get("is_fullscreen", True),
        "suspicious_activity_count": attempt.suspicious_activity_count,
    }


# ── Reads & lifecycle ─────────────────────────────────────────────────────────


def get_attempt_state(
    db: Session, realtime: RealtimeStore, attempt_id: uuid.UUID, now_ms: int
) -> AttemptState:
    """Durable attempt plus whatever the realtime store still has (for resume)."""
    attempt = get_attempt(db, attempt_id)
    session = None
    answers: dict[str, Any] = {}
    if attempt.status in ACTIVE_STATUSES:
        try:
            session = realtime.get(session_path(attempt.id))
            answers = realtime.get(answers_path(attempt.id)) or {}
        except RealtimeUnavailableError as e:
            logger.warning("Realtime read failed for attempt %s: %s", attempt.id, e)
    return AttemptState(
        attempt=attempt, time=calculate_time(attempt, now_ms), session=session, answers=answers
    )


def set_auto_submit_task(db: Session, attempt: Attempt, task_id: str) -> None:
    guarded_update(db, attempt, ACTIVE_STATUSES, auto_submit_task_id=task_id)


def abandon_attempt(
    db: Session, realtime: RealtimeStore, attempt_id: uuid.UUID, now_ms: int
) -> Attempt:
    """Give up an attempt without a submission. It still counts toward the limit."""
    attempt = get_attempt(db, attempt_id)
    if attempt.status == AttemptStatusEnum.ABANDONED:
        return attempt
    attempt = _load_writable(db, attempt_id, now_ms)

    calc = calculate_time(attempt, now_ms)
    if not guarded_update(
        db,
        attempt,
        ACTIVE_STATUSES,
        status=AttemptStatusEnum.ABANDONED,
        last_active_ms=now_ms,
        offline_ms=offline_ms_at(attempt, now_ms),
        disconnected_ms=None,
        time_spent=calc.time_spent,
        time_remaining=calc.time_remaining,
    ):
        _raise_if_locked(attempt)

    try:
        _log_event(realtime, attempt.id, "abandon", now_ms)
        archive_events(db, attempt.id, realtime.read_log(log_path(attempt.id)))
        db.commit()
    except RealtimeUnavailableError as e:
        logger.warning("Activity log lost for abandoned attempt %s: %s", attempt.id, e)
    archive_session(realtime, attempt, now_ms)
    logger.info("Attempt %s abandoned", attempt.id)
    return attempt
