"""SQLAlchemy ORM models for the attempt service.

Tables
------
- tests              – test definitions (live or flexible) owned by a teacher
- test_questions     – ordered MCQ / essay questions of a test
- attempts           – one row per (test, student, attempt number)
- submissions        – final immutable record, keyed by attempt id
- submission_answers – per‑question final answers inside a submission
- attempt_events     – append‑only archive of the realtime activity log

All attempt timing columns are integer epoch milliseconds (``*_ms``) observed
by the server; durations are whole seconds.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, attributes, mapped_column, relationship

from attempt_service.db.session import Base


# ── helpers ───────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


# ── Enums (stored as VARCHAR via SQLAlchemy Enum) ─────────────────────────────


class TestTypeEnum(str, enum.Enum):
    LIVE = "live"
    FLEXIBLE = "flexible"


class QuestionTypeEnum(str, enum.Enum):
    MCQ = "mcq"
    ESSAY = "essay"


class AttemptStatusEnum(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    ABANDONED = "abandoned"
    TERMINATED = "terminated"


class PassStatusEnum(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    PENDING_REVIEW = "pending_review"


ACTIVE_STATUSES = (
    AttemptStatusEnum.NOT_STARTED,
    AttemptStatusEnum.IN_PROGRESS,
    AttemptStatusEnum.PAUSED,
)
COMPLETED_STATUSES = (
    AttemptStatusEnum.SUBMITTED,
    AttemptStatusEnum.AUTO_SUBMITTED,
)
# Terminal statuses that produce a submission record.
FINAL_STATUSES = COMPLETED_STATUSES + (AttemptStatusEnum.TERMINATED,)


# ── Tests ─────────────────────────────────────────────────────────────────────


class Test(Base):
    __tablename__ = "tests"
    __test__ = False  # not a pytest test class

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    teacher_id: Mapped[str] = mapped_column(String(128), index=True)
    subject_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    class_ids: Mapped[list] = mapped_column(JSON, default=list)
    test_type: Mapped[TestTypeEnum] = mapped_column(
        Enum(TestTypeEnum, name="test_type_enum")
    )
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attempts_allowed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_marks: Mapped[float] = mapped_column(Float, default=0.0)
    passing_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)

    # live window
    scheduled_start_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    buffer_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    student_join_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    actual_end_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # flexible window
    available_from_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    available_to_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    questions: Mapped[list["TestQuestion"]] = relationship(
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="TestQuestion.position",
    )
    attempts: Mapped[list["Attempt"]] = relationship(back_populates="test")


class TestQuestion(Base):
    """A question inside a test, in display order."""

    __tablename__ = "test_questions"
    __test__ = False

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        Enum(QuestionTypeEnum, name="question_type_enum")
    )
    text: Mapped[str] = mapped_column(Text)
    marks: Mapped[float] = mapped_column(Float, default=1.0)
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    option_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    correct_option: Mapped[int | None] = mapped_column(Integer, nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    topic: Mapped[str | None] = mapped_column(String(200), nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String(20), nullable=True)

    test: Mapped["Test"] = relationship(back_populates="questions")


# ── Attempts ──────────────────────────────────────────────────────────────────


class Attempt(Base):
    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id"), index=True
    )
    student_id: Mapped[str] = mapped_column(String(128), index=True)
    student_name: Mapped[str] = mapped_column(String(255), default="")
    class_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[AttemptStatusEnum] = mapped_column(
        Enum(AttemptStatusEnum, name="attempt_status_enum"),
        default=AttemptStatusEnum.NOT_STARTED,
        index=True,
    )

    created_ms: Mapped[int] = mapped_column(BigInteger)
    started_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_active_ms: Mapped[int] = mapped_column(BigInteger)
    submitted_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    disconnected_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    offline_ms: Mapped[int] = mapped_column(BigInteger, default=0)

    total_time_allowed: Mapped[int] = mapped_column(Integer)  # seconds
    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    time_remaining: Mapped[int] = mapped_column(Integer, default=0)

    current_question_index: Mapped[int] = mapped_column(Integer, default=0)
    questions_attempted: Mapped[int] = mapped_column(Integer, default=0)
    suspicious_activity_count: Mapped[int] = mapped_column(Integer, default=0)
    disconnection_count: Mapped[int] = mapped_column(Integer, default=0)
    auto_submit_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # results, filled in by the finalizer
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    pass_status: Mapped[PassStatusEnum | None] = mapped_column(
        Enum(PassStatusEnum, name="pass_status_enum"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    test: Mapped["Test"] = relationship(back_populates="attempts")
    submission: Mapped["Submission | None"] = relationship(
        back_populates="attempt", uselist=False
    )
    events: Mapped[list["AttemptEvent"]] = relationship(
        back_populates="attempt", order_by="AttemptEvent.sequence"
    )

    __table_args__ = (
        UniqueConstraint(
            "test_id", "student_id", "attempt_number", name="uq_attempt_test_student_number"
        ),
    )

    @property
    def deadline_ms(self) -> int | None:
        if self.started_ms is None:
            return None
        return self.started_ms + self.total_time_allowed * 1000


class AttemptEvent(Base):
    """One entry of an attempt's activity log. Rows are insert‑only."""

    __tablename__ = "attempt_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id"), index=True
    )
    sequence: Mapped[int] = mapped_column(Integer)
    occurred_ms: Mapped[int] = mapped_column(BigInteger)
    event_type: Mapped[str] = mapped_column(String(40))
    question_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    previous_value: Mapped[object | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[object | None] = mapped_column(JSON, nullable=True)
    time_on_question: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    attempt: Mapped["Attempt"] = relationship(back_populates="events")

    __table_args__ = (
        UniqueConstraint("attempt_id", "sequence", name="uq_attempt_event_sequence"),
    )


# ── Submissions ───────────────────────────────────────────────────────────────


class Submission(Base):
    """Final record of an attempt. Primary key is the attempt id."""

    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id"), primary_key=True
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id"), index=True
    )
    student_id: Mapped[str] = mapped_column(String(128), index=True)
    student_name: Mapped[str] = mapped_column(String(255), default="")
    class_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer)
    test_type: Mapped[TestTypeEnum] = mapped_column(
        Enum(TestTypeEnum, name="test_type_enum")
    )
    status: Mapped[AttemptStatusEnum] = mapped_column(
        Enum(AttemptStatusEnum, name="attempt_status_enum")
    )

    started_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    submitted_ms: Mapped[int] = mapped_column(BigInteger)
    total_time_spent: Mapped[int] = mapped_column(Integer, default=0)
    offline_time: Mapped[int] = mapped_column(Integer, default=0)
    time_per_question: Mapped[dict] = mapped_column(JSON, default=dict)

    questions_attempted: Mapped[int] = mapped_column(Integer, default=0)
    questions_skipped: Mapped[int] = mapped_column(Integer, default=0)
    questions_reviewed: Mapped[int] = mapped_column(Integer, default=0)
    total_changes: Mapped[int] = mapped_column(Integer, default=0)

    auto_graded_score: Mapped[float] = mapped_column(Float, default=0.0)
    manual_grading_pending: Mapped[bool] = mapped_column(Boolean, default=False)
    total_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[float] = mapped_column(Float, default=0.0)
    pass_status: Mapped[PassStatusEnum] = mapped_column(
        Enum(PassStatusEnum, name="pass_status_enum")
    )

    integrity_report: Mapped[dict] = mapped_column(JSON, default=dict)
    is_degraded: Mapped[bool] = mapped_column(Boolean, default=False)

    teacher_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    attempt: Mapped["Attempt"] = relationship(back_populates="submission")
    answers: Mapped[list["SubmissionAnswer"]] = relationship(
        back_populates="submission",
        cascade="all, delete-orphan",
        order_by="SubmissionAnswer.position",
    )


class SubmissionAnswer(Base):
    """Final answer to one question within a submission."""

    __tablename__ = "submission_answers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    submission_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("submissions.id"), index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True))
    position: Mapped[int] = mapped_column(Integer, default=0)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        Enum(QuestionTypeEnum, name="question_type_enum")
    )
    question_text: Mapped[str] = mapped_column(Text)
    question_marks: Mapped[float] = mapped_column(Float, default=0.0)
    topic: Mapped[str | None] = mapped_column(String(200), nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String(20), nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    selected_option: Mapped[int | None] = mapped_column(Integer, nullable=True)
    selected_option_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    correct_option: Mapped[int | None] = mapped_column(Integer, nullable=True)
    text_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    word_count: Mapped[int] = mapped_column(Integer, default=0)

    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    change_count: Mapped[int] = mapped_column(Integer, default=0)
    was_reviewed: Mapped[bool] = mapped_column(Boolean, default=False)

    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    marks_awarded: Mapped[float | None] = mapped_column(Float, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    graded_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    submission: Mapped["Submission"] = relationship(back_populates="answers")


# ── Write guards ──────────────────────────────────────────────────────────────


@event.listens_for(AttemptEvent, "before_update")
def _reject_event_update(mapper, connection, target):  # noqa: ARG001
    raise ValueError("attempt_events is append-only")


@event.listens_for(Submission, "before_update")
def _reject_integrity_change(mapper, connection, target):  # noqa: ARG001
    if attributes.get_history(target, "integrity_report").has_changes():
        raise ValueError("integrity_report is immutable once recorded")
