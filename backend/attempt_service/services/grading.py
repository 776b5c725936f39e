"""Scoring for finalized attempts.

MCQ questions are graded automatically against the stored correct option.
A selection may arrive as an option index (``2``), a digit string
(``"2"``), a stored option id (``"opt_c"``) or a letter (``"C"``); all of
them are resolved to an index once, when the answer is saved.

Essay questions are never auto-graded: an answered essay puts the
submission into ``pending_review`` until a teacher awards marks with
:func:`grade_essays`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy.orm import Session

from attempt_service.config import settings
from attempt_service.db.models import (
    PassStatusEnum,
    QuestionTypeEnum,
    Submission,
    TestQuestion,
)
from attempt_service.services.errors import InvalidOperationError, NotFoundError

if TYPE_CHECKING:
    from attempt_service.schemas.submission import EssayGrade

logger = logging.getLogger(__name__)

_LETTERS = "ABCDEFGHIJ"


# ── Option resolution ─────────────────────────────────────────────────────────


def resolve_selected_option(question: TestQuestion, selected: Any) -> int | None:
    """Map a client selection onto an option index, or None if it matches nothing."""
    options = question.options or []
    if isinstance(selected, bool) or selected is None:
        return None
    if isinstance(selected, int):
        return selected if 0 <= selected < len(options) else None

    text = str(selected).strip()
    if not text:
        return None
    if text.isdigit():
        return resolve_selected_option(question, int(text))

    option_ids = question.option_ids or []
    if text in option_ids:
        return option_ids.index(text)

    if len(text) == 1 and text.upper() in _LETTERS:
        index = _LETTERS.index(text.upper())
        return index if index < len(options) else None
    return None


def word_count(text: str | None) -> int:
    return len(text.split()) if text else 0


def is_answered(question_type: QuestionTypeEnum, answer: dict[str, Any] | None) -> bool:
    if not answer:
        return False
    if question_type == QuestionTypeEnum.MCQ:
        return answer.get("selected_option") is not None
    return bool((answer.get("text_content") or "").strip())


# ── Auto grading ──────────────────────────────────────────────────────────────


@dataclass
class GradedAnswer:
    question_id: uuid.UUID
    position: int
    question_type: QuestionTypeEnum
    question_text: str
    question_marks: float
    topic: str | None = None
    difficulty: str | None = None
    explanation: str | None = None
    selected_option: int | None = None
    selected_option_text: str | None = None
    correct_option: int | None = None
    text_content: str | None = None
    word_count: int = 0
    time_spent: int = 0
    change_count: int = 0
    was_reviewed: bool = False
    is_correct: bool | None = None
    marks_awarded: float | None = None


@dataclass
class GradingResult:
    answers: list[GradedAnswer] = field(default_factory=list)
    auto_graded_score: float = 0.0
    manual_grading_pending: bool = False
    questions_attempted: int = 0
    questions_skipped: int = 0
    total_changes: int = 0


def grade_mcq(question: TestQuestion, selected_option: int | None) -> tuple[bool, float]:
    """Return (is_correct, marks) for one multiple-choice selection."""
    if selected_option is None or question.correct_option is None:
        return False, 0.0
    correct = selected_option == question.correct_option
    return correct, float(question.marks) if correct else 0.0


def score_answers(
    questions: Iterable[TestQuestion],
    answers: dict[str, dict[str, Any]],
    time_per_question: dict[str, Any] | None = None,
    marked_for_review: Iterable[str] = (),
) -> GradingResult:
    """Grade every question of a test against the latest saved answers."""
    time_per_question = time_per_question or {}
    marked = set(marked_for_review)
    result = GradingResult()

    for question in questions:
        qid = str(question.id)
        answer = answers.get(qid) or {}
        answered = is_answered(question.question_type, answer)
        graded = GradedAnswer(
            question_id=question.id,
            position=question.position,
            question_type=question.question_type,
            question_text=question.text,
            question_marks=float(question.marks),
            topic=question.topic,
            difficulty=question.difficulty,
            explanation=question.explanation,
            time_spent=int(answer.get("time_spent") or time_per_question.get(qid) or 0),
            change_count=int(answer.get("change_count") or 0),
            was_reviewed=qid in marked,
        )
        result.total_changes += graded.change_count

        if question.question_type == QuestionTypeEnum.MCQ:
            selected = answer.get("selected_option")
            options = question.options or []
            graded.selected_option = selected
            graded.correct_option = question.correct_option
            if selected is not None and 0 <= selected < len(options):
                graded.selected_option_text = str(options[selected])
            graded.is_correct, marks = grade_mcq(question, selected)
            graded.marks_awarded = marks
            result.auto_graded_score += marks
        else:
            text = answer.get("text_content") or ""
            graded.text_content = text
            graded.word_count = word_count(text)
            if answered:
                result.manual_grading_pending = True
            else:
                # Nothing to review for a blank essay.
                graded.marks_awarded = 0.0

        if answered:
            result.questions_attempted += 1
        else:
            result.questions_skipped += 1
        result.answers.append(graded)

    return result


# ── Percentages & pass status ─────────────────────────────────────────────────


def percentage_of(score: float, max_score: float) -> float:
    if not max_score:
        return 0.0
    return round(score / max_score * 100, 2)


def pass_status_for(
    percentage: float, manual_grading_pending: bool, passing_percentage: float | None = None
) -> PassStatusEnum:
    if manual_grading_pending:
        return PassStatusEnum.PENDING_REVIEW
    threshold = settings.PASSING_PERCENTAGE if passing_percentage is None else passing_percentage
    return PassStatusEnum.PASSED if percentage >= threshold else PassStatusEnum.FAILED


# ── Manual essay grading ──────────────────────────────────────────────────────


def grade_essays(
    db: Session,
    attempt_id: uuid.UUID,
    grades: Iterable["EssayGrade"],
    grader_id: str,
    feedback: str | None = None,
) -> Submission:
    """Record teacher marks for essay answers and settle the final score.

    The total score and pass status are only set once every answered essay
    has marks; until then the submission stays ``pending_review``.
    """
    submission = db.query(Submission).filter(Submission.id == attempt_id).first()
    if submission is None:
        raise NotFoundError("Submission not found")

    by_question = {answer.question_id: answer for answer in submission.answers}
    now = datetime.now(timezone.utc)
    for grade in grades:
        answer = by_question.get(grade.question_id)
        if answer is None:
            raise NotFoundError(f"Question {grade.question_id} is not part of this submission")
        if answer.question_type != QuestionTypeEnum.ESSAY:
            raise InvalidOperationError("Only essay answers can be graded manually")
        if not 0 <= grade.marks_awarded <= answer.question_marks:
            raise InvalidOperationError(
                f"Marks must be between 0 and {answer.question_marks:g}"
            )
        answer.marks_awarded = float(grade.marks_awarded)
        answer.feedback = grade.feedback
        answer.graded_by = grader_id
        answer.graded_at = now

    essays = [a for a in submission.answers if a.question_type == QuestionTypeEnum.ESSAY]
    pending = any(a.marks_awarded is None for a in essays)
    submission.manual_grading_pending = pending
    if pending:
        submission.total_score = None
    else:
        essay_total = sum(a.marks_awarded or 0.0 for a in essays)
        submission.total_score = submission.auto_graded_score + essay_total
        submission.percentage = percentage_of(submission.total_score, submission.max_score)

    test = submission.attempt.test
    submission.pass_status = pass_status_for(
        submission.percentage, pending, test.passing_percentage
    )
    if feedback is not None:
        submission.teacher_feedback = feedback
    submission.reviewed_by = grader_id
    submission.reviewed_at = now

    attempt = submission.attempt
    attempt.score = submission.total_score
    attempt.percentage = submission.percentage
    attempt.pass_status = submission.pass_status

    db.commit()
    db.refresh(submission)
    logger.info(
        "Essay grades recorded for %s by %s (pending=%s, total=%s)",
        attempt_id,
        grader_id,
        pending,
        submission.total_score,
    )
    return submission
