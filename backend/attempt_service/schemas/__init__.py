"""Pydantic schemas: re‑exported for convenience."""

from attempt_service.schemas.common import ErrorResponse  # noqa: F401
from attempt_service.schemas.test import (  # noqa: F401
    QuestionDefinition,
    TestDefinition,
    TestRead,
    QuestionRead,
)
from attempt_service.schemas.attempt import (  # noqa: F401
    AttemptStartRequest,
    AttemptRead,
    AttemptInfoRead,
    AttemptSummaryRead,
    AttemptStateRead,
    TimeCalculationRead,
    AnswerSave,
    AnswerRead,
)
from attempt_service.schemas.submission import (  # noqa: F401
    SubmissionRead,
    SubmissionSummaryRead,
    EssayGradesUpdate,
)
from attempt_service.schemas.monitoring import MonitoringRead  # noqa: F401
