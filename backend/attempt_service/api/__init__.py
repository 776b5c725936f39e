"""API route package: imports all routers for main.py."""

from attempt_service.api.health import router as health_router  # noqa: F401
from attempt_service.api.student_tests import router as student_tests_router  # noqa: F401
from attempt_service.api.attempts import router as attempts_router  # noqa: F401
from attempt_service.api.teacher import router as teacher_router  # noqa: F401
