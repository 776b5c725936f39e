"""Domain exceptions raised by the attempt services.

Policy rejections (attempt limit, closed window, unfinished attempt) are
*not* exceptions: they are returned as decisions with a human-readable
reason. The exceptions below cover missing records, writes against a
locked attempt, lost races and unavailable stores. ``main.py`` maps each
one to an HTTP status.
"""


class AttemptServiceError(Exception):
    """Base class for all attempt service errors."""

    error_code = "attempt_service_error"


class NotFoundError(AttemptServiceError):
    error_code = "not_found"


class AttemptLockedError(AttemptServiceError):
    """The attempt is in a terminal status and accepts no further writes."""

    error_code = "attempt_locked"


class AttemptExpiredError(AttemptLockedError):
    """The attempt's deadline has passed; it must be auto-submitted."""

    error_code = "attempt_expired"


class AttemptConflictError(AttemptServiceError):
    """A concurrent writer won (duplicate attempt number, abandoned attempt)."""

    error_code = "attempt_conflict"


class InvalidOperationError(AttemptServiceError):
    error_code = "invalid_operation"


class RealtimeUnavailableError(AttemptServiceError):
    """The realtime session store could not be reached."""

    error_code = "realtime_unavailable"
