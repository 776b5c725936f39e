"""FastAPI dependencies shared across routes."""

import logging
from typing import Literal

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ValidationError

from attempt_service.core.security import decode_access_token
from attempt_service.services.errors import (
    AttemptConflictError,
    AttemptLockedError,
    AttemptServiceError,
    InvalidOperationError,
    NotFoundError,
    RealtimeUnavailableError,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


class Identity(BaseModel):
    """Verified caller. ``uid`` is opaque; ``profile_id`` links to a teacher record."""

    uid: str
    role: Literal["student", "teacher", "admin"]
    profile_id: str | None = None

    @property
    def teacher_id(self) -> str:
        return self.profile_id or self.uid


def get_current_identity(token: str = Depends(oauth2_scheme)) -> Identity:
    """Decode JWT and return the caller identity, or 401."""
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return Identity(
            uid=payload.get("sub"),
            role=payload.get("role", "student"),
            profile_id=payload.get("profile_id"),
        )
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload"
        )


def require_student(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Raise 403 unless the caller is a student."""
    if identity.role != "student":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Student access required"
        )
    return identity


def require_teacher(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Raise 403 unless the caller is a teacher or an admin."""
    if identity.role not in ("teacher", "admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Teacher access required"
        )
    return identity


_STATUS_FOR_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AttemptLockedError, status.HTTP_409_CONFLICT),
    (AttemptConflictError, status.HTTP_409_CONFLICT),
    (InvalidOperationError, status.HTTP_400_BAD_REQUEST),
    (RealtimeUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: AttemptServiceError) -> HTTPException:
    """Translate a domain exception into the matching HTTPException."""
    for error_type, status_code in _STATUS_FOR_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error("Unmapped attempt service error: %r", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error"
    )
