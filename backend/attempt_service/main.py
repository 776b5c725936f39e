"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from attempt_service.config import settings
from attempt_service.api import (
    health_router,
    student_tests_router,
    attempts_router,
    teacher_router,
)
from attempt_service.schemas.common import ErrorResponse

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Attempt service starting…")
    if settings.DATABASE_AUTO_CREATE:
        from attempt_service.db import models  # noqa: F401  (register tables)
        from attempt_service.db.session import Base, get_engine

        Base.metadata.create_all(bind=get_engine())
        logger.info("Database tables ensured")
    yield
    logger.info("✅ Attempt service shut down")


app = FastAPI(
    title="Attempt Service API",
    description="Test attempts: eligibility, live sessions, submission and grading",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# ── Error handlers ────────────────────────────────────────────────────────────


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Durable store error on %s %s", request.method, request.url.path)
    body = ErrorResponse(
        error_code="store_unavailable",
        message="The attempt store is temporarily unavailable, please retry",
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump()
    )


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(student_tests_router, prefix="/api/student/tests", tags=["Student tests"])
app.include_router(attempts_router, prefix="/api/attempts", tags=["Attempts"])
app.include_router(teacher_router, prefix="/api/teacher", tags=["Teacher"])


@app.get("/")
async def root():
    return {
        "name": "Attempt Service API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
