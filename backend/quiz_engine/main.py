"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from quiz_engine.api import (
    attempts_router,
    health_router,
    quizzes_router,
    users_router,
)
from quiz_engine.config import settings
from quiz_engine.core.errors import QuizEngineError
from quiz_engine.db.session import create_tables
from quiz_engine.schemas.common import ErrorResponse
from quiz_engine.services.scheduler import get_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Quiz engine starting…")
    if settings.DATABASE_CREATE_TABLES:
        create_tables()
    scheduler = get_scheduler()
    if settings.SCHEDULER_ENABLED:
        scheduler.bootstrap()
        scheduler.start()
    yield
    if scheduler.running:
        scheduler.stop()
    logger.info("✅ Quiz engine shut down")


app = FastAPI(
    title="Quiz Engine API",
    description="Quiz availability scheduling, attempt lifecycle and grading",
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

# ── Errors ────────────────────────────────────────────────────────────────────


@app.exception_handler(QuizEngineError)
async def quiz_engine_error_handler(request: Request, exc: QuizEngineError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    body = ErrorResponse(
        error_code=exc.error_code,
        message=exc.message,
        detail=exc.message,
        details=exc.details,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(quizzes_router, prefix="/api/quizzes", tags=["Quizzes"])
app.include_router(attempts_router, prefix="/api/attempts", tags=["Attempts"])


@app.get("/")
async def root():
    return {
        "name": "Quiz Engine API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
