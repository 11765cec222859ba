# src/CMS/main.py
from __future__ import annotations

import asyncio
import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

from asyncpg.exceptions import (
    CheckViolationError,
    ForeignKeyViolationError,
    NotNullViolationError,
    UniqueViolationError,
)
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError

from CMS.api.routers.auth_flow import router as auth_router
from CMS.api.routers.conferences import router as conferences_router
from CMS.api.routers.health import router as health_router
from CMS.api.routers.organizer import router as organizer_router
from CMS.api.routers.public import router as public_router
from CMS.api.routers.reviews import router as reviews_router
from CMS.api.routers.submissions import router as submissions_router
from CMS.core.config import settings
from CMS.core.errors import CMSError
from CMS.db.session import dispose_engine, get_sessionmaker
from CMS.services.email.service import EmailService
from CMS.services.outbox import OutboxDispatcher
from CMS.services.scheduler import build_scheduler
from CMS.services.storage import LocalStorage, build_storage


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(process)d %(module)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "":               {"handlers": ["console"], "level": "INFO"},
        "uvicorn":        {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.error":  {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "startup":        {"handlers": ["console"], "level": "DEBUG", "propagate": False},
    },
}

log = logging.getLogger("CMS.main")


def _integrity_status(exc: IntegrityError) -> tuple[int, str]:
    """
    Map DB integrity errors to clear 4xx responses instead of 500.
    - Unique constraint -> 409 Conflict
    - Not-null / FK / Check -> 422 Unprocessable Entity
    - Otherwise -> 400 Bad Request
    """
    orig = getattr(exc, "orig", None)
    cause = getattr(orig, "__cause__", None)
    if cause is not None:
        if isinstance(cause, UniqueViolationError):
            return 409, "Unique constraint violation"
        if isinstance(cause, ForeignKeyViolationError):
            return 422, "Foreign key constraint failed"
        if isinstance(cause, NotNullViolationError):
            return 422, "Missing required field (NOT NULL violation)"
        if isinstance(cause, CheckViolationError):
            return 422, "Check constraint failed"

    # Generic string heuristics (works across DBs/drivers)
    low = str(orig or exc).lower()
    if "unique constraint" in low or "duplicate key" in low:
        return 409, "Unique constraint violation"
    if "foreign key" in low:
        return 422, "Foreign key constraint failed"
    if "not null" in low or "null value in column" in low:
        return 422, "Missing required field (NOT NULL violation)"
    if "check constraint" in low:
        return 422, "Check constraint failed"
    return 400, "Integrity error"


def create_app(*, start_background: bool | None = None, configure_logging: bool = True) -> FastAPI:
    if configure_logging:
        logging.config.dictConfig(LOGGING)

    background = settings.SCHEDULER_ENABLED or settings.OUTBOX_ENABLED
    if start_background is not None:
        background = start_background

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown: background scheduler and outbox dispatcher."""
        startup = logging.getLogger("startup")
        startup.info(
            "[startup] mounted routes: %s",
            sorted(r.path for r in app.routes if isinstance(r, APIRoute)),
        )

        scheduler = None
        dispatcher_task = None
        if background:
            sessionmaker = get_sessionmaker()
            if settings.SCHEDULER_ENABLED:
                scheduler = build_scheduler(sessionmaker, settings)
                scheduler.start()
            if settings.OUTBOX_ENABLED:
                dispatcher = OutboxDispatcher(
                    sessionmaker,
                    EmailService(settings.email_config()),
                    max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
                    backoff_seconds=settings.OUTBOX_BACKOFF_SECONDS,
                )
                dispatcher_task = asyncio.create_task(
                    dispatcher.run_forever(settings.OUTBOX_POLL_SECONDS, settings.OUTBOX_BATCH_SIZE),
                    name="cms-outbox",
                )
        app.state.scheduler = scheduler

        yield

        # ---------------- SHUTDOWN ----------------
        if scheduler is not None:
            await scheduler.stop()
        if dispatcher_task is not None:
            dispatcher_task.cancel()
            try:
                await dispatcher_task
            except asyncio.CancelledError:
                pass
        await dispose_engine()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    @app.exception_handler(CMSError)
    async def cms_error_handler(request: Request, exc: CMSError):
        level = logging.WARNING if exc.status_code >= 500 else logging.INFO
        log.log(level, "%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.to_dict())
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        status_code, detail = _integrity_status(exc)
        # Log once with context; don't leak sensitive values
        log.warning("IntegrityError on %s %s -> %s: %s",
                    request.method, request.url.path, status_code, getattr(exc, "orig", exc))
        return JSONResponse(status_code=status_code, content={"detail": detail})

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(o).rstrip("/") for o in settings.cors_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health_router)
    app.include_router(public_router)
    app.include_router(auth_router)
    app.include_router(conferences_router)
    app.include_router(submissions_router)
    app.include_router(reviews_router)
    app.include_router(organizer_router)

    storage = build_storage(settings)
    app.state.storage = storage
    if isinstance(storage, LocalStorage):
        Path(storage.root).mkdir(parents=True, exist_ok=True)
        app.mount("/uploads", StaticFiles(directory=str(storage.root)), name="uploads")

    return app
