from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from draftsync.config import AppConfig, load_config
from draftsync.db.base import build_engine, dispose_engine
from draftsync.db.migrations_runner import apply_migrations
from draftsync.http.problem import (
    handle_draftsync_error,
    handle_http_exception,
    handle_request_validation_error,
    handle_unexpected_error,
)
from draftsync.http.request_id import RequestIdMiddleware
from draftsync.logging_setup import configure_logging
from draftsync.logic.errors import DraftSyncError
from draftsync.routes import api_router

logger = logging.getLogger(__name__)


def _health_check(engine: Engine | None) -> dict:
    if engine is None:
        return {"status": "degraded", "db": False, "reason": "engine not initialised"}
    try:
        with engine.connect() as conn:
            conn.execute(sql_text("SELECT 1")).fetchone()
        return {"status": "ok", "db": True}
    except SQLAlchemyError as e:
        logger.error("Health DB check failed", exc_info=True)
        return {"status": "degraded", "db": False, "reason": str(e)}


def create_app(config: AppConfig | None = None, engine: Engine | None = None) -> FastAPI:
    """Build the FastAPI application.

    The connection pool is created when the application starts (unless an
    Engine is injected, as tests do) and drained when it shuts down.
    """
    configure_logging()
    cfg = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = getattr(app.state, "engine", None) is None
        if owned:
            app.state.engine = build_engine(cfg.database.dsn)
        if cfg.database.auto_apply_migrations:
            try:
                apply_migrations(app.state.engine)
            except SQLAlchemyError:
                logger.error("Failed to apply migrations at startup", exc_info=True)
                raise
        else:
            logger.info("AUTO_APPLY_MIGRATIONS disabled; skipping migrations at startup")
        try:
            yield
        finally:
            if owned:
                dispose_engine(app.state.engine)
                app.state.engine = None

    app = FastAPI(title="Draft Response Synchronization Service", lifespan=lifespan)
    app.state.config = cfg
    app.state.engine = engine

    app.add_exception_handler(DraftSyncError, handle_draftsync_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors.allow_origins,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Idempotency-Key", "X-Request-Id"],
        expose_headers=["X-Request-Id", "Retry-After"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    def health(request: Request) -> dict:
        return _health_check(getattr(request.app.state, "engine", None))

    return app


# Intentionally do not instantiate the app at import time to prevent side effects.
