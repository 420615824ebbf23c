import asyncio
import logging
import os
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine, make_url

from billpay.config import Settings, settings as default_settings
from billpay.db import Base, make_engine, make_session_factory
from billpay.errors import BillPayError
from billpay.logging import configure_logging
from billpay.metrics import metrics_router
from billpay.middleware.request_logging import RequestLogMiddleware
from billpay.routers import billpay_rules, health, payees
from billpay.services.scheduler import build_scheduler

import billpay.orm_models  # noqa: F401  (register tables on Base.metadata)

logger = logging.getLogger("billpay")


def _create_tables_dev(engine: Engine) -> None:
    """SQLite databases are created in place; Postgres goes through alembic."""
    url = make_url(str(engine.url))
    if url.database and url.database != ":memory:":
        folder = os.path.dirname(url.database)
        if folder:
            os.makedirs(folder, exist_ok=True)
    Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    s: Settings = app.state.settings
    if s.is_sqlite:
        _create_tables_dev(app.state.engine)
    app.state._bg_tasks = []
    if s.RECONCILE_ENABLED:
        from billpay.services.reconcile import reconcile_loop

        t = asyncio.create_task(
            reconcile_loop(app.state.SessionLocal, app.state.scheduler, s.RECONCILE_INTERVAL_S)
        )
        app.state._bg_tasks.append(t)
    try:
        yield
    finally:
        for t in app.state._bg_tasks:
            t.cancel()
        if app.state._bg_tasks:
            await asyncio.gather(*app.state._bg_tasks, return_exceptions=True)
        # In-memory SQLite lives only as long as its pool
        if ":memory:" not in str(app.state.engine.url):
            app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    s = settings or default_settings
    configure_logging(s.LOG_LEVEL, s.LOG_JSON or s.is_prod)

    app = FastAPI(title="Bill Pay", version="0.1.0", lifespan=lifespan)
    app.state.settings = s
    app.state.engine = engine or make_engine(s.DATABASE_URL)
    app.state.SessionLocal = make_session_factory(app.state.engine)
    app.state.scheduler = build_scheduler(s.scheduler_backend, app.state.engine)
    logger.info("scheduler backend: %s", s.scheduler_backend)

    @app.exception_handler(BillPayError)
    async def billpay_error_handler(request: Request, exc: BillPayError):
        return JSONResponse(status_code=exc.status_code, content=exc.body())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Log unhandled exceptions with full traceback."""
        logger.error(
            "Unhandled exception in API request %s %s:\n%s",
            request.method,
            request.url.path,
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
        return JSONResponse(
            status_code=500,
            content={"error": {"message": "Internal server error"}},
        )

    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(health.router)
    app.include_router(metrics_router)
    app.include_router(billpay_rules.router)
    app.include_router(payees.router)
    return app


app = create_app()
