"""
FastAPI application factory
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import sessionmaker
from starlette.middleware.sessions import SessionMiddleware

from noticehub.api.v1 import admin, me, public, push
from noticehub.application.scheduler import start_scheduler, shutdown_scheduler
from noticehub.config import Settings, get_settings
from noticehub.infrastructure.db.session import (
    check_db_connection, create_db_engine, create_session_factory,
)

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, session_factory: sessionmaker | None = None) -> FastAPI:
    """
    Application factory

    The storage handle is built here (or passed in by tests) and kept on
    app.state; routes reach it through noticehub.api.deps.get_db.
    """
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.scheduler = None
        if settings.SCHEDULER_ENABLED:
            app.state.scheduler = start_scheduler(session_factory, settings)
        try:
            yield
        finally:
            shutdown_scheduler(app.state.scheduler)

    app = FastAPI(
        title="NoticeHub",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory

    # Middleware
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY
    )

    # Routers
    app.include_router(public.router)
    app.include_router(me.router)
    app.include_router(push.router)
    app.include_router(admin.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready(request: Request):
        """Readiness check endpoint (checks the database)"""
        db = request.app.state.session_factory()
        try:
            check_db_connection(db)
        finally:
            db.close()
        return "ok"

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "noticehub.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
    )
