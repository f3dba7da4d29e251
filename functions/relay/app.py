"""
FastAPI application entry point for the relay service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.config import Settings, get_settings
from relay.dependencies import Clients, build_clients
from relay.jobs import register_maintenance_jobs
from relay.routes import router
from relay.scheduler import JobScheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(name)s %(levelname)s %(asctime)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    return f"{'.'.join(location)}: {message}" if location else message


def install_error_handlers(app: FastAPI) -> None:
    """Render every error as `{"error": message}`."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    settings: Optional[Settings] = None, clients: Optional[Clients] = None
) -> FastAPI:
    settings = settings or get_settings()
    clients = clients or build_clients(settings)

    scheduler = JobScheduler()
    register_maintenance_jobs(
        scheduler, store=clients.store, push=clients.push, settings=settings
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if settings.scheduler_enabled:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler.running:
                scheduler.shutdown(wait=False)

    app = FastAPI(title="Relay", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.clients = clients
    app.state.scheduler = scheduler
    install_error_handlers(app)
    app.include_router(router)
    return app
