# src/api/app.py — v1
"""FastAPI application factory.

Error kinds are mapped to HTTP status codes here and nowhere else.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from galley.api.models import ErrorResponse
from galley.api.routes import router
from galley.core.errors import GalleyError
from galley.pipeline.context import ServiceContext
from galley.pipeline.dispatcher import JobDispatcher
from galley.version import __version__

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "unauthorized": 401,
    "forbidden": 403,
    "unknown_manuscript": 404,
    "unknown_report": 404,
    "unknown_agent_result": 404,
    "already_running": 409,
    "invalid_transition": 409,
    "spend_ceiling_reached": 402,
    "quota_exhausted": 429,
    "invalid_pipeline": 422,
}


def status_for(kind: str) -> int:
    return STATUS_BY_KIND.get(kind, 500)


def create_app(services: ServiceContext, dispatcher: JobDispatcher | None = None) -> FastAPI:
    """Build the HTTP app around an existing service context."""
    dispatcher = dispatcher or JobDispatcher(services)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        dispatcher.start()
        logger.info("galley API started")
        yield
        await dispatcher.shutdown(timeout=services.settings.supervisor_grace_s)
        logger.info("galley API stopped")

    app = FastAPI(title="galley", version=__version__, lifespan=lifespan)
    app.state.services = services
    app.state.dispatcher = dispatcher

    @app.exception_handler(GalleyError)
    async def galley_error_handler(request: Request, exc: GalleyError) -> JSONResponse:
        status = status_for(exc.kind)
        if status >= 500:
            logger.error("Unhandled %s on %s: %s", exc.kind, request.url.path, exc)
        body = ErrorResponse(error=exc.kind, message=str(exc), details=_jsonable(exc.details))
        return JSONResponse(status_code=status, content=body.model_dump(by_alias=True))

    app.include_router(router)
    return app


def _jsonable(details: dict) -> dict:
    return {k: v if isinstance(v, (str, int, float, bool, type(None))) else str(v)
            for k, v in details.items()}
