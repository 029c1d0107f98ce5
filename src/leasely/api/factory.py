"""FastAPI application factory.

The same image runs as two Cloud Run services: ``public`` serves health only,
``worker`` additionally exposes the settlement task endpoints the scheduler
calls. APP_ROLE picks which.
"""

import os
from typing import Literal, get_args

from fastapi import FastAPI, Request, Response

from leasely.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from leasely.observability.logging import get_logger

from .routers import public, worker
from .routes import tasks_settlement

logger = get_logger(__name__)

AppRole = Literal["public", "worker"]


def _resolve_role(role: str | None) -> AppRole:
    value = role if role is not None else os.environ.get("APP_ROLE", "public")
    if value not in get_args(AppRole):
        raise ValueError(f"Unknown APP_ROLE {value!r}: expected one of {get_args(AppRole)}")
    return value  # type: ignore[return-value]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Build the app for ``role`` (APP_ROLE when None, default "public").

    Raises:
        ValueError: Unknown role.
    """
    resolved = _resolve_role(role)

    app = FastAPI(title=f"Leasely settlement ({resolved})", docs_url=None, redoc_url=None)
    app.state.role = resolved

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(public.router)
    if resolved == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_settlement.router)

    logger.info("app created", extra={"extra_fields": {"role": resolved}})
    return app
