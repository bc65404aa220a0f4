"""CORS and request-context middleware."""

import logging
import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from rbac_engine.core.config import settings

logger = logging.getLogger("rbac_engine.access")

ANONYMOUS = "-"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id and write one access line per request.

    The line names the acting principal, which ``get_principal_id`` stores on
    ``request.state`` once the bearer token is read. Requests that never reach
    principal extraction are logged as ``-``.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        request.state.principal_id = ANONYMOUS
        started = time.perf_counter()

        response: Response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-Id"] = request.state.request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s principal=%s %sms [%s]",
            request.method,
            request.url.path,
            response.status_code,
            request.state.principal_id,
            elapsed_ms,
            request.state.request_id,
        )
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)
