"""
cluster_bootstrap.observability.middleware

Request logging for the status API.

Responsibilities:
- Reuse the caller's `x-request-id` or mint one, and echo it on the response.
- Bind request metadata into structlog contextvars for the handler's log lines.
- Log one `request_finished` line per request with status and latency.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cluster_bootstrap.observability.logging import get_logger

log = get_logger(__name__)

REQUEST_ID_HEADER = "x-request-id"
_QUIET_PATHS = frozenset({"/healthz", "/readyz"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)
            if request.url.path not in _QUIET_PATHS:
                log.info(
                    "request_finished",
                    status_code=response.status_code,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
