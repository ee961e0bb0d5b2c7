"""Request-id propagation for the context API.

Callers that already carry an ``X-Request-ID`` (the chat frontend, a gateway)
keep it, so one id follows a chat turn across services. The id is bound into
structlog's contextvars; the orchestrator adds ``turn_id`` on top of it.
"""

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
            logger.info(
                "api.request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
