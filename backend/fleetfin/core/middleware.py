"""Application middleware: request correlation and logging."""

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bound_contextvars

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id(request: Request) -> str:
    """Return the correlation id of the current request, minting one if needed."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with a fresh request id and log it with timing information."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request_id = get_request_id(request)

        with bound_contextvars(request_id=request_id):
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
