"""
Per-request correlation and timing.

The request id comes from the caller's X-Request-ID when a proxy already set
one, so a trace keeps one id end to end.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from campus_market.core.logging import get_logger
from campus_market.core.metrics import record_http_request

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS = frozenset({"/health", "/metrics"})


def _route_template(request: Request) -> str:
    """`/api/v1/requests/{request_id}/respond` rather than the concrete path."""
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("request_failed", error=str(e), exc_info=True)
            raise
        finally:
            elapsed = time.perf_counter() - started
            record_http_request(request.method, _route_template(request), status_code, elapsed)

        duration_ms = round(elapsed * 1000, 2)
        if status_code >= 500:
            logger.warning("request_completed", status_code=status_code, duration_ms=duration_ms)
        elif request.url.path not in QUIET_PATHS:
            logger.info("request_completed", status_code=status_code, duration_ms=duration_ms)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
