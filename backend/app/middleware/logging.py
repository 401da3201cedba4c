"""
LoveCakes Backend — Request Logging Middleware
================================================

What:  One access log line per HTTP request.
How:   Times the request from middleware entry to response and logs the
       outcome at a level picked from the status code. A request whose
       handler raised past the exception handlers is logged as 500 before
       the exception continues to ServerErrorMiddleware.
When:  After RequestIDMiddleware (uses request ID for correlation).

Logged:       method, path, status, duration, client IP, request ID
Never logged: request bodies, query strings, Authorization headers
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.request_id import request_id_var

logger = logging.getLogger("lovecakes.access")

# Probed every few seconds by orchestrators
QUIET_PATHS = frozenset({"/health"})


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log keyed by request ID; /health is not logged."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._log(request, 500, started)
            raise

        self._log(request, response.status_code, started)
        return response

    @staticmethod
    def _log(request: Request, status: int, started: float) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        rid = request_id_var.get("")
        client_ip = request.client.host if request.client else "unknown"
        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            request.url.path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
