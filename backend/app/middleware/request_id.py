"""
LoveCakes Backend — Request ID Middleware
==========================================

What:  Assigns a correlation ID to each request and echoes it back in the
       X-Request-ID response header.
How:   Reuses the client's X-Request-ID when present, otherwise generates a
       short UUID; stores it in a ContextVar (for loggers and exception
       handlers) and in request.state (for route handlers).
When:  Runs before request logging so every access log line carries the ID.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_REQUEST_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware that assigns a unique ID to each request for tracing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()[:MAX_REQUEST_ID_LENGTH]
        if not rid:
            rid = str(uuid.uuid4())[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
