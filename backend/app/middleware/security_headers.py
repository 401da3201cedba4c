"""
LoveCakes Backend — Security Headers Middleware
=================================================

What:  Adds a fixed set of defensive HTTP response headers to every response.
How:   Sets each header only when the route has not set it already, so a
       handler can override a value (e.g. a relaxed Cache-Control).

Headers:
    X-Content-Type-Options: nosniff
    X-Frame-Options: SAMEORIGIN
    Referrer-Policy: no-referrer
    Cross-Origin-Opener-Policy: same-origin
    Cross-Origin-Resource-Policy: same-origin
    X-DNS-Prefetch-Control: off
    Strict-Transport-Security: max-age=15552000; includeSubDomains  (production only)
"""

from typing import Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

DEFAULT_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}

HSTS_HEADER = ("Strict-Transport-Security", "max-age=15552000; includeSubDomains")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Args:
        hsts: Also send Strict-Transport-Security. Enabled outside development,
              where the service sits behind TLS termination.
    """

    def __init__(self, app, hsts: bool = False, **kwargs):
        super().__init__(app, **kwargs)
        self._headers = dict(DEFAULT_HEADERS)
        if hsts:
            self._headers[HSTS_HEADER[0]] = HSTS_HEADER[1]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        for name, value in self._headers.items():
            if name not in response.headers:
                response.headers[name] = value
        return response
