# Middleware package init
"""
LoveCakes Backend — Middleware Package
=======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [Security Headers] → [GZip] → [CORS] → Route

    Request ID runs first so the access log line and any error handler can
    read the correlation ID. The order is reversed for responses, so the
    logged status and duration are the final ones.

Dependencies (per-route, not middleware):
    auth.require_token   → internal router guard (token presence)
    auth.get_credential  → authenticated identity for CRUD handlers
"""
