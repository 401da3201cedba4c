# Routes package init
"""
LoveCakes Backend — API Routes Package
========================================

What:  HTTP route handlers that accept requests and return enveloped responses.

Route Inventory:
    - health.py:  GET /health               (service health, unversioned)
    - v1.py:      /api/v1/external/*        (public routers)
                  /api/v1/internal/*        (bearer-token routers)

Design Principle:
    Routes are THIN: they validate input (CrudController), call the
    ProcedureGateway, and wrap `result.data` with success_response().
    Errors are raised, never formatted here; main.py's handlers own the
    error envelope.
"""
