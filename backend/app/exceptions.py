"""
LoveCakes Backend — Custom Exception Hierarchy
================================================

What:  Defines application-specific exceptions for different error scenarios.
How:   Each exception class carries a message, an optional context dict, a
       machine-readable `code` and the HTTP `status_code` it maps to.
       Global exception handlers (registered in main.py) turn them into the
       standard error envelope.
Who:   Raised by services, dependencies and the database gateway; caught by
       global handlers.

Exception Hierarchy:
    LoveCakesError (base)
    ├── ValidationError          → 400 VALIDATION_ERROR
    ├── UnauthorizedError        → 401 UNAUTHORIZED
    ├── NotFoundError            → 404 NOT_FOUND
    ├── DatabaseConnectionError  → 503 DATABASE_CONNECTION_ERROR
    ├── DatabaseRequestError     → 500 DATABASE_REQUEST_ERROR
    │   └── ResultShapeError     → 500 RESULT_SHAPE_ERROR
    └── ProcedureTimeoutError    → 504 DATABASE_TIMEOUT

    The gateway never recovers from these locally: it logs and re-raises.
    Task cancellation is not part of the hierarchy; asyncio.CancelledError
    propagates unchanged.
"""

from typing import Any, Dict, List, Mapping, Optional


class LoveCakesError(Exception):
    """
    Base exception for all LoveCakes application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, returned only where a handler
                  explicitly chooses to)
    """

    code: str = "INTERNAL_SERVER_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(LoveCakesError):
    """
    Raised when inbound request data fails schema validation.

    `errors` is the field-level failure list returned as `details`:
        [{"field": "body.price", "message": "Input should be greater than 0",
          "type": "greater_than"}]
    """

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Request validation failed",
        errors: Optional[List[Dict[str, Any]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.errors = errors or []


class UnauthorizedError(LoveCakesError):
    """Raised when a protected route is called without a usable token or identity."""

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(
        self,
        message: str = "No authentication token provided",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(LoveCakesError):
    """Raised when a route or resource does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseConnectionError(LoveCakesError):
    """
    Raised when the connection pool cannot be established.

    What:    Engine construction or the initial connectivity probe failed.
    HTTP:    503 Service Unavailable

    A failed construction is never cached: the next acquire() tries again.
    """

    code = "DATABASE_CONNECTION_ERROR"
    status_code = 503

    def __init__(
        self,
        message: str = "The database is currently unavailable. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseRequestError(LoveCakesError):
    """
    Raised when a stored procedure fails to execute or its result cannot be shaped.

    Attributes:
        procedure:   Name of the stored procedure as requested by the caller.
        parameters:  Bound parameters after redaction; only allow-listed names
                     keep their values.

    Security Note:
        The message returned to the client is always generic. The procedure
        and the redacted parameters are logged server-side only.
    """

    code = "DATABASE_REQUEST_ERROR"
    status_code = 500

    def __init__(
        self,
        procedure: str,
        parameters: Optional[Mapping[str, Any]] = None,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.procedure = procedure
        self.parameters = dict(parameters or {})
        ctx = context or {}
        ctx["procedure"] = procedure
        ctx["parameters"] = self.parameters
        super().__init__(message=message, context=ctx)


class ResultShapeError(DatabaseRequestError):
    """
    Raised when the rows a procedure returned do not fit the requested shape.

    When:    More result-set names were supplied than result sets came back.
    """

    code = "RESULT_SHAPE_ERROR"


class ProcedureTimeoutError(LoveCakesError):
    """
    Raised when an invocation exceeds its deadline.

    What:    Connection checkout plus execution took longer than `timeout`.
    HTTP:    504 Gateway Timeout
    """

    code = "DATABASE_TIMEOUT"
    status_code = 504

    def __init__(
        self,
        procedure: str,
        timeout: float,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.procedure = procedure
        self.timeout = timeout
        ctx = context or {}
        ctx["procedure"] = procedure
        ctx["timeout_seconds"] = timeout
        super().__init__(
            message=f"The database did not respond within {timeout:g} seconds.",
            context=ctx,
        )
