"""
LoveCakes Backend — Response Envelope Schemas
===============================================

What:  The uniform wrapper used for every HTTP response, plus the health
       payload.
How:   success_response()/error_response() build plain dicts for
       JSONResponse; the Pydantic models document the same shapes in OpenAPI.

Envelope shapes:
    Success: {"success": true,  "data": {...},                              "timestamp": "..."}
    Error:   {"success": false, "error": {"code", "message", "details"?},   "timestamp": "..."}

    timestamp is ISO 8601 in UTC with millisecond precision
    (e.g. "2024-01-15T12:00:00.000Z").
"""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, TypeVar

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

T = TypeVar("T")


def utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def success_response(data: Any) -> Dict[str, Any]:
    """Wrap `data` in the success envelope. Decimal/datetime values are JSON-encoded."""
    return {
        "success": True,
        "data": jsonable_encoder(data),
        "timestamp": utc_timestamp(),
    }


def error_response(
    message: str,
    code: str = "ERROR",
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Build the error envelope; `details` is omitted when None."""
    error: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = jsonable_encoder(details)
    return {
        "success": False,
        "error": error,
        "timestamp": utc_timestamp(),
    }


# ══════════════════════════════════════════════════════════════════════════
# OpenAPI Models
# ══════════════════════════════════════════════════════════════════════════


class SuccessEnvelope(BaseModel, Generic[T]):
    success: bool = Field(default=True)
    data: T
    timestamp: str = Field(description="Response time (UTC ISO 8601)")


class ErrorBody(BaseModel):
    code: str = Field(description="Machine-readable error code, e.g. VALIDATION_ERROR")
    message: str = Field(description="Human-readable error description")
    details: Optional[Any] = Field(
        default=None,
        description="Field-level failures, or the stack trace in development mode",
    )


class ErrorEnvelope(BaseModel):
    """
    Example:
        {
            "success": false,
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": [{"field": "body.price", "message": "...", "type": "greater_than"}]
            },
            "timestamp": "2024-01-15T12:00:00.000Z"
        }
    """

    success: bool = Field(default=False)
    error: ErrorBody
    timestamp: str


class HealthResponse(BaseModel):
    """
    What:  Health check payload returned in the `data` field of GET /health.

    database:
        connected        pool exists and answered SELECT 1
        disconnected     the probe failed
        not_initialized  pool has not been built yet (lazy, first request builds it)
    """

    status: str = Field(description="Overall service status: healthy, degraded")
    service: str = Field(description="Service name")
    version: str = Field(description="Application version")
    database: str = Field(description="Database status: connected, disconnected, not_initialized")
    uptime_seconds: float = Field(description="Seconds since service started")
