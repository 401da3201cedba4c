"""
LoveCakes Backend — Versioned API Routers (v1)
================================================

What:  Mount points for the public and authenticated halves of the API.
How:   Both routers are included under /api/v1:

           /api/v1/external/...   public, no authentication
           /api/v1/internal/...   every route requires a bearer token

       Feature routers (product, order, ...) attach themselves to
       `external_router` or `internal_router`; no feature routes exist yet.
"""

from fastapi import APIRouter, Depends

from app.middleware.auth import require_token
from app.schemas.envelope import ErrorEnvelope

API_VERSION = "v1"

external_router = APIRouter(prefix="/external", tags=["External"])

internal_router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(require_token)],
    responses={401: {"description": "Missing bearer token", "model": ErrorEnvelope}},
)

router = APIRouter(prefix=f"/api/{API_VERSION}")
router.include_router(external_router)
router.include_router(internal_router)
