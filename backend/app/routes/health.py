"""
LoveCakes Backend — Health Check Route
========================================

What:  Unversioned health endpoint for container probes and load balancers.
How:   Reports process uptime and the state of the database pool. A cold
       pool is reported as not_initialized rather than built by the probe,
       unless HEALTH_CHECK_DATABASE is enabled.

Status levels:
    healthy:   pool connected, or not built yet (it is built on first use)
    degraded:  the pool exists (or was asked to be built) but SELECT 1 failed
"""

import logging
import time

from fastapi import APIRouter, Request

from app import SERVICE_NAME, __version__
from app.config import Settings
from app.database import DatabasePool
from app.exceptions import DatabaseConnectionError
from app.schemas.envelope import HealthResponse, SuccessEnvelope, success_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=SuccessEnvelope[HealthResponse],
    summary="Service health check",
)
async def health_check(request: Request) -> dict:
    """Return service status, version, uptime and database connectivity."""
    config: Settings = request.app.state.settings
    pool: DatabasePool = request.app.state.db_pool
    database = "not_initialized"
    overall = "healthy"

    if pool.is_initialized or config.health_check_database:
        try:
            await pool.ping()
            database = "connected"
        except DatabaseConnectionError:
            # acquire() already logged the failure
            database = "disconnected"
            overall = "degraded"
        except Exception as e:
            database = "disconnected"
            overall = "degraded"
            logger.warning("Health check: database unreachable: %s", str(e))

    return success_response(
        HealthResponse(
            status=overall,
            service=SERVICE_NAME,
            version=__version__,
            database=database,
            uptime_seconds=round(time.time() - _start_time, 2),
        )
    )
