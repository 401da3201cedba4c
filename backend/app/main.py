"""
LoveCakes Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance
       that owns its DatabasePool and ProcedureGateway (app.state).
Who:   Called by uvicorn to start the server (uvicorn app.main:app) or by the
       `lovecakes-api` console script.
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌────────┐ ┌─────────┐ ┌──────────┐ ┌──────┐ ┌────┐│
    │  │ Req ID │→│ Logging │→│ Sec Hdrs │→│ GZip │→│CORS││
    │  └────────┘ └─────────┘ └──────────┘ └──────┘ └────┘│
    │                                                     │
    │  Routes:                                            │
    │  ┌──────────────┐ ┌────────────────┐ ┌────────────┐ │
    │  │ GET /health  │ │ /api/v1/extern │ │/api/v1/int │ │
    │  └──────────────┘ └────────────────┘ └────────────┘ │
    │                                                     │
    │  app.state: db_pool (DatabasePool), gateway         │
    │                                                     │
    │  Exception Handlers → error envelope:               │
    │   Validation→400  Unauthorized→401  NotFound→404    │
    │   DBRequest→500  DBConnection→503  Timeout→504      │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Optionally build the pool (DB_CONNECT_ON_STARTUP)
    3. Log startup complete

    Shutdown (SIGTERM/SIGINT → uvicorn graceful shutdown):
    1. Stop accepting new requests
    2. Dispose the pool (close all connections)
    3. Log shutdown complete
"""

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import SERVICE_NAME, __version__
from app.config import Settings, settings
from app.database import DatabasePool, EngineFactory, create_engine
from app.exceptions import (
    DatabaseConnectionError,
    DatabaseRequestError,
    LoveCakesError,
    ProcedureTimeoutError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.middleware.security_headers import SecurityHeadersMiddleware
from app.routes import health, v1
from app.schemas.envelope import error_response
from app.services.crud_controller import format_validation_errors
from app.services.procedure_service import ProcedureGateway
from app.services.redaction import RedactionPolicy

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
}


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = settings.log_level) -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during app startup, before any other initialization.
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: logging, optional pool warm-up.
    Shutdown: dispose the pool so every connection is closed cleanly.
    """
    config: Settings = app.state.settings
    pool: DatabasePool = app.state.db_pool

    setup_logging(config.log_level)
    logger.info("=" * 60)
    logger.info("LoveCakes Backend starting up (%s mode)...", config.environment)

    if config.db_connect_on_startup:
        try:
            await pool.acquire()
        except DatabaseConnectionError:
            # Keep serving: /health reports the outage and the next request retries
            logger.error("Database unavailable at startup; will retry on first use")

    logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("LoveCakes Backend shutting down...")
    await pool.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI, include_stack: bool = False) -> None:
    """
    Map exceptions to status codes and the error envelope.

    Handler hierarchy:
        RequestValidationError  → 400 VALIDATION_ERROR (field details)
        ValidationError         → 400 VALIDATION_ERROR (field details)
        DatabaseRequestError    → 500, generic message, context logged
        DatabaseConnectionError → 503, generic message
        ProcedureTimeoutError   → 504
        LoveCakesError (base)   → exc.status_code / exc.code
        HTTPException           → status as raised; 404 "Route ... not found"
        Exception (fallback)    → 500 INTERNAL_SERVER_ERROR

    Database details (procedure, redacted parameters) stay in the server log.
    Stack traces are returned in `details.stack` only when include_stack is set.
    """

    def stack_details(exc: BaseException) -> Optional[dict]:
        if not include_stack:
            return None
        return {"stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))}

    def envelope(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=error_response(message, code, details))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = format_validation_errors(exc)
        logger.warning(
            "[%s] Validation failed on %s %s: %d error(s)",
            request_id_var.get(""),
            request.method,
            request.url.path,
            len(details),
        )
        return envelope(400, ValidationError.code, "Request validation failed", details)

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return envelope(exc.status_code, exc.code, exc.message, exc.errors or None)

    @app.exception_handler(DatabaseRequestError)
    async def handle_database_request_error(request: Request, exc: DatabaseRequestError):
        logger.error(
            "[%s] Database request error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return envelope(exc.status_code, exc.code, exc.message, stack_details(exc))

    @app.exception_handler(DatabaseConnectionError)
    async def handle_database_connection_error(request: Request, exc: DatabaseConnectionError):
        logger.error("[%s] Database connection error | Context: %s", request_id_var.get(""), exc.context)
        return envelope(exc.status_code, exc.code, exc.message, stack_details(exc))

    @app.exception_handler(ProcedureTimeoutError)
    async def handle_timeout(request: Request, exc: ProcedureTimeoutError):
        logger.error("[%s] %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return envelope(exc.status_code, exc.code, exc.message, stack_details(exc))

    @app.exception_handler(LoveCakesError)
    async def handle_app_error(request: Request, exc: LoveCakesError):
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(level, "[%s] %s: %s", request_id_var.get(""), exc.code, exc.message)
        return envelope(exc.status_code, exc.code, exc.message, stack_details(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            message = f"Route {request.method} {request.url.path} not found"
        else:
            message = str(exc.detail)
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        response = envelope(exc.status_code, code, message)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error on %s %s: %s",
            request_id_var.get(""),
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        return envelope(500, "INTERNAL_SERVER_ERROR", INTERNAL_ERROR_MESSAGE, stack_details(exc))


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    app_settings: Optional[Settings] = None,
    engine_factory: EngineFactory = create_engine,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings:   Settings to use (defaults to the module singleton).
        engine_factory: Builds the engine for the pool; tests pass a fake.

    Returns: Fully configured FastAPI instance ready to receive requests.
    """
    config = app_settings or settings

    app = FastAPI(
        title="LoveCakes API",
        description="Storefront backend: order and product operations over SQL Server stored procedures.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Owned Resources ───────────────────────────────────────────────────
    # Constructed here, connected lazily; disposed by the lifespan
    pool = DatabasePool(config.database_config(), engine_factory=engine_factory)
    app.state.settings = config
    app.state.db_pool = pool
    app.state.gateway = ProcedureGateway(
        pool,
        redaction=RedactionPolicy(config.db_loggable_parameters_set),
        default_timeout=config.db_request_timeout,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition (last added = first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(SecurityHeadersMiddleware, hsts=not config.is_development)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app, include_stack=config.is_development)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(v1.router)

    logger.debug("%s %s application created", SERVICE_NAME, __version__)
    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        log_level=settings.log_level.lower(),
    )


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
