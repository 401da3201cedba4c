"""
LoveCakes Backend — Database Connection Pool
==============================================

What:  Owns the process-wide async SQLAlchemy engine (and so the connection
       pool) used to run stored procedures on SQL Server.
How:   DatabasePool builds the engine lazily on the first acquire(), verifies
       connectivity with SELECT 1, and caches it until dispose(). Concurrent
       cold-start callers share one construction task.
Who:   Created once by create_app(), stored on app.state, and handed to the
       ProcedureGateway. Route handlers never touch it directly.
When:  Engine is built on first use (or at startup when DB_CONNECT_ON_STARTUP
       is set); disposed by the application lifespan on shutdown.

Construction Lifecycle:
    acquire() ──▶ cached engine? ──yes──▶ return it
                       │ no
                       ▼
              construction in flight? ──yes──▶ await the same task
                       │ no
                       ▼
              start task: create engine → SELECT 1
                  ├── success → cache engine, return it
                  └── failure → dispose engine, clear task,
                                raise DatabaseConnectionError
                                (next acquire() starts over)

Connection Pooling Strategy:
    pool_size      = pool.min             connections kept open once created
    max_overflow   = pool.max - pool.min  extra connections under load
    pool_recycle   = pool.idleTimeoutMs   maximum connection age (busy or idle);
                                          SQLAlchemy has no idle-only timeout, so
                                          the default is 30 minutes
    pool_pre_ping  = True                 catches connections dropped by the server
"""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.config import DatabaseConfig
from app.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

EngineFactory = Callable[[DatabaseConfig], AsyncEngine]


# ── Engine Configuration ──────────────────────────────────────────────────

def build_database_url(config: DatabaseConfig) -> URL:
    """
    Build the `mssql+aioodbc` URL for a DatabaseConfig.

    ODBC driver options travel in the query string; SQLAlchemy's pyodbc
    connector turns them into the ODBC connection string.
    """
    options = config.options
    return URL.create(
        "mssql+aioodbc",
        username=config.user,
        password=config.password,
        host=config.host,
        port=config.port,
        database=config.database,
        query={
            "driver": options.driver,
            "Encrypt": "yes" if options.encrypt else "no",
            "TrustServerCertificate": "yes" if options.trust_server_certificate else "no",
        },
    )


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """
    Create the async engine for `config`. No connection is opened here.

    The pool keeps `pool.min` connections and grows to `pool.max` under load.
    """
    pool = config.pool
    return create_async_engine(
        build_database_url(config),
        pool_size=max(pool.min, 1),
        max_overflow=max(pool.max - max(pool.min, 1), 0),
        pool_recycle=max(pool.idle_timeout_ms // 1000, 1),
        pool_pre_ping=True,
        pool_timeout=config.options.connect_timeout,
        connect_args={"timeout": config.options.connect_timeout},
    )


# ══════════════════════════════════════════════════════════════════════════
# Connection Pool
# ══════════════════════════════════════════════════════════════════════════

class DatabasePool:
    """
    Lazily constructed, construct-once holder of the async engine.

    Guarantees:
        - At most one construction is in flight at any time; every caller that
          arrives while it runs awaits the same task and gets its engine or
          its failure.
        - A failed or cancelled construction leaves nothing cached and closes
          any engine it had created.
        - Cancelling one waiting caller does not cancel the shared construction.

    Attributes:
        construction_attempts: Number of times an engine build was started.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        engine_factory: EngineFactory = create_engine,
    ):
        self._config = config
        self._engine_factory = engine_factory
        self._engine: Optional[AsyncEngine] = None
        self._construction: Optional["asyncio.Task[AsyncEngine]"] = None
        self.construction_attempts = 0

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    async def acquire(self) -> AsyncEngine:
        """
        Return the engine, building it on first use.

        Raises:
            DatabaseConnectionError: The engine could not be built or the
                connectivity probe failed.
        """
        if self._engine is not None:
            return self._engine

        if self._construction is None:
            self.construction_attempts += 1
            task = asyncio.get_running_loop().create_task(self._construct())
            # Retrieve the exception even if every waiter was cancelled
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._construction = task

        return await asyncio.shield(self._construction)

    async def _construct(self) -> AsyncEngine:
        config = self._config
        engine: Optional[AsyncEngine] = None
        try:
            engine = self._engine_factory(config)
            async with engine.connect() as conn:
                await conn.exec_driver_sql("SELECT 1")
        except asyncio.CancelledError:
            logger.warning("Database pool construction cancelled")
            await self._abandon(engine)
            raise
        except Exception as e:
            await self._abandon(engine)
            logger.error(
                "Database connection failed for %s@%s:%d/%s: %s",
                config.user,
                config.host,
                config.port,
                config.database,
                str(e),
            )
            raise DatabaseConnectionError(
                context={
                    "host": config.host,
                    "database": config.database,
                    "error_type": type(e).__name__,
                },
            ) from e

        self._engine = engine
        self._construction = None
        logger.info(
            "Database connection pool established (%s:%d/%s, pool %d-%d)",
            config.host,
            config.port,
            config.database,
            config.pool.min,
            config.pool.max,
        )
        return engine

    async def _abandon(self, engine: Optional[AsyncEngine]) -> None:
        """Close a partially built engine, then allow the next acquire() to start over."""
        try:
            if engine is not None:
                await engine.dispose()
        except Exception:
            logger.warning("Failed to dispose partially built engine", exc_info=True)
        finally:
            self._construction = None

    async def ping(self) -> None:
        """Acquire the engine and run SELECT 1 on a pooled connection."""
        engine = await self.acquire()
        async with engine.connect() as conn:
            await conn.exec_driver_sql("SELECT 1")

    async def dispose(self) -> None:
        """
        What:  Drains and closes every pooled connection.
        When:  Called during application shutdown (lifespan handler).
        How:   Waits for an in-flight construction first so that an engine
               built during shutdown is not leaked. The wait is shielded:
               cancelling dispose() leaves the shared construction running
               for its other waiters. After dispose() the pool can be
               acquired again, which builds a fresh engine.
        """
        construction = self._construction
        if construction is not None:
            try:
                await asyncio.shield(construction)
            except DatabaseConnectionError:
                # Already logged by _construct; nothing was cached
                pass

        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.dispose()
            logger.info("Database connection pool closed")
