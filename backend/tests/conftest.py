"""
LoveCakes Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures and an in-memory stand-in for SQL Server.
How:   FakeEngine mimics the slice of the SQLAlchemy async engine that the
       pool and gateway use (connect, begin, dispose, raw driver cursor).
       Stored procedures are plain Python callables registered by name, so
       tests never need a database or an ODBC driver.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── database_config: DatabaseConfig pointing at a host that never resolves
    ├── fake_engine:     FakeEngine with an empty procedure registry
    ├── engine_factory:  Factory returning fake_engine, counting calls
    ├── pool:            DatabasePool built on engine_factory
    ├── gateway:         ProcedureGateway over pool (ids loggable, rest redacted)
    ├── test_settings:   Settings for the test app
    ├── test_app:        create_app() wired to engine_factory
    └── test_client:     HTTPX AsyncClient bound to test_app

Registering a procedure:
    fake_engine.procedures["GetProductById"] = lambda params: [[{"id": params["id"]}]]

    A handler receives the bound parameters (names without "@") and returns
    a list of result sets. Each result set is a list of row dicts, or None
    for a row-count-only set. Handlers may be async and may raise.
"""

import asyncio
import inspect
import os
import re
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings for testing BEFORE any app imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DB_HOST"] = "db.invalid"
os.environ["DB_PASSWORD"] = "not-a-real-password"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests

from app.config import DatabaseConfig, Settings  # noqa: E402
from app.database import DatabasePool  # noqa: E402
from app.services.procedure_service import ProcedureGateway  # noqa: E402
from app.services.redaction import RedactionPolicy  # noqa: E402

_EXEC = re.compile(r"^EXEC\s+(?P<target>\S+)(?:\s+(?P<assignments>.*))?$")
_ASSIGNMENT = re.compile(r"@(\w+) = \?")


class FakeDriverError(Exception):
    """Stands in for pyodbc.ProgrammingError / pyodbc.Error."""


# ══════════════════════════════════════════════════════════════════════════
# Fake Driver Layer
# ══════════════════════════════════════════════════════════════════════════

class FakeCursor:
    """Driver cursor: execute(), description, fetchall(), nextset()."""

    def __init__(self, engine: "FakeEngine"):
        self._engine = engine
        self._pending: List[Optional[List[Dict[str, Any]]]] = []
        self._current: Optional[List[Dict[str, Any]]] = None
        self.description = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, statement: str, *values: Any) -> None:
        self._engine.statements.append((statement, list(values)))
        match = _EXEC.match(statement)
        if match is None:
            raise FakeDriverError(f"Incorrect syntax near '{statement[:20]}'")

        procedure = match.group("target").split(".")[-1].strip("[]")
        names = _ASSIGNMENT.findall(match.group("assignments") or "")
        if len(names) != len(values):
            raise FakeDriverError("COUNT field incorrect or syntax error")
        parameters = dict(zip(names, values))

        handler = self._engine.procedures.get(procedure)
        if handler is None:
            raise FakeDriverError(f"Could not find stored procedure '{procedure}'.")

        result = handler(parameters)
        if inspect.isawaitable(result):
            result = await result
        self._pending = list(result or [])
        self._advance()

    def _advance(self) -> bool:
        if not self._pending:
            self._current = None
            self.description = None
            return False
        self._current = self._pending.pop(0)
        if self._current is None:
            self.description = None
        else:
            columns = list(self._current[0]) if self._current else ["_"]
            self.description = [(column, None, None, None, None, None, True) for column in columns]
        return True

    async def fetchall(self) -> List[tuple]:
        rows = self._current or []
        columns = [column[0] for column in self.description]
        return [tuple(row.get(column) for column in columns) for row in rows]

    async def nextset(self) -> bool:
        return self._advance()


class FakeDriverConnection:
    def __init__(self, engine: "FakeEngine"):
        self._engine = engine

    def cursor(self) -> FakeCursor:
        return FakeCursor(self._engine)


class FakeRawConnection:
    def __init__(self, engine: "FakeEngine"):
        self.driver_connection = FakeDriverConnection(engine)


class FakeAsyncConnection:
    """The AsyncConnection surface used by the pool and the gateway."""

    def __init__(self, engine: "FakeEngine"):
        self._engine = engine
        self.invalidated = False

    async def exec_driver_sql(self, statement: str) -> None:
        self._engine.statements.append((statement, []))

    async def get_raw_connection(self) -> FakeRawConnection:
        return FakeRawConnection(self._engine)

    async def invalidate(self) -> None:
        self.invalidated = True
        self._engine.invalidated += 1


class _ConnectionContext:
    def __init__(self, engine: "FakeEngine", transactional: bool):
        self._engine = engine
        self._transactional = transactional
        self._connection: Optional[FakeAsyncConnection] = None

    async def __aenter__(self) -> FakeAsyncConnection:
        engine = self._engine
        if engine.connect_delay:
            await asyncio.sleep(engine.connect_delay)
        if engine.fail_connect:
            raise FakeDriverError("Login timeout expired")
        engine.checked_out += 1
        engine.max_checked_out = max(engine.max_checked_out, engine.checked_out)
        self._connection = FakeAsyncConnection(engine)
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        engine = self._engine
        engine.checked_out -= 1
        if self._transactional:
            if exc_type is None:
                engine.commits += 1
            else:
                engine.rollbacks += 1
        return False


class FakeEngine:
    """
    In-memory AsyncEngine stand-in.

    Accounting:
        checked_out:     connections currently borrowed
        commits/rollbacks: outcomes of begin() blocks
        invalidated:     connections closed instead of returned
        statements:      every (statement, values) executed, in order
    """

    def __init__(self, connect_delay: float = 0.0, fail_connect: bool = False, dispose_delay: float = 0.0):
        self.procedures: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.connect_delay = connect_delay
        self.dispose_delay = dispose_delay
        self.fail_connect = fail_connect
        self.checked_out = 0
        self.max_checked_out = 0
        self.begin_count = 0
        self.commits = 0
        self.rollbacks = 0
        self.invalidated = 0
        self.dispose_count = 0
        self.disposed = False
        self.statements: List[tuple] = []

    def connect(self) -> _ConnectionContext:
        return _ConnectionContext(self, transactional=False)

    def begin(self) -> _ConnectionContext:
        self.begin_count += 1
        return _ConnectionContext(self, transactional=True)

    async def dispose(self) -> None:
        self.dispose_count += 1
        if self.dispose_delay:
            await asyncio.sleep(self.dispose_delay)
        self.disposed = True


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def database_config() -> DatabaseConfig:
    return DatabaseConfig(
        host="db.invalid",
        user="lovecakes_app",
        password="not-a-real-password",
        database="lovecakes",
        pool={"min": 0, "max": 5, "idleTimeoutMs": 30000},
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def engine_factory(fake_engine):
    """
    Factory handed to DatabasePool; returns fake_engine and records each call.

    Usage:
        pool = DatabasePool(database_config, engine_factory=engine_factory)
        assert engine_factory.calls == 1
    """

    def factory(config: DatabaseConfig) -> FakeEngine:
        factory.calls += 1
        return fake_engine

    factory.calls = 0
    return factory


@pytest.fixture
def pool(database_config, engine_factory) -> DatabasePool:
    return DatabasePool(database_config, engine_factory=engine_factory)


@pytest.fixture
def gateway(pool) -> ProcedureGateway:
    return ProcedureGateway(pool, redaction=RedactionPolicy({"id", "idAccount"}))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        db_host="db.invalid",
        db_password="not-a-real-password",
        db_request_timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def test_app(test_settings, engine_factory):
    """A fresh application whose pool builds fake_engine."""
    from app.main import create_app

    return create_app(app_settings=test_settings, engine_factory=engine_factory)


@pytest_asyncio.fixture
async def test_client(test_app):
    """
    Provides an async HTTP test client for endpoint testing.

    What:    HTTPX AsyncClient bound to a fresh app whose pool uses fake_engine.
    How:     Uses ASGITransport to route requests directly to the app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
