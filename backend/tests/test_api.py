"""
LoveCakes Backend — HTTP API Tests
====================================

What:  End-to-end tests through the FastAPI app: envelope, status codes,
       middleware headers, authentication guard and database error mapping.
How:   HTTPX AsyncClient over ASGITransport; the pool builds a FakeEngine.
       A few sample routes are mounted on the test app to exercise the
       internal router and the CRUD flow.

What we test:
    ✅ GET /health for cold, connected and failing pools
    ✅ Unknown routes → 404 envelope "Route {METHOD} {path} not found"
    ✅ Request validation → 400 VALIDATION_ERROR with field details
    ✅ Internal routes without a bearer token → 401
    ✅ Database errors → 500 / 503 / 504 with generic messages
    ✅ Unexpected errors → 500; stack traces in details only in development
    ✅ Security headers, X-Request-ID, CORS preflight
"""

import asyncio
import logging
from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends, Request
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from conftest import FakeEngine
from app.exceptions import NotFoundError
from app.main import create_app
from app.middleware.auth import get_credential, require_token
from app.schemas.envelope import success_response
from app.schemas.fields import ForeignKey
from app.schemas.procedure import ExpectedReturn
from app.services.crud_controller import Credential, CrudController, Permission, SecurityRule
from app.services.procedure_service import ProcedureGateway, get_gateway

CAKE = {"id": 42, "name": "Lemon Drizzle", "price": Decimal("24.50")}
BEARER = {"Authorization": "Bearer test-token"}


class ProductKey(BaseModel):
    id: ForeignKey


def register_procedures(engine):
    engine.procedures["GetProductById"] = (
        lambda params: [[CAKE]] if params["id"] == 42 else [[]]
    )
    engine.procedures["GetOrders"] = lambda params: [[{"id": 1, "page": params["page"]}]]


def mount_sample_routes(app):
    """Internal routes shaped like the product handlers, plus an error route."""
    products = CrudController([SecurityRule(securable="PRODUCT", permission=Permission.READ)])
    internal = APIRouter(prefix="/api/v1/internal", dependencies=[Depends(require_token)])

    @internal.get("/whoami")
    async def whoami(request: Request):
        return success_response({"token": request.state.token})

    @internal.get("/product/{id}")
    async def get_product(
        request: Request,
        credential: Credential = Depends(get_credential),
        gateway: ProcedureGateway = Depends(get_gateway),
    ):
        validated = await products.read(request, ProductKey, credential)
        product_id = validated.params.id
        result = await gateway.invoke("GetProductById", {"id": product_id}, ExpectedReturn.SINGLE)
        if result.data is None:
            raise NotFoundError(resource="product", resource_id=str(product_id))
        return success_response(result.data)

    @internal.get("/orders")
    async def list_orders(page: int, gateway: ProcedureGateway = Depends(get_gateway)):
        result = await gateway.invoke("GetOrders", {"page": page}, ExpectedReturn.MULTI)
        return success_response(result.data)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    app.include_router(internal)
    app.dependency_overrides[get_credential] = lambda: Credential(idAccount=1, idUser=2)
    return app


@pytest.fixture
def sample_app(test_app, fake_engine):
    register_procedures(fake_engine)
    return mount_sample_routes(test_app)


@pytest_asyncio.fixture
async def client(sample_app):
    transport = ASGITransport(app=sample_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def development_client(test_settings, engine_factory, fake_engine):
    """Client for an app running with ENVIRONMENT=development and a short deadline."""
    register_procedures(fake_engine)
    settings = test_settings.model_copy(
        update={"environment": "development", "db_request_timeout": 0.05}
    )
    app = mount_sample_routes(create_app(app_settings=settings, engine_factory=engine_factory))

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def assert_error(response, status, code):
    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == code
    assert body["timestamp"].endswith("Z")
    return body["error"]


class TestHealth:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_cold_pool_is_not_built(self, test_client, engine_factory):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["database"] == "not_initialized"
        assert body["data"]["service"] == "lovecakes-backend"
        assert engine_factory.calls == 0

    @pytest.mark.asyncio
    async def test_connected_pool(self, test_app, test_client):
        await test_app.state.db_pool.acquire()

        response = await test_client.get("/health")

        assert response.json()["data"]["database"] == "connected"

    @pytest.mark.asyncio
    async def test_unreachable_database_is_degraded(self, test_settings):
        settings = test_settings.model_copy(update={"health_check_database": True})
        app = create_app(app_settings=settings, engine_factory=lambda config: FakeEngine(fail_connect=True))

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            response = await c.get("/health")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "degraded"
        assert response.json()["data"]["database"] == "disconnected"


class TestErrorEnvelope:
    """Tests for status codes and the error envelope."""

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        response = await client.get("/api/v1/external/nope")

        error = assert_error(response, 404, "NOT_FOUND")
        assert error["message"] == "Route GET /api/v1/external/nope not found"
        assert "details" not in error

    @pytest.mark.asyncio
    async def test_request_validation(self, client):
        response = await client.get("/api/v1/internal/orders?page=first", headers=BEARER)

        error = assert_error(response, 400, "VALIDATION_ERROR")
        assert error["details"][0]["field"] == "query.page"

    @pytest.mark.asyncio
    async def test_crud_validation(self, client):
        response = await client.get("/api/v1/internal/product/0", headers=BEARER)

        error = assert_error(response, 400, "VALIDATION_ERROR")
        assert error["details"][0]["field"] == "id"

    @pytest.mark.asyncio
    async def test_not_found_resource(self, client):
        response = await client.get("/api/v1/internal/product/7", headers=BEARER)

        error = assert_error(response, 404, "NOT_FOUND")
        assert error["message"] == "product with ID '7' was not found"
        assert "details" not in error

    @pytest.mark.asyncio
    async def test_unexpected_error_hides_stack_outside_development(self, client):
        response = await client.get("/boom")

        error = assert_error(response, 500, "INTERNAL_SERVER_ERROR")
        assert "details" not in error
        assert "kaboom" not in response.text

    @pytest.mark.asyncio
    async def test_unexpected_error_includes_stack_in_development(self, development_client):
        response = await development_client.get("/boom")

        error = assert_error(response, 500, "INTERNAL_SERVER_ERROR")
        assert "RuntimeError: kaboom" in error["details"]["stack"]

    @pytest.mark.asyncio
    async def test_app_error_includes_stack_in_development(self, development_client):
        response = await development_client.get("/api/v1/internal/product/7", headers=BEARER)

        error = assert_error(response, 404, "NOT_FOUND")
        assert error["message"] == "product with ID '7' was not found"
        assert "NotFoundError" in error["details"]["stack"]

    @pytest.mark.asyncio
    async def test_timeout_includes_stack_in_development(self, development_client, fake_engine):
        async def slow(params):
            await asyncio.sleep(1)
            return [[]]

        fake_engine.procedures["GetOrders"] = slow

        response = await development_client.get("/api/v1/internal/orders?page=1", headers=BEARER)

        error = assert_error(response, 504, "DATABASE_TIMEOUT")
        assert "ProcedureTimeoutError" in error["details"]["stack"]


class TestAuthentication:
    """The internal router requires a bearer token."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/internal/whoami")

        error = assert_error(response, 401, "UNAUTHORIZED")
        assert error["message"] == "No authentication token provided"

    @pytest.mark.asyncio
    async def test_wrong_scheme(self, client):
        response = await client.get("/api/v1/internal/whoami", headers={"Authorization": "Basic abc"})

        assert_error(response, 401, "UNAUTHORIZED")

    @pytest.mark.asyncio
    async def test_token_present(self, client):
        response = await client.get("/api/v1/internal/whoami", headers=BEARER)

        assert response.status_code == 200
        assert response.json()["data"] == {"token": "test-token"}

    @pytest.mark.asyncio
    async def test_no_credential_attached(self, sample_app, client):
        sample_app.dependency_overrides.clear()

        response = await client.get("/api/v1/internal/product/42", headers=BEARER)

        error = assert_error(response, 401, "UNAUTHORIZED")
        assert error["message"] == "Invalid authentication token"


class TestProcedureRoutes:
    """Gateway results and failures as seen by a client."""

    @pytest.mark.asyncio
    async def test_product_found(self, client):
        response = await client.get("/api/v1/internal/product/42", headers=BEARER)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"id": 42, "name": "Lemon Drizzle", "price": 24.5}

    @pytest.mark.asyncio
    async def test_request_error_is_generic(self, client, fake_engine):
        def failing(params):
            raise RuntimeError("Invalid column name 'secret_column'")

        fake_engine.procedures["GetOrders"] = failing

        response = await client.get("/api/v1/internal/orders?page=1", headers=BEARER)

        error = assert_error(response, 500, "DATABASE_REQUEST_ERROR")
        assert "secret_column" not in response.text
        assert "GetOrders" not in response.text
        assert "details" not in error

    @pytest.mark.asyncio
    async def test_connection_error(self, client, fake_engine):
        fake_engine.fail_connect = True

        response = await client.get("/api/v1/internal/orders?page=1", headers=BEARER)

        assert_error(response, 503, "DATABASE_CONNECTION_ERROR")

    @pytest.mark.asyncio
    async def test_timeout(self, sample_app, client, fake_engine):
        async def slow(params):
            await asyncio.sleep(1)
            return [[]]

        fake_engine.procedures["GetOrders"] = slow
        sample_app.state.gateway.default_timeout = 0.05

        response = await client.get("/api/v1/internal/orders?page=1", headers=BEARER)

        assert_error(response, 504, "DATABASE_TIMEOUT")
        assert fake_engine.checked_out == 0


class TestMiddleware:
    """Headers added by the middleware chain."""

    @pytest.mark.asyncio
    async def test_security_headers(self, test_client):
        response = await test_client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
        assert "Strict-Transport-Security" in response.headers

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "abc-123"})

        assert response.headers["X-Request-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_request_id_on_error_responses(self, client):
        response = await client.get("/nope", headers={"X-Request-ID": "trace-404"})

        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "trace-404"

    @pytest.mark.asyncio
    async def test_access_log_level_follows_status(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="lovecakes.access"):
            await client.get("/api/v1/internal/whoami", headers=BEARER)
            await client.get("/nope", headers={"X-Request-ID": "trace-log"})
            await client.get("/health")

        records = [r for r in caplog.records if r.name == "lovecakes.access"]
        assert [r.levelno for r in records] == [logging.INFO, logging.WARNING]
        assert records[1].request_id == "trace-log"
        assert "/health" not in caplog.text

    @pytest.mark.asyncio
    async def test_cors_preflight(self, test_client):
        response = await test_client.options(
            "/health",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


class TestLifespan:
    """Startup and shutdown wiring."""

    @pytest.mark.asyncio
    async def test_shutdown_disposes_pool(self, test_app, fake_engine):
        async with test_app.router.lifespan_context(test_app):
            await test_app.state.db_pool.acquire()

        assert fake_engine.dispose_count == 1
        assert test_app.state.db_pool.is_initialized is False

    @pytest.mark.asyncio
    async def test_startup_connect_failure_keeps_serving(self, test_settings):
        settings = test_settings.model_copy(update={"db_connect_on_startup": True})
        engine = FakeEngine(fail_connect=True)
        app = create_app(app_settings=settings, engine_factory=lambda config: engine)

        async with app.router.lifespan_context(app):
            assert app.state.db_pool.is_initialized is False
