"""
Pytest configuration and fixtures for Fulfillment Service tests.
"""

import os
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

# Set up test environment before the application is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["TEST_DATABASE_URL"] = "sqlite+aiosqlite:///test.db"
os.environ["KAFKA_ENABLED"] = "false"

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from fulfillment_service.app.api.deps import get_async_session
from fulfillment_service.app.core.database import FulfillmentServiceDatabaseManager
from fulfillment_service.app.core.settings import get_settings
from fulfillment_service.app.main import app
from fulfillment_service.app.models.order import FulfillmentStatus
from fulfillment_service.app.services.analytics_service import AnalyticsService
from fulfillment_service.app.services.notification_service import NotificationService
from fulfillment_service.app.services.order_service import OrderService
from fulfillment_service.app.services.results import Actor, Role
from fulfillment_service.app.services.return_service import ReturnService
from fulfillment_service.app.services.settlement_service import SettlementService

from fulfillment_service.tests.factories import (
    ADMIN_ID,
    AGENT_ID,
    BANK_DETAILS,
    CUSTOMER_ID,
    OTHER_VENDOR_ID,
    VENDOR_ID,
    order_line,
)


@pytest.fixture(scope="session")
def test_settings():
    """Get test settings."""
    return get_settings()


# =====================================================
# DATABASE
# =====================================================


@pytest.fixture
async def test_database_manager(tmp_path) -> AsyncGenerator[FulfillmentServiceDatabaseManager, None]:
    """Fresh SQLite database per test."""
    manager = FulfillmentServiceDatabaseManager(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'fulfillment_test.db'}"
    )
    await manager.create_tables()

    yield manager

    await manager.drop_tables()
    await manager.close()


@pytest.fixture
async def db_session(test_database_manager) -> AsyncGenerator[Any, None]:
    """Create a test database session."""
    async with test_database_manager.async_session_maker() as session:
        yield session


@pytest.fixture
def session_factory(test_database_manager):
    """Sessions independent of ``db_session``, as separate requests get."""
    return test_database_manager.async_session_maker


# =====================================================
# ACTORS AND SERVICES
# =====================================================


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id=CUSTOMER_ID, role=Role.CUSTOMER)


@pytest.fixture
def vendor() -> Actor:
    return Actor(user_id=VENDOR_ID, role=Role.VENDOR)


@pytest.fixture
def other_vendor() -> Actor:
    return Actor(user_id=OTHER_VENDOR_ID, role=Role.VENDOR)


@pytest.fixture
def agent() -> Actor:
    return Actor(user_id=AGENT_ID, role=Role.AGENT)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, role=Role.ADMIN)


@pytest.fixture
def system() -> Actor:
    return Actor(user_id=0, role=Role.SYSTEM)


@pytest.fixture
def mock_event_producer():
    """Event producer that records published domain events."""
    producer = Mock()
    producer.publish_domain_event = AsyncMock()
    return producer


@pytest.fixture
def order_service(db_session, mock_event_producer) -> OrderService:
    return OrderService(db_session, mock_event_producer)


@pytest.fixture
def return_service(db_session, mock_event_producer) -> ReturnService:
    return ReturnService(db_session, mock_event_producer)


@pytest.fixture
def settlement_service(db_session, mock_event_producer) -> SettlementService:
    return SettlementService(db_session, mock_event_producer)


@pytest.fixture
def notification_service(db_session) -> NotificationService:
    return NotificationService(db_session)


@pytest.fixture
def analytics_service(db_session) -> AnalyticsService:
    return AnalyticsService(db_session)


# =====================================================
# SCENARIO BUILDERS
# =====================================================


@pytest.fixture
def place_order(order_service, customer):
    """Place an order whose total matches its lines."""

    async def _place(
        lines: Optional[List[Dict[str, Any]]] = None,
        agent_id: Optional[int] = AGENT_ID,
        **amounts: Decimal,
    ):
        lines = lines or [order_line()]
        subtotal = sum(Decimal(line["unit_price"]) * line["quantity"] for line in lines)
        total = (
            subtotal
            - amounts.get("discount_amount", Decimal("0"))
            + amounts.get("tax_amount", Decimal("0"))
            + amounts.get("shipping_cost", Decimal("0"))
        )
        result = await order_service.place_order(
            customer,
            items=lines,
            total_amount=total,
            agent_id=agent_id,
            **amounts,
        )
        assert result.ok, result.failure
        return result.value

    return _place


@pytest.fixture
def deliver_order(order_service, place_order, admin, agent):
    """Place an order and walk every line to delivered through the pickup handover."""

    async def _deliver(lines: Optional[List[Dict[str, Any]]] = None):
        order = await place_order(lines)
        for item in list(order.items):
            for target in (FulfillmentStatus.PROCESSING, FulfillmentStatus.READY_FOR_PICKUP):
                result = await order_service.advance_item_status(admin, item.id, target.value)
                assert result.ok, result.failure

        order = (await order_service.get_order(admin, order.id)).unwrap()
        result = await order_service.verify_and_consume_code(agent, order.id, order.pickup_code)
        assert result.ok, result.failure
        return result.value

    return _deliver


@pytest.fixture
def configure_vendor(settlement_service, admin):
    """Set a vendor's commission rate and bank destination."""

    async def _configure(vendor_id: int = VENDOR_ID, commission_rate: str = "0.10"):
        result = await settlement_service.upsert_vendor_account(
            admin,
            vendor_id,
            {"commission_rate": Decimal(commission_rate), **BANK_DETAILS},
        )
        assert result.ok, result.failure
        return result.value

    return _configure


# =====================================================
# HTTP
# =====================================================


@pytest.fixture
def test_app() -> FastAPI:
    """Get test FastAPI application."""
    return app


@pytest.fixture
def client(test_app) -> TestClient:
    """FastAPI test client fixture for requests that never reach the database."""
    return TestClient(test_app)


@pytest.fixture
async def api_client(test_app, test_database_manager) -> AsyncGenerator[AsyncClient, None]:
    """Async client bound to the per-test database."""

    async def override_session():
        async with test_database_manager.async_session_maker() as session:
            yield session

    test_app.dependency_overrides[get_async_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as http:
        yield http
    test_app.dependency_overrides.clear()


@pytest.fixture
def mock_request():
    """Mock FastAPI Request object."""
    mock_req = Mock(spec=Request)
    mock_req.state = Mock()
    mock_req.headers = {}
    mock_req.url = Mock()
    mock_req.url.path = "/test"
    mock_req.method = "GET"
    return mock_req


@pytest.fixture
def mock_call_next():
    """Mock call_next function for middleware testing."""

    async def call_next(request):
        from starlette.responses import Response

        return Response("OK", status_code=200)

    return call_next
