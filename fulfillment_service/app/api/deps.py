"""
FastAPI dependency injection for Fulfillment Service

Provides dependency injection for services, the request actor, database
sessions and correlation ID management. Event publishing handled by
core.events module.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db_session
from ..core.events import get_event_producer
from ..events.producers import FulfillmentEventProducer
from ..middleware.auth import authenticated_user
from ..services.analytics_service import AnalyticsService
from ..services.notification_service import NotificationService
from ..services.order_service import OrderService
from ..services.return_service import ReturnService
from ..services.settlement_service import SettlementService

# =====================================================
# DATABASE DEPENDENCIES
# =====================================================


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide async database session"""
    async for session in get_db_session():
        yield session


# =====================================================
# EVENT PUBLISHER DEPENDENCIES
# =====================================================


def get_fulfillment_event_producer() -> Optional[FulfillmentEventProducer]:
    """Provide FulfillmentEventProducer instance"""
    return get_event_producer()


# =====================================================
# SERVICE DEPENDENCIES
# =====================================================


def get_order_service(
    session: AsyncSession = Depends(get_async_session),
    event_producer: Optional[FulfillmentEventProducer] = Depends(get_fulfillment_event_producer),
) -> OrderService:
    return OrderService(session, event_producer)


def get_return_service(
    session: AsyncSession = Depends(get_async_session),
    event_producer: Optional[FulfillmentEventProducer] = Depends(get_fulfillment_event_producer),
) -> ReturnService:
    return ReturnService(session, event_producer)


def get_settlement_service(
    session: AsyncSession = Depends(get_async_session),
    event_producer: Optional[FulfillmentEventProducer] = Depends(get_fulfillment_event_producer),
) -> SettlementService:
    return SettlementService(session, event_producer)


def get_notification_service(
    session: AsyncSession = Depends(get_async_session),
) -> NotificationService:
    return NotificationService(session)


def get_analytics_service(
    session: AsyncSession = Depends(get_async_session),
) -> AnalyticsService:
    return AnalyticsService(session)


# =====================================================
# REQUEST CONTEXT DEPENDENCIES
# =====================================================


def get_correlation_id(request: Request) -> Optional[str]:
    """Extract correlation ID from request headers or state"""
    correlation_id = (
        request.headers.get("X-Correlation-ID")
        or request.headers.get("correlation-id")
        or request.headers.get("x-request-id")
    )
    if not correlation_id:
        correlation_id = getattr(request.state, "correlation_id", None)
    return correlation_id


# =====================================================
# COMMON DEPENDENCY ALIASES
# =====================================================

# Core dependencies
CorrelationIdDep = Depends(get_correlation_id)

# Identity dependencies (resolved by auth middleware)
ActorDep = Depends(authenticated_user)

# Service dependencies aliases
OrderServiceDep = Depends(get_order_service)
ReturnServiceDep = Depends(get_return_service)
SettlementServiceDep = Depends(get_settlement_service)
NotificationServiceDep = Depends(get_notification_service)
AnalyticsServiceDep = Depends(get_analytics_service)
