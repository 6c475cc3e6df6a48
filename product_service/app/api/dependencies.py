"""
FastAPI dependency injection for Product Service

Provides database sessions, the event publisher, services and the
authenticated caller. Long-lived components are read from ``app.state``,
where the application factory placed them.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.setting import ProductSettings, get_settings
from ..events.event_producers import ProductEventProducer
from ..middleware.auth import authenticated_user
from ..services.product_service import ProductService
from ..services.stock_engine import StockEngine

# =====================================================
# DATABASE DEPENDENCIES
# =====================================================


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Provide async database session"""
    async for session in request.app.state.database_manager.get_async_session():
        yield session


# =====================================================
# EVENT PUBLISHER DEPENDENCIES
# =====================================================


def get_product_event_producer(request: Request) -> Optional[ProductEventProducer]:
    """Provide ProductEventProducer instance"""
    infrastructure = getattr(request.app.state, "event_infrastructure", None)
    return infrastructure.publisher if infrastructure else None


def get_app_settings(request: Request) -> ProductSettings:
    return getattr(request.app.state, "settings", None) or get_settings()


# =====================================================
# SERVICE DEPENDENCIES
# =====================================================


def get_product_service(
    session: AsyncSession = Depends(get_async_session),
    event_producer: Optional[ProductEventProducer] = Depends(
        get_product_event_producer
    ),
    settings: ProductSettings = Depends(get_app_settings),
) -> ProductService:
    """Provide ProductService instance with database and event publishing"""
    return ProductService(
        session, event_producer, default_limit=settings.PAGINATION_DEFAULT_LIMIT
    )


def get_stock_engine(
    session: AsyncSession = Depends(get_async_session),
    event_producer: Optional[ProductEventProducer] = Depends(
        get_product_event_producer
    ),
    settings: ProductSettings = Depends(get_app_settings),
) -> StockEngine:
    """Provide StockEngine instance with database and event publishing"""
    return StockEngine(
        session, event_producer, max_retries=settings.STOCK_UPDATE_MAX_RETRIES
    )


# =====================================================
# AUTHENTICATION & REQUEST CONTEXT DEPENDENCIES
# =====================================================


def get_correlation_id(request: Request) -> Optional[str]:
    """Extract correlation ID from request headers"""
    return (
        request.headers.get("X-Correlation-ID")
        or request.headers.get("correlation-id")
        or request.headers.get("x-request-id")
    )


# =====================================================
# COMMON DEPENDENCY ALIASES
# =====================================================

CorrelationIdDep = Depends(get_correlation_id)
AuthenticatedUserDep = Depends(authenticated_user)
SettingsDep = Depends(get_app_settings)

# Service dependencies aliases
ProductServiceDep = Depends(get_product_service)
StockEngineDep = Depends(get_stock_engine)
