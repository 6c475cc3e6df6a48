"""
Product Service FastAPI Application
==================================

Main application entry point for the Product Service microservice.
Serves the product catalog and stock operations over HTTP and keeps other
services informed through the event bus.

Startup is strictly ordered: inventory store, then the event path (producer,
consumer and subscriptions, publisher worker, consumption loop). A failure
in either step aborts startup. Shutdown stops the consumer before the
publisher is drained and the producer disconnected.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.health import router as health_router
from .api.v1.products import router as products_router
from .core.database import ProductServiceDatabaseManager, build_database_manager
from .core.event_management import ProductEventInfrastructure
from .core.setting import ProductSettings, get_settings
from .events.base import BusConsumer, BusProducer
from .middleware.error.error_handler import setup_product_error_handling
from .utils.logging import setup_product_logging as setup_logging

settings = get_settings()
enable_file_logging = settings.ENVIRONMENT.lower() in ["production", "staging"]

logger = setup_logging(
    "product_service",
    log_level=settings.LOG_LEVEL,
    enable_file_logging=enable_file_logging,
)


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


# Lifespan management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup and shutdown."""
    startup_start = time.time()

    try:
        await _initialize_services(app, startup_start)
    except Exception as e:
        logger.error(
            "Failed to start product service",
            exc_info=True,
            extra={
                "startup_duration_ms": _elapsed_ms(startup_start),
                "error_type": type(e).__name__,
            },
        )
        await app.state.database_manager.close()
        raise

    yield

    await _shutdown_services(app)


async def _initialize_services(app: FastAPI, startup_start: float) -> None:
    """Initialize all application services during startup."""
    app_settings: ProductSettings = app.state.settings
    logger.info(
        "Starting product service initialization",
        extra={
            "environment": app_settings.ENVIRONMENT,
            "debug_mode": app_settings.DEBUG,
            "service_version": app_settings.APP_VERSION,
        },
    )

    # Store first: nothing may run without it
    db_start = time.time()
    await app.state.database_manager.connect()
    db_duration = _elapsed_ms(db_start)
    logger.info("Database initialization completed", extra={"duration_ms": db_duration})

    # Event path: producer and consumer both connected before the service is ready
    events_start = time.time()
    await app.state.event_infrastructure.start()
    events_duration = _elapsed_ms(events_start)

    logger.info(
        "Product service started successfully",
        extra={
            "total_startup_duration_ms": _elapsed_ms(startup_start),
            "database_init_ms": db_duration,
            "event_infrastructure_init_ms": events_duration,
        },
    )


async def _shutdown_services(app: FastAPI) -> None:
    """Shutdown all application services gracefully."""
    shutdown_start = time.time()
    logger.info("Starting product service shutdown")

    try:
        await app.state.event_infrastructure.stop()
    finally:
        await app.state.database_manager.close()

    logger.info(
        "Product service shutdown completed",
        extra={"shutdown_duration_ms": _elapsed_ms(shutdown_start)},
    )


# Application factory
def create_app(
    app_settings: Optional[ProductSettings] = None,
    database_manager: Optional[ProductServiceDatabaseManager] = None,
    bus_producer: Optional[BusProducer] = None,
    bus_consumer: Optional[BusConsumer] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Components not passed in are built from settings; tests pass in-memory
    bus clients and a throwaway database.
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        debug=app_settings.DEBUG,
        lifespan=lifespan,
        openapi_url="/openapi.json" if app_settings.DEBUG else None,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
    )

    database_manager = database_manager or build_database_manager(app_settings)
    session_factory = database_manager.async_session_maker

    if bus_producer is not None and bus_consumer is not None:
        infrastructure = ProductEventInfrastructure(
            bus_producer, bus_consumer, session_factory, app_settings
        )
    else:
        infrastructure = ProductEventInfrastructure.from_settings(
            session_factory, app_settings
        )

    app.state.settings = app_settings
    app.state.database_manager = database_manager
    app.state.event_infrastructure = infrastructure

    setup_product_error_handling(app)
    _setup_cors(app, app_settings)
    _setup_routers(app)

    return app


def _setup_cors(app: FastAPI, app_settings: ProductSettings) -> None:
    """Configure CORS settings with logging."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_CREDENTIALS,
        allow_methods=app_settings.CORS_METHODS,
        allow_headers=app_settings.CORS_HEADERS,
    )

    logger.info(
        "CORS middleware configured",
        extra={
            "allowed_origins": len(app_settings.CORS_ORIGINS),
            "credentials_allowed": app_settings.CORS_CREDENTIALS,
        },
    )


def _setup_routers(app: FastAPI) -> None:
    """Configure all application routers with detailed logging."""
    routers_info: list[dict[str, Any]] = []

    # Health router
    app.include_router(health_router, tags=["Health"])
    routers_info.append({"router": "health", "prefix": "", "tags": ["Health"]})

    # Products router
    app.include_router(products_router, prefix="/api", tags=["Product Management"])
    routers_info.append(
        {"router": "products", "prefix": "/api", "tags": ["Product Management"]}
    )

    logger.info(
        "API routes configured",
        extra={"total_routers": len(routers_info), "routers": routers_info},
    )


app = create_app()
