from typing import Any, AsyncGenerator, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..models.base import ProductServiceBase
from ..utils.logging import setup_product_logging as setup_logging
from .exceptions import StoreUnavailableError
from .setting import get_settings

# Setup structured logging for database operations
logger = setup_logging("product_service.database", log_level=get_settings().LOG_LEVEL)


def _mask_credentials(database_url: str) -> str:
    if "@" not in database_url:
        return database_url
    scheme, _, rest = database_url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


class ProductServiceDatabaseManager:
    """Owns the async engine and session factory of the inventory store."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 25,
        max_overflow: int = 50,
    ) -> None:
        if not database_url:
            raise ValueError("PRODUCT_DATABASE_URL is required for Product Service")

        self.database_url = database_url
        logger.info(
            "Initializing Product Service database manager",
            extra={
                "operation": "database_manager_init",
                "database_url": _mask_credentials(database_url),
                "echo": echo,
            },
        )

        engine_kwargs: Dict[str, Any] = {"echo": echo}

        if database_url.startswith("sqlite"):
            # SQLite configuration for development and tests
            engine_kwargs["connect_args"] = {
                "timeout": 60,
                "check_same_thread": False,
            }
        else:
            engine_kwargs.update(
                {
                    "pool_size": pool_size,
                    "max_overflow": max_overflow,
                    "pool_timeout": 45,
                    "pool_recycle": 3600,
                    "pool_pre_ping": True,
                    "connect_args": {
                        "command_timeout": 30,
                        # Disable prepared statements to avoid shared_preload_libraries requirement
                        "prepared_statement_cache_size": 0,
                    },
                }
            )
            logger.info(
                "Configured PostgreSQL database settings",
                extra={
                    "database_type": "postgresql",
                    "pool_size": pool_size,
                    "max_overflow": max_overflow,
                },
            )

        self.async_engine = create_async_engine(database_url, **engine_kwargs)
        self.async_session_maker = async_sessionmaker(
            bind=self.async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def connect(self) -> None:
        """Verify the store is reachable and make sure the schema exists."""
        try:
            async with self.async_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            await self.create_tables()
        except Exception as e:
            logger.error(
                "Inventory store unreachable",
                extra={
                    "operation": "database_connect",
                    "database_url": _mask_credentials(self.database_url),
                    "error": str(e),
                },
            )
            raise StoreUnavailableError(f"Could not connect to store: {e}") from e

        logger.info(
            "Inventory store connected",
            extra={"operation": "database_connect"},
        )

    async def create_tables(self) -> None:
        """Create all Product Service database tables."""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(ProductServiceBase.metadata.create_all, checkfirst=True)
        logger.info(
            "Database tables created successfully",
            extra={"operation": "create_tables"},
        )

    async def health_check(self) -> bool:
        try:
            async with self.async_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(
                "Database health check failed",
                extra={"operation": "database_health_check", "error": str(e)},
            )
            return False

    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session for Product Service."""
        async with self.async_session_maker() as session:
            yield session

    async def close(self) -> None:
        """Properly close the Product Service database engine and connections."""
        await self.async_engine.dispose()
        logger.info(
            "Product Service database connections closed",
            extra={"operation": "database_close"},
        )


def build_database_manager(settings=None) -> ProductServiceDatabaseManager:
    settings = settings or get_settings()
    return ProductServiceDatabaseManager(
        database_url=settings.PRODUCT_DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )
