"""
Product Service configuration
"""

from pathlib import Path
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the product service directory path
PRODUCT_SERVICE_DIR = Path(__file__).parent.parent.parent
ENV_FILE = PRODUCT_SERVICE_DIR / ".env"


class ProductSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Product Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Service specific
    SERVICE_NAME: str = "product-service"

    # Database
    PRODUCT_DATABASE_URL: str = "sqlite+aiosqlite:///./products.db"
    DATABASE_POOL_SIZE: int = 25
    DATABASE_MAX_OVERFLOW: int = 50
    STOCK_UPDATE_MAX_RETRIES: int = 5

    # Security
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # Kafka for events
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_CLIENT_ID: str = "product-service"
    KAFKA_GROUP_ID: str = "product-service-group"
    KAFKA_CONNECT_RETRIES: int = 10
    KAFKA_RETRY_DELAY: float = 0.3
    KAFKA_CONNECT_TIMEOUT: float = 30.0
    KAFKA_AUTO_CREATE_TOPICS: bool = False

    # Outbound event publication
    EVENT_PUBLISH_TIMEOUT: float = 5.0
    EVENT_PUBLISH_RETRY_POLICY: Literal["none", "fixed-backoff"] = "none"
    EVENT_PUBLISH_RETRY_ATTEMPTS: int = 3
    EVENT_PUBLISH_RETRY_BACKOFF: float = 0.5
    EVENT_QUEUE_MAX_SIZE: int = 10000
    SHUTDOWN_DRAIN_TIMEOUT: float = 10.0

    # Inbound event consumption
    EVENT_DEDUPE_CACHE_SIZE: int = 0

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: List[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    CORS_HEADERS: List[str] = ["*"]

    # Catalog queries
    LOW_STOCK_DEFAULT_THRESHOLD: int = 10
    PAGINATION_DEFAULT_LIMIT: int = 10


# Create a singleton instance
_settings_instance = None


def get_settings() -> ProductSettings:
    """Get settings singleton instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = ProductSettings()
    return _settings_instance
