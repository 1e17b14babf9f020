"""
Fulfillment Service configuration using shared patterns
"""

from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Repository root (the directory holding fulfillment_service/)
ROOT_DIR = Path(__file__).parent.parent.parent.parent
# Load from fulfillment_service/.env
ENV_FILE = ROOT_DIR / "fulfillment_service" / ".env"


class FulfillmentServiceSettings(BaseSettings):
    # Application
    APP_NAME: str = "Fulfillment Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Service specific
    SERVICE_NAME: str = "fulfillment-service"

    # Database
    FULFILLMENT_DATABASE_URL: str = "sqlite+aiosqlite:///fulfillment.db"
    TEST_DATABASE_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Kafka for events
    KAFKA_ENABLED: bool = True
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_GROUP_ID: str = "fulfillment-service"
    KAFKA_TOPIC_FULFILLMENT_EVENTS: str = "fulfillment.events"
    KAFKA_TOPIC_PAYMENT_EVENTS: str = "payment.events"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: List[str] = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    CORS_HEADERS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"

    # Returns policy
    RETURN_WINDOW_HOURS: int = 24

    # Settlement policy
    PAYOUT_MINIMUM_AMOUNT: Decimal = Decimal("100.00")
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("0.10")

    # Pickup / dropoff codes
    PICKUP_CODE_LENGTH: int = 6
    PICKUP_CODE_MAX_ATTEMPTS: int = 10

    # Vendor risk scoring (analytics)
    RISK_REFUND_RATE_WEIGHT: float = 0.6
    RISK_RESPONSE_TIME_WEIGHT: float = 0.4
    RISK_REFUND_RATE_CEILING: float = 0.20
    RISK_RESPONSE_TIME_CEILING_HOURS: float = 96.0
    RISK_HIGH_THRESHOLD: float = 0.7
    RISK_MEDIUM_THRESHOLD: float = 0.4
    REFUND_TREND_THRESHOLD_PERCENT: float = 5.0

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env file
    )


# Create a singleton instance
_settings_instance = None


def get_settings() -> FulfillmentServiceSettings:
    """Get settings singleton instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = FulfillmentServiceSettings()
    return _settings_instance
