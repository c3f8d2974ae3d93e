"""Service configuration using Pydantic Settings.

Load order:
1. Environment variables
2. .env file (if present)
3. Default values

The Stripe API key and webhook signing secret have no defaults: a process
started without them fails while building the settings, before serving any
request.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Billing service configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============ Environment ============
    environment: Environment = Environment.DEVELOPMENT
    log_level: LogLevel = LogLevel.INFO
    debug: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # ============ Stripe ============
    stripe_secret_key: SecretStr = Field(
        ...,
        description="Stripe API secret key",
    )
    stripe_webhook_secret: SecretStr = Field(
        ...,
        description="Signing secret of the Stripe webhook endpoint",
    )
    stripe_webhook_tolerance: int = Field(
        default=300,
        ge=0,
        description="Maximum age in seconds of a signed webhook timestamp",
    )

    # Subscription prices
    stripe_price_pro_monthly: str = "price_1Rz8AsAu3NmqHUAu2X27DNPq"
    stripe_price_pro_yearly: str = "price_1Rz8CGAu3NmqHUAulBRTflg5"
    stripe_price_team_monthly: str = "price_1Rz8FWAu3NmqHUAuJXQXYqxZ"
    stripe_price_team_yearly: str = "price_1Rz8IrAu3NmqHUAu4YSpwuTP"

    # Pay-as-you-go token packs
    stripe_price_payg_100k: str = "price_1Ryxw6Au3NmqHUAuyZl1DyKw"
    stripe_price_payg_500k: str = "price_1RyxymAu3NmqHUAua7cZm7PH"
    stripe_price_payg_1m: str = "price_1Ryy0kAu3NmqHUAudDjtBdeg"

    # ============ Firebase ============
    firebase_service_account: SecretStr | None = Field(
        default=None,
        description="Service account JSON; application default credentials when unset",
    )
    firebase_project_id: str | None = None
    users_collection: str = "users"

    # Base URL of the frontend, used for checkout redirects
    app_url: str = "https://nexusrbx.com"

    # CORS
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "https://nexusrbx.com",
            "https://www.nexusrbx.com",
            "https://nexusairbx.com",
            "https://nexusairbx.vercel.app",
        ]
    )

    # ============ Rate Limiting ============
    redis_url: RedisDsn = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    user_rate_limit_per_minute: int = Field(default=30, ge=1)
    read_rate_limit_per_minute: int = Field(default=120, ge=1)

    # ============ Monitoring ============
    sentry_dsn: str | None = None
    prometheus_enabled: bool = True

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
