"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL (async driver)")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")
    store_timeout_seconds: float = Field(
        default=10.0, description="Timeout for a single store unit of work (seconds)"
    )

    # Delivery Configuration
    auto_deliver_default: bool = Field(
        default=True,
        description="Auto-deliver value used when no runtime override is stored",
    )
    artifact_dir: str = Field(default="./artifacts", description="Directory for rendered artifacts")
    renderer_timeout_seconds: float = Field(
        default=30.0, description="Timeout for a single renderer invocation (seconds)"
    )
    renderer_max_attempts: int = Field(default=3, description="Max renderer attempts per delivery")
    renderer_retry_base_delay: float = Field(
        default=0.5, description="Base delay for renderer retry backoff (seconds)"
    )

    # Payment Configuration
    default_currency: str = Field(default="TRY", description="Currency recorded on payments")
    payment_method: str = Field(default="paytr", description="Payment method recorded on payments")

    # Notification Configuration
    notification_fanout_concurrency: int = Field(
        default=20, description="Max concurrent per-user writes during a global send"
    )

    # Worker Configuration
    delivery_worker_interval_seconds: float = Field(
        default=30.0, description="Delivery retry sweep interval (seconds)"
    )
    delivery_worker_batch_size: int = Field(
        default=50, description="Max purchases retried per sweep"
    )

    # Application Configuration
    app_name: str = Field(default="orderflow", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )

    # Security
    api_key_header: str = Field(default="X-API-Key", description="Operator API key header name")
    admin_api_key: str = Field(default="change-me", description="Operator API key")
    user_id_header: str = Field(
        default="X-User-ID", description="Header carrying the authenticated user id"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("default_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    @field_validator("renderer_max_attempts", "notification_fanout_concurrency")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured store is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once. Runtime-editable
    values (such as the auto-deliver flag) live in the store, not here.
    """
    return Settings()
