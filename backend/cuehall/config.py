"""Application configuration."""
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./cuehall.db",
        description="Database connection URL (postgresql+asyncpg in production)",
    )
    db_pool_size: int = Field(
        default=20,
        description="DB connection pool size (ignored for SQLite)",
    )
    db_max_overflow: int = Field(
        default=10,
        description="Max overflow connections (ignored for SQLite)",
    )
    db_create_tables: bool = Field(
        default=True,
        description="Create missing tables at startup",
    )

    # Redis (optional; notifications fall back to log-only delivery)
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL for real-time notifications",
    )
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0
    notification_publish_attempts: int = Field(
        default=3,
        description="Publish attempts per notification before giving up",
    )

    # JWT (identity tokens)
    jwt_secret_key: str = Field(
        default="dev-only-signing-key-replace-before-deploying",
        description="HS256 key used to verify identity tokens",
    )
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None

    # Payments
    stripe_api_key: str | None = None
    stripe_webhook_secret: str | None = None
    payment_currency: str = "usd"
    cents_per_token: int = Field(
        default=100,
        description="Price of one token in the smallest currency unit",
    )
    min_purchase_cents: int = 100
    max_purchase_cents: int = 100_000

    # Game sessions
    default_per_game_cost: int = Field(
        default=10,
        description="Per-game cost applied to venues created without one",
    )
    payment_window_seconds: int = Field(
        default=300,
        description="Pending sessions older than this are cancelled",
    )
    expiry_sweep_interval_seconds: float = Field(
        default=30.0,
        description="Interval between pending-session expiry sweeps",
    )

    # Sentry
    sentry_dsn: str | None = None
    sentry_traces_sample_rate: float = 0.05

    # CORS
    cors_origins: str = "http://localhost:3000"

    @field_validator("cents_per_token", "payment_window_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative values."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("default_per_game_cost")
    @classmethod
    def validate_per_game_cost(cls, v: int) -> int:
        if v < 0:
            raise ValueError("default_per_game_cost must not be negative")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )

            if len(self.jwt_secret_key) < 32 or "dev-only" in self.jwt_secret_key:
                raise ValueError(
                    "jwt_secret_key must be a strong key of at least 32 characters "
                    "in production environment"
                )

            origins = [o.strip() for o in self.cors_origins.split(",")]
            if "*" in origins:
                raise ValueError(
                    "CORS wildcard '*' is not allowed in production environment. "
                    "Specify explicit allowed origins."
                )

            if self.stripe_api_key and not self.stripe_webhook_secret:
                raise ValueError(
                    "stripe_webhook_secret is required when payments are enabled"
                )

        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
