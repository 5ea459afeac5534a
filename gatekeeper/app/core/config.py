from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


RATE_LIMIT_BACKENDS = ("redis", "memory")
RATE_LIMIT_ALGORITHMS = ("sliding_window", "token_bucket")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # PostgreSQL settings
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "gatekeeper"
    db_password: str = "gatekeeper"
    db_name: str = "gatekeeper"

    # Connection pool settings
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30  # Seconds to wait for a pooled connection
    db_pool_recycle: int = 300
    db_pool_pre_ping: bool = True  # Detect stale connections before use

    # asyncpg specific
    db_command_timeout: float = 30.0

    # Explicit DATABASE_URL (takes priority over db_* settings)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    # Upper bound on acquiring a store connection for one request
    store_timeout_seconds: float = 5.0

    @property
    def database_url(self) -> str:
        """Build database connection URL.

        Priority:
        1. database_url_override (from DATABASE_URL env var or .env file)
        2. Built from db_* settings
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_backend: str = "redis"  # redis | memory
    rate_limit_algorithm: str = "sliding_window"  # memory backend only
    rate_limit_requests_per_minute: int = 60
    rate_limit_burst_size: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_timeout_seconds: float = 0.5
    # Only honour X-Forwarded-For behind a trusted proxy
    rate_limit_trust_forwarded_for: bool = False

    # Redis settings
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 0.5

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_requests_per_minute",
        "rate_limit_burst_size",
        "rate_limit_window_seconds",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_backend")
    @classmethod
    def validate_rate_limit_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in RATE_LIMIT_BACKENDS:
            raise ValueError(f"rate_limit_backend must be one of {RATE_LIMIT_BACKENDS}")
        return v

    @field_validator("rate_limit_algorithm")
    @classmethod
    def validate_rate_limit_algorithm(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in RATE_LIMIT_ALGORITHMS:
            raise ValueError(
                f"rate_limit_algorithm must be one of {RATE_LIMIT_ALGORITHMS}"
            )
        return v

    @field_validator(
        "rate_limit_timeout_seconds",
        "store_timeout_seconds",
        "redis_socket_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("db_pool_size", "db_max_overflow")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        """Validate pool sizes are positive."""
        if v < 1:
            raise ValueError("pool size values must be at least 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
