"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Stepflow Workflow Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./stepflow.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker + event channel)
    REDIS_URL: str = "redis://localhost:6379/0"
    EVENT_CHANNEL_PREFIX: str = "execution"

    # Security Settings
    # MUST be set in environment for production; Fernet key for the credential vault
    ENCRYPTION_KEY: str = ""

    # Worker / queue
    WORKER_CONCURRENCY: int = 5
    DISPATCH_MAX_RETRIES: int = 3
    DISPATCH_BACKOFF_SECONDS: int = 2
    SCHEDULE_POLL_SECONDS: int = 60

    # Step execution defaults
    DEFAULT_RETRY_MAX_ATTEMPTS: int = 3
    DEFAULT_RETRY_BACKOFF_MS: int = 1000
    HTTP_DEFAULT_TIMEOUT_MS: int = 30000
    HTTP_ALLOW_PRIVATE_NETWORKS: bool = False
    TRANSFORM_TIMEOUT_MS: int = 5000
    CUSTOM_CODE_TIMEOUT_MS: int = 10000
    NODE_BINARY: str = "node"

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    def validate_secrets(self) -> None:
        """Validate that critical secrets are set in production.

        Raises:
            RuntimeError: If production environment has an empty ENCRYPTION_KEY
        """
        if self.is_production and not self.ENCRYPTION_KEY:
            raise RuntimeError(
                "CRITICAL: ENCRYPTION_KEY environment variable must be set in production. "
                "Do not use default values."
            )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
