"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Workflow Execution Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production, testing

    # Persistence (only used by the SQL repositories)
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False

    # Step execution
    DEFAULT_STEP_TIMEOUT: float = 300.0  # seconds
    MAX_RETRY_DELAY: float = 300.0  # seconds
    DELAY_STEP_MAX_SECONDS: float = 300.0

    # Processor
    HANDLER_POOL_SIZE: int = 10
    ACTION_TIMEOUT: float = 30.0  # seconds, per action
    HTTP_TIMEOUT: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

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
