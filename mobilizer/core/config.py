"""Application configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 20

    # JWT Configuration (tokens are issued by the auth service)
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:19006,http://127.0.0.1:3000"

    # Scope table override (JSON file); built-in table is used when unset
    SCOPES_FILE: Optional[str] = None

    # Location reference data
    LOCATION_COUNTRY_NAME: str = "Nigeria"
    LOCATION_COUNTRY_CODE: str = "NG"
    DELIMITATION_SAMPLE_LIMIT: int = 20

    # Environment
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()


def get_settings() -> Settings:
    return settings
