"""Dependency providers and settings management."""

from functools import lru_cache
from typing import List

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict

from .state import AnalyticsState


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Analytical store (SQLAlchemy async URL)
    ANALYTICS_DATABASE_URL: str = "sqlite+aiosqlite:///./analytics.db"
    ANALYTICS_DIALECT: str = "sqlite"  # clickhouse | sqlite

    # Redis Configuration
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "gdm:"

    # Query cache
    CACHE_KEY_PREFIX: str = "ch:"
    CACHE_DEFAULT_TTL_SECONDS: int = 300  # 5 minutes
    CACHE_ENABLED: bool = True
    SNAPSHOT_TTL_SECONDS: int = 300

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_analytics_state(request: Request) -> AnalyticsState:
    """Return the AnalyticsState built by the application lifespan.

    Tests replace this provider through app.dependency_overrides.
    """
    return request.app.state.analytics
