"""
Configuration and settings for the forum backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service.

    Field names map to upper-case environment variables
    (``DATABASE_URL``, ``REDIS_URL``, ``ENVIRONMENT`` ...).
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Database (SQLite file by default, any SQLAlchemy URL accepted)
    database_url: str = Field(default="sqlite+pysqlite:///data/forum.db")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Rate limiting (Redis when configured, process memory otherwise)
    redis_url: Optional[str] = Field(default=None)
    rate_limit_key_prefix: str = Field(default="chanboard:ratelimit")
    rate_limit_points: int = Field(default=20, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
