"""Configuration management for the short-link resolver.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlink.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    ttl = settings.CACHE_EXPIRY

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- An empty REDIS_URL runs the service without a cache.
- CACHE_EXPIRY must be a positive number of seconds.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Record store
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Cache layer (empty URL disables caching)
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_EXPIRY: int = Field(default=3600, gt=0)
    CACHE_SOCKET_TIMEOUT_SECONDS: float = 0.5

    # Visit analytics
    GEOIP_DB_PATH: str | None = None
    TRUST_PROXY: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
