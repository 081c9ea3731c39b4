"""
Environment-driven settings.

Values are read once at application startup via Settings.from_env() and
passed explicitly to the services that need them.
"""

import os
from dataclasses import dataclass
from typing import Optional

ASYNC_DRIVER_PREFIX = "postgresql+asyncpg://"


def normalize_database_url(database_url: str) -> str:
    """
    Normalize a Postgres URL to the asyncpg driver.

    Handles Render/Heroku style postgres:// URLs as well as plain
    postgresql:// URLs.
    """
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", ASYNC_DRIVER_PREFIX, 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", ASYNC_DRIVER_PREFIX, 1)
    return database_url


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    jwt_access_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_access_ttl_seconds: int = 900
    tenant_header: str = "x-tenant-id"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        return cls(
            database_url=normalize_database_url(database_url) if database_url else None,
            pool_size=_int_env("DB_POOL_SIZE", 5),
            max_overflow=_int_env("DB_MAX_OVERFLOW", 10),
            pool_timeout=_int_env("DB_POOL_TIMEOUT", 30),
            pool_recycle=_int_env("DB_POOL_RECYCLE", 1800),
            jwt_access_secret=os.getenv("JWT_ACCESS_SECRET") or None,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            jwt_access_ttl_seconds=_int_env("JWT_ACCESS_TTL_SECONDS", 900),
            tenant_header=os.getenv("TENANT_HEADER", "x-tenant-id").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable is not set")
        return self.database_url

    def require_jwt_secret(self) -> str:
        if not self.jwt_access_secret:
            raise ValueError("JWT_ACCESS_SECRET environment variable is not set")
        return self.jwt_access_secret
