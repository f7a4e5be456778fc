"""Database settings for snapshot persistence.

Connection parameters come from the environment:

1. ``DATABASE_URL`` (takes precedence), or
2. ``PG_HOST``, ``PG_PORT``, ``PG_USER``, ``PG_PASSWORD``, ``PG_DATABASE``.

Pool sizing uses ``PG_POOL_SIZE`` / ``PG_MAX_OVERFLOW``.  Alembic needs the
synchronous URL; the runtime engine needs the asyncpg one.
"""

import os
from dataclasses import dataclass

_ASYNC_PREFIX = "postgresql+asyncpg://"
_SYNC_PREFIX = "postgresql://"


@dataclass(frozen=True)
class DatabaseSettings:
    """Immutable database connection settings."""

    url: str
    pool_size: int = 5
    max_overflow: int = 10

    @property
    def sync_url(self) -> str:
        return self.url.replace(_ASYNC_PREFIX, _SYNC_PREFIX, 1)

    @property
    def async_url(self) -> str:
        if self.url.startswith(_SYNC_PREFIX):
            return self.url.replace(_SYNC_PREFIX, _ASYNC_PREFIX, 1)
        return self.url


def load_database_settings() -> DatabaseSettings:
    """Build settings from environment variables."""
    url = os.getenv("DATABASE_URL")
    if not url:
        host = os.getenv("PG_HOST", "localhost")
        port = os.getenv("PG_PORT", "5432")
        user = os.getenv("PG_USER", "flow")
        password = os.getenv("PG_PASSWORD", "flow")
        database = os.getenv("PG_DATABASE", "flow")
        url = f"{_SYNC_PREFIX}{user}:{password}@{host}:{port}/{database}"
    return DatabaseSettings(
        url=url,
        pool_size=int(os.getenv("PG_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("PG_MAX_OVERFLOW", "10")),
    )
