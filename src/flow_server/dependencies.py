"""FastAPI dependency injection — provides DB sessions, the registry and the catalog.

Database access is optional: when ``persist_snapshots`` is off, routes get
``None`` instead of a session and no connection is opened.  When on, each
request gets a fresh ``AsyncSession`` that is committed on success and
rolled back on error; the repository only ever calls ``flush()``.
"""

from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from flow_db.engine import get_session_factory
from flow_engine.catalog import FlowCatalog

from flow_server.config import ServerSettings
from flow_server.registry import SessionRegistry


# ------------------------------------------------------------------
# Database session: transaction boundary lives here
# ------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_snapshot_db(request: Request) -> AsyncGenerator[Optional[AsyncSession], None]:
    """Like :func:`get_db`, but yields ``None`` when snapshots are disabled."""
    if not request.app.state.settings.persist_snapshots:
        yield None
        return
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ------------------------------------------------------------------
# Registry, catalog & settings: stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_registry(request: Request) -> SessionRegistry:
    """Return the session registry from ``app.state``."""
    return request.app.state.registry


def get_catalog(request: Request) -> FlowCatalog:
    """Return the FlowCatalog singleton from ``app.state``."""
    return request.app.state.catalog


def get_settings(request: Request) -> ServerSettings:
    return request.app.state.settings
