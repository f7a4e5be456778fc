"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that loads the flow catalog and builds the engine once
  - CORS middleware
  - Global exception handlers (FlowError -> 409/404, ValueError -> 404/409/400)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness checks

The ``cli()`` function is the ``flow-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from flow_db.engine import dispose_engine, get_engine
from flow_engine import FlowCatalog, FlowEngine, FlowError

from flow_server.config import ServerSettings, load_settings
from flow_server.errors import (
    flow_error_handler,
    generic_error_handler,
    key_error_handler,
    value_error_handler,
)
from flow_server.job_runner import HttpJobRunner
from flow_server.registry import SessionRegistry
from flow_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lifespan: runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Load the YAML catalog into a ``FlowCatalog``
      2. Build the HTTP job runner (if ``JOB_RUNNER_URL`` is set)
      3. Build ``FlowEngine`` and the ``SessionRegistry``
      4. Stash them on ``app.state`` for dependency injection

    Shutdown:
      1. Abort live sessions
      2. Close the job runner client and the database pool
    """
    settings: ServerSettings = app.state.settings

    # --- Load catalog ---
    catalog = FlowCatalog(catalog_dir=settings.catalog_dir)
    catalog.load()

    # --- Job runner ---
    runner = None
    if settings.job_runner_url:
        runner = HttpJobRunner(
            settings.job_runner_url,
            poll_interval=settings.job_poll_interval,
            timeout=settings.job_timeout,
        )
        logger.info("Using job runner at %s", settings.job_runner_url)
    else:
        logger.warning("JOB_RUNNER_URL not set; only preview sessions can run ai-transform steps")

    engine = FlowEngine(catalog, extras_provider=catalog, runner=runner)
    registry = SessionRegistry(
        engine,
        event_buffer_size=settings.event_buffer_size,
        session_ttl=settings.session_ttl,
    )

    app.state.catalog = catalog
    app.state.registry = registry
    app.state.runner = runner

    yield

    # --- Shutdown ---
    await registry.shutdown()
    if runner is not None:
        await runner.aclose()
    if settings.persist_snapshots:
        await dispose_engine()
        logger.info("Database engine disposed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Flow Engine API Server",
        description="REST API for running experience flows",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(FlowError, flow_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(KeyError, key_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health(request: Request) -> dict:
        """Readiness check — reports live sessions and, if enabled, DB connectivity."""
        body = {"status": "ok", "live_sessions": len(request.app.state.registry)}
        if not settings.persist_snapshots:
            return body
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("Health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}
        return body

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn flow_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``flow-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "flow_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
