"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
"""

import os
from dataclasses import dataclass, field

# --- Pagination & cleanup defaults ---
# Module-level constants read at import time so FastAPI Query() defaults
# can reference them (Query defaults must be static at decoration time).
DEFAULT_PAGE_LIMIT = int(os.getenv("DEFAULT_PAGE_LIMIT", "20"))
MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "100"))
DEFAULT_CLEANUP_DAYS = int(os.getenv("DEFAULT_CLEANUP_DAYS", "30"))


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS: comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Catalog directory (None -> FlowCatalog default, flows/ from repo root)
    catalog_dir: str | None = None

    # Logging
    log_level: str = "INFO"

    # External job runner (None -> interactive ai-transform sessions are rejected)
    job_runner_url: str | None = None
    job_poll_interval: float = 2.0
    job_timeout: float = 120.0

    # Events kept per session for GET /sessions/{id}/events
    event_buffer_size: int = 500

    # Seconds a completed or aborted session stays in memory before eviction
    session_ttl: float = 3600.0

    # Write a snapshot to flow_sessions after every mutating call
    persist_snapshots: bool = False

    # Admin API key: shared secret for admin endpoints (None = disabled)
    admin_api_key: str | None = None


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and related environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        catalog_dir=os.getenv("SERVER_CATALOG_DIR") or None,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        job_runner_url=os.getenv("JOB_RUNNER_URL") or None,
        job_poll_interval=float(os.getenv("JOB_POLL_INTERVAL", "2.0")),
        job_timeout=float(os.getenv("JOB_TIMEOUT", "120")),
        event_buffer_size=int(os.getenv("SERVER_EVENT_BUFFER_SIZE", "500")),
        session_ttl=float(os.getenv("SERVER_SESSION_TTL", "3600")),
        persist_snapshots=_env_bool("PERSIST_SNAPSHOTS"),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
    )
