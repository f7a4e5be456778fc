"""Global exception handlers — map engine exceptions to HTTP status codes.

Engine contract errors (``FlowError`` subclasses) mean the client asked for
something the session cannot do right now, so they map to 409, except an
unknown experience which is a 404.  The registry and catalog raise
``ValueError``/``KeyError`` for missing resources and bad input.  Route
handlers stay on the happy path and let these handlers pick the status.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from flow_engine.errors import (
    ConcurrentJobError,
    ExperienceNotFoundError,
    FlowError,
    InvalidStateError,
    InvalidTransitionError,
    NavigationError,
    SessionTerminatedError,
)

logger = logging.getLogger(__name__)

# --- Keyword patterns in ValueError messages and their HTTP status codes ---
# Checked in order; first match wins.
_VALUE_ERROR_PATTERNS: list[tuple[str, int]] = [
    ("already exists", 409),
    ("not found", 404),
]


# --- Client-safe messages keyed by HTTP status code ---
_SAFE_MESSAGES: dict[int, str] = {
    404: "Resource not found",
    409: "Resource already exists",
    400: "Invalid request",
}

# --- Client-safe messages for engine errors ---
# Session and step ids stay in the server log.
_FLOW_ERROR_MESSAGES: dict[type, str] = {
    NavigationError: "Navigation not allowed",
    InvalidStateError: "Operation not valid for the current step",
    InvalidTransitionError: "Invalid transform state transition",
    ConcurrentJobError: "A transform job is already in progress",
    SessionTerminatedError: "Session has ended",
    ExperienceNotFoundError: "Experience not found",
}


async def flow_error_handler(request: Request, exc: FlowError) -> JSONResponse:
    """Map engine contract errors to 409 (404 for a missing experience).

    The response carries the error class name in ``error`` so clients can
    branch on it, plus a generic ``detail``.
    """
    status = 404 if isinstance(exc, ExperienceNotFoundError) else 409
    logger.warning("%s [%d] at %s: %s", type(exc).__name__, status, request.url, exc)
    detail = _FLOW_ERROR_MESSAGES.get(type(exc), "Operation not allowed")
    return JSONResponse(
        status_code=status,
        content={"detail": detail, "error": type(exc).__name__},
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Map ``ValueError`` to 404 (not found), 409 (duplicate) or 400.

    The raw message is logged server-side but never sent to the client.
    """
    msg = str(exc)
    status = 400  # default
    for pattern, code in _VALUE_ERROR_PATTERNS:
        if pattern in msg.lower():
            status = code
            break

    logger.warning("ValueError [%d] at %s: %s", status, request.url, msg)
    safe_detail = _SAFE_MESSAGES.get(status, "Invalid request")
    return JSONResponse(status_code=status, content={"detail": safe_detail})


async def key_error_handler(request: Request, exc: KeyError) -> JSONResponse:
    """Map ``KeyError`` (e.g. unknown event id) to 404."""
    logger.warning("KeyError at %s: %s", request.url, exc)
    return JSONResponse(status_code=404, content={"detail": "Resource not found"})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
