"""
Correlation ID middleware for request tracing.

Each request gets an id from the X-Correlation-ID header (or a fresh UUID). It is kept
in request.state and in a contextvar, so telemetry events created anywhere during the
request carry it without the orchestrator knowing about HTTP.
"""

import uuid
from contextvars import ContextVar, Token
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

HEADER_CORRELATION_ID = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 128

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id(request: Request | None = None) -> str | None:
    """Correlation id from request.state if available, else the contextvar (None if unset)."""
    if request is not None:
        cid = getattr(request.state, "correlation_id", None)
        if cid:
            return cid
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> Token:
    """Set the contextvar (e.g. in jobs or tests); pass the token to reset_correlation_id."""
    return _correlation_id_var.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    _correlation_id_var.reset(token)


def _accept_incoming(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    if not value or len(value) > MAX_CORRELATION_ID_LENGTH or not value.isprintable():
        return None
    return value


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Sets and echoes X-Correlation-ID on every request."""

    async def dispatch(self, request: Request, call_next: Callable):
        cid = _accept_incoming(request.headers.get(HEADER_CORRELATION_ID)) or str(uuid.uuid4())
        request.state.correlation_id = cid
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[HEADER_CORRELATION_ID] = cid
        return response
