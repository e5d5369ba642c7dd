"""Request correlation middleware for the gateway application."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

import structlog
from fastapi import Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from ceres_gateway.utils.logging import bind_correlation_id, reset_correlation_id

logger = structlog.get_logger(__name__)

DEFAULT_CORRELATION_HEADER = "IA-Request-Id"


def _elapsed_ms(started: float) -> float:
    return round((perf_counter() - started) * 1000, 2)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind the caller's request id (or a fresh one) to every log line of a request."""

    def __init__(self, app: ASGIApp, *, correlation_header: str | None = None) -> None:
        super().__init__(app)
        self._correlation_header = correlation_header or DEFAULT_CORRELATION_HEADER

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(self._correlation_header) or str(uuid4())
        request.state.correlation_id = correlation_id
        tokens = bind_correlation_id(correlation_id)
        started = perf_counter()
        log = logger.bind(method=request.method, path=request.url.path)

        log.info("gateway.request")
        try:
            response = await call_next(request)
        except Exception:
            log.exception("gateway.request.error", duration_ms=_elapsed_ms(started))
            raise
        else:
            log.info(
                "gateway.response",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
            )
        finally:
            reset_correlation_id(tokens)

        response.headers[self._correlation_header] = correlation_id
        return response


__all__ = ["CorrelationIdMiddleware"]
