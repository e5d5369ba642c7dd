"""Resolver level reporting and timing middleware for ``graphql-core``.

Key Responsibilities:
    - Wrap root resolvers in OpenTelemetry spans tagged with the published
      schema tag and the calling client's name and version
    - Collect per-resolver timings returned in ``extensions.tracing``

Collaborators:
    - Upstream: ``GraphQLBase`` appends these middlewares to the served schema
    - Downstream: OpenTelemetry tracer provider configured by
      :func:`ceres_gateway.observability.tracing.configure_tracing`
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from inspect import isawaitable
from typing import Any

from graphql import GraphQLResolveInfo
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

tracer = trace.get_tracer(__name__)

CLIENT_NAME_HEADER = "graphql-client-name"
CLIENT_VERSION_HEADER = "graphql-client-version"

Resolver = Callable[..., Any]


def _request_headers(context: Any) -> Any:
    request = getattr(context, "request", None)
    return request.headers if request is not None else {}


class OperationReportingMiddleware:
    """Open a span for every root field resolution."""

    def __init__(self, schema_tag: str) -> None:
        self.schema_tag = schema_tag

    def resolve(self, next_: Resolver, root: Any, info: GraphQLResolveInfo, **args: Any) -> Any:
        if info.path.prev is not None:
            return next_(root, info, **args)

        headers = _request_headers(info.context)
        attributes = {
            "graphql.schema_tag": self.schema_tag,
            "graphql.operation.type": info.operation.operation.value,
            "graphql.field": info.field_name,
        }
        client_name = headers.get(CLIENT_NAME_HEADER)
        client_version = headers.get(CLIENT_VERSION_HEADER)
        if client_name:
            attributes["graphql.client.name"] = client_name
        if client_version:
            attributes["graphql.client.version"] = client_version

        span = tracer.start_span(
            f"graphql.{info.parent_type.name}.{info.field_name}", attributes=attributes
        )
        try:
            result = next_(root, info, **args)
        except Exception as exc:
            _fail(span, exc)
            span.end()
            raise
        if isawaitable(result):
            return _end_span_after(result, span)
        span.end()
        return result


async def _end_span_after(result: Awaitable[Any], span: Span) -> Any:
    try:
        return await result
    except Exception as exc:
        _fail(span, exc)
        raise
    finally:
        span.end()


def _fail(span: Span, exc: Exception) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))


class ResolverTimingMiddleware:
    """Record resolver durations on ``context.resolver_timings``."""

    def resolve(self, next_: Resolver, root: Any, info: GraphQLResolveInfo, **args: Any) -> Any:
        start = time.perf_counter_ns()
        result = next_(root, info, **args)
        if isawaitable(result):
            return self._record_after(result, info, start)
        self._record(info, start)
        return result

    async def _record_after(self, result: Awaitable[Any], info: GraphQLResolveInfo, start: int) -> Any:
        try:
            return await result
        finally:
            self._record(info, start)

    def _record(self, info: GraphQLResolveInfo, start: int) -> None:
        timings = getattr(info.context, "resolver_timings", None)
        if timings is None:
            return
        started_ns = getattr(info.context, "started_ns", start)
        timings.append(
            {
                "path": info.path.as_list(),
                "parentType": info.parent_type.name,
                "fieldName": info.field_name,
                "returnType": str(info.return_type),
                "startOffset": start - started_ns,
                "duration": time.perf_counter_ns() - start,
            }
        )


def build_tracing_extension(
    timings: list[dict[str, Any]], started_at: datetime, started_ns: int
) -> dict[str, Any]:
    """Return the ``extensions.tracing`` payload for one request."""
    ended_at = datetime.now(UTC)
    return {
        "version": 1,
        "startTime": started_at.isoformat(),
        "endTime": ended_at.isoformat(),
        "duration": time.perf_counter_ns() - started_ns,
        "execution": {"resolvers": list(timings)},
    }


__all__ = [
    "OperationReportingMiddleware",
    "ResolverTimingMiddleware",
    "build_tracing_extension",
]
