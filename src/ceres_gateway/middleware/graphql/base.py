"""Remote schema resolver and GraphQL middleware.

This module provides :class:`GraphQLBase`, the middleware that serves the
gateway's GraphQL endpoint. It merges a local schema with schemas introspected
from remote services, keeps the merged result current when remote services
change, and recovers unreachable services with bounded exponential backoff.

Key Responsibilities:
    - Introspect every configured remote URL in parallel at startup
    - Stitch resolved remote schemas with the local schema and wrap the result
      in the configured resolver middleware
    - Publish ``REMOTE_SCHEMAS_FETCHING``/``REMOTE_SCHEMAS_FETCHED`` so the
      server can gate readiness on in-flight fetches
    - Reconcile remote schema versions and drive one retry loop per URL

Collaborators:
    - Upstream: :class:`~ceres_gateway.core.server.Server` initialises the
      middleware; the ``refreshRemoteSchema`` mutation triggers updates
    - Downstream: Remote GraphQL services over ``httpx``, the lifecycle bus,
      the retry engine, Prometheus metrics and Sentry

Side Effects:
    - Performs HTTP requests against remote services
    - Publishes lifecycle events and schedules retry tasks
    - Mounts the GraphQL routes on the FastAPI application

Thread Safety:
    - Not thread-safe; all state is mutated from the event loop. The served
      schema is replaced by a single attribute assignment

Example:
    >>> graphql = GraphQLBase(
    ...     GraphQLBaseConfig(schema=schema, remote_schema_urls=["http://pricing/graphql"]),
    ...     bus=bus,
    ... )
    >>> await graphql.initialize(app)
    >>> graphql.get_remote_schema_status("http://pricing/graphql")
    <RemoteSchemaStatus.ACTIVE: 'ACTIVE'>
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any

import httpx
import strawberry
import structlog
from fastapi import FastAPI
from graphql import GraphQLSchema, MiddlewareManager

from ceres_gateway.config.settings import AppSettings, ReportingSettings
from ceres_gateway.connectors.graphql import GraphQLAPIConnector
from ceres_gateway.core.lifecycle import LifecycleBus, LifecycleEvent
from ceres_gateway.core.retry import RetryOperation, RetryPolicy
from ceres_gateway.observability.metrics import (
    mark_remote_schema_inactive,
    record_remote_schema_fetch,
    record_retry_attempt,
    record_retry_exhausted,
)
from ceres_gateway.observability.sentry import capture_exception
from ceres_gateway.utils.errors import (
    ConfigurationError,
    RemoteQueryError,
    RemoteSchemaUnavailableError,
)

from .context import DataLoaderFactory
from .merge import merge_schemas
from .remote import introspect_remote_schema, make_remote_executable_schema
from .router import create_graphql_router
from .tracing import OperationReportingMiddleware, ResolverTimingMiddleware

logger = structlog.get_logger(__name__)

VERSION_QUERY = "{ version }"
RETRY_FAILURE_MESSAGE = "Ceres failed to get remote schema"
DEFAULT_FORWARD_HEADERS = ("IA-Context", "IA-Trace-Id", "IA-Request-Id", "Authorization")

# ==============================================================================
# DATA MODELS
# ==============================================================================


class RemoteSchemaStatus(str, Enum):
    """Whether a remote URL currently contributes a schema."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


@dataclass(frozen=True)
class RetryTarget:
    """State handed to one retry loop: which URL, and which version it waits for."""

    url: str
    target_version: str | None = None


@dataclass(frozen=True)
class ServedSchema:
    """Merged executable schema together with its resolver middleware."""

    schema: GraphQLSchema
    middleware: MiddlewareManager | None = None


@dataclass
class RemoteSchemaEntry:
    schema: GraphQLSchema | None = None
    version: str | None = None


@dataclass
class GraphQLBaseConfig:
    """Static configuration of a :class:`GraphQLBase` instance.

    Attributes:
        schema: Local schema, either a ``strawberry.Schema`` or a
            ``graphql-core`` schema.
        path: HTTP path of the GraphQL endpoint.
        remote_schema_urls: Remote GraphQL endpoints to introspect and stitch.
        middlewares: ``graphql-core`` resolver middleware applied to the
            merged schema.
        create_data_loaders: Factory invoked once per request.
        retry_policy: Backoff applied to unresolved remote schemas.
        request_timeout: Timeout in seconds for every remote HTTP call.
        initial_fetch_deadline: Upper bound in seconds for the initial
            parallel fetch; ``None`` waits for every fetch to finish.
        forward_headers: Request headers forwarded on delegated queries.
        reporting: Operation reporting and resolver tracing options.
    """

    schema: strawberry.Schema | GraphQLSchema
    path: str = "/graphql"
    remote_schema_urls: Sequence[str] = ()
    middlewares: Sequence[Any] = ()
    create_data_loaders: DataLoaderFactory | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    request_timeout: float = 10.0
    initial_fetch_deadline: float | None = None
    forward_headers: Sequence[str] = DEFAULT_FORWARD_HEADERS
    reporting: ReportingSettings = field(default_factory=ReportingSettings)

    @property
    def local_schema(self) -> GraphQLSchema:
        """The ``graphql-core`` schema behind :attr:`schema`."""
        return getattr(self.schema, "_schema", self.schema)

    @classmethod
    def from_settings(
        cls, schema: strawberry.Schema | GraphQLSchema, settings: AppSettings, **overrides: Any
    ) -> GraphQLBaseConfig:
        graphql_settings = settings.graphql
        retry = graphql_settings.retry
        values: dict[str, Any] = {
            "schema": schema,
            "path": graphql_settings.path,
            "remote_schema_urls": tuple(graphql_settings.remote_schema_urls),
            "retry_policy": RetryPolicy(
                factor=retry.factor,
                min_timeout=retry.min_timeout,
                retries=retry.retries,
                max_timeout=retry.max_timeout,
            ),
            "request_timeout": graphql_settings.request_timeout,
            "initial_fetch_deadline": graphql_settings.initial_fetch_deadline,
            "forward_headers": tuple(graphql_settings.forward_headers),
            "reporting": settings.reporting,
        }
        values.update(overrides)
        return cls(**values)


FatalHandler = Callable[[RemoteSchemaUnavailableError], None]


def report_fatal_error(error: RemoteSchemaUnavailableError) -> None:
    """Default handler for exhausted retries: log and report to Sentry."""
    logger.error(
        "gateway.remote_schema.unavailable",
        url=error.url,
        attempts=error.attempts,
        cause=repr(error.__cause__) if error.__cause__ else None,
    )
    capture_exception(error)


# ==============================================================================
# RESOLVER
# ==============================================================================


class GraphQLBase:
    """GraphQL middleware serving a local schema stitched with remote schemas."""

    def __init__(
        self,
        config: GraphQLBaseConfig,
        *,
        bus: LifecycleBus,
        client: httpx.AsyncClient | None = None,
        on_fatal: FatalHandler | None = None,
    ) -> None:
        self.config = config
        self.path = config.path
        self._bus = bus
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout)
        self._owns_client = client is None
        self._on_fatal = on_fatal or report_fatal_error
        self._entries: dict[str, RemoteSchemaEntry] = {
            url: RemoteSchemaEntry() for url in config.remote_schema_urls
        }
        self._retry_operations: dict[str, RetryOperation] = {}
        self._retry_targets: dict[str, RetryTarget] = {}
        self._failures: dict[str, RemoteSchemaUnavailableError] = {}
        self._fetch_errors: dict[str, Exception] = {}
        self._served: ServedSchema | None = None
        self._mounted = False
        self._closed = False

    # ------------------------------------------------------------------
    # Middleware protocol
    # ------------------------------------------------------------------
    async def initialize(self, app: FastAPI) -> None:
        """Resolve remote schemas, build the served schema, and mount the routes.

        Raises:
            ConfigurationError: If operation reporting is enabled without a
                schema tag.
        """
        self._publish(LifecycleEvent.REMOTE_SCHEMAS_FETCHING)
        fetches = asyncio.gather(*(self.add_remote_schema(url) for url in self._entries))
        deadline = self.config.initial_fetch_deadline
        if deadline is None:
            await fetches
        else:
            try:
                await asyncio.wait_for(fetches, timeout=deadline)
            except asyncio.TimeoutError:
                unresolved = [url for url, entry in self._entries.items() if entry.schema is None]
                logger.warning(
                    "gateway.remote_schema.initial_fetch_timeout",
                    deadline=deadline,
                    unresolved=unresolved,
                )
        if self.is_schema_healthy():
            self._publish(LifecycleEvent.REMOTE_SCHEMAS_FETCHED)

        self.refresh()
        if not self._mounted:
            app.include_router(create_graphql_router(self))
            self._mounted = True
        logger.info("gateway.graphql.mounted", path=self.path, remote_urls=list(self._entries))

    async def close(self) -> None:
        """Stop every retry loop and release the owned HTTP client."""
        self._closed = True
        for operation in self._retry_operations.values():
            operation.stop()
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Remote schema resolution
    # ------------------------------------------------------------------
    async def update_remote_schema(self, url: str, target_version: str | None = None) -> None:
        """Re-fetch the schema at ``url`` unless ``target_version`` is already cached.

        Raises:
            KeyError: If ``url`` is not a configured remote schema URL.
        """
        target_version = target_version or None
        entry = self._entry(url)
        logger.info("gateway.remote_schema.updating", url=url, target_version=target_version)
        if target_version is not None and entry.version == target_version:
            logger.info("gateway.remote_schema.version_current", url=url, version=entry.version)
            return

        self._publish(LifecycleEvent.REMOTE_SCHEMAS_FETCHING)
        if await self.add_remote_schema(url):
            self.refresh()
        if self.is_schema_healthy():
            self._publish(LifecycleEvent.REMOTE_SCHEMAS_FETCHED)
        self._start_retry_operation(url, target_version)

    async def add_remote_schema(self, url: str) -> bool:
        """Introspect ``url`` and cache its executable schema.

        Returns:
            ``True`` when the schema was resolved; failures are logged and
            leave the previous entry untouched.
        """
        entry = self._entry(url)
        try:
            schema = await introspect_remote_schema(
                url, self._client, timeout=self.config.request_timeout
            )
        except RemoteQueryError as exc:
            self._fetch_errors[url] = exc
            record_remote_schema_fetch(url, success=False)
            if entry.schema is None:
                mark_remote_schema_inactive(url)
            logger.warning(
                "gateway.remote_schema.fetch_failed",
                url=url,
                error=str(exc),
                cause=repr(exc.__cause__) if exc.__cause__ else None,
            )
            return False

        await self._update_remote_schema_version(url)
        entry.schema = make_remote_executable_schema(
            schema,
            url,
            self._client,
            forward_headers=self.config.forward_headers,
            timeout=self.config.request_timeout,
        )
        self._fetch_errors.pop(url, None)
        self._failures.pop(url, None)
        record_remote_schema_fetch(url, success=True)
        logger.info("gateway.remote_schema.fetched", url=url, version=entry.version)
        return True

    async def _update_remote_schema_version(self, url: str) -> None:
        entry = self._entry(url)
        logger.info("gateway.remote_schema.version_lookup", url=url, current=entry.version)
        connector = GraphQLAPIConnector(
            url, log_tag="Schema Update", client=self._client, timeout=self.config.request_timeout
        )
        try:
            data = await connector.query(VERSION_QUERY)
        except RemoteQueryError as exc:
            logger.error("gateway.remote_schema.version_failed", url=url, error=str(exc))
            return
        version = data.get("version")
        entry.version = str(version) if version is not None else None

    def refresh(self) -> ServedSchema:
        """Rebuild the served schema from every resolved source.

        Unresolved URLs are left out of the merge and get a retry loop.

        Raises:
            ConfigurationError: If operation reporting is enabled without a
                schema tag.
        """
        middleware = self._build_middleware()
        schemas: list[GraphQLSchema] = []
        for url, entry in self._entries.items():
            if entry.schema is not None:
                schemas.append(entry.schema)
                logger.debug("gateway.graphql.remote_source", url=url)
            elif not self._retry_active(url):
                self._start_retry_operation(url)
        schemas.append(self.config.local_schema)

        schema = schemas[0] if len(schemas) == 1 else merge_schemas(schemas)
        self._served = ServedSchema(schema=schema, middleware=middleware)
        logger.info("gateway.graphql.refreshed", sources=len(schemas))
        return self._served

    def _build_middleware(self) -> MiddlewareManager | None:
        middlewares = list(self.config.middlewares)
        reporting = self.config.reporting
        if reporting.enabled:
            if not reporting.schema_tag:
                raise ConfigurationError(
                    'Could not find required setting "ENGINE_SCHEMA_TAG" that is required '
                    'when "ENGINE_API_KEY" is present.'
                )
            middlewares.append(OperationReportingMiddleware(reporting.schema_tag))
        if reporting.debug_resolver_tracing:
            middlewares.append(ResolverTimingMiddleware())
        return MiddlewareManager(*middlewares) if middlewares else None

    # ------------------------------------------------------------------
    # Retry handling
    # ------------------------------------------------------------------
    def _start_retry_operation(self, url: str, target_version: str | None = None) -> None:
        if self._closed:
            return
        entry = self._entry(url)
        target_version = target_version or None
        should_retry = entry.schema is None or (
            target_version is not None and entry.version != target_version
        )
        existing = self._retry_operations.get(url)

        if not should_retry:
            if existing is not None and not existing.halted:
                logger.info("gateway.remote_schema.retry_stopping", url=url)
                existing.stop()
            return

        target = RetryTarget(url=url, target_version=target_version)
        if existing is not None and existing.active:
            if self._retry_targets.get(url) == target:
                return
            existing.stop()

        operation = RetryOperation(
            operation=partial(self._retry_attempt, target),
            check=partial(self._retry_check, target),
            tag=f"fetch remote schema at {url}",
            on_stop=partial(self._retry_stopped, target),
            on_error=partial(self._retry_failed, target),
            policy=self.config.retry_policy,
        )
        self._retry_operations[url] = operation
        self._retry_targets[url] = target
        operation.start()

    def _retry_active(self, url: str) -> bool:
        operation = self._retry_operations.get(url)
        return operation is not None and operation.active

    async def _retry_attempt(self, target: RetryTarget) -> None:
        record_retry_attempt(target.url)
        await self.update_remote_schema(target.url, target.target_version)

    def _retry_check(self, target: RetryTarget) -> bool:
        entry = self._entry(target.url)
        if target.target_version is None:
            return entry.schema is not None
        return entry.version == target.target_version

    def _retry_stopped(self, target: RetryTarget, retries_exceeded: bool) -> None:
        if not retries_exceeded:
            return
        operation = self._retry_operations.get(target.url)
        attempts = operation.attempts if operation is not None else 0
        logger.error("gateway.remote_schema.retries_exceeded", url=target.url, attempts=attempts)
        raise RemoteSchemaUnavailableError(
            RETRY_FAILURE_MESSAGE, url=target.url, attempts=attempts
        ) from self._fetch_errors.get(target.url)

    def _retry_failed(self, target: RetryTarget, error: BaseException) -> None:
        if not isinstance(error, RemoteSchemaUnavailableError):
            logger.error(
                "gateway.remote_schema.retry_callback_failed", url=target.url, error=repr(error)
            )
            return
        self._failures[target.url] = error
        record_retry_exhausted(target.url)
        self._on_fatal(error)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_schema_healthy(self) -> bool:
        return all(entry.schema is not None for entry in self._entries.values())

    def get_remote_schema_status(self, url: str) -> RemoteSchemaStatus:
        entry = self._entries.get(url)
        if entry is None or entry.schema is None:
            return RemoteSchemaStatus.INACTIVE
        return RemoteSchemaStatus.ACTIVE

    def get_remote_schema_version(self, url: str) -> str | None:
        entry = self._entries.get(url)
        return entry.version if entry is not None else None

    @property
    def has_remote_schema(self) -> bool:
        return bool(self._entries)

    @property
    def served_schema(self) -> ServedSchema | None:
        return self._served

    @property
    def retry_operations(self) -> Mapping[str, RetryOperation]:
        return dict(self._retry_operations)

    @property
    def retry_targets(self) -> Mapping[str, RetryTarget]:
        return dict(self._retry_targets)

    @property
    def failures(self) -> Mapping[str, RemoteSchemaUnavailableError]:
        return dict(self._failures)

    def _entry(self, url: str) -> RemoteSchemaEntry:
        try:
            return self._entries[url]
        except KeyError:
            raise KeyError(f"Unknown remote schema URL: {url}") from None

    def _publish(self, event: LifecycleEvent) -> None:
        self._bus.publish(event, self)


# ==============================================================================
# EXPORTS
# ==============================================================================

__all__ = [
    "DEFAULT_FORWARD_HEADERS",
    "FatalHandler",
    "GraphQLBase",
    "GraphQLBaseConfig",
    "RemoteSchemaEntry",
    "RemoteSchemaStatus",
    "RetryTarget",
    "ServedSchema",
    "report_fatal_error",
]
