"""Gateway server lifecycle and readiness state machine.

Key Responsibilities:
    - Sequence connector initialisation (in parallel) before middleware
      initialisation (strictly in declaration order)
    - Record lifecycle history and in-flight remote schema fetches
    - Derive aggregate application readiness for health checks
    - Own the HTTP listener serving the FastAPI application

Collaborators:
    - Upstream: ``ceres_gateway.app`` builds the server from settings
    - Downstream: Connectors, middleware (``GraphQLBase``, ``Health``), the
      :class:`~ceres_gateway.core.lifecycle.LifecycleBus`, and the HTTP listener

Side Effects:
    - Publishes lifecycle events on the injected bus
    - Opens and closes a listening socket
    - Updates the readiness gauge

Thread Safety:
    - Not thread-safe; history and pending state are mutated from the event loop

Example:
    >>> server = Server([database], [graphql, Health(HealthConfig("ceres"))])
    >>> await server.start(ServerConfig(port=4000))
    >>> server.is_application_ready()
    False
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import structlog
from fastapi import FastAPI

from ceres_gateway.observability.metrics import set_application_ready

from .lifecycle import LifecycleBus, LifecycleEvent, LifecycleHandler
from .listener import HttpListener, ServerConfig, UvicornListener

logger = structlog.get_logger(__name__)


# ==============================================================================
# COLLABORATOR PROTOCOLS
# ==============================================================================


class Connector(Protocol):
    """Backend connection that must be ready before middleware starts."""

    async def initialize(self) -> None:
        """Establish the connection."""


class Middleware(Protocol):
    """Component that installs routes or hooks on the application."""

    async def initialize(self, app: FastAPI) -> None:
        """Attach to ``app``."""


class LifecycleSubscription:
    """Fluent helper returned by :meth:`Server.on`."""

    def __init__(self, bus: LifecycleBus, event: LifecycleEvent) -> None:
        self._bus = bus
        self._event = event

    def do(self, callback: LifecycleHandler) -> LifecycleSubscription:
        self._bus.subscribe(self._event, callback)
        return self


# ==============================================================================
# SERVER
# ==============================================================================


class Server:
    """Gateway process: readiness state machine plus HTTP listener."""

    def __init__(
        self,
        connectors: Sequence[Connector],
        middleware: Sequence[Middleware],
        *,
        bus: LifecycleBus | None = None,
        listener: HttpListener | None = None,
        app: FastAPI | None = None,
    ) -> None:
        self.connectors = list(connectors)
        self.middleware = list(middleware)
        self.bus = bus or LifecycleBus()
        self.app = app or FastAPI(title="Ceres Gateway")
        self.app.state.is_application_ready = self.is_application_ready
        self.config: ServerConfig | None = None
        self.startup_error: BaseException | None = None
        self._listener = listener
        self._listening = False
        self._history: list[LifecycleEvent] = []
        self._pending: list[tuple[LifecycleEvent, Any]] = []
        self._handlers_registered = False
        self._startup_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self, config: ServerConfig) -> None:
        """Open the listener and schedule the startup sequence.

        Returns as soon as the sequence is scheduled; use
        :meth:`wait_until_started` to await connector and middleware
        initialisation.
        """
        if self._listening:
            raise RuntimeError("Server is already listening")
        self.config = config
        self.startup_error = None
        self._history = []
        self._pending = []
        self._update_readiness()
        self._register_handlers()

        if self._listener is None:
            self._listener = UvicornListener()
        await self._listener.open(self.app, config, self._on_listening)
        self._listening = True

        self._startup_task = asyncio.get_running_loop().create_task(
            self._run_startup(), name="ceres-startup"
        )

    async def stop(self) -> None:
        """Close the listener, reset history, and publish ``STOPPED``."""
        if self._listener is None or not self._listening:
            logger.warning("server.stop.not_started")
            return
        await self._listener.close()
        self._listening = False
        self._history = []
        self._emit(LifecycleEvent.STOPPED)
        logger.info("server.stopped")

    async def wait_until_started(self) -> None:
        """Wait for the startup sequence scheduled by :meth:`start`."""
        if self._startup_task is not None:
            await self._startup_task

    async def _run_startup(self) -> None:
        try:
            await asyncio.gather(*(connector.initialize() for connector in self.connectors))
        except Exception as exc:
            self.startup_error = exc
            logger.exception("server.connectors.failed", connectors=len(self.connectors))
            return
        self._emit(LifecycleEvent.CONNECTORS_READY)

        for component in self.middleware:
            try:
                await component.initialize(self.app)
            except Exception as exc:
                self.startup_error = exc
                logger.exception("server.middleware.failed", middleware=type(component).__name__)
                return
        self._emit(LifecycleEvent.MIDDLEWARE_READY)

    def _on_listening(self) -> None:
        self._emit(LifecycleEvent.STARTED)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------
    def on(self, event: LifecycleEvent) -> LifecycleSubscription:
        """Return a subscription helper: ``server.on(event).do(callback)``."""
        return LifecycleSubscription(self.bus, event)

    def _emit(self, event: LifecycleEvent) -> None:
        self._history.append(event)
        self._update_readiness()
        self.bus.publish(event, self)

    def _register_handlers(self) -> None:
        if self._handlers_registered:
            return
        self.bus.subscribe(LifecycleEvent.MIDDLEWARE_READY, self._handle_middleware_ready)
        self.bus.subscribe(LifecycleEvent.REMOTE_SCHEMAS_FETCHING, self._handle_fetching)
        self.bus.subscribe(LifecycleEvent.REMOTE_SCHEMAS_FETCHED, self._handle_fetched)
        self._handlers_registered = True

    def _handle_middleware_ready(self, _: Any) -> None:
        address = self.config.address if self.config else None
        logger.info("server.ready", address=address, ready=self.is_application_ready())

    def _handle_fetching(self, publisher: Any) -> None:
        self._pending.append((LifecycleEvent.REMOTE_SCHEMAS_FETCHING, publisher))
        self._update_readiness()

    def _handle_fetched(self, publisher: Any) -> None:
        self._pending = [
            (event, source)
            for event, source in self._pending
            if not (event is LifecycleEvent.REMOTE_SCHEMAS_FETCHING and source is publisher)
        ]
        self._update_readiness()
        logger.info("server.remote_schemas.fetched", ready=self.is_application_ready())

    def _update_readiness(self) -> None:
        set_application_ready(self.is_application_ready())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_middleware_ready(self) -> bool:
        return LifecycleEvent.MIDDLEWARE_READY in self._history

    def is_application_ready(self) -> bool:
        """Return ``True`` once middleware is ready and no remote fetch is in flight."""
        fetching = any(
            event is LifecycleEvent.REMOTE_SCHEMAS_FETCHING for event, _ in self._pending
        )
        return self.is_middleware_ready() and not fetching

    def get_lifecycle_status(self) -> list[LifecycleEvent]:
        return list(self._history)

    @property
    def pending(self) -> list[tuple[LifecycleEvent, Any]]:
        return list(self._pending)

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def listener(self) -> HttpListener | None:
        return self._listener


def readiness_probe(app: FastAPI) -> Callable[[], bool]:
    """Return the readiness predicate installed on ``app`` by :class:`Server`."""
    probe = getattr(app.state, "is_application_ready", None)
    if probe is None:
        raise RuntimeError("Application has no readiness predicate; construct a Server first")
    return probe


__all__ = [
    "Connector",
    "LifecycleSubscription",
    "Middleware",
    "Server",
    "ServerConfig",
    "readiness_probe",
]
