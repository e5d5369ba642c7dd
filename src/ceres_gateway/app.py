"""Application factory wiring the gateway server from settings.

Key Responsibilities:
    - Build the FastAPI application with observability and request correlation
    - Assemble the GraphQL and health middleware in initialisation order
    - Translate settings into the listener configuration and run the server

Collaborators:
    - Upstream: ``ceres_gateway.main`` CLI and tests
    - Downstream: :class:`~ceres_gateway.core.server.Server`,
      :class:`~ceres_gateway.middleware.graphql.base.GraphQLBase`,
      :class:`~ceres_gateway.middleware.health.Health`
"""

from __future__ import annotations

from collections.abc import Sequence

import httpx
import strawberry
import structlog
from fastapi import FastAPI
from graphql import GraphQLSchema

from .config.settings import AppSettings, get_settings
from .core.lifecycle import LifecycleBus
from .core.listener import HttpListener, ServerConfig, UvicornListener
from .core.server import Connector, Server
from .middleware.correlation import CorrelationIdMiddleware
from .middleware.graphql.base import GraphQLBase, GraphQLBaseConfig
from .middleware.health import Health, HealthConfig
from .observability import setup_observability
from .schema import schema as local_schema

logger = structlog.get_logger(__name__)


def create_app(settings: AppSettings, *, observability: bool = True) -> FastAPI:
    app = FastAPI(title="Ceres Gateway", version=settings.version)
    app.state.settings = settings
    if observability:
        setup_observability(app, settings)
    app.add_middleware(
        CorrelationIdMiddleware,
        correlation_header=settings.observability.logging.correlation_id_header,
    )
    return app


def build_server(
    settings: AppSettings | None = None,
    *,
    connectors: Sequence[Connector] = (),
    schema: strawberry.Schema | GraphQLSchema | None = None,
    bus: LifecycleBus | None = None,
    listener: HttpListener | None = None,
    client: httpx.AsyncClient | None = None,
    observability: bool = True,
) -> Server:
    """Build a gateway server whose middleware serves GraphQL and ``/health``."""
    settings = settings or get_settings()
    bus = bus or LifecycleBus()
    app = create_app(settings, observability=observability)
    graphql = GraphQLBase(
        GraphQLBaseConfig.from_settings(schema or local_schema, settings),
        bus=bus,
        client=client,
    )
    health = Health(HealthConfig(manifest=settings.manifest))
    return Server(connectors, [graphql, health], bus=bus, listener=listener, app=app)


def server_config(settings: AppSettings) -> ServerConfig:
    return ServerConfig(
        port=settings.server.port,
        host=settings.server.host,
        keep_alive_timeout=settings.server.keep_alive_timeout,
    )


async def serve(settings: AppSettings | None = None) -> None:
    """Run the gateway until the listener shuts down."""
    settings = settings or get_settings()
    listener = UvicornListener(log_level=settings.observability.logging.level.lower())
    server = build_server(settings, listener=listener)
    await server.start(server_config(settings))
    try:
        await listener.serve_forever()
    finally:
        if server.is_listening:
            await server.stop()
        for component in server.middleware:
            if isinstance(component, GraphQLBase):
                await component.close()
        logger.info("gateway.shutdown")


__all__ = ["build_server", "create_app", "serve", "server_config"]
