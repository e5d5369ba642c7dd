"""Middleware initialised in order by the gateway server."""

from .graphql import GraphQLBase, GraphQLBaseConfig, RemoteSchemaStatus
from .health import Health, HealthConfig

__all__ = ["GraphQLBase", "GraphQLBaseConfig", "Health", "HealthConfig", "RemoteSchemaStatus"]
