"""GraphQL middleware: remote schema resolution, stitching, and HTTP routes."""

from .base import (
    GraphQLBase,
    GraphQLBaseConfig,
    RemoteSchemaStatus,
    RetryTarget,
    ServedSchema,
    report_fatal_error,
)
from .context import GraphQLContext, build_context, get_auth_token
from .errors import format_error
from .merge import merge_schemas
from .remote import introspect_remote_schema, make_remote_executable_schema
from .router import create_graphql_router

__all__ = [
    "GraphQLBase",
    "GraphQLBaseConfig",
    "GraphQLContext",
    "RemoteSchemaStatus",
    "RetryTarget",
    "ServedSchema",
    "build_context",
    "create_graphql_router",
    "format_error",
    "get_auth_token",
    "introspect_remote_schema",
    "make_remote_executable_schema",
    "merge_schemas",
    "report_fatal_error",
]
