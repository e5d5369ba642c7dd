"""Utility modules for the gateway."""

from .errors import (
    ConfigurationError,
    GatewayError,
    ProblemDetail,
    RemoteQueryError,
    RemoteSchemaUnavailableError,
)

__all__ = [
    "ConfigurationError",
    "GatewayError",
    "ProblemDetail",
    "RemoteQueryError",
    "RemoteSchemaUnavailableError",
]
