"""Core lifecycle primitives: event bus, retry engine, and gateway server."""

from .lifecycle import DEFAULT_NAMESPACE, LifecycleBus, LifecycleEvent
from .listener import HttpListener, ServerConfig, UvicornListener
from .retry import RetryOperation, RetryPolicy
from .server import Connector, Middleware, Server, readiness_probe

__all__ = [
    "DEFAULT_NAMESPACE",
    "Connector",
    "HttpListener",
    "LifecycleBus",
    "LifecycleEvent",
    "Middleware",
    "RetryOperation",
    "RetryPolicy",
    "Server",
    "ServerConfig",
    "UvicornListener",
    "readiness_probe",
]
