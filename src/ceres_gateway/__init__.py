"""Ceres GraphQL gateway.

Key Responsibilities:
    - Serve a local GraphQL schema stitched with remotely introspected schemas
    - Track startup readiness through lifecycle events and gate health checks
    - Recover unreachable remote schemas with bounded exponential backoff

Example:
    >>> from ceres_gateway.app import build_server
    >>> server = build_server()
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
