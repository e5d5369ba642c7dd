"""Command line entry point for the gateway.

Example:
-------
    >>> ceres-gateway
    >>> ceres-gateway --export-graphql
    >>> ceres-gateway --export-openapi --output openapi.yaml

"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================

import argparse
import asyncio
from pathlib import Path
from typing import Any

from yaml import safe_dump

from .app import build_server, serve
from .config.settings import get_settings
from .schema import schema

# ==============================================================================
# EXPORT FUNCTIONS
# ==============================================================================


def export_openapi() -> str:
    """Export the OpenAPI document of the HTTP surface as YAML."""
    server = build_server(get_settings(), observability=False)
    openapi_schema: dict[str, Any] = server.app.openapi()
    return safe_dump(openapi_schema, sort_keys=False)


def export_graphql() -> str:
    """Export the local GraphQL schema as SDL."""
    return schema.as_str()


# ==============================================================================
# CLI INTERFACE
# ==============================================================================


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Ceres GraphQL gateway")
    parser.add_argument("--export-openapi", action="store_true", help="Print OpenAPI document")
    parser.add_argument("--export-graphql", action="store_true", help="Print GraphQL SDL")
    parser.add_argument("--output", type=Path, default=None, help="Optional file path to write")
    args = parser.parse_args(argv)

    if not (args.export_openapi or args.export_graphql):
        try:
            asyncio.run(serve(get_settings()))
        except KeyboardInterrupt:
            pass
        return

    content = export_openapi() if args.export_openapi else export_graphql()
    if args.output:
        args.output.write_text(content)
    else:
        print(content)


__all__ = ["export_graphql", "export_openapi", "main"]


if __name__ == "__main__":  # pragma: no cover
    main()
