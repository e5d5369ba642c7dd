"""GraphQL error formatting and reporting."""

from __future__ import annotations

from typing import Any

import structlog
from graphql import GraphQLError

from ceres_gateway.observability.sentry import capture_exception
from ceres_gateway.utils.errors import GatewayError

logger = structlog.get_logger(__name__)


def is_expected_error(error: GraphQLError) -> bool:
    """Return ``True`` when the underlying error was flagged ``is_expected``."""
    return bool(getattr(error.original_error, "is_expected", False))


def _formatted(error: GraphQLError) -> dict[str, Any]:
    formatted = dict(error.formatted)
    original = error.original_error
    if isinstance(original, GatewayError):
        extensions = dict(formatted.get("extensions") or {})
        extensions.setdefault("code", type(original).__name__)
        extensions["problem"] = original.problem.model_dump()
        formatted["extensions"] = extensions
    return formatted


def format_error(error: GraphQLError) -> dict[str, Any]:
    """Format ``error`` for the response and log or report it.

    Expected errors are logged at info level. Everything else is logged as an
    error and sent to Sentry when it is configured.
    """
    try:
        formatted = _formatted(error)
    except Exception:
        logger.exception("gateway.graphql.error_format_failed", message=error.message)
        formatted = {"message": error.message}

    if is_expected_error(error):
        logger.info("gateway.graphql.expected_error", message=error.message, path=error.path)
        return formatted

    logger.error(
        "gateway.graphql.error",
        message=error.message,
        path=error.path,
        locations=formatted.get("locations"),
        source=error.source.body if error.source else None,
    )
    capture_exception(error.original_error or error)
    return formatted


__all__ = ["format_error", "is_expected_error"]
