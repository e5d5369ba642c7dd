"""Problem detail helpers and the gateway exception hierarchy.

Key Responsibilities:
    - Provide an RFC 7807 style data structure used when errors cross the HTTP
      boundary or are reported to error tracking
    - Supply the base exception carrying problem details plus the concrete
      errors raised by the lifecycle and schema federation layers

Collaborators:
    - Upstream: ``GraphQLBase``, the retry engine callbacks, and the GraphQL API
      connector raise these errors
    - Downstream: Health and GraphQL endpoints and the Sentry integration read
      the attached :class:`ProblemDetail`

Side Effects:
    - None; helpers are pure data containers
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================

__all__ = [
    "ConfigurationError",
    "GatewayError",
    "ProblemDetail",
    "RemoteQueryError",
    "RemoteSchemaUnavailableError",
]


@dataclass(slots=True)
class ProblemDetail:
    """Lightweight problem details object compliant with RFC 7807."""

    title: str
    status: int
    detail: str | None = None
    type: str = "about:blank"
    instance: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def model_dump(self) -> dict[str, Any]:
        """Return a dictionary representation with optional fields dropped."""
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        if not payload.get("extra"):
            payload.pop("extra", None)
        return payload


class GatewayError(RuntimeError):
    """Base exception that carries a :class:`ProblemDetail` instance."""

    default_status = 500
    default_type = "about:blank"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        detail: str | None = None,
        type: str | None = None,
        instance: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialise the exception with structured problem detail attributes.

        Args:
            message: Human readable error summary.
            status: HTTP status code associated with the problem.
            detail: Optional detailed description of the failure.
            type: Problem type URI, defaults to the class level ``default_type``.
            instance: Optional URI reference identifying the specific occurrence.
            extra: Additional attributes included in the serialized payload.
        """
        super().__init__(message)
        self.problem = ProblemDetail(
            title=message,
            status=status or self.default_status,
            detail=detail,
            type=type or self.default_type,
            instance=instance,
            extra=extra or {},
        )


class ConfigurationError(GatewayError):
    """Raised when a required operational setting is missing or invalid."""

    default_type = "https://ceres/errors/configuration"


class RemoteQueryError(GatewayError):
    """Raised when a query against a remote GraphQL endpoint fails."""

    default_status = 502
    default_type = "https://ceres/errors/remote-query"

    def __init__(self, message: str, *, endpoint: str, errors: list[Any] | None = None) -> None:
        super().__init__(
            message,
            detail=f"Query against {endpoint} failed",
            extra={"endpoint": endpoint, "errors": list(errors or [])},
        )
        self.endpoint = endpoint
        self.errors = list(errors or [])


class RemoteSchemaUnavailableError(GatewayError):
    """Raised once the retry budget for a remote schema has been exhausted."""

    default_status = 503
    default_type = "https://ceres/errors/remote-schema-unavailable"

    def __init__(self, message: str, *, url: str, attempts: int) -> None:
        super().__init__(
            message,
            detail=f"Remote schema at {url} unavailable after {attempts} attempts",
            extra={"url": url, "attempts": attempts},
        )
        self.url = url
        self.attempts = attempts
