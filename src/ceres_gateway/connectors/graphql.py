"""GraphQL HTTP API connector."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from ceres_gateway.utils.errors import RemoteQueryError

logger = structlog.get_logger(__name__)


class GraphQLAPIConnector:
    """Execute GraphQL documents against a remote HTTP endpoint.

    When no client is supplied a short lived ``httpx.AsyncClient`` is opened
    per query, so the connector can be created ad hoc (for instance for a
    single version lookup) without leaking connections.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        log_tag: str = "GraphQL API",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.log_tag = log_tag
        self._client = client
        self._timeout = timeout
        self._headers = dict(headers or {})

    async def initialize(self) -> None:
        """Readiness hook; the connector holds no persistent connection."""
        logger.debug("connector.graphql.initialized", endpoint=self.endpoint, tag=self.log_tag)

    async def query(
        self,
        document: str,
        variables: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Run ``document`` and return the ``data`` member of the response.

        Raises:
            RemoteQueryError: If the request fails, the body is not a GraphQL
                response, or the response carries errors.
        """
        payload: dict[str, Any] = {"query": document}
        if variables:
            payload["variables"] = dict(variables)
        request_headers = {**self._headers, **dict(headers or {})}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, json=payload, headers=request_headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        self.endpoint, json=payload, headers=request_headers
                    )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "connector.graphql.request_failed",
                endpoint=self.endpoint,
                tag=self.log_tag,
                error=str(exc),
            )
            raise RemoteQueryError(
                f"{self.log_tag}: request failed", endpoint=self.endpoint
            ) from exc

        if not isinstance(body, dict):
            raise RemoteQueryError(f"{self.log_tag}: malformed response", endpoint=self.endpoint)
        errors = body.get("errors")
        if errors:
            logger.warning(
                "connector.graphql.query_errors",
                endpoint=self.endpoint,
                tag=self.log_tag,
                errors=errors,
            )
            raise RemoteQueryError(
                f"{self.log_tag}: query returned errors", endpoint=self.endpoint, errors=errors
            )
        data = body.get("data")
        return data if isinstance(data, dict) else {}


__all__ = ["GraphQLAPIConnector"]
