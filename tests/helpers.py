"""Shared fakes for gateway tests: in-memory remote GraphQL services and listeners."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
from graphql import build_schema, graphql_sync

from ceres_gateway.core.listener import ServerConfig
from ceres_gateway.middleware.graphql.base import GraphQLBase


class RemoteGraphQLService:
    """Executes requests against a ``graphql-core`` schema built from SDL.

    Root fields resolve from ``root_value``; ``version`` resolves to
    :attr:`version`. Introspection requests fail with HTTP 503 while
    ``introspection_failures`` is positive.
    """

    def __init__(
        self,
        url: str,
        sdl: str,
        root_value: dict[str, Any] | None = None,
        *,
        version: str | None = "1.0.0",
        introspection_failures: int = 0,
    ) -> None:
        self.url = url
        self.schema = build_schema(sdl)
        self.root_value = dict(root_value or {})
        self.version = version
        self.introspection_failures = introspection_failures
        self.introspection_calls = 0
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []

    @property
    def queries(self) -> list[str]:
        return [body["query"] for body in self.requests if "__schema" not in body["query"]]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        self.headers.append(request.headers)
        query = body["query"]
        if "__schema" in query:
            self.introspection_calls += 1
            if self.introspection_failures > 0:
                self.introspection_failures -= 1
                return httpx.Response(503, json={"errors": [{"message": "unavailable"}]})

        root = {"version": self.version, **self.root_value}
        result = graphql_sync(
            self.schema,
            query,
            root_value=root,
            variable_values=body.get("variables"),
            operation_name=body.get("operationName"),
        )
        payload: dict[str, Any] = {"data": result.data}
        if result.errors:
            payload["errors"] = [error.formatted for error in result.errors]
        return httpx.Response(200, json=payload)


class RemoteRouter:
    """``httpx.MockTransport`` handler dispatching on the request URL."""

    def __init__(self, *services: RemoteGraphQLService) -> None:
        self.services = {service.url: service for service in services}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        service = self.services.get(str(request.url))
        if service is None:
            raise httpx.ConnectError("connection refused", request=request)
        return service.handle(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class FakeListener:
    """HTTP listener that reports itself listening without binding a socket."""

    def __init__(self) -> None:
        self.opened = 0
        self.closed = 0
        self.config: ServerConfig | None = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, app: Any, config: ServerConfig, on_listening: Callable[[], None]) -> None:
        self.opened += 1
        self.config = config
        self._open = True
        on_listening()

    async def close(self) -> None:
        self.closed += 1
        self._open = False


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


async def shutdown(graphql: GraphQLBase) -> None:
    await graphql.close()
    for operation in graphql.retry_operations.values():
        await asyncio.wait_for(operation.wait(), timeout=2.0)


PRICING_SDL = """
type Query {
  version: String
  price(commodity: String!): Price
  prices(commodities: [String!]!): [Price!]!
  market: Market
}

type Price {
  commodity: String!
  amount: Float!
  unit: Unit!
}

enum Unit {
  BUSHEL
  TONNE
}

union Market = Exchange | Broker

type Exchange {
  name: String!
  city: String
}

type Broker {
  name: String!
  licensed: Boolean!
}
"""

WEATHER_SDL = """
type Query {
  version: String
  forecast(region: String!): Forecast
}

type Forecast {
  region: String!
  rainfall: Float
}
"""


def pricing_root() -> dict[str, Any]:
    prices = {
        "corn": {"commodity": "corn", "amount": 4.5, "unit": "BUSHEL"},
        "wheat": {"commodity": "wheat", "amount": 230.0, "unit": "TONNE"},
    }
    return {
        "price": lambda info, commodity: prices.get(commodity),
        "prices": lambda info, commodities: [prices[name] for name in commodities],
        "market": {"__typename": "Exchange", "name": "CBOT", "city": "Chicago"},
    }


def weather_root() -> dict[str, Any]:
    return {"forecast": lambda info, region: {"region": region, "rainfall": 12.5}}


def pricing_service(url: str = "http://pricing.test/graphql", **kwargs: Any) -> RemoteGraphQLService:
    return RemoteGraphQLService(url, PRICING_SDL, pricing_root(), **kwargs)


def weather_service(url: str = "http://weather.test/graphql", **kwargs: Any) -> RemoteGraphQLService:
    return RemoteGraphQLService(url, WEATHER_SDL, weather_root(), **kwargs)


__all__ = [
    "FakeListener",
    "RemoteGraphQLService",
    "RemoteRouter",
    "eventually",
    "pricing_service",
    "shutdown",
    "weather_service",
]
