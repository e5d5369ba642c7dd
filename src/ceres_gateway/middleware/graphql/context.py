"""GraphQL context helpers."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import Request
from strawberry.dataloader import DataLoader

if TYPE_CHECKING:  # pragma: no cover - import hints only
    from .base import GraphQLBase

IA_CONTEXT_HEADER = "IA-Context"

DataLoaderFactory = Callable[[], Mapping[str, DataLoader[Any, Any]]]


@dataclass(slots=True)
class GraphQLContext:
    request: Request
    resolver: GraphQLBase | None = None
    token: str | None = None
    ia_context: str | None = None
    data_loaders: Mapping[str, DataLoader[Any, Any]] = field(default_factory=dict)
    resolver_timings: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_ns: int = field(default_factory=time.perf_counter_ns)

    def __getitem__(self, key: str) -> Any:  # pragma: no cover - dict style access
        if key in self.__slots__:
            return getattr(self, key)
        raise KeyError(key)


def get_auth_token(request: Request) -> str | None:
    """Return the bearer token from the ``Authorization`` header, if any."""
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def build_context(
    request: Request,
    *,
    resolver: GraphQLBase | None = None,
    create_data_loaders: DataLoaderFactory | None = None,
) -> GraphQLContext:
    return GraphQLContext(
        request=request,
        resolver=resolver,
        token=get_auth_token(request),
        ia_context=request.headers.get(IA_CONTEXT_HEADER),
        data_loaders=dict(create_data_loaders()) if create_data_loaders else {},
    )


__all__ = ["DataLoaderFactory", "GraphQLContext", "build_context", "get_auth_token"]
