"""Local GraphQL schema served alongside the remote schemas."""

from __future__ import annotations

import strawberry
from strawberry.types import Info

from ceres_gateway import __version__
from ceres_gateway.middleware.graphql.base import RemoteSchemaStatus
from ceres_gateway.middleware.graphql.context import GraphQLContext

RemoteSchemaStatusType = strawberry.enum(
    RemoteSchemaStatus,
    name="RemoteSchemaStatus",
    description="Whether a remote schema currently contributes to the gateway",
)


@strawberry.type
class RemoteSchemaUpdateType:
    url: str
    status: RemoteSchemaStatusType
    version: str | None = None


@strawberry.type
class Query:
    @strawberry.field(description="Version of the gateway service")
    def version(self) -> str:
        return __version__


@strawberry.type
class Mutation:
    @strawberry.mutation(description="Re-fetch a remote schema unless it already serves the version")
    async def refresh_remote_schema(
        self,
        info: Info[GraphQLContext, None],
        url: str,
        version: str | None = None,
    ) -> RemoteSchemaUpdateType:
        resolver = info.context.resolver
        if resolver is None:
            raise RuntimeError("Remote schema resolver unavailable")
        await resolver.update_remote_schema(url, version)
        return RemoteSchemaUpdateType(
            url=url,
            status=resolver.get_remote_schema_status(url),
            version=resolver.get_remote_schema_version(url),
        )


schema = strawberry.Schema(query=Query, mutation=Mutation)

__all__ = ["Mutation", "Query", "RemoteSchemaUpdateType", "schema"]
