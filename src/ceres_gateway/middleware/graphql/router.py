"""FastAPI routes serving the merged GraphQL schema."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse
from graphql import graphql

from ceres_gateway.observability.metrics import observe_graphql_request

from .context import build_context
from .errors import format_error
from .tracing import build_tracing_extension

if TYPE_CHECKING:  # pragma: no cover - import hints only
    from .base import GraphQLBase

GRAPHIQL_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <title>Ceres GraphQL</title>
    <link rel="stylesheet" href="https://unpkg.com/graphiql/graphiql.min.css" />
  </head>
  <body style="margin: 0;">
    <div id="graphiql" style="height: 100vh;"></div>
    <script crossorigin src="https://unpkg.com/react/umd/react.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/react-dom/umd/react-dom.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/graphiql/graphiql.min.js"></script>
    <script>
      const fetcher = GraphiQL.createFetcher({ url: "__ENDPOINT__", credentials: "include" });
      ReactDOM.render(
        React.createElement(GraphiQL, { fetcher: fetcher, headerEditorEnabled: true }),
        document.getElementById("graphiql"),
      );
    </script>
  </body>
</html>
"""


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"data": None, "errors": [{"message": message}]}, status_code=400)


def create_graphql_router(resolver: GraphQLBase) -> APIRouter:
    """Return a router exposing ``resolver``'s served schema at its configured path."""
    router = APIRouter()
    path = resolver.path

    @router.post(path)
    async def execute(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _bad_request("Request body must be valid JSON")
        if not isinstance(body, dict) or not isinstance(body.get("query"), str):
            return _bad_request("Must provide query string")
        variables = body.get("variables")
        if variables is not None and not isinstance(variables, dict):
            return _bad_request("Variables must be an object")

        served = resolver.served_schema
        if served is None:
            return JSONResponse(
                {"data": None, "errors": [{"message": "GraphQL schema is not ready"}]},
                status_code=503,
            )

        context = build_context(
            request,
            resolver=resolver,
            create_data_loaders=resolver.config.create_data_loaders,
        )
        started = time.perf_counter()
        result = await graphql(
            served.schema,
            body["query"],
            context_value=context,
            variable_values=variables,
            operation_name=body.get("operationName"),
            middleware=served.middleware,
        )

        payload: dict[str, Any] = {"data": result.data}
        if result.errors:
            payload["errors"] = [format_error(error) for error in result.errors]
        if resolver.config.reporting.debug_resolver_tracing:
            payload["extensions"] = {
                "tracing": build_tracing_extension(
                    context.resolver_timings, context.started_at, context.started_ns
                )
            }
        status_code = 200 if result.data is not None or not result.errors else 400
        observe_graphql_request(
            "success" if not result.errors else "error", time.perf_counter() - started
        )
        return JSONResponse(payload, status_code=status_code)

    @router.get(path, response_class=HTMLResponse, include_in_schema=False)
    async def explorer() -> HTMLResponse:
        return HTMLResponse(GRAPHIQL_TEMPLATE.replace("__ENDPOINT__", path))

    return router


__all__ = ["create_graphql_router"]
