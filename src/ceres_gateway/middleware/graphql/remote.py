"""Remote schema introspection and query delegation.

Key Responsibilities:
    - Introspect a remote GraphQL endpoint and rebuild its type system
    - Turn the rebuilt schema into an executable one whose root fields
      delegate their selections to the remote endpoint

Collaborators:
    - Upstream: ``GraphQLBase`` fetches remote schemas through
      :func:`introspect_remote_schema` and :func:`make_remote_executable_schema`
    - Downstream: ``httpx`` for transport, ``graphql-core`` for the AST

Side Effects:
    - Performs HTTP requests against remote endpoints
    - Mutates the resolver hooks of the schema passed to
      :func:`make_remote_executable_schema`
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx
import structlog
from graphql import (
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLEnumType,
    GraphQLError,
    GraphQLInterfaceType,
    GraphQLObjectType,
    GraphQLResolveInfo,
    GraphQLSchema,
    GraphQLUnionType,
    NameNode,
    Node,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    VariableNode,
    Visitor,
    build_client_schema,
    get_introspection_query,
    print_ast,
    visit,
)

from ceres_gateway.utils.errors import RemoteQueryError

logger = structlog.get_logger(__name__)

TYPENAME = "__typename"


# ==============================================================================
# INTROSPECTION
# ==============================================================================


async def introspect_remote_schema(
    url: str, client: httpx.AsyncClient, *, timeout: float | None = None
) -> GraphQLSchema:
    """Fetch and rebuild the type system exposed at ``url``.

    Raises:
        RemoteQueryError: If the endpoint is unreachable or the introspection
            result cannot be turned into a schema.
    """
    try:
        response = await client.post(
            url, json={"query": get_introspection_query(descriptions=True)}, timeout=timeout
        )
        response.raise_for_status()
        body = response.json()
        errors = body.get("errors")
        if errors:
            raise RemoteQueryError(
                "Remote introspection returned errors", endpoint=url, errors=errors
            )
        return build_client_schema(body["data"])
    except RemoteQueryError:
        raise
    except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError, GraphQLError) as exc:
        raise RemoteQueryError("Remote introspection failed", endpoint=url) from exc


# ==============================================================================
# DOCUMENT CONSTRUCTION
# ==============================================================================


class _TypenameInjector(Visitor):
    """Append ``__typename`` to every selection set that lacks it."""

    def leave_selection_set(self, node: SelectionSetNode, *_: Any) -> SelectionSetNode | None:
        for selection in node.selections:
            if (
                isinstance(selection, FieldNode)
                and selection.alias is None
                and selection.name.value == TYPENAME
            ):
                return None
        typename = FieldNode(name=NameNode(value=TYPENAME), arguments=(), directives=())
        return SelectionSetNode(selections=(*node.selections, typename))


class _ReferenceCollector(Visitor):
    def __init__(self) -> None:
        super().__init__()
        self.variables: set[str] = set()
        self.fragments: set[str] = set()

    def enter_variable(self, node: VariableNode, *_: Any) -> None:
        self.variables.add(node.name.value)

    def enter_fragment_spread(self, node: FragmentSpreadNode, *_: Any) -> None:
        self.fragments.add(node.name.value)


def build_delegated_document(
    info: GraphQLResolveInfo, operation: OperationType
) -> tuple[DocumentNode, set[str]]:
    """Build the document sent upstream for the root field described by ``info``.

    Only fragments reachable from the field selection and only the variables
    it uses are included. The original AST is left untouched.

    Returns:
        The document and the names of the variables it references.
    """
    collector = _ReferenceCollector()
    for field_node in info.field_nodes:
        visit(field_node, collector)

    fragments: dict[str, FragmentDefinitionNode] = {}
    queue = list(collector.fragments)
    while queue:
        name = queue.pop()
        if name in fragments or name not in info.fragments:
            continue
        definition = info.fragments[name]
        fragments[name] = definition
        nested = _ReferenceCollector()
        visit(definition, nested)
        collector.variables |= nested.variables
        queue.extend(nested.fragments - fragments.keys())

    injector = _TypenameInjector()
    selections = tuple(visit(field_node, injector) for field_node in info.field_nodes)
    variable_definitions = tuple(
        definition
        for definition in info.operation.variable_definitions or ()
        if definition.variable.name.value in collector.variables
    )
    document_operation = OperationDefinitionNode(
        operation=operation,
        name=info.operation.name,
        variable_definitions=variable_definitions,
        directives=(),
        selection_set=SelectionSetNode(selections=selections),
    )
    definitions: list[Node] = [document_operation]
    definitions.extend(visit(fragment, injector) for fragment in fragments.values())
    return DocumentNode(definitions=tuple(definitions)), collector.variables


# ==============================================================================
# EXECUTABLE REMOTE SCHEMA
# ==============================================================================


def _forwarded_headers(context: Any, names: Sequence[str]) -> dict[str, str]:
    request = context.get("request") if isinstance(context, Mapping) else getattr(
        context, "request", None
    )
    if request is None:
        return {}
    headers = request.headers
    return {name: headers[name] for name in names if name in headers}


def _resolve_response_key(source: Any, info: GraphQLResolveInfo, **_: Any) -> Any:
    key = info.path.key
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, info.field_name, None)


def _coerced_variables(info: GraphQLResolveInfo) -> Mapping[str, Any]:
    # graphql-core 3.3 wraps the coerced values in a VariableValues tuple
    return getattr(info.variable_values, "coerced", info.variable_values)


def _resolve_remote_type(value: Any, info: GraphQLResolveInfo, abstract_type: Any) -> str | None:
    if isinstance(value, Mapping):
        return value.get(TYPENAME)
    return None


class RemoteFieldResolver:
    """Root field resolver that forwards its selection to a remote endpoint."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        operation: OperationType,
        *,
        forward_headers: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        self.url = url
        self.operation = operation
        self._client = client
        self._forward_headers = tuple(forward_headers)
        self._timeout = timeout

    async def __call__(self, source: Any, info: GraphQLResolveInfo, **_: Any) -> Any:
        document, variable_names = build_delegated_document(info, self.operation)
        variables = {
            name: value
            for name, value in _coerced_variables(info).items()
            if name in variable_names
        }
        payload: dict[str, Any] = {"query": print_ast(document), "variables": variables}
        if info.operation.name is not None:
            payload["operationName"] = info.operation.name.value
        headers = _forwarded_headers(info.context, self._forward_headers)

        try:
            response = await self._client.post(
                self.url, json=payload, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "gateway.remote_schema.delegation_failed",
                url=self.url,
                field=info.field_name,
                error=str(exc),
            )
            raise RemoteQueryError("Remote query failed", endpoint=self.url) from exc

        data = body.get("data") or {}
        errors = body.get("errors") or []
        key = info.path.key
        if errors and data.get(key) is None:
            message = errors[0].get("message", "Remote query failed")
            raise RemoteQueryError(message, endpoint=self.url, errors=errors)
        return data.get(key)


def make_remote_executable_schema(
    schema: GraphQLSchema,
    url: str,
    client: httpx.AsyncClient,
    *,
    forward_headers: Sequence[str] = (),
    timeout: float | None = None,
) -> GraphQLSchema:
    """Attach delegating resolvers to a schema rebuilt from introspection."""
    roots = {
        OperationType.QUERY: schema.query_type,
        OperationType.MUTATION: schema.mutation_type,
    }
    root_names = {root.name for root in roots.values() if root is not None}

    for operation, root in roots.items():
        if root is None:
            continue
        resolver = RemoteFieldResolver(
            url, client, operation, forward_headers=forward_headers, timeout=timeout
        )
        for field in root.fields.values():
            field.resolve = resolver

    for name, named_type in schema.type_map.items():
        if name.startswith("__") or name in root_names:
            continue
        if isinstance(named_type, GraphQLObjectType):
            for field in named_type.fields.values():
                field.resolve = _resolve_response_key
        elif isinstance(named_type, (GraphQLInterfaceType, GraphQLUnionType)):
            named_type.resolve_type = _resolve_remote_type
        elif isinstance(named_type, GraphQLEnumType):
            for value_name, value in named_type.values.items():
                value.value = value_name
    return schema


__all__ = [
    "RemoteFieldResolver",
    "build_delegated_document",
    "introspect_remote_schema",
    "make_remote_executable_schema",
]
