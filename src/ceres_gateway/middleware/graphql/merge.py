"""Stitch several executable GraphQL schemas into one."""

from __future__ import annotations

from collections.abc import Sequence
from typing import cast

from graphql import (
    GraphQLArgument,
    GraphQLBoolean,
    GraphQLField,
    GraphQLFloat,
    GraphQLID,
    GraphQLInputField,
    GraphQLInputObjectType,
    GraphQLInt,
    GraphQLInterfaceType,
    GraphQLList,
    GraphQLNamedType,
    GraphQLNonNull,
    GraphQLObjectType,
    GraphQLSchema,
    GraphQLString,
    GraphQLType,
    GraphQLUnionType,
    is_introspection_type,
    is_specified_scalar_type,
)


class SchemaMerger:
    """Rebuild every named type of the sources against a single type registry.

    Sources are applied in order, so a later source wins type and root field
    name conflicts. Resolvers, scalar coercion and enum values are carried
    over through ``to_kwargs``.
    """

    def __init__(self, schemas: Sequence[GraphQLSchema]) -> None:
        self._schemas = list(schemas)
        self._registry: dict[str, GraphQLNamedType] = {
            scalar.name: scalar
            for scalar in (GraphQLString, GraphQLInt, GraphQLFloat, GraphQLBoolean, GraphQLID)
        }
        self._root_names: dict[str, str] = {}

    def merge(self) -> GraphQLSchema:
        query_fields: dict[str, GraphQLField] = {}
        mutation_fields: dict[str, GraphQLField] = {}

        originals: dict[str, GraphQLNamedType] = {}
        for schema in self._schemas:
            for root_name, root in (
                ("Query", schema.query_type),
                ("Mutation", schema.mutation_type),
            ):
                if root is not None:
                    self._root_names[root.name] = root_name
            for name, named_type in schema.type_map.items():
                if is_introspection_type(named_type) or is_specified_scalar_type(named_type):
                    continue
                if named_type in (schema.query_type, schema.mutation_type, schema.subscription_type):
                    continue
                originals[name] = named_type

        for name, named_type in originals.items():
            self._registry[name] = self._rebuild(named_type)

        for schema in self._schemas:
            if schema.query_type is not None:
                query_fields.update(schema.query_type.fields)
            if schema.mutation_type is not None:
                mutation_fields.update(schema.mutation_type.fields)

        query = GraphQLObjectType("Query", lambda: self._fields(query_fields))
        self._registry["Query"] = query
        mutation = None
        if mutation_fields:
            mutation = GraphQLObjectType("Mutation", lambda: self._fields(mutation_fields))
            self._registry["Mutation"] = mutation

        types = [
            named_type
            for name, named_type in self._registry.items()
            if name not in ("Query", "Mutation")
        ]
        return GraphQLSchema(query=query, mutation=mutation, types=types)

    # ------------------------------------------------------------------
    # Type rewiring
    # ------------------------------------------------------------------
    def _named(self, name: str) -> GraphQLNamedType:
        return self._registry[self._root_names.get(name, name)]

    def _wrapped(self, type_: GraphQLType) -> GraphQLType:
        if isinstance(type_, GraphQLNonNull):
            return GraphQLNonNull(self._wrapped(type_.of_type))
        if isinstance(type_, GraphQLList):
            return GraphQLList(self._wrapped(type_.of_type))
        return self._named(cast(GraphQLNamedType, type_).name)

    def _args(self, args: dict[str, GraphQLArgument]) -> dict[str, GraphQLArgument]:
        return {
            name: GraphQLArgument(**{**arg.to_kwargs(), "type_": self._wrapped(arg.type)})
            for name, arg in args.items()
        }

    def _fields(self, fields: dict[str, GraphQLField]) -> dict[str, GraphQLField]:
        return {
            name: GraphQLField(
                **{
                    **field.to_kwargs(),
                    "type_": self._wrapped(field.type),
                    "args": self._args(field.args),
                }
            )
            for name, field in fields.items()
        }

    def _input_fields(
        self, fields: dict[str, GraphQLInputField]
    ) -> dict[str, GraphQLInputField]:
        return {
            name: GraphQLInputField(**{**field.to_kwargs(), "type_": self._wrapped(field.type)})
            for name, field in fields.items()
        }

    def _rebuild(self, named_type: GraphQLNamedType) -> GraphQLNamedType:
        if isinstance(named_type, GraphQLObjectType):
            kwargs = named_type.to_kwargs()
            kwargs.update(
                fields=lambda: self._fields(named_type.fields),
                interfaces=lambda: [self._named(i.name) for i in named_type.interfaces],
            )
            return GraphQLObjectType(**kwargs)
        if isinstance(named_type, GraphQLInterfaceType):
            kwargs = named_type.to_kwargs()
            kwargs.update(
                fields=lambda: self._fields(named_type.fields),
                interfaces=lambda: [self._named(i.name) for i in named_type.interfaces],
            )
            return GraphQLInterfaceType(**kwargs)
        if isinstance(named_type, GraphQLUnionType):
            kwargs = named_type.to_kwargs()
            kwargs.update(types=lambda: [self._named(t.name) for t in named_type.types])
            return GraphQLUnionType(**kwargs)
        if isinstance(named_type, GraphQLInputObjectType):
            kwargs = named_type.to_kwargs()
            kwargs.update(fields=lambda: self._input_fields(named_type.fields))
            return GraphQLInputObjectType(**kwargs)
        # Scalars and enums reference no other types.
        return named_type


def merge_schemas(schemas: Sequence[GraphQLSchema]) -> GraphQLSchema:
    """Merge ``schemas`` into one schema; later schemas win name conflicts."""
    return SchemaMerger(schemas).merge()


__all__ = ["SchemaMerger", "merge_schemas"]
