"""Backend connectors initialised by the gateway server."""

from .graphql import GraphQLAPIConnector

__all__ = ["GraphQLAPIConnector"]
