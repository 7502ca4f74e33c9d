"""Building blocks for a federated GraphQL gateway: AST model, permissions,
request context, downstream client, configuration and introspection."""

__version__ = "0.1.0"

__all__ = [
    "client",
    "config",
    "gqlast",
    "introspection",
    "permissions",
    "request_context",
]