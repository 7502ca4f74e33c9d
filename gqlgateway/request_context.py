"""Per-request context values: permissions and outgoing request headers."""

from __future__ import annotations

from typing import Any, Optional

from .permissions import OperationPermissions

_PERMISSIONS_KEY = object()
_REQUEST_HEADERS_KEY = object()

_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
)


class Context:
    """An immutable chain of key/value pairs carried through a request."""

    __slots__ = ("_parent", "_key", "_value")

    def __init__(self) -> None:
        self._parent: Optional[Context] = None
        self._key: Any = None
        self._value: Any = None

    def with_value(self, key: Any, value: Any) -> "Context":
        """Return a child context that maps ``key`` to ``value``."""
        child = Context()
        child._parent = self
        child._key = key
        child._value = value
        return child

    def value(self, key: Any) -> Any:
        """Return the innermost value stored for ``key``, or None."""
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx._parent is not None and ctx._key is key or (
                ctx._parent is not None and ctx._key == key
            ):
                return ctx._value
            ctx = ctx._parent
        return None


def _canonical_header_key(key: str) -> str:
    if not key or any(char not in _TOKEN_CHARS for char in key):
        return key
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def add_permissions_to_context(ctx: Context, perms: OperationPermissions) -> Context:
    """Attach permissions; execution checks them against the query."""
    return ctx.with_value(_PERMISSIONS_KEY, perms)


def get_permissions_from_context(ctx: Context) -> Optional[OperationPermissions]:
    """Return the permissions stored in the context, or None."""
    perms = ctx.value(_PERMISSIONS_KEY)
    return perms if isinstance(perms, OperationPermissions) else None


def add_outgoing_requests_header_to_context(ctx: Context, key: str, value: str) -> Context:
    """Add a header sent with every outgoing request of the current query."""
    existing = ctx.value(_REQUEST_HEADERS_KEY)
    headers: dict[str, list[str]] = (
        {name: list(values) for name, values in existing.items()} if isinstance(existing, dict) else {}
    )
    headers.setdefault(_canonical_header_key(key), []).append(value)
    return ctx.with_value(_REQUEST_HEADERS_KEY, headers)


def get_outgoing_request_headers_from_context(ctx: Context) -> Optional[dict[str, list[str]]]:
    """Return the headers to add to outgoing requests, or None."""
    headers = ctx.value(_REQUEST_HEADERS_KEY)
    return headers if isinstance(headers, dict) else None