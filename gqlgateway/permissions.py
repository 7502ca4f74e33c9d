"""Field-level permissions for operations and schemas."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .gqlast import (
    MUTATION,
    QUERY,
    SUBSCRIPTION,
    Definition,
    Field,
    FragmentSpread,
    InlineFragment,
    OperationDefinition,
    Schema,
    Selection,
)

logger = logging.getLogger(__name__)


class FieldAccessError(Exception):
    """A field in the operation that the permissions do not allow."""

    def __init__(self, message: str, path: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.path = path


@dataclass
class AllowedFields:
    """A recursive set of allowed fields."""

    allow_all: bool = False
    allowed_subfields: Optional[dict[str, AllowedFields]] = None

    def is_allowed(self, field_name: str) -> tuple[bool, AllowedFields]:
        """Return whether the field is allowed, with the permissions for its subfields."""
        if field_name in ("__schema", "__type"):
            return True, AllowedFields(allow_all=True)
        if field_name == "__typename":
            return True, AllowedFields()
        subfields = self.allowed_subfields or {}
        if field_name in subfields:
            return True, subfields[field_name]
        return False, AllowedFields()

    def to_json(self) -> Any:
        """Return a JSON-compatible representation."""
        if self.allow_all:
            return "*"
        subfields = self.allowed_subfields or {}
        if any(not sub.allow_all for sub in subfields.values()):
            return {name: sub.to_json() for name, sub in subfields.items()}
        return sorted(subfields)

    @classmethod
    def from_json(cls, data: Any) -> AllowedFields:
        """Build from a decoded JSON value: "*", a list of names, or a mapping."""
        if data == "*":
            return cls(allow_all=True)
        if data is None:
            return cls(allowed_subfields={})
        if isinstance(data, list):
            if not all(isinstance(name, str) for name in data):
                raise ValueError(f"invalid allowed fields list: {data!r}")
            return cls(allowed_subfields={name: cls(allow_all=True) for name in data})
        if isinstance(data, dict):
            return cls(allowed_subfields={name: cls.from_json(sub) for name, sub in data.items()})
        raise ValueError(f"invalid allowed fields: {data!r}")

    def __str__(self) -> str:
        return json.dumps(self.to_json(), sort_keys=True, separators=(",", ":"))


def _is_set(allowed: AllowedFields) -> bool:
    return allowed.allow_all or allowed.allowed_subfields is not None


@dataclass
class OperationPermissions:
    """Top level permissions for every operation type."""

    query: AllowedFields = field(default_factory=AllowedFields)
    mutation: AllowedFields = field(default_factory=AllowedFields)
    subscription: AllowedFields = field(default_factory=AllowedFields)

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-compatible mapping, leaving out unset operations."""
        return {
            name: allowed.to_json()
            for name, allowed in (
                ("query", self.query),
                ("mutation", self.mutation),
                ("subscription", self.subscription),
            )
            if _is_set(allowed)
        }

    @classmethod
    def from_json(cls, data: Any) -> OperationPermissions:
        """Build from a decoded JSON object."""
        if not isinstance(data, dict):
            raise ValueError(f"invalid operation permissions: {data!r}")
        kwargs = {
            name: AllowedFields.from_json(data[name])
            for name in ("query", "mutation", "subscription")
            if name in data
        }
        return cls(**kwargs)

    def filter_authorized_fields(self, op: OperationDefinition) -> list[FieldAccessError]:
        """Remove unauthorized fields from the operation and return one error per field."""
        roots = {QUERY: self.query, MUTATION: self.mutation, SUBSCRIPTION: self.subscription}
        try:
            allowed = roots[op.operation]
        except KeyError:
            raise ValueError(f"invalid operation {op.operation!r} in operation filtering") from None
        op.selection_set, errors = _filter_fields((op.operation,), op.selection_set, allowed)
        return errors

    def filter_schema(self, schema: Schema) -> Schema:
        """Return a copy of the schema stripped of unauthorized fields and types."""
        types: dict[str, Definition] = {}
        result = dataclasses.replace(schema, types=types)
        result.query = _filter_definition(schema, None, types, schema.query, self.query)
        if result.query is not None:
            types["Query"] = result.query
        result.mutation = _filter_definition(schema, None, types, schema.mutation, self.mutation)
        if result.mutation is not None:
            types["Mutation"] = result.mutation
        result.subscription = _filter_definition(
            schema, None, types, schema.subscription, self.subscription
        )
        if result.subscription is not None:
            types["Subscription"] = result.subscription
        return result


def _include_argument_types(
    source: Schema, visited: Optional[set[str]], types: dict[str, Definition], field_def: Any
) -> None:
    for arg in field_def.arguments:
        arg_type = source.types.get(arg.type.name())
        if arg_type is None:
            continue
        types[arg.type.name()] = arg_type
        _filter_definition(source, visited, types, arg_type, AllowedFields(allow_all=True))


def _store(types: dict[str, Definition], name: str, definition: Definition) -> None:
    # a type can be reached through several paths: merge the fields
    if name in types:
        _add_fields(types[name], definition)
    else:
        types[name] = definition


def _filter_definition(
    source: Schema,
    visited: Optional[set[str]],
    types: dict[str, Definition],
    definition: Optional[Definition],
    allowed: AllowedFields,
) -> Optional[Definition]:
    if definition is None:
        return None

    result = dataclasses.replace(definition, fields=[])

    if allowed.allow_all:
        if visited is None:
            visited = set()
        result.fields = list(definition.fields)
        for field_def in definition.fields:
            type_name = field_def.type.name()
            key = definition.name + field_def.name
            if key in visited:
                continue
            visited.add(key)
            typ = source.types.get(type_name)
            if typ is None:
                continue
            if typ.is_abstract_type():
                for possible in source.possible_types.get(typ.name, []):
                    types[possible.name] = possible
                    _filter_definition(source, visited, types, possible, AllowedFields(allow_all=True))
            types[type_name] = typ
            _include_argument_types(source, visited, types, field_def)
            _filter_definition(source, visited, types, typ, AllowedFields(allow_all=True))
        return result

    subfields = allowed.allowed_subfields or {}
    for field_def in definition.fields:
        if field_def.name not in subfields:
            continue
        sub_allowed = subfields[field_def.name]
        result.fields.append(field_def)
        type_name = field_def.type.name()
        typ = source.types.get(type_name)
        if typ is None:
            continue
        if typ.is_abstract_type():
            for possible in source.possible_types.get(typ.name, []):
                filtered = _filter_definition(source, visited, types, possible, sub_allowed)
                _store(types, possible.name, filtered)
        filtered = _filter_definition(source, visited, types, typ, sub_allowed)
        _store(types, type_name, filtered)
        _include_argument_types(source, visited, types, field_def)

    return result


def _add_fields(target: Definition, other: Definition) -> None:
    for field_def in other.fields:
        if target.field(field_def.name) is None:
            target.fields.append(field_def)


def _filter_fields(
    path: tuple[str, ...], selection_set: list[Selection], allowed: AllowedFields
) -> tuple[list[Selection], list[FieldAccessError]]:
    if allowed.allow_all:
        return selection_set, []

    result: list[Selection] = []
    errors: list[FieldAccessError] = []
    for selection in selection_set or []:
        if isinstance(selection, Field):
            field_path = path + (selection.name,)
            is_allowed, field_perms = allowed.is_allowed(selection.name)
            if not is_allowed:
                dotted = ".".join(field_path)
                logger.debug("field access disallowed: field=%s permissions=%s", dotted, allowed)
                errors.append(FieldAccessError(f"{dotted} access disallowed", field_path))
                continue
            if not field_perms.allow_all:
                selection.selection_set, sub_errors = _filter_fields(
                    field_path, selection.selection_set, field_perms
                )
                errors.extend(sub_errors)
            result.append(selection)
        elif isinstance(selection, FragmentSpread):
            if selection.definition is None:
                raise ValueError(f"fragment {selection.name!r} has no definition")
            selection.definition.selection_set, sub_errors = _filter_fields(
                path, selection.definition.selection_set, allowed
            )
            result.append(selection)
            errors.extend(sub_errors)
        elif isinstance(selection, InlineFragment):
            selection.selection_set, sub_errors = _filter_fields(path, selection.selection_set, allowed)
            result.append(selection)
            errors.extend(sub_errors)
    return result, errors


def merge_permissions(*perms: OperationPermissions) -> OperationPermissions:
    """Return the union of the given permissions."""
    return OperationPermissions(
        query=merge_allowed_fields(*(p.query for p in perms)),
        mutation=merge_allowed_fields(*(p.mutation for p in perms)),
        subscription=merge_allowed_fields(*(p.subscription for p in perms)),
    )


def merge_allowed_fields(*allowed_fields: AllowedFields) -> AllowedFields:
    """Return the union of the given allowed fields."""
    merged: dict[str, AllowedFields] = {}
    for allowed in allowed_fields:
        if allowed.allow_all:
            return AllowedFields(allow_all=True)
        for name, sub in (allowed.allowed_subfields or {}).items():
            merged[name] = merge_allowed_fields(sub, merged[name]) if name in merged else sub
    return AllowedFields(allowed_subfields=merged)