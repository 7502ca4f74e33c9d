"""Introspection resolution, skip/include evaluation and result map merging."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Sequence

from .gqlast import (
    INPUT_OBJECT,
    INTERFACE,
    UNION,
    ArgumentDefinition,
    Definition,
    Directive,
    DirectiveDefinition,
    EnumValueDefinition,
    Field,
    FieldDefinition,
    FragmentDefinition,
    FragmentSpread,
    InlineFragment,
    OperationDefinition,
    Schema,
    Selection,
    Type,
    find_directive,
)

Variables = Optional[Mapping[str, Any]]


def _is_builtin_name(name: str) -> bool:
    return name.startswith("__")


def selection_set_to_fields(selection_set: Optional[Sequence[Selection]]) -> list[Field]:
    """Flatten a selection set into its fields, expanding fragments."""
    result: list[Field] = []
    for selection in selection_set or ():
        if isinstance(selection, Field):
            result.append(selection)
        elif isinstance(selection, FragmentSpread):
            if selection.definition is None:
                raise ValueError(f"fragment {selection.name!r} has no definition")
            result.extend(selection_set_to_fields(selection.definition.selection_set))
        elif isinstance(selection, InlineFragment):
            result.extend(selection_set_to_fields(selection.selection_set))
    return result


def has_deprecated_directive(directives: Optional[Sequence[Directive]]) -> tuple[bool, Optional[str]]:
    """Return whether a @deprecated directive is present, and its reason."""
    directive = find_directive(directives or (), "deprecated")
    if directive is None:
        return False, None
    reason_arg = directive.argument("reason")
    return True, reason_arg.value.raw if reason_arg is not None else ""


def _include_deprecated(selection: Field, variables: Variables) -> bool:
    arg = selection.argument("includeDeprecated")
    if arg is None:
        return False
    try:
        value = arg.value.resolve(variables)
    except ValueError:
        return False
    return value if isinstance(value, bool) else False


def resolve_introspection_fields(
    selection_set: Sequence[Selection], schema: Schema, variables: Variables = None
) -> dict[str, Any]:
    """Resolve the __type and __schema fields of a root selection set."""
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        if selection.name == "__type":
            name_arg = selection.argument("name")
            if name_arg is None:
                raise ValueError("__type: argument 'name' not defined")
            result[selection.alias] = resolve_type(
                schema, Type(named_type=name_arg.value.raw), selection.selection_set, variables
            )
        elif selection.name == "__schema":
            result[selection.alias] = resolve_schema(schema, selection.selection_set, variables)
    return result


def resolve_schema(
    schema: Schema, selection_set: Sequence[Selection], variables: Variables = None
) -> dict[str, Any]:
    """Resolve the fields of a __Schema object."""
    roots = {"queryType": "Query", "mutationType": "Mutation", "subscriptionType": "Subscription"}
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        if selection.name == "types":
            result[selection.alias] = [
                resolve_type(schema, Type(named_type=t.name), selection.selection_set, variables)
                for t in schema.types.values()
            ]
        elif selection.name in roots:
            result[selection.alias] = resolve_type(
                schema, Type(named_type=roots[selection.name]), selection.selection_set, variables
            )
        elif selection.name == "directives":
            result[selection.alias] = [
                resolve_directive(schema, d, selection.selection_set, variables)
                for d in schema.directives.values()
            ]
    return result


def _resolve_wrapper(
    schema: Schema,
    kind: str,
    inner: Type,
    selection_set: Sequence[Selection],
    variables: Variables,
) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        if selection.name == "kind":
            result[selection.alias] = kind
        elif selection.name == "ofType":
            result[selection.alias] = resolve_type(schema, inner, selection.selection_set, variables)
        else:
            result[selection.alias] = None
    return result


def resolve_type(
    schema: Schema,
    typ: Optional[Type],
    selection_set: Sequence[Selection],
    variables: Variables = None,
) -> Optional[dict[str, Any]]:
    """Resolve the fields of a __Type object; None for an unknown named type."""
    if typ is None:
        return None

    # NON_NULL comes first, then LIST, each wrapping the rest in "ofType"
    if typ.non_null:
        inner = Type(named_type=typ.named_type, elem=typ.elem, non_null=False)
        return _resolve_wrapper(schema, "NON_NULL", inner, selection_set, variables)
    if typ.elem is not None:
        return _resolve_wrapper(schema, "LIST", typ.elem, selection_set, variables)

    named = schema.types.get(typ.named_type)
    if named is None:
        return None

    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        alias, sub = selection.alias, selection.selection_set
        if selection.name == "kind":
            result[alias] = named.kind
        elif selection.name == "name":
            result[alias] = named.name
        elif selection.name == "description":
            result[alias] = named.description
        elif selection.name == "fields":
            include = _include_deprecated(selection, variables)
            result[alias] = [
                resolve_field(schema, f, sub, variables)
                for f in named.fields
                if not _is_builtin_name(f.name)
                and (include or not has_deprecated_directive(f.directives)[0])
            ]
        elif selection.name == "interfaces":
            result[alias] = [
                resolve_type(schema, Type(named_type=name), sub, variables)
                for name in named.interfaces
            ]
        elif selection.name == "possibleTypes":
            if named.kind not in (INTERFACE, UNION):
                result[alias] = None
            else:
                result[alias] = [
                    resolve_type(schema, Type(named_type=t.name), sub, variables)
                    for t in schema.possible_types.get(named.name, [])
                ]
        elif selection.name == "enumValues":
            include = _include_deprecated(selection, variables)
            result[alias] = [
                resolve_enum_value(e, sub)
                for e in named.enum_values
                if include or not has_deprecated_directive(e.directives)[0]
            ]
        elif selection.name == "inputFields":
            if named.kind == INPUT_OBJECT:
                # resolve_field has the right type and is a superset of an input value
                result[alias] = [resolve_field(schema, f, sub, variables) for f in named.fields]
            else:
                result[alias] = None
        else:
            result[alias] = None
    return result


def resolve_field(
    schema: Schema,
    field: FieldDefinition,
    selection_set: Sequence[Selection],
    variables: Variables = None,
) -> dict[str, Any]:
    """Resolve the fields of a __Field object."""
    deprecated, reason = has_deprecated_directive(field.directives)
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        alias = selection.alias
        if selection.name == "name":
            result[alias] = field.name
        elif selection.name == "description":
            result[alias] = field.description
        elif selection.name == "args":
            result[alias] = [
                resolve_input_value(schema, arg, selection.selection_set, variables)
                for arg in field.arguments
            ]
        elif selection.name == "type":
            result[alias] = resolve_type(schema, field.type, selection.selection_set, variables)
        elif selection.name == "isDeprecated":
            result[alias] = deprecated
        elif selection.name == "deprecationReason":
            result[alias] = reason
        elif selection.name == "defaultValue":
            result[alias] = str(field.default_value) if field.default_value is not None else None
    return result


def resolve_input_value(
    schema: Schema,
    arg: ArgumentDefinition,
    selection_set: Sequence[Selection],
    variables: Variables = None,
) -> dict[str, Any]:
    """Resolve the fields of a __InputValue object."""
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        alias = selection.alias
        if selection.name == "name":
            result[alias] = arg.name
        elif selection.name == "description":
            result[alias] = arg.description
        elif selection.name == "type":
            result[alias] = resolve_type(schema, arg.type, selection.selection_set, variables)
        elif selection.name == "defaultValue":
            result[alias] = str(arg.default_value) if arg.default_value is not None else None
    return result


def resolve_enum_value(
    enum: EnumValueDefinition, selection_set: Sequence[Selection]
) -> dict[str, Any]:
    """Resolve the fields of a __EnumValue object."""
    deprecated, reason = has_deprecated_directive(enum.directives)
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        alias = selection.alias
        if selection.name == "name":
            result[alias] = enum.name
        elif selection.name == "description":
            result[alias] = enum.description
        elif selection.name == "isDeprecated":
            result[alias] = deprecated
        elif selection.name == "deprecationReason":
            result[alias] = reason
    return result


def resolve_directive(
    schema: Schema,
    directive: DirectiveDefinition,
    selection_set: Sequence[Selection],
    variables: Variables = None,
) -> dict[str, Any]:
    """Resolve the fields of a __Directive object."""
    result: dict[str, Any] = {}
    for selection in selection_set_to_fields(selection_set):
        alias = selection.alias
        if selection.name == "name":
            result[alias] = directive.name
        elif selection.name == "description":
            result[alias] = directive.description
        elif selection.name == "locations":
            result[alias] = list(directive.locations)
        elif selection.name == "args":
            result[alias] = [
                resolve_input_value(schema, arg, selection.selection_set, variables)
                for arg in directive.arguments
            ]
    return result


def _as_map(value: Any, side: str) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            decoded = json.loads(bytes(value))
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    raise TypeError(f"merge_maps: {side} value is {type(value).__name__}, not a map or raw JSON")


def merge_maps(dst: dict[str, Any], src: Mapping[str, Any]) -> None:
    """Merge ``src`` into ``dst`` in place, decoding raw JSON bytes where needed."""
    for key, value in list(dst.items()):
        if key not in src:
            continue
        dst_map = _as_map(value, "dst")
        dst[key] = dst_map
        merge_maps(dst_map, _as_map(src[key], "src"))

    for key, value in src.items():
        if key not in dst:
            dst[key] = value


def remove_skip_and_include(directives: Optional[Sequence[Directive]]) -> list[Directive]:
    """Return the directives other than @skip and @include."""
    return [d for d in directives or () if d.name not in ("include", "skip")]


def resolve_if_argument(directive: Directive, variables: Variables) -> bool:
    """Return the boolean value of the directive's "if" argument."""
    arg = directive.argument("if")
    if arg is None:
        raise ValueError(f"{directive.name}: argument 'if' not defined")
    value = arg.value.resolve(variables)
    if not isinstance(value, bool):
        raise ValueError(f"{directive.name}: argument 'if' is not a boolean")
    return value


def _is_selected(directives: Sequence[Directive], variables: Variables) -> bool:
    skip_directive = find_directive(directives, "skip")
    include_directive = find_directive(directives, "include")
    skip = resolve_if_argument(skip_directive, variables) if skip_directive else False
    include = resolve_if_argument(include_directive, variables) if include_directive else True
    return not skip and include


def _evaluate_selection_set(
    variables: Variables, selection_set: Optional[Sequence[Selection]]
) -> Optional[list[Selection]]:
    if selection_set is None:
        return None
    result: list[Selection] = []
    for selection in selection_set:
        if not _is_selected(selection.directives, variables):
            continue
        if isinstance(selection, Field):
            result.append(
                Field(
                    name=selection.name,
                    alias=selection.alias,
                    arguments=selection.arguments,
                    directives=remove_skip_and_include(selection.directives),
                    selection_set=_evaluate_selection_set(variables, selection.selection_set),
                    definition=selection.definition,
                    object_definition=selection.object_definition,
                )
            )
        elif isinstance(selection, InlineFragment):
            result.append(
                InlineFragment(
                    type_condition=selection.type_condition,
                    directives=remove_skip_and_include(selection.directives),
                    selection_set=_evaluate_selection_set(variables, selection.selection_set),
                    object_definition=selection.object_definition,
                )
            )
        elif isinstance(selection, FragmentSpread):
            fragment = selection.definition
            if fragment is None:
                raise ValueError(f"fragment {selection.name!r} has no definition")
            result.append(
                FragmentSpread(
                    name=selection.name,
                    directives=remove_skip_and_include(selection.directives),
                    object_definition=selection.object_definition,
                    definition=FragmentDefinition(
                        name=fragment.name,
                        variable_definition=fragment.variable_definition,
                        type_condition=fragment.type_condition,
                        directives=remove_skip_and_include(fragment.directives),
                        selection_set=_evaluate_selection_set(variables, fragment.selection_set),
                        definition=fragment.definition,
                    ),
                )
            )
    return result


def evaluate_skip_and_include(variables: Variables, op: OperationDefinition) -> OperationDefinition:
    """Return a copy of the operation with @skip and @include applied and removed."""
    return OperationDefinition(
        operation=op.operation,
        name=op.name,
        variable_definitions=op.variable_definitions,
        directives=op.directives,
        selection_set=_evaluate_selection_set(variables, op.selection_set),
    )