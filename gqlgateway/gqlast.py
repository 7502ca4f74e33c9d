"""Syntax tree for GraphQL schemas and executable documents."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

# Value kinds
VARIABLE = "Variable"
INT_VALUE = "Int"
FLOAT_VALUE = "Float"
STRING_VALUE = "String"
BOOLEAN_VALUE = "Boolean"
NULL_VALUE = "Null"
ENUM_VALUE = "Enum"
LIST_VALUE = "List"
OBJECT_VALUE = "Object"

# Definition kinds, spelled as introspection reports them
SCALAR = "SCALAR"
OBJECT = "OBJECT"
INTERFACE = "INTERFACE"
UNION = "UNION"
ENUM = "ENUM"
INPUT_OBJECT = "INPUT_OBJECT"

# Operation types
QUERY = "query"
MUTATION = "mutation"
SUBSCRIPTION = "subscription"

_TRUE_WORDS = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE_WORDS = {"0", "f", "F", "false", "FALSE", "False"}


@dataclass
class Value:
    """A literal or variable reference appearing in a document."""

    kind: str
    raw: str = ""
    items: list[Value] = field(default_factory=list)
    fields: dict[str, Value] = field(default_factory=dict)

    def resolve(self, variables: Optional[Mapping[str, Any]] = None) -> Any:
        """Return the Python value, looking variables up in ``variables``."""
        variables = variables or {}
        if self.kind == VARIABLE:
            return variables.get(self.raw)
        if self.kind == INT_VALUE:
            return int(self.raw, 10)
        if self.kind == FLOAT_VALUE:
            return float(self.raw)
        if self.kind in (STRING_VALUE, ENUM_VALUE):
            return self.raw
        if self.kind == BOOLEAN_VALUE:
            if self.raw in _TRUE_WORDS:
                return True
            if self.raw in _FALSE_WORDS:
                return False
            raise ValueError(f"invalid boolean literal {self.raw!r}")
        if self.kind == NULL_VALUE:
            return None
        if self.kind == LIST_VALUE:
            return [item.resolve(variables) for item in self.items]
        if self.kind == OBJECT_VALUE:
            return {name: value.resolve(variables) for name, value in self.fields.items()}
        raise ValueError(f"unknown value kind {self.kind!r}")

    def __str__(self) -> str:
        if self.kind == VARIABLE:
            return "$" + self.raw
        if self.kind == STRING_VALUE:
            return json.dumps(self.raw)
        if self.kind == NULL_VALUE:
            return "null"
        if self.kind == LIST_VALUE:
            return "[" + ", ".join(str(item) for item in self.items) + "]"
        if self.kind == OBJECT_VALUE:
            inner = ", ".join(f"{name}: {value}" for name, value in self.fields.items())
            return "{" + inner + "}"
        return self.raw


@dataclass
class Argument:
    """An argument passed to a field or directive."""

    name: str
    value: Value


def _find_named(items: Sequence[Any], name: str) -> Any:
    return next((item for item in items if item.name == name), None)


@dataclass
class Directive:
    """A directive applied in a document or schema."""

    name: str
    arguments: list[Argument] = field(default_factory=list)

    def argument(self, name: str) -> Optional[Argument]:
        """Return the argument called ``name``, or None."""
        return _find_named(self.arguments, name)


def find_directive(directives: Sequence[Directive], name: str) -> Optional[Directive]:
    """Return the first directive called ``name``, or None."""
    return _find_named(directives or (), name)


@dataclass
class Type:
    """A type reference: a named type, or a list of an element type."""

    named_type: str = ""
    elem: Optional[Type] = None
    non_null: bool = False

    def name(self) -> str:
        """Return the innermost named type."""
        return self.elem.name() if self.elem is not None else self.named_type

    def __str__(self) -> str:
        text = f"[{self.elem}]" if self.elem is not None else self.named_type
        return text + ("!" if self.non_null else "")


@dataclass
class ArgumentDefinition:
    """An argument declared on a field or directive."""

    name: str
    type: Type
    description: str = ""
    default_value: Optional[Value] = None
    directives: list[Directive] = field(default_factory=list)


@dataclass
class FieldDefinition:
    """A field declared on an object, interface or input type."""

    name: str
    type: Type
    description: str = ""
    arguments: list[ArgumentDefinition] = field(default_factory=list)
    default_value: Optional[Value] = None
    directives: list[Directive] = field(default_factory=list)


@dataclass
class EnumValueDefinition:
    """A value declared on an enum type."""

    name: str
    description: str = ""
    directives: list[Directive] = field(default_factory=list)


@dataclass
class DirectiveDefinition:
    """A directive declared in a schema."""

    name: str
    description: str = ""
    arguments: list[ArgumentDefinition] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    is_repeatable: bool = False


@dataclass
class Definition:
    """A named type declared in a schema."""

    kind: str
    name: str
    description: str = ""
    fields: list[FieldDefinition] = field(default_factory=list)
    interfaces: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)
    enum_values: list[EnumValueDefinition] = field(default_factory=list)
    directives: list[Directive] = field(default_factory=list)

    def field(self, name: str) -> Optional[FieldDefinition]:
        """Return the field called ``name``, or None."""
        return _find_named(self.fields, name)

    def is_abstract_type(self) -> bool:
        """Whether this is an interface or a union."""
        return self.kind in (INTERFACE, UNION)


@dataclass
class Schema:
    """A complete schema with its root types."""

    types: dict[str, Definition] = field(default_factory=dict)
    query: Optional[Definition] = None
    mutation: Optional[Definition] = None
    subscription: Optional[Definition] = None
    directives: dict[str, DirectiveDefinition] = field(default_factory=dict)
    possible_types: dict[str, list[Definition]] = field(default_factory=dict)


@dataclass
class Field:
    """A field selected in an executable document."""

    name: str
    alias: str = ""
    arguments: list[Argument] = field(default_factory=list)
    directives: list[Directive] = field(default_factory=list)
    selection_set: list[Selection] = field(default_factory=list)
    definition: Optional[FieldDefinition] = None
    object_definition: Optional[Definition] = None

    def __post_init__(self) -> None:
        if not self.alias:
            self.alias = self.name

    def argument(self, name: str) -> Optional[Argument]:
        """Return the argument called ``name``, or None."""
        return _find_named(self.arguments, name)


@dataclass
class FragmentDefinition:
    """A named fragment declared in a document."""

    name: str
    type_condition: str = ""
    selection_set: list[Selection] = field(default_factory=list)
    directives: list[Directive] = field(default_factory=list)
    variable_definition: list[Any] = field(default_factory=list)
    definition: Optional[Definition] = None


@dataclass
class FragmentSpread:
    """A use of a named fragment."""

    name: str
    definition: Optional[FragmentDefinition] = None
    directives: list[Directive] = field(default_factory=list)
    object_definition: Optional[Definition] = None


@dataclass
class InlineFragment:
    """An inline fragment, with an optional type condition."""

    type_condition: str = ""
    selection_set: list[Selection] = field(default_factory=list)
    directives: list[Directive] = field(default_factory=list)
    object_definition: Optional[Definition] = None


Selection = Union[Field, FragmentSpread, InlineFragment]


@dataclass
class OperationDefinition:
    """A query, mutation or subscription operation."""

    operation: str = QUERY
    name: str = ""
    selection_set: list[Selection] = field(default_factory=list)
    variable_definitions: list[Any] = field(default_factory=list)
    directives: list[Directive] = field(default_factory=list)