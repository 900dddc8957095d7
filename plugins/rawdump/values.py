"""
Nested value types and driver value coercion.

Struct and Array are the driver-neutral shapes of SQL object types. On dump,
driver-specific objects (python-oracledb DbObject, psycopg2 composite
namedtuples, plain lists) are coerced into them; on load, a ValueFactory
turns decoded attributes/elements back into whatever the target driver can
bind.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class Struct:
    """A SQL structured (object/composite) value."""

    type_name: str
    attributes: List[Any] = field(default_factory=list)


@dataclass
class Array:
    """A SQL array value with its element type name."""

    type_name: str
    elements: List[Any] = field(default_factory=list)


class ValueFactory:
    """
    Materializes nested values decoded from a stream.

    Subclass to build driver-native objects; the default keeps the
    driver-neutral Struct/Array shapes (psycopg2 binds them through the
    adapters in rawdump.pg_adapters).
    """

    def create_struct(self, type_name: str, attributes: List[Any]) -> Any:
        return Struct(type_name, attributes)

    def create_array(self, type_name: str, elements: List[Any]) -> Any:
        return Array(type_name, elements)


def as_struct(value: Any) -> Struct:
    """
    Coerce a driver struct value to Struct.

    Supports Struct itself, python-oracledb DbObject (type.name plus
    type.attributes) and namedtuple-based composites (psycopg2
    register_composite), whose class name is the type name.
    """
    if isinstance(value, Struct):
        return value

    object_type = getattr(value, 'type', None)
    if (object_type is not None and hasattr(object_type, 'attributes')
            and not getattr(object_type, 'iscollection', False)):
        type_name = _qualified_type_name(object_type)
        attributes = [getattr(value, attr.name) for attr in object_type.attributes]
        return Struct(type_name, attributes)

    if isinstance(value, tuple) and hasattr(value, '_fields'):
        return Struct(type(value).__name__, list(value))

    raise TypeError(f"{value!r} ({type(value).__name__}) is not a struct value")


def as_array(value: Any, type_name: str = "") -> Array:
    """
    Coerce a driver array value to Array.

    Plain lists/tuples carry no element type, so the column's declared type
    name is used.
    """
    if isinstance(value, Array):
        return value

    object_type = getattr(value, 'type', None)
    if object_type is not None and getattr(object_type, 'iscollection', False):
        return Array(_qualified_type_name(object_type), list(value.aslist()))

    if isinstance(value, (list, tuple)):
        return Array(type_name, list(value))

    raise TypeError(f"{value!r} ({type(value).__name__}) is not an array value")


def _qualified_type_name(object_type: Any) -> str:
    schema = getattr(object_type, 'schema', None)
    name = object_type.name
    return f"{schema}.{name}" if schema else name


def read_lob(value: Any) -> Any:
    """Read a LOB locator fully; plain bytes/str values are returned unchanged."""
    reader = getattr(value, 'read', None)
    if reader is not None and not isinstance(value, (bytes, bytearray, str)):
        return reader()
    return value


def to_text(value: Optional[Any]) -> str:
    """
    Render a value as compact debug text.

    Structs render as `!TYPE:attr|attr`, arrays as `#count:elem|elem|`, nulls
    as an empty string.
    """
    parts: List[str] = []
    _append_text(parts, value)
    return ''.join(parts)


def _append_text(parts: List[str], value: Any) -> None:
    if value is None:
        return
    if isinstance(value, Struct):
        parts.append(f"!{value.type_name}:")
        for i, attribute in enumerate(value.attributes):
            if i:
                parts.append("|")
            _append_text(parts, attribute)
    elif isinstance(value, Array):
        parts.append(f"#{len(value.elements)}:")
        for element in value.elements:
            _append_text(parts, element)
            parts.append("|")
    else:
        parts.append(str(value))
