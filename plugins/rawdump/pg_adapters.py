"""
psycopg2 adapters for nested values.

Struct values are rendered as `ROW(attr, ...)::type_name` and Array values
as `ARRAY[elem, ...]::type_name[]`, so decoded object types can be bound to
composite and array columns of a PostgreSQL target.

Call register_pg_adapters() once before loading through psycopg2.
"""

from typing import Any, List
import logging

from psycopg2.extensions import ISQLQuote, adapt, register_adapter

from rawdump.table_config import validate_table_name
from rawdump.values import Array, Struct

logger = logging.getLogger(__name__)


class _NestedAdapter:
    """Base of the nested value adapters; quotes children with the same connection."""

    def __init__(self, value: Any):
        self.value = value
        self._conn = None

    def __conform__(self, proto):
        if proto is ISQLQuote:
            return self
        return None

    def prepare(self, conn) -> None:
        self._conn = conn

    def _quote_all(self, values: List[Any]) -> bytes:
        quoted = []
        for value in values:
            adapted = adapt(value)
            if self._conn is not None and hasattr(adapted, 'prepare'):
                adapted.prepare(self._conn)
            quoted.append(adapted.getquoted())
        return b', '.join(quoted)

    @staticmethod
    def _type_name(type_name: str) -> bytes:
        return validate_table_name(type_name).encode('utf-8')


class StructAdapter(_NestedAdapter):
    def getquoted(self) -> bytes:
        struct_value: Struct = self.value
        row = b'ROW(' + self._quote_all(struct_value.attributes) + b')'
        if not struct_value.type_name:
            return row
        return row + b'::' + self._type_name(struct_value.type_name)


class ArrayAdapter(_NestedAdapter):
    def getquoted(self) -> bytes:
        array_value: Array = self.value
        if array_value.elements:
            literal = b'ARRAY[' + self._quote_all(array_value.elements) + b']'
        else:
            literal = b"'{}'"
        if not array_value.type_name:
            return literal
        return literal + b'::' + self._type_name(array_value.type_name) + b'[]'


def register_pg_adapters() -> None:
    """Register the Struct/Array adapters with psycopg2 (process wide)."""
    register_adapter(Struct, StructAdapter)
    register_adapter(Array, ArrayAdapter)
    logger.debug("Registered psycopg2 adapters for Struct and Array")
