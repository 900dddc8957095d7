"""
Schema Extractor Module

This module reads column metadata from a source connection and turns it into
the TableDescriptor that drives a dump.

Two metadata sources are supported:
- ODBC catalog (pyodbc cursor.columns()), which reports numeric SQL type codes
- INFORMATION_SCHEMA.COLUMNS for other DB-API drivers, whose type names are
  mapped to type codes
"""

from contextlib import closing
from typing import Any, Dict, List, Optional
import logging
import sys

from rawdump.table_config import split_table_name
from rawdump.type_mapping import (
    ColumnDescriptor,
    SqlType,
    TableDescriptor,
    numeric_precision,
    sql_type_from_name,
)

logger = logging.getLogger(__name__)


def get_paramstyle(connection: Any) -> str:
    """DB-API paramstyle of the driver module a connection belongs to."""
    module_name = type(connection).__module__.split('.')[0]
    module = sys.modules.get(module_name)
    return getattr(module, 'paramstyle', 'qmark')


def parameter_markers(connection: Any, count: int) -> List[str]:
    """
    Positional parameter markers for `count` parameters.

    qmark drivers get '?', format/pyformat drivers '%s' and named/numeric
    drivers ':1', ':2', ... (bound positionally).
    """
    paramstyle = get_paramstyle(connection)
    if paramstyle in ('format', 'pyformat'):
        return ['%s'] * count
    if paramstyle in ('named', 'numeric'):
        return [f":{i}" for i in range(1, count + 1)]
    return ['?'] * count


class SchemaExtractor:
    """
    Resolves the columns of source tables.

    Args:
        connection: Open DB-API connection to the source database
        properties: Connection property bag; 'db.schema' (or else 'db.user')
            is the default schema of unqualified table names
    """

    def __init__(self, connection: Any, properties: Optional[Dict[str, str]] = None):
        self.connection = connection
        self.properties = properties or {}

    @property
    def default_schema(self) -> Optional[str]:
        schema = self.properties.get('db.schema') or self.properties.get('db.user')
        return schema.upper() if schema else None

    def get_table(self, table_name: str) -> Optional[TableDescriptor]:
        """
        Read the columns of a table in ordinal order.

        Args:
            table_name: 'schema.table' or a table of the default schema

        Returns:
            TableDescriptor named `table_name`, or None if the table has no
            visible columns
        """
        schema, table = split_table_name(table_name)
        if schema is None:
            schema = self.default_schema

        with closing(self.connection.cursor()) as cursor:
            if hasattr(cursor, 'columns'):
                columns = self._catalog_columns(cursor, schema, table)
            else:
                columns = self._information_schema_columns(cursor, schema, table)

        if not columns:
            return None

        logger.debug(f"{table_name}: {len(columns)} columns (schema {schema})")
        return TableDescriptor(table_name.strip(), tuple(columns))

    def _catalog_columns(self, cursor: Any, schema: Optional[str], table: str) -> List[ColumnDescriptor]:
        rows = cursor.columns(table=table, schema=schema).fetchall()
        rows = sorted(rows, key=lambda row: row.ordinal_position)
        return [
            ColumnDescriptor(
                name=row.column_name,
                sql_type=int(row.data_type),
                precision=numeric_precision(int(row.data_type), row.column_size),
                scale=row.decimal_digits or 0,
                type_name=row.type_name or "",
            )
            for row in rows
        ]

    def _information_schema_columns(
        self,
        cursor: Any,
        schema: Optional[str],
        table: str
    ) -> List[ColumnDescriptor]:
        params = [table]
        markers = parameter_markers(self.connection, 2)
        query = f"""
            SELECT COLUMN_NAME, DATA_TYPE, NUMERIC_PRECISION, NUMERIC_SCALE, UDT_NAME
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_NAME = {markers[0]}
        """
        if schema is not None:
            query += f" AND TABLE_SCHEMA = {markers[1]}"
            params.append(schema)
        query += " ORDER BY ORDINAL_POSITION"

        cursor.execute(query, params)
        columns = []
        for name, data_type, precision, scale, udt_name in cursor.fetchall():
            sql_type = sql_type_from_name(data_type)
            columns.append(ColumnDescriptor(
                name=name,
                sql_type=sql_type,
                precision=numeric_precision(sql_type, precision),
                scale=scale or 0,
                type_name=_declared_type_name(sql_type, data_type, udt_name),
            ))
        return columns


def _declared_type_name(sql_type: int, data_type: str, udt_name: Optional[str]) -> str:
    """
    Type name used to label array and struct values.

    DATA_TYPE is only 'ARRAY' / 'USER-DEFINED' for those columns; UDT_NAME
    holds the composite type, or the element type prefixed with '_' for arrays.
    """
    if not udt_name or sql_type not in (SqlType.ARRAY, SqlType.STRUCT):
        return data_type
    if sql_type == SqlType.ARRAY and udt_name.startswith('_'):
        return udt_name[1:]
    return udt_name
