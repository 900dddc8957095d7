"""
SQL Type Mapping Module

This module maps source column metadata (SQL type code, precision, scale) to
the serializer kind used to encode the column in a record stream.

Type codes follow the standard SQL / JDBC type taxonomy. ODBC reports the
same numbers for most types, plus a few ODBC-only codes that are mapped
alongside their standard counterparts.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple
import logging

from rawdump.errors import UnsupportedTypeError

logger = logging.getLogger(__name__)


class SqlType(IntEnum):
    """Standard SQL type codes (java.sql.Types values)."""

    BIT = -7
    TINYINT = -6
    SMALLINT = 5
    INTEGER = 4
    BIGINT = -5
    FLOAT = 6
    REAL = 7
    DOUBLE = 8
    NUMERIC = 2
    DECIMAL = 3
    CHAR = 1
    VARCHAR = 12
    LONGVARCHAR = -1
    DATE = 91
    TIME = 92
    TIMESTAMP = 93
    BINARY = -2
    VARBINARY = -3
    LONGVARBINARY = -4
    NULL = 0
    OTHER = 1111
    JAVA_OBJECT = 2000
    DISTINCT = 2001
    STRUCT = 2002
    ARRAY = 2003
    BLOB = 2004
    CLOB = 2005
    REF = 2006
    DATALINK = 70
    BOOLEAN = 16
    ROWID = -8
    NCHAR = -15
    NVARCHAR = -9
    LONGNVARCHAR = -16
    NCLOB = 2011
    SQLXML = 2009
    REF_CURSOR = 2012
    TIME_WITH_TIMEZONE = 2013
    TIMESTAMP_WITH_TIMEZONE = 2014


# ODBC-only codes as reported by pyodbc's cursor.columns().
# SQL_WCHAR (-8) shares its number with ROWID in the standard taxonomy.
ODBC_WCHAR = -8
ODBC_WLONGVARCHAR = -10
ODBC_SS_TIME2 = -154
ODBC_SS_TIMESTAMPOFFSET = -155


class SerializerKind(Enum):
    """Concrete value codec selected for a column."""

    TIME = "time"
    DATE = "date"
    TIMESTAMP = "timestamp"
    STRING = "string"
    DOUBLE = "double"
    INTEGER = "integer"
    LONG = "long"
    DECIMAL = "decimal"
    BLOB = "blob"
    CLOB = "clob"
    ARRAY = "array"
    STRUCT = "struct"


# Precision recorded for exact numerics declared without one
UNCONSTRAINED_NUMERIC_PRECISION = 1000

# Fixed type code -> kind table; DECIMAL/NUMERIC depend on precision/scale
TYPE_MAPPING: Dict[int, SerializerKind] = {
    SqlType.TIME: SerializerKind.TIME,
    SqlType.TIME_WITH_TIMEZONE: SerializerKind.TIME,
    ODBC_SS_TIME2: SerializerKind.TIME,
    SqlType.DATE: SerializerKind.DATE,
    SqlType.TIMESTAMP: SerializerKind.TIMESTAMP,
    SqlType.TIMESTAMP_WITH_TIMEZONE: SerializerKind.TIMESTAMP,
    ODBC_SS_TIMESTAMPOFFSET: SerializerKind.TIMESTAMP,
    SqlType.CHAR: SerializerKind.STRING,
    SqlType.VARCHAR: SerializerKind.STRING,
    SqlType.NCHAR: SerializerKind.STRING,
    SqlType.NVARCHAR: SerializerKind.STRING,
    SqlType.LONGVARCHAR: SerializerKind.STRING,
    SqlType.LONGNVARCHAR: SerializerKind.STRING,
    ODBC_WCHAR: SerializerKind.STRING,
    ODBC_WLONGVARCHAR: SerializerKind.STRING,
    SqlType.DOUBLE: SerializerKind.DOUBLE,
    SqlType.FLOAT: SerializerKind.DOUBLE,
    SqlType.REAL: SerializerKind.DOUBLE,
    SqlType.INTEGER: SerializerKind.INTEGER,
    SqlType.SMALLINT: SerializerKind.INTEGER,
    SqlType.TINYINT: SerializerKind.INTEGER,
    SqlType.BIT: SerializerKind.INTEGER,
    SqlType.BOOLEAN: SerializerKind.INTEGER,
    SqlType.BIGINT: SerializerKind.LONG,
    SqlType.BLOB: SerializerKind.BLOB,
    SqlType.BINARY: SerializerKind.BLOB,
    SqlType.VARBINARY: SerializerKind.BLOB,
    SqlType.LONGVARBINARY: SerializerKind.BLOB,
    SqlType.CLOB: SerializerKind.CLOB,
    SqlType.NCLOB: SerializerKind.CLOB,
    SqlType.ARRAY: SerializerKind.ARRAY,
    SqlType.STRUCT: SerializerKind.STRUCT,
}


# INFORMATION_SCHEMA.COLUMNS.DATA_TYPE names (SQL Server and PostgreSQL
# spellings) for backends without an ODBC catalog
TYPE_NAME_MAPPING: Dict[str, int] = {
    # Exact Numeric Types
    "bit": SqlType.BIT,
    "boolean": SqlType.BOOLEAN,
    "tinyint": SqlType.TINYINT,
    "smallint": SqlType.SMALLINT,
    "int": SqlType.INTEGER,
    "integer": SqlType.INTEGER,
    "bigint": SqlType.BIGINT,
    "decimal": SqlType.DECIMAL,
    "numeric": SqlType.NUMERIC,
    "money": SqlType.DECIMAL,
    "smallmoney": SqlType.DECIMAL,

    # Approximate Numeric Types
    "float": SqlType.DOUBLE,
    "double precision": SqlType.DOUBLE,
    "real": SqlType.REAL,

    # Character String Types
    "char": SqlType.CHAR,
    "character": SqlType.CHAR,
    "varchar": SqlType.VARCHAR,
    "character varying": SqlType.VARCHAR,
    "text": SqlType.LONGVARCHAR,
    "nchar": SqlType.NCHAR,
    "nvarchar": SqlType.NVARCHAR,
    "ntext": SqlType.LONGNVARCHAR,

    # Binary String Types
    "binary": SqlType.BINARY,
    "varbinary": SqlType.VARBINARY,
    "image": SqlType.LONGVARBINARY,
    "bytea": SqlType.LONGVARBINARY,

    # Date and Time Types
    "date": SqlType.DATE,
    "time": SqlType.TIME,
    "time without time zone": SqlType.TIME,
    "time with time zone": SqlType.TIME_WITH_TIMEZONE,
    "datetime": SqlType.TIMESTAMP,
    "datetime2": SqlType.TIMESTAMP,
    "smalldatetime": SqlType.TIMESTAMP,
    "timestamp without time zone": SqlType.TIMESTAMP,
    "datetimeoffset": SqlType.TIMESTAMP_WITH_TIMEZONE,
    "timestamp with time zone": SqlType.TIMESTAMP_WITH_TIMEZONE,

    # Object Types
    "array": SqlType.ARRAY,
    "user-defined": SqlType.STRUCT,
}


def resolve_serializer_kind(sql_type: int, precision: int = 0, scale: int = 0) -> SerializerKind:
    """
    Resolve the serializer kind for a column.

    Exact numerics without a fractional part are narrowed to 32-bit or
    64-bit integers when the declared precision guarantees the value fits.

    Args:
        sql_type: SQL type code
        precision: Declared numeric precision
        scale: Declared numeric scale

    Returns:
        The serializer kind for the column

    Raises:
        UnsupportedTypeError: If the type code has no serializer
    """
    if sql_type in (SqlType.DECIMAL, SqlType.NUMERIC):
        if scale == 0:
            if precision < 10:
                return SerializerKind.INTEGER
            if precision < 18:
                return SerializerKind.LONG
        return SerializerKind.DECIMAL

    kind = TYPE_MAPPING.get(sql_type)
    if kind is None:
        raise UnsupportedTypeError(sql_type)
    return kind


def numeric_precision(sql_type: int, precision: Optional[int]) -> int:
    """
    Declared precision of a column as stored in its descriptor.

    An exact numeric without a declared precision (PostgreSQL `numeric`)
    is unconstrained and must not be narrowed to an integer kind.
    """
    if precision is None and sql_type in (SqlType.DECIMAL, SqlType.NUMERIC):
        return UNCONSTRAINED_NUMERIC_PRECISION
    return precision or 0


def sql_type_from_name(type_name: str) -> int:
    """
    Map an INFORMATION_SCHEMA data type name to a SQL type code.

    Unknown names map to SqlType.OTHER, which has no serializer; the failure
    is reported when the column is resolved, not here.
    """
    normalized = type_name.lower().strip()
    code = TYPE_NAME_MAPPING.get(normalized)
    if code is None:
        logger.warning(f"Unknown data type '{type_name}', no serializer available")
        return int(SqlType.OTHER)
    return int(code)


def type_label(sql_type: int) -> str:
    """Readable name for a type code, used in the header manifest."""
    try:
        return SqlType(sql_type).name
    except ValueError:
        return "UNKNOWN"


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    One column of a stream.

    `type_name` is the source's declared type name (for example the element
    type of an array column); it is only known on the dump side and is not
    written to the stream header.
    """

    name: str
    sql_type: int
    precision: int = 0
    scale: int = 0
    type_name: str = field(default="", compare=False)

    @property
    def kind(self) -> SerializerKind:
        try:
            return resolve_serializer_kind(self.sql_type, self.precision, self.scale)
        except UnsupportedTypeError:
            raise UnsupportedTypeError(self.sql_type, self.name) from None


@dataclass(frozen=True)
class TableDescriptor:
    """A table name and its columns in stream order."""

    name: str
    columns: Tuple[ColumnDescriptor, ...]

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def kinds(self) -> List[SerializerKind]:
        """Resolve every column up front so an unsupported type fails before any row."""
        return [column.kind for column in self.columns]
