"""
Exception types raised by the rawdump codec and pipelines.

Backend (driver) errors are not wrapped; they propagate as the DB-API
driver's own exceptions.
"""


class RawDumpError(Exception):
    """Base class for rawdump failures."""


class ProtocolError(RawDumpError):
    """The byte stream does not follow the record stream layout."""


class UnsupportedTypeError(RawDumpError):
    """A column's SQL type has no serializer."""

    def __init__(self, sql_type: int, column_name: str = ""):
        self.sql_type = sql_type
        self.column_name = column_name
        where = f" for column {column_name}" if column_name else ""
        super().__init__(f"Unsupported SQL type {sql_type}{where}")


class BatchInsertError(RawDumpError):
    """A batch insert reported that no row was written."""
