"""
Record Stream Codec

This module frames one table's rows as a single forward-only byte stream.

Stream Format:
- Header: HEADER tag + table name + column count + (name, SQL type code,
  precision, scale) per column
- Records: RECORD tag + one column-typed value per column, in header order
- Trailer: EOF tag, written exactly once when the writer is closed

Readers stop on the EOF tag and never rely on end-of-file; any other tag
where a record is expected is a protocol violation.
"""

from typing import Any, BinaryIO, Iterable, List, Optional, Sequence
import logging

from rawdump.errors import ProtocolError, RawDumpError
from rawdump.primitives import BinaryInput, BinaryOutput
from rawdump.serializers import get_serializer
from rawdump.type_mapping import (
    ColumnDescriptor,
    SerializerKind,
    TableDescriptor,
    type_label,
)
from rawdump.values import ValueFactory, as_array

logger = logging.getLogger(__name__)

# Section tags
HEADER = 0x00
RECORD = 0xFF
EOF = 0x03

# File extension of stream files, one file per table
STREAM_EXTENSION = ".rawdump"


class RecordStreamWriter:
    """
    Writes a table's header and records to a binary stream.

    Usage:
        with RecordStreamWriter(fh, table, print_count=10000) as writer:
            writer.write_header()
            writer.write_rows(cursor_rows, limit=-1)

    Leaving the context always writes the EOF tag, also when the row loop
    raised; a failure while writing EOF on that path is logged so the
    original error keeps propagating.
    """

    def __init__(self, stream: BinaryIO, table: TableDescriptor, print_count: int = 10_000):
        if not table.name or not table.name.strip():
            raise ValueError("table name can't be blank")
        self._output = BinaryOutput(stream)
        self._table = table
        # Resolving here makes an unsupported column fail before anything is written
        self._serializers = [get_serializer(kind) for kind in table.kinds()]
        self._print_count = print_count
        self._closed = False
        self.row_count = 0

    def __enter__(self) -> 'RecordStreamWriter':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.close()
            return
        try:
            self.close()
        except Exception:
            logger.exception(f"Could not write EOF for {self._table.name} after a failed dump")

    def write_header(self) -> None:
        """Write the header section and log the column manifest."""
        output = self._output
        output.write_byte(HEADER)
        output.write_string(self._table.name)
        output.write_uvarint(len(self._table.columns))
        for index, column in enumerate(self._table.columns, start=1):
            logger.info(
                f"{index} - {column.name} ({column.sql_type}/{type_label(column.sql_type)})"
            )
            output.write_string(column.name)
            output.write_varint(column.sql_type)
            output.write_varint(column.precision)
            output.write_varint(column.scale)

    def write_record(self, row: Sequence[Any]) -> None:
        """Write one record; the row must have one value per header column."""
        columns = self._table.columns
        if len(row) != len(columns):
            raise ProtocolError(
                f"Row has {len(row)} values but {self._table.name} declares {len(columns)} columns"
            )
        self.row_count += 1
        self._output.write_byte(RECORD)
        for column, serializer, value in zip(columns, self._serializers, row):
            try:
                serializer.serialize(self._output, _column_value(column, serializer.kind, value))
            except Exception as e:
                raise _wrap_error(e)(
                    f"Error writing column {column.name} for record {self.row_count} "
                    f"of {self._table.name}: {e}"
                ) from e

    def write_rows(self, rows: Iterable[Sequence[Any]], limit: int = -1) -> int:
        """
        Write records until the rows are exhausted or `limit` is reached.

        Args:
            rows: Row tuples in header column order
            limit: Maximum number of records (negative = unbounded)

        Returns:
            Number of records written by this call
        """
        written = 0
        print_count = self._print_count
        iterator = iter(rows)
        while limit < 0 or written < limit:
            row = next(iterator, None)
            if row is None:
                break
            self.write_record(row)
            written += 1
            if print_count > 0 and written % print_count == 0:
                logger.info(f"#rows: {written:,}")

        if print_count <= 0 or written % print_count != 0:
            logger.info(f"#rows: {written:,}")
        return written

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._output.write_byte(EOF)
        self._output.flush()


def _wrap_error(error: Exception) -> type:
    return ProtocolError if isinstance(error, ProtocolError) else RawDumpError


def _column_value(column: ColumnDescriptor, kind: SerializerKind, value: Any) -> Any:
    # Plain driver lists carry no element type; label them with the column's type name
    if kind is SerializerKind.ARRAY and value is not None:
        return as_array(value, column.type_name)
    return value


class RecordStreamReader:
    """
    Reads a table's header and records from a binary stream.

    Usage:
        reader = RecordStreamReader(fh)
        table = reader.read_header()
        while (values := reader.read_record()) is not None:
            ...
    """

    def __init__(self, stream: BinaryIO, factory: Optional[ValueFactory] = None):
        self._input = BinaryInput(stream)
        self._factory = factory or ValueFactory()
        self._table: Optional[TableDescriptor] = None
        self._serializers: List = []
        self._eof = False
        self.record_count = 0

    @property
    def table(self) -> Optional[TableDescriptor]:
        return self._table

    def read_header(self) -> TableDescriptor:
        """Read the header section; must be the first call on a stream."""
        stream_input = self._input
        tag = stream_input.read_byte()
        if tag != HEADER:
            raise ProtocolError(f"Expected header tag {HEADER}, found {tag}")

        table_name = stream_input.read_string()
        if not table_name.strip():
            raise ProtocolError("Stream header has a blank table name")

        column_count = stream_input.read_uvarint()
        columns = tuple(
            ColumnDescriptor(
                name=stream_input.read_string(),
                sql_type=stream_input.read_varint(),
                precision=stream_input.read_varint(),
                scale=stream_input.read_varint(),
            )
            for _ in range(column_count)
        )

        self._table = TableDescriptor(table_name, columns)
        self._serializers = [get_serializer(kind) for kind in self._table.kinds()]
        for column in columns:
            logger.debug(f"{table_name}: {column}")
        return self._table

    def read_record(self) -> Optional[List[Any]]:
        """
        Read the next record.

        Returns:
            Decoded values in header column order, or None at EOF

        Raises:
            ProtocolError: On any tag other than RECORD or EOF
        """
        if self._table is None:
            raise ProtocolError("read_header() must be called before read_record()")
        if self._eof:
            return None

        tag = self._input.read_byte()
        if tag == EOF:
            self._eof = True
            return None
        if tag != RECORD:
            raise ProtocolError(
                f"Expected record or EOF tag in {self._table.name}, found {tag} "
                f"after record {self.record_count}"
            )

        self.record_count += 1
        values = []
        for column, serializer in zip(self._table.columns, self._serializers):
            try:
                values.append(serializer.deserialize(self._input, self._factory))
            except Exception as e:
                raise _wrap_error(e)(
                    f"Error reading column {column.name} for record {self.record_count} "
                    f"of {self._table.name}: {e}"
                ) from e
        return values

    def __iter__(self):
        while True:
            values = self.read_record()
            if values is None:
                return
            yield values
