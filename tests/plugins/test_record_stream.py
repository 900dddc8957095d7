"""
Tests for the Record Stream Codec Module

These tests validate header/record/EOF framing, the EOF trailer on failed
dumps, limits and progress logging, and protocol violations on read.
"""

import io
import logging
from datetime import datetime
from decimal import Decimal

import pytest
from rawdump.errors import ProtocolError, RawDumpError, UnsupportedTypeError
from rawdump.record_stream import EOF, HEADER, RECORD, RecordStreamReader, RecordStreamWriter
from rawdump.type_mapping import ColumnDescriptor, SqlType, TableDescriptor
from rawdump.values import Array

EMP = TableDescriptor("HR.EMP", (
    ColumnDescriptor("ID", SqlType.INTEGER),
    ColumnDescriptor("NAME", SqlType.VARCHAR, 100),
    ColumnDescriptor("SALARY", SqlType.DECIMAL, 10, 2),
    ColumnDescriptor("HIRED", SqlType.TIMESTAMP),
    ColumnDescriptor("PHOTO", SqlType.BLOB),
))

EMP_ROWS = [
    (1, "Alice", Decimal("1000.50"), datetime(2020, 1, 1, 9, 0), b'\x89PNG'),
    (2, "Bob", None, datetime(2021, 6, 30, 17, 45, 30, 500000), None),
    (3, "", Decimal("0.00"), None, b''),
]


def dump_bytes(table: TableDescriptor, rows, limit: int = -1, print_count: int = 10_000) -> bytes:
    buffer = io.BytesIO()
    with RecordStreamWriter(buffer, table, print_count=print_count) as writer:
        writer.write_header()
        writer.write_rows(rows, limit=limit)
    return buffer.getvalue()


class TestRoundTrip:
    """Test writing and reading back whole streams."""

    def test_header_and_records(self):
        reader = RecordStreamReader(io.BytesIO(dump_bytes(EMP, EMP_ROWS)))

        assert reader.read_header() == EMP
        assert [tuple(values) for values in reader] == EMP_ROWS
        assert reader.record_count == 3

    def test_section_tags(self):
        data = dump_bytes(EMP, EMP_ROWS)
        assert data[0] == HEADER
        assert data[-1] == EOF

    def test_header_layout(self):
        table = TableDescriptor("T", (ColumnDescriptor("A", SqlType.BIGINT, 19, 0),))
        assert dump_bytes(table, []) == (
            bytes([HEADER])
            + b'\x01T'                       # table name
            + b'\x01'                        # column count
            + b'\x01A'                       # column name
            + b'\xfb\xff\xff\xff\x0f'        # type code -5 as varint
            + b'\x13'                        # precision 19
            + b'\x00'                        # scale 0
            + bytes([EOF])
        )

    def test_empty_table(self):
        reader = RecordStreamReader(io.BytesIO(dump_bytes(EMP, [])))
        reader.read_header()
        assert reader.read_record() is None
        # EOF is sticky
        assert reader.read_record() is None

    def test_record_tag_precedes_each_record(self):
        table = TableDescriptor("T", (ColumnDescriptor("N", SqlType.INTEGER),))
        data = dump_bytes(table, [(5,), (None,)])
        assert data.endswith(bytes([RECORD, 0x01, 0x05, RECORD, 0x00, EOF]))

    def test_array_column_uses_declared_type_name(self):
        table = TableDescriptor("T", (ColumnDescriptor("TAGS", SqlType.ARRAY, type_name="VARCHAR"),))
        reader = RecordStreamReader(io.BytesIO(dump_bytes(table, [(["a", "b"],)])))
        reader.read_header()
        assert reader.read_record() == [Array("VARCHAR", ["a", "b"])]


class TestWriterLimits:
    """Test write_rows limits and progress logging."""

    def test_limit_stops_without_consuming_extra_rows(self):
        rows = iter([(i,) for i in range(5)])
        table = TableDescriptor("T", (ColumnDescriptor("N", SqlType.INTEGER),))
        buffer = io.BytesIO()
        with RecordStreamWriter(buffer, table) as writer:
            writer.write_header()
            assert writer.write_rows(rows, limit=3) == 3

        assert next(rows) == (3,)
        reader = RecordStreamReader(io.BytesIO(buffer.getvalue()))
        reader.read_header()
        assert len(list(reader)) == 3

    def test_zero_limit_writes_no_records(self):
        data = dump_bytes(EMP, EMP_ROWS, limit=0)
        reader = RecordStreamReader(io.BytesIO(data))
        reader.read_header()
        assert list(reader) == []

    def test_progress_logging(self, caplog):
        table = TableDescriptor("T", (ColumnDescriptor("N", SqlType.INTEGER),))
        with caplog.at_level(logging.INFO, logger="rawdump.record_stream"):
            dump_bytes(table, [(i,) for i in range(5)], print_count=2)

        progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("#rows")]
        assert progress == ["#rows: 2", "#rows: 4", "#rows: 5"]

    def test_no_duplicate_final_progress_on_boundary(self, caplog):
        table = TableDescriptor("T", (ColumnDescriptor("N", SqlType.INTEGER),))
        with caplog.at_level(logging.INFO, logger="rawdump.record_stream"):
            dump_bytes(table, [(i,) for i in range(4)], print_count=2)

        progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("#rows")]
        assert progress == ["#rows: 2", "#rows: 4"]

    def test_header_manifest_is_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="rawdump.record_stream"):
            dump_bytes(EMP, [])
        assert "1 - ID (4/INTEGER)" in caplog.text
        assert "5 - PHOTO (2004/BLOB)" in caplog.text


class TestWriterFailures:
    """A failing row loop still closes the stream with EOF."""

    def test_eof_written_after_failed_row(self):
        table = TableDescriptor("T", (
            ColumnDescriptor("ID", SqlType.INTEGER),
            ColumnDescriptor("NAME", SqlType.VARCHAR),
        ))
        buffer = io.BytesIO()

        with pytest.raises(RawDumpError, match="Error writing column ID for record 2 of T"):
            with RecordStreamWriter(buffer, table) as writer:
                writer.write_header()
                writer.write_rows([(1, "ok"), ("not a number", "bad")])

        data = buffer.getvalue()
        assert data[-1] == EOF

        # The first record is intact; the partial second one is a protocol error
        reader = RecordStreamReader(io.BytesIO(data))
        reader.read_header()
        assert reader.read_record() == [1, "ok"]
        with pytest.raises(ProtocolError):
            reader.read_record()

    def test_cause_is_chained(self):
        table = TableDescriptor("T", (ColumnDescriptor("ID", SqlType.INTEGER),))
        with pytest.raises(RawDumpError) as exc_info:
            dump_bytes(table, [("x",)])
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_eof_written_once(self):
        table = TableDescriptor("T", (ColumnDescriptor("ID", SqlType.INTEGER),))
        buffer = io.BytesIO()
        writer = RecordStreamWriter(buffer, table)
        writer.write_header()
        writer.close()
        writer.close()
        assert buffer.getvalue().count(bytes([EOF])) == 1

    def test_unsupported_column_fails_before_writing(self):
        table = TableDescriptor("T", (ColumnDescriptor("GEOM", SqlType.OTHER),))
        buffer = io.BytesIO()
        with pytest.raises(UnsupportedTypeError):
            RecordStreamWriter(buffer, table)
        assert buffer.getvalue() == b''

    def test_row_length_mismatch(self):
        with pytest.raises(ProtocolError, match="2 values"):
            dump_bytes(TableDescriptor("T", (ColumnDescriptor("ID", SqlType.INTEGER),)), [(1, 2)])

    def test_blank_table_name(self):
        with pytest.raises(ValueError):
            RecordStreamWriter(io.BytesIO(), TableDescriptor(" ", ()))


class TestReaderProtocol:
    """Test protocol violations on read."""

    def test_missing_header(self):
        with pytest.raises(ProtocolError, match="Expected header tag"):
            RecordStreamReader(io.BytesIO(bytes([RECORD]))).read_header()

    def test_blank_table_name(self):
        with pytest.raises(ProtocolError, match="blank table name"):
            RecordStreamReader(io.BytesIO(bytes([HEADER]) + b'\x01 \x00')).read_header()

    def test_unexpected_tag(self):
        data = dump_bytes(EMP, [])[:-1] + b'\x07'
        reader = RecordStreamReader(io.BytesIO(data))
        reader.read_header()
        with pytest.raises(ProtocolError, match="Expected record or EOF tag"):
            reader.read_record()

    def test_missing_eof(self):
        """Readers rely on the EOF tag, not on the end of the file."""
        data = dump_bytes(EMP, EMP_ROWS)[:-1]
        reader = RecordStreamReader(io.BytesIO(data))
        reader.read_header()
        with pytest.raises(ProtocolError, match="Truncated stream"):
            list(reader)

    def test_truncated_record(self):
        data = dump_bytes(EMP, EMP_ROWS)[:-6]
        reader = RecordStreamReader(io.BytesIO(data))
        reader.read_header()
        with pytest.raises(ProtocolError, match="for record 3 of HR.EMP"):
            list(reader)

    def test_record_before_header(self):
        with pytest.raises(ProtocolError, match="read_header"):
            RecordStreamReader(io.BytesIO(dump_bytes(EMP, []))).read_record()
