"""
Tests for the Load Pipeline Module

These tests validate the offset/limit/batch/commit arithmetic of LoadState,
table loads against a real sqlite3 target, per-table error isolation with
rollback, soft skips and clear modes.
"""

import io
import sqlite3
from unittest.mock import MagicMock

import pytest
from rawdump.config import ClearMode, LoadOptions
from rawdump.errors import BatchInsertError, ProtocolError
from rawdump.load import LoadState, RawDumpLoader, TableLoader, build_insert_query
from rawdump.record_stream import RecordStreamWriter
from rawdump.type_mapping import ColumnDescriptor, SqlType, TableDescriptor
from rawdump.values import Array, Struct, ValueFactory


def stream_table(name: str) -> TableDescriptor:
    return TableDescriptor(name, (
        ColumnDescriptor("ID", SqlType.INTEGER),
        ColumnDescriptor("NAME", SqlType.VARCHAR),
    ))


def stream_bytes(table: TableDescriptor, rows) -> bytes:
    buffer = io.BytesIO()
    with RecordStreamWriter(buffer, table) as writer:
        writer.write_header()
        writer.write_rows(rows)
    return buffer.getvalue()


def write_stream(directory, table_name: str, ids) -> None:
    rows = [(i, f"name-{i}") for i in ids]
    (directory / f"{table_name}.rawdump").write_bytes(stream_bytes(stream_table(table_name), rows))


def table_ids(conn, table_name: str):
    return [row[0] for row in conn.execute(f"SELECT ID FROM {table_name} ORDER BY ID")]


class TestLoadState:
    """Test the offset/limit/batch/commit rules."""

    @pytest.mark.parametrize("offset,limit,expected", [
        (-1, -1, -1),
        (-1, 5, 5),
        (0, 5, 5),
        (3, 4, 7),
        (3, -1, -1),
        (3, 0, 3),
    ])
    def test_effective_limit(self, offset, limit, expected):
        assert LoadState(batch_size=10, offset=offset, limit=limit).effective_limit == expected

    def test_zero_limit_without_offset_is_unbounded(self):
        state = LoadState(batch_size=10, limit=0, read=1_000_000)
        assert not state.limit_reached()

    def test_offset_records_are_not_batched(self):
        state = LoadState(batch_size=10, offset=2)
        assert [state.record_read() for _ in range(4)] == [False, False, True, True]
        assert state.read == 4
        assert state.pending == 2

    def test_batch_due_only_when_full(self):
        state = LoadState(batch_size=2)
        state.record_read()
        assert not state.batch_due()
        state.record_read()
        assert state.batch_due()
        state.batch_executed()
        assert state.inserted == 2 and state.pending == 0
        assert not state.batch_due()

    def test_empty_batch_never_due(self):
        state = LoadState(batch_size=2, offset=5)
        for _ in range(4):
            state.record_read()
            assert not state.batch_due()

    def test_commit_cadence(self):
        state = LoadState(batch_size=10, commit_count=4)
        due = []
        for _ in range(10):
            state.record_read()
            due.append(state.commit_due())
        assert [i + 1 for i, flag in enumerate(due) if flag] == [4, 8]
        assert state.final_commit_due()

    @pytest.mark.parametrize("commit_count,read,expected", [
        (0, 0, True),
        (0, 10, True),
        (4, 8, False),
        (4, 10, True),
        (-1, 10, False),
    ])
    def test_final_commit(self, commit_count, read, expected):
        assert LoadState(batch_size=10, commit_count=commit_count, read=read).final_commit_due() is expected

    def test_progress(self):
        assert LoadState(batch_size=1, print_count=5, read=10).progress_due()
        assert not LoadState(batch_size=1, print_count=5, read=10).final_progress_due()
        assert LoadState(batch_size=1, print_count=5, read=11).final_progress_due()
        assert not LoadState(batch_size=1, print_count=0, read=10).progress_due()


class TestTableLoaderWithMocks:
    """Test batch execution and commits against a mock DB-API connection."""

    @pytest.fixture
    def connection(self):
        conn = MagicMock()
        cursor = conn.cursor.return_value
        cursor.rowcount = 1
        cursor.fetchone.return_value = None
        return conn

    def load(self, connection, rows, **option_values):
        options = LoadOptions(**option_values)
        stream = io.BytesIO(stream_bytes(stream_table("T"), rows))
        return TableLoader(connection, "T", options).run(stream)

    def batch_sizes(self, connection):
        return [len(c.args[1]) for c in connection.cursor.return_value.executemany.call_args_list]

    def test_batches_and_commits(self, connection):
        rows = [(i, "x") for i in range(10)]

        inserted = self.load(connection, rows, batch_size=3, commit_count=4)

        assert inserted == 10
        assert self.batch_sizes(connection) == [3, 3, 3, 1]
        # Commits after records 4 and 8, then the tail
        assert connection.commit.call_count == 3

    def test_insert_statement(self, connection):
        self.load(connection, [(1, "a")])

        query, batch = connection.cursor.return_value.executemany.call_args.args
        assert query == "INSERT INTO T (ID, NAME) VALUES (?, ?)"
        assert batch == [[1, "a"]]

    def test_commit_once_per_table_by_default(self, connection):
        self.load(connection, [(i, "x") for i in range(5)], batch_size=2)
        assert connection.commit.call_count == 1

    def test_no_commit_on_boundary_tail(self, connection):
        self.load(connection, [(i, "x") for i in range(8)], batch_size=2, commit_count=4)
        assert connection.commit.call_count == 2

    def test_dry_run_never_commits(self, connection):
        self.load(connection, [(i, "x") for i in range(5)], commit_count=-1)
        connection.commit.assert_not_called()

    def test_offset_only_never_executes_empty_batches(self, connection):
        inserted = self.load(connection, [(i, "x") for i in range(5)], batch_size=2, offset=5)

        assert inserted == 0
        connection.cursor.return_value.executemany.assert_not_called()

    def test_offset_and_limit(self, connection):
        rows = [(i, "x") for i in range(1, 11)]

        self.load(connection, rows, batch_size=100, offset=3, limit=4)

        batch = connection.cursor.return_value.executemany.call_args.args[1]
        assert [values[0] for values in batch] == [4, 5, 6, 7]

    def test_zero_rowcount_is_batch_failure(self, connection):
        connection.cursor.return_value.rowcount = 0
        with pytest.raises(BatchInsertError, match="inserted no rows"):
            self.load(connection, [(1, "a")])

    def test_unknown_rowcount_is_accepted(self, connection):
        connection.cursor.return_value.rowcount = -1
        assert self.load(connection, [(1, "a")]) == 1

    def test_nested_values_reach_the_driver(self, connection):
        table = TableDescriptor("T", (
            ColumnDescriptor("ADDR", SqlType.STRUCT),
            ColumnDescriptor("TAGS", SqlType.ARRAY, type_name="VARCHAR"),
            ColumnDescriptor("NOTES", SqlType.CLOB),
        ))
        stream = io.BytesIO(stream_bytes(table, [(Struct("ADDR_T", ["Main", 1]), ["a"], "long text")]))

        TableLoader(connection, "T", LoadOptions()).run(stream)

        batch = connection.cursor.return_value.executemany.call_args.args[1]
        assert batch == [[Struct("ADDR_T", ["Main", 1]), Array("VARCHAR", ["a"]), "long text"]]

    def test_custom_value_factory(self, connection):
        class RowFactory(ValueFactory):
            def create_struct(self, type_name, attributes):
                return tuple(attributes)

        table = TableDescriptor("T", (ColumnDescriptor("ADDR", SqlType.STRUCT),))
        stream = io.BytesIO(stream_bytes(table, [(Struct("ADDR_T", ["Main", 1]),)]))

        TableLoader(connection, "T", LoadOptions(), factory=RowFactory()).run(stream)

        batch = connection.cursor.return_value.executemany.call_args.args[1]
        assert batch == [[("Main", 1)]]

    def test_invalid_table_name(self, connection):
        with pytest.raises(ValueError):
            TableLoader(connection, "T; DROP TABLE X", LoadOptions())

    def test_corrupt_stream(self, connection):
        with pytest.raises(ProtocolError):
            TableLoader(connection, "T", LoadOptions()).run(io.BytesIO(b'\xff'))


class TestRawDumpLoader:
    """Test whole-directory loads against a sqlite3 target."""

    @pytest.fixture
    def target(self):
        conn = sqlite3.connect(":memory:")
        for name in ("A", "B", "C", "D"):
            conn.execute(f"CREATE TABLE {name} (ID INTEGER PRIMARY KEY, NAME TEXT)")
        conn.commit()
        yield conn
        conn.close()

    def test_error_isolation(self, target, tmp_path):
        """B fails on its second batch; A and C load, B is rolled back and listed."""
        write_stream(tmp_path, "A", [1, 2, 3])
        write_stream(tmp_path, "B", [1, 2, 3, 3])
        write_stream(tmp_path, "C", [1, 2])

        summary = RawDumpLoader(LoadOptions(tmp_path, batch_size=2)).run(target)

        assert summary["loaded"] == ["A", "C"]
        assert summary["failed"] == ["B"]
        assert summary["rows"] == {"A": 3, "C": 2}
        assert table_ids(target, "A") == [1, 2, 3]
        assert table_ids(target, "B") == []
        assert table_ids(target, "C") == [1, 2]

        error_files = list(tmp_path.glob("error-*.txt"))
        assert len(error_files) == 1
        assert str(error_files[0]) == summary["error_file"]
        assert error_files[0].read_text(encoding="utf-8") == "B\n"

    def test_earlier_commits_survive_failure(self, target, tmp_path):
        write_stream(tmp_path, "B", [1, 2, 3, 3])

        summary = RawDumpLoader(LoadOptions(tmp_path, batch_size=2, commit_count=2)).run(target)

        assert summary["failed"] == ["B"]
        assert table_ids(target, "B") == [1, 2]

    def test_failures_append_to_one_file(self, target, tmp_path):
        write_stream(tmp_path, "B", [1, 1])
        write_stream(tmp_path, "C", [1])
        write_stream(tmp_path, "D", [2, 2])

        summary = RawDumpLoader(LoadOptions(tmp_path, batch_size=1)).run(target)

        assert summary["failed"] == ["B", "D"]
        error_files = list(tmp_path.glob("error-*.txt"))
        assert len(error_files) == 1
        assert error_files[0].read_text(encoding="utf-8") == "B\nD\n"

    def test_missing_target_table_fails_that_table(self, target, tmp_path):
        write_stream(tmp_path, "A", [1])
        write_stream(tmp_path, "NOPE", [1])

        summary = RawDumpLoader(LoadOptions(tmp_path)).run(target)

        assert summary["loaded"] == ["A"]
        assert summary["failed"] == ["NOPE"]

    def test_skip_non_empty(self, target, tmp_path):
        target.execute("INSERT INTO A VALUES (100, 'existing')")
        target.commit()
        write_stream(tmp_path, "A", [1, 2])
        write_stream(tmp_path, "C", [1])

        summary = RawDumpLoader(LoadOptions(tmp_path)).run(target)

        assert summary["skipped"] == ["A"]
        assert summary["loaded"] == ["C"]
        assert summary["failed"] == []
        assert summary["error_file"] is None
        assert table_ids(target, "A") == [100]
        assert not list(tmp_path.glob("error-*.txt"))

    def test_non_empty_loaded_when_skip_disabled(self, target, tmp_path):
        target.execute("INSERT INTO A VALUES (100, 'existing')")
        target.commit()
        write_stream(tmp_path, "A", [1])

        RawDumpLoader(LoadOptions(tmp_path, skip_non_empty=False)).run(target)

        assert table_ids(target, "A") == [1, 100]

    @pytest.mark.parametrize("clear", [ClearMode.YES, ClearMode.COMMIT])
    def test_clear_modes(self, target, tmp_path, clear):
        target.execute("INSERT INTO A VALUES (100, 'existing')")
        target.commit()
        write_stream(tmp_path, "A", [1, 2])

        summary = RawDumpLoader(LoadOptions(tmp_path, clear=clear)).run(target)

        assert summary["loaded"] == ["A"]
        assert table_ids(target, "A") == [1, 2]

    def test_clear_commit_survives_failed_load(self, target, tmp_path):
        target.execute("INSERT INTO B VALUES (100, 'existing')")
        target.commit()
        write_stream(tmp_path, "B", [1, 1])

        RawDumpLoader(LoadOptions(tmp_path, clear=ClearMode.COMMIT)).run(target)

        assert table_ids(target, "B") == []

    def test_clear_without_commit_is_rolled_back_on_failure(self, target, tmp_path):
        target.execute("INSERT INTO B VALUES (100, 'existing')")
        target.commit()
        write_stream(tmp_path, "B", [1, 1])

        RawDumpLoader(LoadOptions(tmp_path, clear=ClearMode.YES)).run(target)

        assert table_ids(target, "B") == [100]

    def test_offset_and_limit(self, target, tmp_path):
        write_stream(tmp_path, "A", range(1, 11))

        summary = RawDumpLoader(LoadOptions(tmp_path, offset=3, limit=4, batch_size=3)).run(target)

        assert summary["rows"] == {"A": 4}
        assert table_ids(target, "A") == [4, 5, 6, 7]

    def test_dry_run(self, target, tmp_path):
        write_stream(tmp_path, "A", [1, 2, 3])

        RawDumpLoader(LoadOptions(tmp_path, commit_count=-1)).run(target)
        target.rollback()

        assert table_ids(target, "A") == []

    def test_mem_info(self, target, tmp_path, caplog):
        write_stream(tmp_path, "A", [1])

        with caplog.at_level("INFO", logger="rawdump.load"):
            RawDumpLoader(LoadOptions(tmp_path, mem_info=True)).run(target)

        assert "Memory in use" in caplog.text

    def test_missing_directory(self, target, tmp_path):
        with pytest.raises(FileNotFoundError, match="Directory"):
            RawDumpLoader(LoadOptions(tmp_path / "nope")).run(target)

    def test_no_stream_files(self, target, tmp_path):
        with pytest.raises(FileNotFoundError, match="No .rawdump files"):
            RawDumpLoader(LoadOptions(tmp_path)).run(target)

    def test_insert_query_markers_follow_driver(self, target):
        assert build_insert_query(target, "A", stream_table("A")) == "INSERT INTO A (ID, NAME) VALUES (?, ?)"
