"""
Load Pipeline Module

This module loads record stream files into target tables with batched
parameterized inserts.

Per stream file (table name = file name without extension):
1. Optionally delete existing rows (clear mode) and skip non-empty tables
2. Read the stream header and build the INSERT statement
3. Decode records, skip the first `offset`, stop after `limit`, insert in
   batches of `batch_size` and commit every `commit_count` records read

A failing table is rolled back to its last commit, appended to the failure
manifest and the run continues. Commits made before the failure stay.
"""

from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional
import logging
import resource

from rawdump.config import ClearMode, LoadOptions
from rawdump.errors import BatchInsertError
from rawdump.failure_manifest import FailureManifest
from rawdump.record_stream import RecordStreamReader
from rawdump.schema_extractor import parameter_markers
from rawdump.table_config import (
    discover_stream_files,
    table_name_of,
    validate_sql_identifier,
    validate_table_name,
)
from rawdump.type_mapping import TableDescriptor
from rawdump.values import ValueFactory

logger = logging.getLogger(__name__)


@dataclass
class LoadState:
    """
    Counters of one table load and the offset/limit/batch/commit rules.

    `read` counts decoded records (offset records included), `pending` the
    records waiting in the current batch and `inserted` the records sent in
    executed batches.
    """

    batch_size: int
    print_count: int = 10_000
    limit: int = -1
    commit_count: int = 0
    offset: int = -1
    read: int = 0
    pending: int = 0
    inserted: int = 0

    @property
    def effective_limit(self) -> int:
        """The limit counts records after the offset."""
        if self.offset > 0 and self.limit >= 0:
            return self.offset + self.limit
        return self.limit

    def limit_reached(self) -> bool:
        limit = self.effective_limit
        return limit > 0 and self.read >= limit

    def record_read(self) -> bool:
        """Count a decoded record; returns True if it belongs in the batch."""
        self.read += 1
        if self.offset <= 0 or self.read > self.offset:
            self.pending += 1
            return True
        return False

    def batch_due(self) -> bool:
        return self.pending > 0 and self.pending % self.batch_size == 0

    def batch_executed(self) -> None:
        self.inserted += self.pending
        self.pending = 0

    def progress_due(self) -> bool:
        return self.print_count > 0 and self.read % self.print_count == 0

    def commit_due(self) -> bool:
        return self.commit_count > 0 and self.read % self.commit_count == 0

    def final_progress_due(self) -> bool:
        return self.print_count <= 0 or self.read % self.print_count != 0

    def final_commit_due(self) -> bool:
        """Commit at the end unless the last record already committed or commits are off."""
        if self.commit_count == 0:
            return True
        return self.commit_count > 0 and self.read % self.commit_count != 0


def build_insert_query(connection: Any, table_name: str, table: TableDescriptor) -> str:
    """INSERT for the stream's columns with the driver's parameter markers."""
    validate_table_name(table_name)
    columns = ', '.join(
        validate_sql_identifier(name, "column") for name in table.column_names
    )
    markers = ', '.join(parameter_markers(connection, len(table.columns)))
    return f"INSERT INTO {table_name} ({columns}) VALUES ({markers})"


class TableLoader:
    """
    Loads one record stream into one table.

    Args:
        connection: Open DB-API connection with auto-commit disabled
        table_name: Target table (plain or schema-qualified)
        options: Load options
        factory: Materializes struct and array values for the driver
    """

    def __init__(
        self,
        connection: Any,
        table_name: str,
        options: LoadOptions,
        factory: Optional[ValueFactory] = None
    ):
        self.connection = connection
        self.table_name = validate_table_name(table_name)
        self.options = options
        self.factory = factory or ValueFactory()

    def run(self, stream: BinaryIO) -> Optional[int]:
        """
        Load the stream.

        Returns:
            Number of inserted records, or None if the table was skipped
        """
        if not self.prepare_table():
            return None

        reader = RecordStreamReader(stream, self.factory)
        table = reader.read_header()
        query = build_insert_query(self.connection, self.table_name, table)
        logger.info(query)

        options = self.options
        state = LoadState(
            batch_size=options.batch_size,
            print_count=options.print_count,
            limit=options.limit,
            commit_count=options.commit_count,
            offset=options.offset,
        )

        logger.info(f"Inserting data into {self.table_name}")
        with closing(self.connection.cursor()) as cursor:
            self._read_and_insert(cursor, reader, query, state)
        return state.inserted

    def prepare_table(self) -> bool:
        """Apply the clear mode and the non-empty check; False means skip."""
        options = self.options
        with closing(self.connection.cursor()) as cursor:
            if options.clear is not ClearMode.NO:
                logger.info(f"Delete {self.table_name}")
                cursor.execute(f"DELETE FROM {self.table_name}")
                if cursor.rowcount > 0 and options.clear is ClearMode.COMMIT:
                    self.connection.commit()

            if options.skip_non_empty:
                cursor.execute(f"SELECT 1 FROM {self.table_name}")
                if cursor.fetchone() is not None:
                    logger.warning(f"** Skipping non empty table {self.table_name} **")
                    return False
        return True

    def _read_and_insert(self, cursor: Any, reader: RecordStreamReader, query: str, state: LoadState) -> None:
        batch: List[List[Any]] = []

        while not state.limit_reached():
            values = reader.read_record()
            if values is None:
                break

            if state.record_read():
                batch.append(values)

            if state.batch_due():
                self._execute_batch(cursor, query, batch, state)
                batch = []

            if state.progress_due():
                logger.info(f"#rows: {state.read:,}")

            if state.commit_due():
                logger.info("Commit.")
                self.connection.commit()

        if batch:
            self._execute_batch(cursor, query, batch, state)

        if state.final_progress_due():
            logger.info(f"#rows: {state.read:,}")

        if state.final_commit_due():
            logger.info("Commit.")
            self.connection.commit()

    def _execute_batch(self, cursor: Any, query: str, batch: List[List[Any]], state: LoadState) -> None:
        try:
            cursor.executemany(query, batch)
        except Exception:
            logger.error(f"Error inserting batch into {self.table_name} (n={state.read})")
            raise

        # -1 means the driver cannot tell; only an explicit zero is a failure
        if cursor.rowcount == 0:
            raise BatchInsertError(
                f"Batch of {len(batch)} records into {self.table_name} inserted no rows "
                f"(n={state.read})"
            )
        state.batch_executed()


def log_memory_usage() -> None:
    # ru_maxrss is in kilobytes on Linux
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    logger.info(f"Memory in use (peak): {peak // 1024}mB")


class RawDumpLoader:
    """
    Loads every stream file of a directory.

    Usage:
        summary = RawDumpLoader(LoadOptions(input_dir="/data", commit_count=10000)).run(conn)
    """

    def __init__(self, options: LoadOptions, factory: Optional[ValueFactory] = None):
        self.options = options
        self.factory = factory or ValueFactory()

    def run(self, connection: Any) -> Dict[str, Any]:
        """
        Load all stream files in name order.

        Args:
            connection: Open DB-API connection with auto-commit disabled

        Returns:
            Summary with loaded/skipped/failed table names, inserted records
            per loaded table and the failure manifest path (None if nothing failed)

        Raises:
            FileNotFoundError: If the directory is missing or holds no stream files
        """
        options = self.options
        if not options.input_dir.is_dir():
            raise FileNotFoundError(f"Directory {options.input_dir} not found.")

        files = discover_stream_files(options.input_dir)
        manifest = FailureManifest(options.input_dir)
        loaded: List[str] = []
        skipped: List[str] = []
        rows: Dict[str, int] = {}

        for path in files:
            table_name = table_name_of(path)
            if not table_name.strip():
                continue

            logger.info(table_name)
            try:
                count = self.load_file(connection, table_name, path)
            except Exception:
                logger.exception(f"Failed to load {table_name}")
                self._rollback(connection, table_name)
                manifest.append(table_name)
            else:
                if count is None:
                    skipped.append(table_name)
                else:
                    loaded.append(table_name)
                    rows[table_name] = count

            if options.mem_info:
                log_memory_usage()

        logger.info(
            f"Load complete: {len(loaded)} loaded, {len(skipped)} skipped, "
            f"{len(manifest.tables)} failed"
        )
        return {
            'loaded': loaded,
            'skipped': skipped,
            'failed': list(manifest.tables),
            'rows': rows,
            'error_file': str(manifest.path) if manifest else None,
        }

    def load_file(self, connection: Any, table_name: str, path: Path) -> Optional[int]:
        with open(path, 'rb') as fh:
            return TableLoader(connection, table_name, self.options, self.factory).run(fh)

    def _rollback(self, connection: Any, table_name: str) -> None:
        try:
            connection.rollback()
        except Exception:
            logger.exception(f"Rollback after failed load of {table_name} failed")
