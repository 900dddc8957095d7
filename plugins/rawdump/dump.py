"""
Dump Pipeline Module

This module dumps the tables listed in a text file into one record stream
file per table.

Per table:
1. Resolve the columns from source metadata (missing table = warning + skip)
2. SELECT the columns, fetching `fetch_size` rows per round trip
3. Stream header, records and EOF into `<output_dir>/<table>.rawdump`

A failing table is logged and recorded in the failure manifest; the run
continues with the next table.
"""

from contextlib import closing
from typing import Any, Dict, Iterator, List, Optional, Sequence
import logging

from rawdump.config import DumpOptions
from rawdump.failure_manifest import FailureManifest
from rawdump.record_stream import STREAM_EXTENSION, RecordStreamWriter
from rawdump.schema_extractor import SchemaExtractor
from rawdump.table_config import read_table_list, validate_sql_identifier, validate_table_name
from rawdump.type_mapping import TableDescriptor

logger = logging.getLogger(__name__)

# ODBC SQLGetInfo codes (pyodbc.SQL_DBMS_NAME / SQL_DBMS_VER)
_SQL_DBMS_NAME = 17
_SQL_DBMS_VER = 18


def build_select_query(table: TableDescriptor) -> str:
    """Build the SELECT of a dump; every identifier is validated first."""
    validate_table_name(table.name)
    columns = ', '.join(
        validate_sql_identifier(name, "column") for name in table.column_names
    )
    return f"SELECT {columns} FROM {table.name} t"


def configure_cursor(cursor: Any, fetch_size: int) -> None:
    """Set the fetch size, plus the row prefetch hint on drivers that have one."""
    cursor.arraysize = fetch_size
    if hasattr(cursor, 'prefetchrows'):
        cursor.prefetchrows = fetch_size


def iter_rows(cursor: Any, fetch_size: int) -> Iterator[Sequence[Any]]:
    """Yield result rows, fetching `fetch_size` rows at a time."""
    while True:
        rows = cursor.fetchmany(fetch_size)
        if not rows:
            return
        yield from rows


def log_connection_info(connection: Any) -> None:
    getinfo = getattr(connection, 'getinfo', None)
    if getinfo is None:
        logger.info(f"DB connection: {type(connection).__module__}.{type(connection).__name__}")
        return
    logger.info("DB connection info:")
    logger.info(f"  name: {getinfo(_SQL_DBMS_NAME)}")
    logger.info(f"  version: {getinfo(_SQL_DBMS_VER)}")


class RawDump:
    """
    Dumps source tables to record stream files.

    Usage:
        summary = RawDump(DumpOptions(tables_file="tables.txt", output_dir="/data")).run(conn)
    """

    def __init__(self, options: DumpOptions):
        self.options = options

    def run(self, connection: Any) -> Dict[str, Any]:
        """
        Dump every table of the tables file.

        Args:
            connection: Open DB-API connection to the source database

        Returns:
            Summary with dumped/skipped/failed table names, rows per dumped
            table and the failure manifest path (None if nothing failed)

        Raises:
            FileNotFoundError: If the tables file or the output directory is missing
        """
        options = self.options
        if not options.tables_file.is_file():
            raise FileNotFoundError(f"File {options.tables_file} not found.")
        if not options.output_dir.is_dir():
            raise FileNotFoundError(f"Directory {options.output_dir} not found.")

        log_connection_info(connection)

        extractor = SchemaExtractor(connection, options.properties)
        manifest = FailureManifest(options.output_dir)
        dumped: List[str] = []
        skipped: List[str] = []
        rows: Dict[str, int] = {}

        for table_name in read_table_list(options.tables_file):
            try:
                count = self.dump_table(connection, extractor, table_name)
            except Exception:
                logger.exception(f"Failed to dump {table_name}")
                manifest.add(table_name)
                continue

            if count is None:
                skipped.append(table_name)
            else:
                dumped.append(table_name)
                rows[table_name] = count

        error_file = manifest.write()
        logger.info(
            f"Dump complete: {len(dumped)} dumped, {len(skipped)} skipped, "
            f"{len(manifest.tables)} failed"
        )
        return {
            'dumped': dumped,
            'skipped': skipped,
            'failed': list(manifest.tables),
            'rows': rows,
            'error_file': str(error_file) if error_file else None,
        }

    def dump_table(self, connection: Any, extractor: SchemaExtractor, table_name: str) -> Optional[int]:
        """
        Dump one table.

        Returns:
            Number of rows written, or None if the table was not found
        """
        options = self.options
        validate_table_name(table_name)

        logger.info(f"Reading columns for {table_name}")
        table = extractor.get_table(table_name)
        if table is None:
            logger.warning(f"Table {table_name} not found, skipping")
            return None

        # Unsupported column types fail here, before the stream file is created
        table.kinds()
        query = build_select_query(table)
        fetch_size = options.effective_fetch_size
        path = options.output_dir / f"{table_name}{STREAM_EXTENSION}"

        with closing(connection.cursor()) as cursor:
            configure_cursor(cursor, fetch_size)
            cursor.execute(query)
            with open(path, 'wb') as fh, \
                    RecordStreamWriter(fh, table, print_count=options.print_count) as writer:
                writer.write_header()
                count = writer.write_rows(iter_rows(cursor, fetch_size), limit=options.limit)

        logger.info(f"Dumped {count:,} rows of {table_name} to {path}")
        return count
