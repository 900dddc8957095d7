"""
Raw Table Dump DAG

This DAG dumps the tables listed in a text file into record stream files:
1. Read column metadata for each table from the ODBC source
2. Stream the rows of each table into {output_dir}/{table}.rawdump
3. Log a summary; failed tables are listed in {output_dir}/error-{millis}.txt

Table names are one per line, 'schema.table' or a table of the default
schema ('db.schema' or 'db.user' property, upper-cased).

Tables that cannot be found are skipped with a warning and are not failures.
"""

from airflow.decorators import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import Dict, Any
import logging

from rawdump.config import DEFAULT_FETCH_SIZE, DEFAULT_PRINT_COUNT, DumpOptions
from rawdump.dump import RawDump

logger = logging.getLogger(__name__)


@dag(
    dag_id="rawdump_dump",
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 0,
        "retry_delay": timedelta(seconds=30),
    },
    params={
        "source_conn_id": Param(
            default="odbc_source",
            type="string",
            description="Source (ODBC) connection ID"
        ),
        "tables_file": Param(
            default="/opt/airflow/config/rawdump_tables.txt",
            type="string",
            description="Text file with one table name per line"
        ),
        "output_dir": Param(
            default="/opt/airflow/data/rawdump",
            type="string",
            description="Existing directory receiving the .rawdump files"
        ),
        "fetch_size": Param(
            default=DEFAULT_FETCH_SIZE,
            type="integer",
            minimum=1,
            description="Rows per fetch round trip (capped by limit)"
        ),
        "print_count": Param(
            default=DEFAULT_PRINT_COUNT,
            type="integer",
            description="Log progress every N rows"
        ),
        "limit": Param(
            default=-1,
            type="integer",
            description="Maximum rows per table (-1 = all)"
        ),
        "properties": Param(
            default={},
            type="object",
            description="Connection properties, e.g. {'db.schema': 'HR'}"
        ),
    },
    tags=["rawdump", "dump", "odbc"],
)
def rawdump_dump():
    """Dump DAG: stream source tables into record stream files."""

    @task
    def dump_tables(**context) -> Dict[str, Any]:
        """Run the dump on one source connection and return its summary."""
        from rawdump.odbc_helper import OdbcConnectionHelper

        params = context["params"]
        options = DumpOptions.from_params(params)
        helper = OdbcConnectionHelper(params["source_conn_id"], options.properties)

        conn = helper.get_conn()
        try:
            summary = RawDump(options).run(conn)
        finally:
            helper.release_conn(conn)

        context["ti"].xcom_push(key="failed_tables", value=summary["failed"])
        return summary

    @task
    def log_dump_summary(summary: Dict[str, Any]) -> str:
        """Log summary of the dump."""
        message = (
            f"Dump DAG complete: {len(summary['dumped'])} dumped, "
            f"{len(summary['skipped'])} skipped, {len(summary['failed'])} failed"
        )
        logger.info(message)

        for table, rows in summary["rows"].items():
            logger.info(f"  {table}: {rows:,} rows")
        if summary["error_file"]:
            logger.warning(f"Failed tables listed in {summary['error_file']}")

        return message

    # Task flow
    log_dump_summary(dump_tables())


# Instantiate
rawdump_dump()
