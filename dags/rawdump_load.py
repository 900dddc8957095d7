"""
Raw Table Load DAG

This DAG loads the record stream files of a directory into PostgreSQL:
1. Find the *.rawdump files (table name = file name without extension)
2. Per table: optionally clear it, skip it when it already has rows, then
   insert the decoded records in batches, committing every commit_count records
3. Log a summary; failed tables are appended to {input_dir}/error-{millis}.txt

A failing table is rolled back to its last commit and the load continues
with the next file.
"""

from airflow.decorators import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import Dict, Any
import logging

from rawdump.config import DEFAULT_BATCH_SIZE, DEFAULT_PRINT_COUNT, ClearMode, LoadOptions
from rawdump.load import RawDumpLoader

logger = logging.getLogger(__name__)


@dag(
    dag_id="rawdump_load",
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
        "target_conn_id": Param(
            default="postgres_target",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "input_dir": Param(
            default="/opt/airflow/data/rawdump",
            type="string",
            description="Directory holding the .rawdump files"
        ),
        "batch_size": Param(
            default=DEFAULT_BATCH_SIZE,
            type="integer",
            minimum=1,
            description="Rows per batch insert"
        ),
        "print_count": Param(
            default=DEFAULT_PRINT_COUNT,
            type="integer",
            description="Log progress every N records read"
        ),
        "limit": Param(
            default=-1,
            type="integer",
            description="Maximum records per table after the offset (-1 = all)"
        ),
        "commit_count": Param(
            default=0,
            type="integer",
            description="Commit every N records (0 = once per table, -1 = never, dry run)"
        ),
        "skip_non_empty": Param(
            default=True,
            type="boolean",
            description="Skip tables that already contain rows"
        ),
        "clear": Param(
            default=ClearMode.NO.value,
            type="string",
            enum=[mode.value for mode in ClearMode],
            description="Delete existing rows first: no, yes, or commit (yes + commit the delete)"
        ),
        "offset": Param(
            default=-1,
            type="integer",
            description="Records to skip at the start of each file (-1 = none)"
        ),
        "mem_info": Param(
            default=False,
            type="boolean",
            description="Log memory usage after each table"
        ),
    },
    tags=["rawdump", "load", "postgres"],
)
def rawdump_load():
    """Load DAG: insert record stream files into PostgreSQL tables."""

    @task
    def load_tables(**context) -> Dict[str, Any]:
        """Run the load on one target connection and return its summary."""
        from airflow.providers.postgres.hooks.postgres import PostgresHook
        from rawdump.pg_adapters import register_pg_adapters

        params = context["params"]
        options = LoadOptions.from_params(params)
        register_pg_adapters()

        postgres_hook = PostgresHook(postgres_conn_id=params["target_conn_id"])
        conn = postgres_hook.get_conn()
        conn.autocommit = False
        try:
            summary = RawDumpLoader(options).run(conn)
        finally:
            conn.close()

        context["ti"].xcom_push(key="failed_tables", value=summary["failed"])
        return summary

    @task
    def log_load_summary(summary: Dict[str, Any]) -> str:
        """Log summary of the load."""
        message = (
            f"Load DAG complete: {len(summary['loaded'])} loaded, "
            f"{len(summary['skipped'])} skipped, {len(summary['failed'])} failed"
        )
        logger.info(message)

        for table, rows in summary["rows"].items():
            logger.info(f"  {table}: {rows:,} rows")
        if summary["error_file"]:
            logger.warning(f"Failed tables listed in {summary['error_file']}")

        return message

    # Task flow
    log_load_summary(load_tables())


# Instantiate
rawdump_load()
