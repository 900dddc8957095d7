"""
Raw Table Dump and Load Utilities

This package dumps relational tables into compact, schema-aware binary
record streams (one file per table) and loads those streams into a possibly
different database, using Apache Airflow for orchestration.

Modules:
- primitives: Varint, fixed-width and string encodings of the stream format
- type_mapping: Resolve SQL type codes to value serializers
- serializers: Column-typed and self-describing value codecs
- record_stream: Header/record/EOF framing of a table stream
- schema_extractor: Read source column metadata
- dump: Dump tables to stream files
- load: Load stream files with batched inserts
- pg_adapters: psycopg2 adapters for struct and array values
- odbc_helper: pyodbc source connections from Airflow connections

Options:
- RAWDUMP_* environment variables or DAG params (see config)
"""

__version__ = "1.0.0"

# Core modules
from rawdump import primitives
from rawdump import type_mapping
from rawdump import serializers
from rawdump import record_stream

# Pipelines
from rawdump import schema_extractor
from rawdump import dump
from rawdump import load

# Driver-specific modules (import psycopg2 / pyodbc + airflow, loaded on use)
# from rawdump import pg_adapters
# from rawdump import odbc_helper

__all__ = [
    "primitives",
    "type_mapping",
    "serializers",
    "record_stream",
    "schema_extractor",
    "dump",
    "load",
    "pg_adapters",
    "odbc_helper",
]
