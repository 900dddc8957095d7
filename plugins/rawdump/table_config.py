"""
Table Configuration Utility Module

This module reads the table list of a dump run, validates table and column
identifiers before they are interpolated into SQL, and discovers the stream
files of a load run.
"""

from pathlib import Path
from typing import List, Optional, Tuple
import logging
import re

from rawdump.record_stream import STREAM_EXTENSION

logger = logging.getLogger(__name__)

# Letter or underscore first; '$' and '#' are legal in Oracle and SQL Server names
_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_$#]*$')

MAX_IDENTIFIER_LENGTH = 128


def validate_sql_identifier(identifier: str, identifier_type: str = "identifier") -> str:
    """
    Validate an SQL identifier so it can be safely interpolated into SQL.

    Args:
        identifier: The identifier to validate
        identifier_type: Type description for error messages (e.g., "table name", "column")

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        ValueError: If the identifier is invalid

    Rules:
        - Non-empty
        - Max 128 characters
        - Must start with letter or underscore
        - Can contain only alphanumeric characters, underscores, '$' and '#'

    Examples:
        >>> validate_sql_identifier("EMP_2023")
        'EMP_2023'
        >>> validate_sql_identifier("drop; --")  # doctest: +SKIP
        ValueError: Invalid identifier 'drop; --': must start with letter or underscore ...
    """
    if not identifier:
        raise ValueError(f"Invalid {identifier_type}: cannot be empty")

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Invalid {identifier_type}: exceeds maximum length of {MAX_IDENTIFIER_LENGTH} "
            f"characters (got {len(identifier)} characters)"
        )

    if not _IDENTIFIER_PATTERN.match(identifier):
        raise ValueError(
            f"Invalid {identifier_type} '{identifier}': must start with letter or underscore "
            "and contain only alphanumeric characters, underscores, '$' and '#'"
        )

    return identifier


def split_table_name(table_name: str) -> Tuple[Optional[str], str]:
    """
    Split 'schema.table' on the first dot.

    Examples:
        "HR.EMP" -> ("HR", "EMP")
        "EMP" -> (None, "EMP")
    """
    table_name = table_name.strip()
    if '.' not in table_name:
        return None, table_name
    schema, table = table_name.split('.', 1)
    return schema.strip(), table.strip()


def validate_table_name(table_name: str) -> str:
    """Validate a plain or schema-qualified table name; returns it stripped."""
    schema, table = split_table_name(table_name)
    if schema is not None:
        validate_sql_identifier(schema, "schema")
    validate_sql_identifier(table, "table name")
    return table_name.strip()


def read_table_list(tables_file: Path) -> List[str]:
    """
    Read table names from a text file, one per line.

    Lines are stripped and blank lines are skipped; names are not validated
    here so an invalid name fails only its own table.
    """
    with open(tables_file, encoding='utf-8') as fh:
        tables = [line.strip() for line in fh if line.strip()]
    logger.info(f"Read {len(tables)} table names from {tables_file}")
    return tables


def discover_stream_files(input_dir: Path) -> List[Path]:
    """
    Find the stream files of a load run in name order.

    Raises:
        FileNotFoundError: If no stream file is present
    """
    files = sorted(
        path for path in Path(input_dir).iterdir()
        if path.is_file() and path.suffix == STREAM_EXTENSION
    )
    if not files:
        raise FileNotFoundError(f"No {STREAM_EXTENSION} files found in {input_dir}")
    logger.info(f"Found {len(files)} stream files in {input_dir}")
    return files


def table_name_of(stream_file: Path) -> str:
    """Table name of a stream file (its name without the extension)."""
    return Path(stream_file).stem
