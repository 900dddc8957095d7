"""
Run options for dump and load.

Options are built from Airflow DAG params (from_params) or from RAWDUMP_*
environment variables (from_env). Connection properties use the 'db.'
prefix; the prefix is stripped before they reach the driver.

Environment variables:
- RAWDUMP_TABLES_FILE, RAWDUMP_OUTPUT_DIR, RAWDUMP_FETCH_SIZE (dump)
- RAWDUMP_INPUT_DIR, RAWDUMP_BATCH_SIZE, RAWDUMP_COMMIT_COUNT,
  RAWDUMP_SKIP_NON_EMPTY, RAWDUMP_CLEAR, RAWDUMP_OFFSET, RAWDUMP_MEM_INFO (load)
- RAWDUMP_PRINT_COUNT, RAWDUMP_LIMIT (both)
- RAWDUMP_DB_<NAME>: connection property db.<name>
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import os

PROPERTY_PREFIX = 'db.'
_ENV_PREFIX = 'RAWDUMP_'
_ENV_PROPERTY_PREFIX = 'RAWDUMP_DB_'

DEFAULT_FETCH_SIZE = 10_000
DEFAULT_PRINT_COUNT = 10_000
DEFAULT_BATCH_SIZE = 1_000


class ClearMode(Enum):
    """What to do with existing target rows before a table load."""

    NO = "no"
    YES = "yes"
    COMMIT = "commit"

    @classmethod
    def parse(cls, value: Any) -> 'ClearMode':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ', '.join(mode.value for mode in cls)
            raise ValueError(f"Invalid clear mode '{value}': must be one of {choices}") from None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'y', 'on')


def driver_properties(properties: Mapping[str, str]) -> Dict[str, str]:
    """'db.'-prefixed properties with the prefix removed; other keys are dropped."""
    return {
        key[len(PROPERTY_PREFIX):]: value
        for key, value in properties.items()
        if key.startswith(PROPERTY_PREFIX)
    }


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(_ENV_PREFIX + name, default)


def _env_properties() -> Dict[str, str]:
    return {
        PROPERTY_PREFIX + key[len(_ENV_PROPERTY_PREFIX):].lower(): value
        for key, value in os.environ.items()
        if key.startswith(_ENV_PROPERTY_PREFIX)
    }


@dataclass
class DumpOptions:
    """
    Options of a dump run.

    Attributes:
        tables_file: Text file with one table name per line
        output_dir: Existing directory receiving the stream files
        fetch_size: Rows per cursor round trip
        print_count: Progress log cadence in rows
        limit: Maximum rows per table (negative = all)
        properties: Connection property bag ('db.*')
    """

    tables_file: Path
    output_dir: Path = Path('.')
    fetch_size: int = DEFAULT_FETCH_SIZE
    print_count: int = DEFAULT_PRINT_COUNT
    limit: int = -1
    properties: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.tables_file = Path(self.tables_file)
        self.output_dir = Path(self.output_dir)
        if self.fetch_size <= 0:
            raise ValueError(f"fetch_size must be positive, got {self.fetch_size}")

    @property
    def effective_fetch_size(self) -> int:
        """Fetch size capped by a positive limit."""
        if self.limit > 0:
            return min(self.fetch_size, self.limit)
        return self.fetch_size

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> 'DumpOptions':
        return cls(
            tables_file=params['tables_file'],
            output_dir=params.get('output_dir') or '.',
            fetch_size=int(params.get('fetch_size', DEFAULT_FETCH_SIZE)),
            print_count=int(params.get('print_count', DEFAULT_PRINT_COUNT)),
            limit=int(params.get('limit', -1)),
            properties=dict(params.get('properties') or {}),
        )

    @classmethod
    def from_env(cls) -> 'DumpOptions':
        tables_file = _env('TABLES_FILE')
        if not tables_file:
            raise ValueError(f"{_ENV_PREFIX}TABLES_FILE is not set")
        return cls(
            tables_file=tables_file,
            output_dir=_env('OUTPUT_DIR', '.'),
            fetch_size=int(_env('FETCH_SIZE', str(DEFAULT_FETCH_SIZE))),
            print_count=int(_env('PRINT_COUNT', str(DEFAULT_PRINT_COUNT))),
            limit=int(_env('LIMIT', '-1')),
            properties=_env_properties(),
        )


@dataclass
class LoadOptions:
    """
    Options of a load run.

    Attributes:
        input_dir: Directory holding the stream files
        batch_size: Rows per executemany call
        print_count: Progress log cadence in records read
        limit: Maximum records per table, counted after the offset (negative = all)
        commit_count: Commit every N records read; 0 commits once per table,
            negative never commits (dry run)
        skip_non_empty: Skip tables that already have rows
        clear: Delete existing rows first
        offset: Records to skip at the start of each stream (<= 0 = none)
        mem_info: Log process memory after each table
        properties: Connection property bag ('db.*')
    """

    input_dir: Path = Path('.')
    batch_size: int = DEFAULT_BATCH_SIZE
    print_count: int = DEFAULT_PRINT_COUNT
    limit: int = -1
    commit_count: int = 0
    skip_non_empty: bool = True
    clear: ClearMode = ClearMode.NO
    offset: int = -1
    mem_info: bool = False
    properties: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.input_dir = Path(self.input_dir)
        self.clear = ClearMode.parse(self.clear)
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> 'LoadOptions':
        return cls(
            input_dir=params.get('input_dir') or '.',
            batch_size=int(params.get('batch_size', DEFAULT_BATCH_SIZE)),
            print_count=int(params.get('print_count', DEFAULT_PRINT_COUNT)),
            limit=int(params.get('limit', -1)),
            commit_count=int(params.get('commit_count', 0)),
            skip_non_empty=parse_bool(params.get('skip_non_empty', True)),
            clear=params.get('clear', ClearMode.NO.value),
            offset=int(params.get('offset', -1)),
            mem_info=parse_bool(params.get('mem_info', False)),
            properties=dict(params.get('properties') or {}),
        )

    @classmethod
    def from_env(cls) -> 'LoadOptions':
        return cls(
            input_dir=_env('INPUT_DIR', '.'),
            batch_size=int(_env('BATCH_SIZE', str(DEFAULT_BATCH_SIZE))),
            print_count=int(_env('PRINT_COUNT', str(DEFAULT_PRINT_COUNT))),
            limit=int(_env('LIMIT', '-1')),
            commit_count=int(_env('COMMIT_COUNT', '0')),
            skip_non_empty=parse_bool(_env('SKIP_NON_EMPTY', 'true')),
            clear=_env('CLEAR', ClearMode.NO.value),
            offset=int(_env('OFFSET', '-1')),
            mem_info=parse_bool(_env('MEM_INFO', 'false')),
            properties=_env_properties(),
        )
