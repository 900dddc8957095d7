"""
Failure manifest: the names of tables that failed in a run, one per line,
in `<dir>/error-<epoch millis>.txt`.
"""

from pathlib import Path
from typing import Iterable, List, Optional
import logging
import time

logger = logging.getLogger(__name__)


def failure_file_path(directory: Path, millis: Optional[int] = None) -> Path:
    """Path of a run's failure manifest, stamped with the current epoch millis by default."""
    if millis is None:
        millis = int(time.time() * 1000)
    return Path(directory) / f"error-{millis}.txt"


class FailureManifest:
    """
    Collects failed table names.

    The file name is fixed when the manifest is created. A dump writes the
    whole list once at the end (write()); a load appends each failure as it
    happens (append()). No file is created while nothing failed.
    """

    def __init__(self, directory: Path, millis: Optional[int] = None):
        self.path = failure_file_path(directory, millis)
        self.tables: List[str] = []

    def __bool__(self) -> bool:
        return bool(self.tables)

    def add(self, table_name: str) -> None:
        self.tables.append(table_name)

    def append(self, table_name: str) -> None:
        """Record a failure and append it to the file immediately."""
        self.add(table_name)
        with open(self.path, 'a', encoding='utf-8') as fh:
            fh.write(f"{table_name}\n")

    def write(self) -> Optional[Path]:
        """Write all recorded failures; returns the path, or None if nothing failed."""
        if not self.tables:
            return None
        _write_lines(self.path, self.tables)
        logger.warning(f"{len(self.tables)} tables failed, see {self.path}")
        return self.path


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    with open(path, 'w', encoding='utf-8') as fh:
        for line in lines:
            fh.write(f"{line}\n")


def read_failure_manifest(path: Path) -> List[str]:
    """Table names listed in a failure manifest, e.g. to retry them."""
    with open(path, encoding='utf-8') as fh:
        return [line.strip() for line in fh if line.strip()]
