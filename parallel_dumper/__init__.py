"""
Parallel MySQL Dumper
=====================
Exports MySQL databases into size-bounded flat files with one worker per table:
- Fixed-size connection pools, one per database
- Database selection by list or regular expression
- Per-table column filters, replacements and WHERE overrides
- Multiple output formats (SQL, CSV, TSV)
- Periodic throughput reporting
"""

from .catalog import CatalogEnumerator
from .config import ConfigLoader
from .connection import DatabaseConnection
from .dumper import Dumper
from .exceptions import (
    ConfigError,
    DumpCancelled,
    DumperConnectionError,
    DumperError,
    DumpFileError,
    QueryError,
    UnknownFormatError,
)
from .main import main
from .models import (
    DumpConfig,
    DumpStats,
    FieldInfo,
    OutputFormat,
    TableRef,
    TableStats,
)
from .pool import ConnectionPool
from .progress import AtomicCounter, ProgressReporter
from .table_dumper import TableDumper
from .utils import escape_bytes, setup_logging, unescape_bytes

__version__ = "1.0.0"

__all__ = [
    # Main entry point
    "main",
    # Core classes
    "CatalogEnumerator",
    "ConfigLoader",
    "ConnectionPool",
    "DatabaseConnection",
    "Dumper",
    "TableDumper",
    "AtomicCounter",
    "ProgressReporter",
    # Models
    "DumpConfig",
    "DumpStats",
    "FieldInfo",
    "OutputFormat",
    "TableRef",
    "TableStats",
    # Errors
    "ConfigError",
    "DumpCancelled",
    "DumperConnectionError",
    "DumperError",
    "DumpFileError",
    "QueryError",
    "UnknownFormatError",
    # Utilities
    "escape_bytes",
    "unescape_bytes",
    "setup_logging",
]
