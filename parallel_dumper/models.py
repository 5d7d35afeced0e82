"""
Data models and enums for the parallel dumper.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError, UnknownFormatError


class OutputFormat(Enum):
    """Supported output formats for table data."""
    SQL = "sql"
    CSV = "csv"
    TSV = "tsv"

    @classmethod
    def parse(cls, value: str) -> "OutputFormat":
        """Parse a format selector; ``mysql`` is accepted as an alias of ``sql``."""
        selector = (value or "").strip().lower()
        if selector == "mysql":
            selector = "sql"
        try:
            return cls(selector)
        except ValueError:
            raise UnknownFormatError(f"Unknown dump format: '{value}'") from None

    @property
    def extension(self) -> str:
        # Both delimited variants share the .csv suffix
        return "sql" if self is OutputFormat.SQL else "csv"

    @property
    def separator(self) -> Optional[str]:
        return {OutputFormat.CSV: ",", OutputFormat.TSV: "\t"}.get(self)

    @property
    def is_delimited(self) -> bool:
        return self is not OutputFormat.SQL


@dataclass(frozen=True)
class TableRef:
    """A (database, table) pair resolved during enumeration."""
    database: str
    table: str

    @property
    def qualified(self) -> str:
        return f"{self.database}.{self.table}"


@dataclass
class FieldInfo:
    """Column name and whether the server classifies it as numeric."""
    name: str
    numeric: bool = False


@dataclass
class TableStats:
    """Statistics for a single table dump."""
    database: str
    table: str
    rows: int = 0
    bytes: int = 0
    files: list[str] = field(default_factory=list)
    connection_id: Optional[int] = None
    success: bool = False
    error: Optional[str] = None


@dataclass
class DumpStats:
    """Overall dump statistics."""
    tables: list[TableStats] = field(default_factory=list)
    total_rows: int = 0
    total_bytes: int = 0
    elapsed: float = 0.0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class DumpConfig:
    """Immutable run parameters for one dump."""
    outdir: Path = Path("./dumps")
    threads: int = 16
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    session_vars: tuple[str, ...] = ()
    database: Optional[str] = None
    database_regexp: Optional[str] = None
    database_invert_regexp: bool = False
    table: Optional[str] = None
    exclude_tables: tuple[str, ...] = ()
    filters: dict[str, frozenset[str]] = field(default_factory=dict)
    selects: dict[str, dict[str, str]] = field(default_factory=dict)
    wheres: dict[str, str] = field(default_factory=dict)
    stmt_size: int = 1000000
    chunksize_in_mb: int = 128
    interval_ms: int = 10000
    output_format: OutputFormat = OutputFormat.SQL
    continue_on_error: bool = True
    query_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        for name in ('threads', 'stmt_size', 'chunksize_in_mb', 'interval_ms'):
            if getattr(self, name) < 1:
                raise ConfigError(f"'{name}' must be a positive integer, got {getattr(self, name)}")
        if self.query_retries < 0:
            raise ConfigError("'query_retries' must not be negative")

    @property
    def chunk_size_bytes(self) -> int:
        return self.chunksize_in_mb * 1024 * 1024
