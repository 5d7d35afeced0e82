"""
Database and table enumeration for the parallel dumper.
"""

import fnmatch
import logging
import re
from typing import Optional, Sequence

from .connection import DatabaseConnection
from .exceptions import ConfigError
from .models import DumpConfig
from .utils import split_names


class CatalogEnumerator:
    """Resolves which databases and tables a run exports."""

    def __init__(self, connection: DatabaseConnection):
        self.connection = connection

    def list_databases(self) -> list[str]:
        return self.connection.get_databases()

    def list_databases_matching(self, pattern: str, invert: bool = False) -> list[str]:
        """Server databases whose name matches ``pattern`` (or does not, if inverted)."""
        regexp = compile_pattern(pattern)
        return [
            db for db in self.list_databases()
            if bool(regexp.search(db)) != invert
        ]

    def list_tables(self, database: str) -> list[str]:
        return self.connection.get_tables(database)

    def resolve_databases(self, config: DumpConfig) -> list[str]:
        """Regexp first, then the explicit list verbatim, then every database."""
        if config.database_regexp:
            databases = self.list_databases_matching(
                config.database_regexp, config.database_invert_regexp
            )
        elif config.database:
            databases = split_names(config.database)
        else:
            databases = self.list_databases()
        logging.info(f"dumping.databases{databases}")
        return databases

    def resolve_tables(self, config: DumpConfig, database: str) -> list[str]:
        """Explicit list or every table, minus the ``exclude_tables`` patterns."""
        if config.table:
            tables = split_names(config.table)
        else:
            tables = self.list_tables(database)
        return exclude_tables(tables, config.exclude_tables)


def compile_pattern(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid database regexp '{pattern}': {e}") from e


def exclude_tables(tables: list[str], patterns: Sequence[str]) -> list[str]:
    """
    Drop tables matching any of the fnmatch ``patterns``.

    Supports:
    - Exact matches: 'users_backup'
    - Wildcard patterns: '*_old', 'tmp_*', '*_backup_*'
    """
    if not patterns:
        return tables
    compiled = [re.compile(fnmatch.translate(pattern)) for pattern in patterns]
    kept = []
    for table in tables:
        matched: Optional[str] = next(
            (patterns[i] for i, regexp in enumerate(compiled) if regexp.match(table)), None
        )
        if matched is not None:
            logging.debug(f"Table '{table}' excluded by pattern '{matched}'")
            continue
        kept.append(table)
    if len(kept) != len(tables):
        logging.info(f"Excluded {len(tables) - len(kept)} table(s) matching exclusion patterns")
    return kept
