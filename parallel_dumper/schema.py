"""
Metadata marker and DDL files.
"""

import logging
from pathlib import Path

from .connection import DatabaseConnection
from .utils import write_file


def write_metadata(outdir: Path) -> Path:
    """Write the empty ``metadata`` file marking the start of a dump."""
    path = outdir / "metadata"
    write_file(path, "")
    return path


def dump_database_schema(outdir: Path, database: str) -> Path:
    path = outdir / f"{database}-schema-create.sql"
    write_file(path, f"CREATE DATABASE IF NOT EXISTS `{database}`;")
    logging.info(f"dumping.database[{database}].schema...")
    return path


def dump_table_schema(conn: DatabaseConnection, outdir: Path, database: str, table: str) -> Path:
    """Write the server's CREATE TABLE text for ``database.table``."""
    schema = conn.get_create_table(table, database) + ";\n"
    path = outdir / f"{database}.{table}-schema.sql"
    write_file(path, schema)
    logging.info(f"dumping.table[{database}.{table}].schema...")
    return path
