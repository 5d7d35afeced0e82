"""
Table dumping functionality for the parallel dumper.

A table is streamed row by row from an unbuffered cursor and written into
numbered chunk files ``<db>.<table>.<NNNNN>.<ext>``. A chunk is closed only
between rows, so every file holds complete statements (SQL) or a header plus
complete rows (CSV/TSV).
"""

import csv
import logging
import threading
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO

from mysql.connector import errors as mysql_errors

from .connection import DatabaseConnection, fields_from_description
from .exceptions import DumpCancelled, DumperError, DumpFileError, QueryError
from .models import DumpConfig, FieldInfo, TableRef, TableStats
from .progress import AtomicCounter
from .utils import escape_bytes, to_mb, write_file

NULL = b'NULL'


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode('utf-8')
    return str(value).encode('utf-8')


def encode_sql_value(value: Any, numeric: bool) -> bytes:
    """Render one value as it appears inside an INSERT tuple."""
    if value is None:
        return NULL
    raw = _as_bytes(value)
    if numeric:
        return raw
    return b'"' + escape_bytes(raw) + b'"'


def encode_text_value(value: Any) -> str:
    """Render one value as a delimited-file field."""
    if value is None:
        return 'NULL'
    return _as_bytes(value).decode('utf-8', 'surrogateescape')


class TableDumper:
    """Handles dumping of individual tables on one leased connection."""

    def __init__(
        self,
        connection: DatabaseConnection,
        config: DumpConfig,
        all_bytes: Optional[AtomicCounter] = None,
        all_rows: Optional[AtomicCounter] = None,
        cancel: Optional[threading.Event] = None
    ):
        self.connection = connection
        self.config = config
        self.all_bytes = all_bytes if all_bytes is not None else AtomicCounter()
        self.all_rows = all_rows if all_rows is not None else AtomicCounter()
        self.cancel = cancel

    def dump_table(self, database: str, table: str) -> TableStats:
        """
        Dump a table's rows to chunk files.

        Args:
            database: Database holding the table.
            table: Name of the table to dump.

        Returns:
            TableStats with dump statistics; ``error`` is set when it failed.
        """
        ref = TableRef(database, table)
        stats = TableStats(database=database, table=table, connection_id=self.connection.connection_id)
        output_format = self.config.output_format

        try:
            fields = self._discover_fields(ref)
            columns, select_exprs = self._build_column_lists(table, fields)
            query = self._build_select_query(ref, select_exprs)
            logging.debug(f"dumping.table[{ref.qualified}].query[{query[:200]}]")

            cursor = self.connection.stream_query(query)
            if output_format.is_delimited:
                self._dump_as_delimited(cursor, ref, columns, output_format.separator, stats)
            else:
                self._dump_as_sql(cursor, ref, columns, stats)
            cursor.close()

            stats.success = True
            logging.info(
                f"dumping.table[{ref.qualified}].done.allrows[{stats.rows}]"
                f".allbytes[{to_mb(stats.bytes)}MB].thread[{self.connection.connection_id}]..."
            )
        except (DumperError, OSError, mysql_errors.Error) as e:
            stats.error = str(e)
            logging.error(f"dumping.table[{ref.qualified}].failed: {e}")
            self._reset_session(ref)

        return stats

    def _reset_session(self, ref: TableRef) -> None:
        """Replace the session so no unread rows or broken state reach the next table."""
        try:
            self.connection.reset()
        except DumperError as e:
            # The next query on this connection opens a new session
            logging.warning(f"dumping.table[{ref.qualified}].reset.failed: {e}")

    def _discover_fields(self, ref: TableRef) -> list[FieldInfo]:
        """Probe one row to learn the authoritative column list."""
        cursor = self.connection.stream_query(
            f"SELECT * FROM `{ref.database}`.`{ref.table}` LIMIT 1"
        )
        fields = fields_from_description(cursor.description)
        cursor.fetchall()
        cursor.close()
        return fields

    def _build_column_lists(self, table: str, fields: list[FieldInfo]) -> tuple[list[str], list[str]]:
        """Apply column filters and substitutions.

        Returns the emitted column names and the matching select expressions.
        """
        excluded = self.config.filters.get(table, ())
        replacements = self.config.selects.get(table, {})

        columns = []
        select_exprs = []
        for fld in fields:
            if fld.name in excluded:
                logging.debug(f"dumping.table[{table}].column[{fld.name}].excluded")
                continue
            columns.append(fld.name)
            if fld.name in replacements:
                select_exprs.append(f"{replacements[fld.name]} AS `{fld.name}`")
            else:
                select_exprs.append(f"`{fld.name}`")
        return columns, select_exprs

    def _build_select_query(self, ref: TableRef, select_exprs: list[str]) -> str:
        query = f"SELECT {', '.join(select_exprs)} FROM `{ref.database}`.`{ref.table}`"
        where = self.config.wheres.get(ref.table)
        if where:
            query += f" WHERE {where}"
        return query

    def _iter_rows(self, cursor, ref: TableRef) -> Iterator[tuple]:
        """Yield rows from a streaming cursor, honouring cancellation."""
        rows = iter(cursor)
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise DumpCancelled(f"dump of {ref.qualified} cancelled")
            try:
                row = next(rows)
            except StopIteration:
                return
            except mysql_errors.Error as e:
                raise QueryError(f"reading {ref.qualified}: {e}") from e
            yield row

    def _account(self, stats: TableStats, size: int) -> None:
        stats.rows += 1
        stats.bytes += size
        self.all_bytes.add(size)
        self.all_rows.add(1)

    def _chunk_path(self, ref: TableRef, file_no: int) -> Path:
        extension = self.config.output_format.extension
        return Path(self.config.outdir) / f"{ref.database}.{ref.table}.{file_no:05d}.{extension}"

    def _log_chunk(self, ref: TableRef, stats: TableStats, file_no: int) -> None:
        logging.info(
            f"dumping.table[{ref.qualified}].rows[{stats.rows}].bytes[{to_mb(stats.bytes)}MB]"
            f".part[{file_no}].thread[{self.connection.connection_id}]"
        )

    def _dump_as_sql(self, cursor, ref: TableRef, columns: list[str], stats: TableStats) -> None:
        """Dump rows as multi-row INSERT statements."""
        numeric = [fld.numeric for fld in fields_from_description(cursor.description)]
        quoted_columns = ','.join(f"`{col}`" for col in columns)
        prefix = f"INSERT INTO `{ref.table}`({quoted_columns}) VALUES\n".encode('utf-8')
        stmt_limit = self.config.stmt_size
        chunk_limit = self.config.chunk_size_bytes

        file_no = 1
        stmt_size = 0
        chunk_bytes = 0
        rows: list[bytes] = []
        statements: list[bytes] = []

        for row in self._iter_rows(cursor, ref):
            values = b','.join(encode_sql_value(v, n) for v, n in zip(row, numeric))
            tuple_text = b'(' + values + b')'
            rows.append(tuple_text)
            stmt_size += len(tuple_text)
            chunk_bytes += len(tuple_text)
            self._account(stats, len(tuple_text))

            if stmt_size >= stmt_limit:
                statements.append(prefix + b',\n'.join(rows))
                rows = []
                stmt_size = 0

            if chunk_bytes >= chunk_limit:
                if rows:
                    statements.append(prefix + b',\n'.join(rows))
                    rows = []
                    stmt_size = 0
                self._write_sql_chunk(ref, file_no, statements, stats)
                statements = []
                chunk_bytes = 0
                file_no += 1

        if rows:
            statements.append(prefix + b',\n'.join(rows))
        if statements:
            self._write_sql_chunk(ref, file_no, statements, stats)

    def _write_sql_chunk(self, ref: TableRef, file_no: int, statements: list[bytes], stats: TableStats) -> None:
        path = self._chunk_path(ref, file_no)
        write_file(path, b';\n'.join(statements) + b';\n')
        stats.files.append(str(path))
        self._log_chunk(ref, stats, file_no)

    def _open_delimited(self, ref: TableRef, file_no: int, header: list[str], separator: str, stats: TableStats):
        path = self._chunk_path(ref, file_no)
        try:
            handle: TextIO = open(path, 'w', newline='', encoding='utf-8', errors='surrogateescape')
        except OSError as e:
            raise DumpFileError(f"cannot write {path}: {e}") from e
        writer = csv.writer(handle, delimiter=separator, lineterminator='\n')
        writer.writerow(header)
        stats.files.append(str(path))
        return handle, writer

    def _dump_as_delimited(
        self,
        cursor,
        ref: TableRef,
        columns: list[str],
        separator: str,
        stats: TableStats
    ) -> None:
        """Dump rows as CSV/TSV, one header per chunk file."""
        chunk_limit = self.config.chunk_size_bytes
        file_no = 1
        chunk_bytes = 0

        handle, writer = self._open_delimited(ref, file_no, columns, separator, stats)
        try:
            for row in self._iter_rows(cursor, ref):
                # Chunks after the first are opened on their first row
                if handle is None:
                    file_no += 1
                    handle, writer = self._open_delimited(ref, file_no, columns, separator, stats)

                values = [encode_text_value(v) for v in row]
                row_size = sum(len(_as_bytes(v)) if v is not None else len(NULL) for v in row)
                writer.writerow(values)
                chunk_bytes += row_size
                self._account(stats, row_size)

                if chunk_bytes >= chunk_limit:
                    handle.close()
                    handle = None
                    chunk_bytes = 0
                    self._log_chunk(ref, stats, file_no)
        finally:
            if handle is not None:
                handle.close()
