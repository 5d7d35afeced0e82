"""
Database connection management for the parallel dumper.
"""

import itertools
import logging
import time
from typing import Optional, Sequence

import mysql.connector
from mysql.connector import errors as mysql_errors
from mysql.connector.constants import FieldType

from .exceptions import DumperConnectionError, QueryError
from .models import FieldInfo

# Integer, float and decimal columns; BIT is binary data and stays quoted
NUMERIC_FIELD_TYPES = frozenset((
    FieldType.DECIMAL,
    FieldType.NEWDECIMAL,
    FieldType.TINY,
    FieldType.SHORT,
    FieldType.LONG,
    FieldType.LONGLONG,
    FieldType.INT24,
    FieldType.FLOAT,
    FieldType.DOUBLE,
    FieldType.YEAR,
))

# Errors after which a read-only query is worth replaying on a fresh session
TRANSIENT_ERRORS = (mysql_errors.OperationalError, mysql_errors.InterfaceError)


def fields_from_description(description: Sequence[tuple]) -> list[FieldInfo]:
    """Build field descriptors from a DB-API cursor description."""
    return [
        FieldInfo(name=column[0], numeric=column[1] in NUMERIC_FIELD_TYPES)
        for column in description or ()
    ]


class DatabaseConnection:
    """Manages one MySQL session with context manager support.

    Every instance gets a process-wide unique ``connection_id`` that is used
    to correlate log lines of the worker holding it.
    """

    DEFAULT_PORT = 3306
    DEFAULT_CHARSET = 'utf8mb4'

    _ids = itertools.count(1)

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        database: Optional[str] = None,
        session_vars: Sequence[str] = (),
        retries: int = 0,
        retry_delay: float = 1.0
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.session_vars = tuple(session_vars)
        self.retries = retries
        self.retry_delay = retry_delay
        self.connection_id = next(self._ids)
        self.connection = None

    def __enter__(self) -> "DatabaseConnection":
        """Context manager entry - establish connection."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close connection."""
        self.disconnect()

    def connect(self) -> None:
        """Establish the session and apply session variables."""
        try:
            self.connection = mysql.connector.connect(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database,
                charset=self.DEFAULT_CHARSET,
                use_unicode=True,
                consume_results=True
            )
            for statement in self.session_vars:
                cursor = self.connection.cursor()
                try:
                    cursor.execute(statement)
                finally:
                    cursor.close()
        except mysql_errors.Error as e:
            logging.error(f"Failed to connect to {self.host}:{self.port}: {e}")
            self.disconnect()
            raise DumperConnectionError(
                f"cannot connect to {self.host}:{self.port}/{self.database or ''}: {e}"
            ) from e
        logging.debug(
            f"conn[{self.connection_id}].connected.to[{self.host}:{self.port}/{self.database or 'N/A'}]"
        )

    def disconnect(self) -> None:
        """Close the session."""
        if self.connection is None:
            return
        try:
            if self.connection.is_connected():
                self.connection.close()
                logging.debug(f"conn[{self.connection_id}].closed")
        except mysql_errors.Error as e:
            logging.warning(f"conn[{self.connection_id}].close.failed: {e}")
        finally:
            self.connection = None

    def reset(self) -> None:
        """Abandon the session without reading pending rows and open a new one.

        ``shutdown`` closes the socket without sending QUIT, so an unread
        streaming result is dropped instead of consumed.
        """
        if self.connection is not None:
            self.connection.shutdown()
            self.connection = None
            logging.debug(f"conn[{self.connection_id}].reset")
        self.connect()

    def _cursor(self, **kwargs):
        if self.connection is None:
            self.connect()
        return self.connection.cursor(**kwargs)

    def _with_retry(self, query: str, action):
        """Run ``action`` retrying transient errors on a fresh session."""
        attempt = 0
        while True:
            try:
                return action()
            except TRANSIENT_ERRORS as e:
                if attempt >= self.retries:
                    raise QueryError(f"{query}: {e}") from e
                attempt += 1
                logging.warning(
                    f"conn[{self.connection_id}].query.retry[{attempt}/{self.retries}]: {e}"
                )
                time.sleep(self.retry_delay)
                self.reset()
            except mysql_errors.Error as e:
                raise QueryError(f"{query}: {e}") from e

    def execute_query(self, query: str, params: Optional[tuple] = None) -> list[tuple]:
        """Execute a small read-only query and return all rows.

        Transient connectivity errors are retried up to ``retries`` times on a
        fresh session; any other server error is raised as ``QueryError``.
        """
        def fetch():
            cursor = self._cursor()
            try:
                cursor.execute(query, params)
                return cursor.fetchall()
            finally:
                cursor.close()

        return self._with_retry(query, fetch)

    def stream_query(self, query: str):
        """Execute a query on an unbuffered raw cursor.

        Rows are pulled from the server one at a time while iterating the
        returned cursor; values come back as the server's bytes (or None for
        NULL). Opening the query is retried like ``execute_query``; once rows
        are being read the caller owns the cursor and must close it.
        """
        def open_cursor():
            cursor = self._cursor(buffered=False, raw=True)
            try:
                cursor.execute(query)
            except mysql_errors.Error:
                cursor.close()
                raise
            return cursor

        return self._with_retry(query, open_cursor)

    def get_databases(self) -> list[str]:
        """Get list of all databases on the server."""
        return [row[0] for row in self.execute_query("SHOW DATABASES")]

    def get_tables(self, database: Optional[str] = None) -> list[str]:
        """Get list of all tables in ``database`` (or the current one)."""
        query = f"SHOW TABLES FROM `{database}`" if database else "SHOW TABLES"
        return [row[0] for row in self.execute_query(query)]

    def get_create_table(self, table: str, database: Optional[str] = None) -> str:
        """Get CREATE TABLE statement."""
        name = f"`{database}`.`{table}`" if database else f"`{table}`"
        results = self.execute_query(f"SHOW CREATE TABLE {name}")
        return results[0][1]
