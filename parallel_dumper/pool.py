"""
Fixed-size connection pool with blocking acquire/release.
"""

import logging
import queue
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from .connection import DatabaseConnection
from .exceptions import ConfigError


class ConnectionPool:
    """A fixed set of sessions handed out one holder at a time.

    All sessions are opened at construction; if any of them fails the ones
    already opened are closed again and the error propagates, so a pool either
    exists at full size or not at all.
    """

    def __init__(
        self,
        size: int,
        host: str,
        port: int,
        user: str,
        password: str,
        session_vars: Sequence[str] = (),
        database: Optional[str] = None,
        retries: int = 0,
        retry_delay: float = 1.0
    ):
        if size < 1:
            raise ConfigError(f"connection pool size must be at least 1, got {size}")

        self.size = size
        self.database = database
        self._connections: list[DatabaseConnection] = []
        self._free: queue.Queue = queue.Queue(maxsize=size)
        self._closed = False
        self._close_lock = threading.Lock()

        try:
            for _ in range(size):
                conn = DatabaseConnection(
                    host=host,
                    port=port,
                    user=user,
                    password=password,
                    database=database,
                    session_vars=session_vars,
                    retries=retries,
                    retry_delay=retry_delay
                )
                conn.connect()
                self._connections.append(conn)
                self._free.put_nowait(conn)
        except Exception:
            self.close()
            raise

        logging.info(f"pool[{database or '*'}].size[{size}].ready")

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def acquire(self) -> DatabaseConnection:
        """Borrow a connection, blocking until one is free."""
        return self._free.get()

    def release(self, conn: DatabaseConnection) -> None:
        """Return a borrowed connection to the free set."""
        self._free.put_nowait(conn)

    @contextmanager
    def lease(self) -> Iterator[DatabaseConnection]:
        """Hold a connection for the duration of a ``with`` block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Disconnect every session. Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        for conn in self._connections:
            conn.disconnect()
        logging.debug(f"pool[{self.database or '*'}].closed")
