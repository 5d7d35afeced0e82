"""
Run-wide counters and the periodic throughput reporter.
"""

import logging
import threading
import time

from .utils import to_mb


class AtomicCounter:
    """Monotonic integer shared between worker threads.

    The lock stands in for an atomic add; callers only see ``add`` and ``value``.
    """

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def add(self, amount: int) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def throughput(num_bytes: int, elapsed: float) -> float:
    """Megabytes per second, 0 when no time has passed."""
    if elapsed <= 0:
        return 0.0
    return to_mb(num_bytes) / elapsed


class ProgressReporter:
    """Logs total bytes, rows and rate every ``interval_ms`` milliseconds."""

    def __init__(
        self,
        all_bytes: AtomicCounter,
        all_rows: AtomicCounter,
        interval_ms: int,
        started: float
    ):
        self.all_bytes = all_bytes
        self.all_rows = all_rows
        self.interval = interval_ms / 1000.0
        self.started = started
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="progress", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join()

    def report(self) -> str:
        """Emit one status line and return it."""
        elapsed = time.monotonic() - self.started
        num_bytes = self.all_bytes.value
        line = (
            f"dumping.allbytes[{to_mb(num_bytes)}MB].allrows[{self.all_rows.value}]"
            f".time[{elapsed:.2f}sec].rates[{throughput(num_bytes, elapsed):.2f}MB/sec]..."
        )
        logging.info(line)
        return line

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.report()
