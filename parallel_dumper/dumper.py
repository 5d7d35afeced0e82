"""
Main dump orchestration for the parallel dumper.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

from .catalog import CatalogEnumerator
from .connection import DatabaseConnection
from .exceptions import ConfigError, DumperError
from .models import DumpConfig, DumpStats, TableStats
from .pool import ConnectionPool
from .progress import AtomicCounter, ProgressReporter, throughput
from .schema import dump_database_schema, dump_table_schema, write_metadata
from .table_dumper import TableDumper


class Dumper:
    """Runs a full dump: schema phase, then one worker per table."""

    def __init__(self, config: DumpConfig):
        self.config = config
        self.all_bytes = AtomicCounter()
        self.all_rows = AtomicCounter()
        self.cancel = threading.Event()
        self.stats = DumpStats()
        self.first_failure: Optional[TableStats] = None
        self._failure_lock = threading.Lock()
        self.started = 0.0

    def _new_pool(self, size: int, database: Optional[str] = None) -> ConnectionPool:
        config = self.config
        return ConnectionPool(
            size=size,
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            session_vars=config.session_vars if database else (),
            database=database,
            retries=config.query_retries,
            retry_delay=config.retry_delay
        )

    def sub_pool_size(self, num_databases: int) -> int:
        """Connections each database gets out of the thread budget."""
        if num_databases > self.config.threads:
            raise ConfigError(
                f"{num_databases} databases selected but only {self.config.threads} threads configured; "
                f"raise threads to at least {num_databases}"
            )
        return self.config.threads // num_databases

    def plan(self) -> dict[str, list[str]]:
        """Resolve and log the databases and tables a run would export."""
        config = self.config
        with DatabaseConnection(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            retries=config.query_retries,
            retry_delay=config.retry_delay
        ) as conn:
            catalog = CatalogEnumerator(conn)
            databases = catalog.resolve_databases(config)
            tables = {db: catalog.resolve_tables(config, db) for db in databases}

        for database, names in tables.items():
            logging.info(f"Would dump database: {database}")
            for table in names:
                settings = []
                if table in config.filters:
                    settings.append(f"exclude={','.join(sorted(config.filters[table]))}")
                if table in config.selects:
                    settings.append(f"replace={','.join(config.selects[table])}")
                if table in config.wheres:
                    settings.append(f"where='{config.wheres[table]}'")
                suffix = f" ({', '.join(settings)})" if settings else ""
                logging.info(f"  - {table}{suffix}")
        return tables

    def run(self) -> DumpStats:
        """Run the dump and return its statistics.

        Raises ``DumperError`` for failures outside a single table (connect,
        enumeration, schema) and, when ``continue_on_error`` is off, for the
        first failed table once all workers have stopped.
        """
        config = self.config
        outdir = Path(config.outdir)
        outdir.mkdir(parents=True, exist_ok=True)

        self.started = time.monotonic()
        pools: list[ConnectionPool] = []
        reporter: Optional[ProgressReporter] = None

        global_pool = self._new_pool(config.threads)
        pools.append(global_pool)
        try:
            write_metadata(outdir)

            with global_pool.lease() as conn:
                catalog = CatalogEnumerator(conn)
                databases = catalog.resolve_databases(config)
                for database in databases:
                    dump_database_schema(outdir, database)
                tables = [catalog.resolve_tables(config, database) for database in databases]

            if not databases:
                logging.warning("No databases selected, nothing to dump")
                return self._finish()

            pool_size = self.sub_pool_size(len(databases))

            with ThreadPoolExecutor(max_workers=config.threads, thread_name_prefix="dumper") as executor:
                futures = []
                try:
                    for database, names in zip(databases, tables):
                        pool = self._new_pool(pool_size, database)
                        pools.append(pool)
                        for table in names:
                            with global_pool.lease() as conn:
                                dump_table_schema(conn, outdir, database, table)
                            futures.append(executor.submit(self._dump_worker, pool, database, table))

                    reporter = ProgressReporter(self.all_bytes, self.all_rows, config.interval_ms, self.started)
                    reporter.start()

                    for future in as_completed(futures):
                        self._collect(future.result())
                except BaseException:
                    self.cancel.set()
                    executor.shutdown(wait=True, cancel_futures=True)
                    raise
        finally:
            if reporter is not None:
                reporter.stop()
            for pool in reversed(pools):
                pool.close()

        stats = self._finish()
        if self.first_failure is not None:
            first = self.first_failure
            raise DumperError(f"dump of {first.database}.{first.table} failed: {first.error}")
        return stats

    def _dump_worker(self, pool: ConnectionPool, database: str, table: str) -> TableStats:
        with pool.lease() as conn:
            if self.cancel.is_set():
                return TableStats(database=database, table=table, error="cancelled before start")

            logging.info(f"dumping.table[{database}.{table}].datas.thread[{conn.connection_id}]...")
            dumper = TableDumper(conn, self.config, self.all_bytes, self.all_rows, self.cancel)
            stats = dumper.dump_table(database, table)
            logging.info(f"dumping.table[{database}.{table}].datas.thread[{conn.connection_id}].done...")

        if not stats.success and not self.config.continue_on_error:
            with self._failure_lock:
                if self.first_failure is None:
                    self.first_failure = stats
            self.cancel.set()
        return stats

    def _collect(self, table_stats: TableStats) -> None:
        self.stats.tables.append(table_stats)
        if not table_stats.success:
            self.stats.errors.append({
                'database': table_stats.database,
                'table': table_stats.table,
                'error': table_stats.error
            })

    def _finish(self) -> DumpStats:
        stats = self.stats
        stats.elapsed = time.monotonic() - self.started
        stats.total_rows = self.all_rows.value
        stats.total_bytes = self.all_bytes.value
        logging.info(
            f"dumping.all.done.cost[{stats.elapsed:.2f}sec].allrows[{stats.total_rows}]"
            f".allbytes[{stats.total_bytes}].rate[{throughput(stats.total_bytes, stats.elapsed):.2f}MB/s]"
        )
        return stats
