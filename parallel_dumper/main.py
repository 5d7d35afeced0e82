#!/usr/bin/env python3
"""
Parallel MySQL Dumper - CLI Entry Point
=======================================
Dumps MySQL databases into size-bounded chunk files using one worker per table:
- Database selection by list or regular expression
- Per-table column exclusion, column replacement and WHERE overrides
- SQL (multi-row INSERT), CSV and TSV output
"""

import argparse
import logging
import os
import sys

import yaml

from .config import ConfigLoader
from .dumper import Dumper
from .exceptions import ConfigError, DumperError
from .utils import setup_logging

DEFAULT_CONFIG = 'config.yaml'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Parallel MySQL Dumper - multi-threaded database export tool'
    )
    parser.add_argument(
        '-c', '--config',
        default=None,
        help=f'Path to configuration file (default: {DEFAULT_CONFIG} if present)'
    )
    parser.add_argument('-H', '--host', help='Server host')
    parser.add_argument('-P', '--port', type=int, help='Server port')
    parser.add_argument('-u', '--user', help='Username')
    parser.add_argument('-p', '--password', help='Password')
    parser.add_argument('-o', '--outdir', help='Directory for dump files')
    parser.add_argument('-t', '--threads', type=int, help='Number of worker connections')
    parser.add_argument(
        '--format',
        dest='output_format',
        choices=['sql', 'mysql', 'csv', 'tsv'],
        help='Output format for table data'
    )
    parser.add_argument('-d', '--database', help='Comma separated databases to dump')
    parser.add_argument('--database-regexp', help='Dump databases matching this regular expression')
    parser.add_argument(
        '--invert-regexp',
        dest='database_invert_regexp',
        action='store_true',
        default=None,
        help='Dump databases NOT matching --database-regexp'
    )
    parser.add_argument('--table', help='Comma separated tables to dump in each database')
    parser.add_argument('-s', '--stmt-size', dest='stmt_size', type=int, help='Bytes per INSERT statement')
    parser.add_argument('-F', '--chunksize', dest='chunksize_in_mb', type=int, help='Megabytes per output file')
    parser.add_argument('--interval-ms', type=int, help='Progress report interval in milliseconds')
    parser.add_argument(
        '--fail-fast',
        action='store_true',
        help='Abort the whole run when one table fails'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be dumped without actually dumping'
    )
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config_path = args.config
    if config_path is None and os.path.exists(DEFAULT_CONFIG):
        config_path = DEFAULT_CONFIG

    # Load configuration
    try:
        loader = ConfigLoader(config_path)
    except FileNotFoundError:
        print(f"Error: Configuration file '{config_path}' not found")
        sys.exit(1)
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file: {e}")
        sys.exit(1)

    # Setup logging
    log_settings = dict(loader.get_logging_settings())
    if args.verbose:
        log_settings['level'] = 'DEBUG'
    setup_logging(log_settings)

    overrides = {
        key: getattr(args, key)
        for key in (
            'host', 'port', 'user', 'password', 'outdir', 'threads', 'output_format',
            'database', 'database_regexp', 'database_invert_regexp', 'table',
            'stmt_size', 'chunksize_in_mb', 'interval_ms'
        )
    }
    if args.fail_fast:
        overrides['continue_on_error'] = False

    try:
        config = loader.build_dump_config(overrides)
    except ConfigError as e:
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    dumper = Dumper(config)

    # Dry run mode
    if args.dry_run:
        logging.info("DRY RUN MODE - No data will be dumped")
        try:
            dumper.plan()
        except DumperError as e:
            logging.error(f"Fatal error: {e}")
            sys.exit(1)
        sys.exit(0)

    # Run dump
    try:
        stats = dumper.run()
    except KeyboardInterrupt:
        logging.error("Interrupted, files already written remain in place")
        sys.exit(130)
    except DumperError as e:
        logging.error(f"Fatal error: {e}")
        sys.exit(1)

    # Print summary
    logging.info("=" * 50)
    logging.info("DUMP COMPLETE")
    logging.info(f"Tables: {len(stats.tables)}")
    logging.info(f"Total Rows: {stats.total_rows}")
    logging.info(f"Total Bytes: {stats.total_bytes}")

    if stats.errors:
        logging.warning(f"Errors: {len(stats.errors)}")
        for err in stats.errors:
            logging.warning(f"  - {err['database']}.{err['table']}: {err['error']}")
        sys.exit(1)


if __name__ == '__main__':
    main()
