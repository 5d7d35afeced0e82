"""
Configuration loading and validation for the parallel dumper.
"""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import ConfigError
from .models import DumpConfig, OutputFormat


class ConfigLoader:
    """Loads configuration from a YAML file and builds a ``DumpConfig``."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.config = self._load_config() if config_path else {}

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ConfigError(f"Configuration file '{self.config_path}' must contain a mapping")
        return self._resolve_env_vars(config)

    def _resolve_env_vars(self, obj: Any) -> Any:
        """Recursively resolve environment variables in config."""
        if isinstance(obj, str):
            matches = self.ENV_VAR_PATTERN.findall(obj)
            for match in matches:
                env_value = os.environ.get(match, '')
                obj = obj.replace(f'${{{match}}}', env_value)
            return obj
        elif isinstance(obj, dict):
            return {k: self._resolve_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._resolve_env_vars(item) for item in obj]
        return obj

    def get_connection_settings(self) -> dict[str, Any]:
        """Get server address, credentials and session variables."""
        return self.config.get('connection', {})

    def get_selection_settings(self) -> dict[str, Any]:
        """Get database/table selection."""
        return self.config.get('selection', {})

    def get_table_rules(self) -> dict[str, Any]:
        """Get per-table column filters, replacements and WHERE overrides."""
        return self.config.get('tables', {}) or {}

    def get_dump_settings(self) -> dict[str, Any]:
        """Get threading and chunking settings."""
        return self.config.get('dump', {})

    def get_output_settings(self) -> dict[str, Any]:
        """Get output settings."""
        return self.config.get('output', {})

    def get_logging_settings(self) -> dict[str, Any]:
        """Get logging settings."""
        return self.config.get('logging', {})

    def build_dump_config(self, overrides: Optional[dict[str, Any]] = None) -> DumpConfig:
        """
        Merge the file settings with command line overrides.

        Overrides with a value of None are ignored, so unset flags keep the
        file (or built-in) value.
        """
        connection = self.get_connection_settings()
        selection = self.get_selection_settings()
        dump = self.get_dump_settings()
        output = self.get_output_settings()

        settings: dict[str, Any] = {
            'outdir': output.get('directory'),
            'output_format': output.get('format'),
            'host': connection.get('host'),
            'port': connection.get('port'),
            'user': connection.get('user'),
            'password': connection.get('password'),
            'session_vars': connection.get('session_vars'),
            'database': _join_names(selection.get('databases')),
            'database_regexp': selection.get('database_regexp'),
            'database_invert_regexp': selection.get('invert_regexp'),
            'table': _join_names(selection.get('tables')),
            'exclude_tables': selection.get('exclude_tables'),
            'threads': dump.get('threads'),
            'stmt_size': dump.get('stmt_size'),
            'chunksize_in_mb': dump.get('chunksize_mb'),
            'interval_ms': dump.get('interval_ms'),
            'continue_on_error': dump.get('continue_on_error'),
            'query_retries': dump.get('query_retries'),
            'retry_delay': dump.get('retry_delay'),
        }
        for key, value in (overrides or {}).items():
            if value is not None:
                settings[key] = value

        settings = {k: v for k, v in settings.items() if v is not None}
        settings.update(self._table_rules())

        if 'outdir' in settings:
            settings['outdir'] = Path(settings['outdir'])
        if 'output_format' in settings and not isinstance(settings['output_format'], OutputFormat):
            settings['output_format'] = OutputFormat.parse(settings['output_format'])
        if 'session_vars' in settings:
            settings['session_vars'] = _as_tuple(settings['session_vars'])
        if 'exclude_tables' in settings:
            settings['exclude_tables'] = _as_tuple(settings['exclude_tables'])
        if settings.get('database_regexp'):
            try:
                re.compile(settings['database_regexp'])
            except re.error as e:
                raise ConfigError(f"Invalid database regexp '{settings['database_regexp']}': {e}") from e

        try:
            return DumpConfig(**settings)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def _table_rules(self) -> dict[str, Any]:
        """Split the ``tables`` section into filters, selects and wheres."""
        filters: dict[str, frozenset[str]] = {}
        selects: dict[str, dict[str, str]] = {}
        wheres: dict[str, str] = {}

        for table, rules in self.get_table_rules().items():
            if not isinstance(rules, dict):
                raise ConfigError(f"Rules for table '{table}' must be a mapping")
            if rules.get('exclude_columns'):
                filters[table] = frozenset(rules['exclude_columns'])
            if rules.get('replace'):
                selects[table] = {str(col): str(expr) for col, expr in rules['replace'].items()}
            if rules.get('where'):
                wheres[table] = str(rules['where'])

        return {'filters': filters, 'selects': selects, 'wheres': wheres}


def _join_names(value: Any) -> Optional[str]:
    """Accept a YAML list or a comma separated string of names."""
    if value is None or value == '*':
        return None
    if isinstance(value, (list, tuple)):
        return ','.join(str(v) for v in value) or None
    return str(value) or None


def _as_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)
