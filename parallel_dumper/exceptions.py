"""
Exceptions raised by the parallel dumper.
"""


class DumperError(Exception):
    """Base class for all dumper errors."""


class ConfigError(DumperError):
    """Invalid or incomplete run configuration."""


class DumperConnectionError(DumperError):
    """A session could not be established or authenticated."""


class QueryError(DumperError):
    """A query failed on the server or while reading its result set."""


class DumpFileError(DumperError):
    """An output file could not be written."""


class UnknownFormatError(ConfigError):
    """The output format selector is not one of sql, csv or tsv."""


class DumpCancelled(DumperError):
    """The run was cancelled while a table dump was in flight."""
