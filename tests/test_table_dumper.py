"""
Unit tests for table_dumper.py
"""

import threading
from pathlib import Path
from unittest import mock

import pytest
from mysql.connector import errors as mysql_errors
from mysql.connector.constants import FieldType

from parallel_dumper.exceptions import DumperConnectionError
from parallel_dumper.models import DumpConfig, OutputFormat, TableStats
from parallel_dumper.progress import AtomicCounter
from parallel_dumper.table_dumper import TableDumper, encode_sql_value, encode_text_value
from parallel_dumper.utils import unescape_bytes

ID_NAME = [("id", FieldType.LONG), ("name", FieldType.VAR_STRING)]
ANN_BO = [(b"1", b"Ann"), (b"2", b"Bo")]


def make_cursor(columns, rows):
    """Create a mock streaming cursor over ``rows``."""
    cursor = mock.MagicMock()
    cursor.description = [
        (name, type_code, None, None, None, None, 1, 0, 45)
        for name, type_code in columns
    ]
    cursor.__iter__.return_value = iter(rows)
    cursor.fetchall.return_value = list(rows[:1])
    return cursor


def make_connection(columns, rows, data_columns=None):
    """Mock connection returning a probe cursor then a data cursor."""
    conn = mock.MagicMock()
    conn.connection_id = 7
    conn.probe = make_cursor(columns, rows)
    conn.data = make_cursor(data_columns or columns, rows)
    conn.stream_query.side_effect = [conn.probe, conn.data]
    return conn


@pytest.fixture
def outdir(tmp_path):
    return tmp_path


def dump(conn, outdir, **settings):
    config = DumpConfig(outdir=outdir, **settings)
    dumper = TableDumper(conn, config, AtomicCounter(), AtomicCounter())
    return dumper, dumper.dump_table("db", "t")


class TestEncodeValues:
    """Tests for value encoding."""

    def test_null(self):
        assert encode_sql_value(None, True) == b"NULL"
        assert encode_sql_value(None, False) == b"NULL"

    def test_numeric_unquoted(self):
        assert encode_sql_value(b"42", True) == b"42"
        assert encode_sql_value(bytearray(b"3.1400"), True) == b"3.1400"

    def test_non_numeric_quoted(self):
        assert encode_sql_value(b"42", False) == b'"42"'

    def test_special_characters_escaped_losslessly(self):
        raw = b'O"Brien\'s\n\\path\x00\x1a'
        encoded = encode_sql_value(raw, False)
        assert encoded.startswith(b'"') and encoded.endswith(b'"')
        body = encoded[1:-1]
        assert b"\n" not in body
        assert unescape_bytes(body) == raw

    def test_text_value(self):
        assert encode_text_value(None) == "NULL"
        assert encode_text_value(b"Ann") == "Ann"
        assert encode_text_value(b"\xff").encode("utf-8", "surrogateescape") == b"\xff"


class TestSqlFormat:
    """Tests for SQL (multi-row INSERT) output."""

    def test_single_statement(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        _, stats = dump(conn, outdir)

        assert stats.success is True
        assert stats.rows == 2
        assert [Path(f).name for f in stats.files] == ["db.t.00001.sql"]
        content = (outdir / "db.t.00001.sql").read_bytes()
        assert content == b'INSERT INTO `t`(`id`,`name`) VALUES\n(1,"Ann"),\n(2,"Bo");\n'

    def test_statement_rollover_after_one_row(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        _, stats = dump(conn, outdir, stmt_size=1)

        content = (outdir / "db.t.00001.sql").read_bytes()
        assert content == (
            b'INSERT INTO `t`(`id`,`name`) VALUES\n(1,"Ann");\n'
            b'INSERT INTO `t`(`id`,`name`) VALUES\n(2,"Bo");\n'
        )
        assert len(stats.files) == 1

    def test_null_and_numeric_types(self, outdir):
        columns = [("price", FieldType.NEWDECIMAL), ("note", FieldType.BLOB)]
        conn = make_connection(columns, [(b"9.50", None), (None, b"a'b")])
        dump(conn, outdir)

        content = (outdir / "db.t.00001.sql").read_bytes()
        assert b"(9.50,NULL)" in content
        assert b"(NULL,\"a\\'b\")" in content

    def test_bit_column_quoted(self, outdir):
        columns = [("id", FieldType.LONG), ("flag", FieldType.BIT)]
        conn = make_connection(columns, [(b"1", b"\x01")])
        dump(conn, outdir)

        content = (outdir / "db.t.00001.sql").read_bytes()
        assert content == b'INSERT INTO `t`(`id`,`flag`) VALUES\n(1,"\x01");\n'

    def test_chunk_rollover(self, outdir):
        big = b"x" * 600000
        rows = [(b"1", big), (b"2", big), (b"3", big)]
        conn = make_connection(ID_NAME, rows)
        _, stats = dump(conn, outdir, chunksize_in_mb=1)

        names = [Path(f).name for f in stats.files]
        assert names == ["db.t.00001.sql", "db.t.00002.sql"]

        first = (outdir / "db.t.00001.sql").read_bytes()
        second = (outdir / "db.t.00002.sql").read_bytes()
        assert first.count(b"INSERT INTO") == 1
        assert first.startswith(b"INSERT INTO `t`(`id`,`name`) VALUES\n(1,")
        assert first.endswith(b");\n")
        assert second.startswith(b"INSERT INTO `t`(`id`,`name`) VALUES\n(3,")
        assert second.endswith(b");\n")

        limit = 1024 * 1024
        for path in (outdir / "db.t.00001.sql", outdir / "db.t.00002.sql"):
            assert path.stat().st_size <= limit + 600100

    def test_chunk_closes_pending_statement(self, outdir):
        big = b"x" * 600000
        rows = [(b"1", big), (b"2", big), (b"3", b"y")]
        conn = make_connection(ID_NAME, rows)
        # Statement threshold above the chunk size, rollover must still emit
        # complete statements
        dump(conn, outdir, chunksize_in_mb=1, stmt_size=10 * 1024 * 1024)

        first = (outdir / "db.t.00001.sql").read_bytes()
        second = (outdir / "db.t.00002.sql").read_bytes()
        assert first.count(b"),\n(") == 1
        assert first.endswith(b");\n")
        assert second == b'INSERT INTO `t`(`id`,`name`) VALUES\n(3,"y");\n'

    def test_empty_table_writes_no_file(self, outdir):
        conn = make_connection(ID_NAME, [])
        _, stats = dump(conn, outdir)

        assert stats.success is True
        assert stats.files == []
        assert not list(outdir.glob("db.t.*.sql"))

    def test_row_order_preserved(self, outdir):
        rows = [(str(i).encode(), b"n") for i in range(50)]
        conn = make_connection(ID_NAME, rows)
        dump(conn, outdir, stmt_size=30)

        content = (outdir / "db.t.00001.sql").read_bytes()
        positions = [content.index(f"({i},".encode()) for i in range(50)]
        assert positions == sorted(positions)

    def test_numeric_classification_comes_from_data_query(self, outdir):
        # A replacement expression may change a column's type
        data_columns = [("id", FieldType.LONG), ("name", FieldType.LONGLONG)]
        conn = make_connection(ID_NAME, [(b"1", b"5")], data_columns=data_columns)
        dump(conn, outdir, selects={"t": {"name": "LENGTH(name)"}})

        assert b"(1,5)" in (outdir / "db.t.00001.sql").read_bytes()


class TestDelimitedFormat:
    """Tests for CSV/TSV output."""

    def test_csv(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        _, stats = dump(conn, outdir, output_format=OutputFormat.CSV)

        assert [Path(f).name for f in stats.files] == ["db.t.00001.csv"]
        assert (outdir / "db.t.00001.csv").read_text() == "id,name\n1,Ann\n2,Bo\n"

    def test_tsv_uses_csv_extension(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        dump(conn, outdir, output_format=OutputFormat.TSV)

        assert (outdir / "db.t.00001.csv").read_text() == "id\tname\n1\tAnn\n2\tBo\n"

    def test_null_written_as_literal(self, outdir):
        conn = make_connection(ID_NAME, [(b"1", None)])
        dump(conn, outdir, output_format=OutputFormat.CSV)

        assert (outdir / "db.t.00001.csv").read_text() == "id,name\n1,NULL\n"

    def test_empty_table_writes_header(self, outdir):
        conn = make_connection(ID_NAME, [])
        dump(conn, outdir, output_format=OutputFormat.CSV)

        assert (outdir / "db.t.00001.csv").read_text() == "id,name\n"

    def test_chunk_rollover_repeats_header(self, outdir):
        big = b"x" * 600000
        rows = [(b"1", big), (b"2", big), (b"3", b"y")]
        conn = make_connection(ID_NAME, rows)
        _, stats = dump(conn, outdir, output_format=OutputFormat.CSV, chunksize_in_mb=1)

        assert [Path(f).name for f in stats.files] == ["db.t.00001.csv", "db.t.00002.csv"]
        first = (outdir / "db.t.00001.csv").read_text().splitlines()
        second = (outdir / "db.t.00002.csv").read_text().splitlines()
        assert first[0] == "id,name"
        assert len(first) == 3
        assert second == ["id,name", "3,y"]

    def test_rollover_on_last_row_leaves_no_empty_file(self, outdir):
        big = b"x" * 600000
        conn = make_connection(ID_NAME, [(b"1", big), (b"2", big)])
        _, stats = dump(conn, outdir, output_format=OutputFormat.CSV, chunksize_in_mb=1)

        assert [Path(f).name for f in stats.files] == ["db.t.00001.csv"]
        assert not (outdir / "db.t.00002.csv").exists()


class TestColumnRules:
    """Tests for column filters, replacements and WHERE overrides."""

    COLUMNS = [("id", FieldType.LONG), ("name", FieldType.VAR_STRING), ("secret", FieldType.VAR_STRING)]

    def test_probe_query(self, outdir):
        conn = make_connection(self.COLUMNS, [])
        dump(conn, outdir)

        assert conn.stream_query.call_args_list[0] == mock.call("SELECT * FROM `db`.`t` LIMIT 1")
        assert conn.stream_query.call_args_list[1] == mock.call(
            "SELECT `id`, `name`, `secret` FROM `db`.`t`"
        )

    def test_excluded_column_absent(self, outdir):
        rows = [(b"1", b"Ann")]
        conn = make_connection(self.COLUMNS, rows, data_columns=ID_NAME)
        dump(conn, outdir, filters={"t": frozenset({"secret"})}, output_format=OutputFormat.CSV)

        assert conn.stream_query.call_args_list[1] == mock.call("SELECT `id`, `name` FROM `db`.`t`")
        header = (outdir / "db.t.00001.csv").read_text().splitlines()[0]
        assert header == "id,name"

    def test_filters_for_other_table_ignored(self, outdir):
        conn = make_connection(self.COLUMNS, [])
        dump(conn, outdir, filters={"other": frozenset({"secret"})})

        assert "`secret`" in conn.stream_query.call_args_list[1].args[0]

    def test_replacement_expression(self, outdir):
        conn = make_connection(self.COLUMNS, [])
        dump(conn, outdir, selects={"t": {"secret": "'***'"}})

        assert conn.stream_query.call_args_list[1] == mock.call(
            "SELECT `id`, `name`, '***' AS `secret` FROM `db`.`t`"
        )

    def test_where_override(self, outdir):
        conn = make_connection(self.COLUMNS, [])
        dump(conn, outdir, wheres={"t": "id > 10"})

        assert conn.stream_query.call_args_list[1].args[0].endswith(" WHERE id > 10")


class TestAccountingAndCleanup:
    """Tests for counters, cursor cleanup and failures."""

    def test_counters_updated(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        dumper, stats = dump(conn, outdir)

        expected = len(b'(1,"Ann")') + len(b'(2,"Bo")')
        assert dumper.all_rows.value == 2
        assert dumper.all_bytes.value == expected
        assert stats.bytes == expected
        assert stats.connection_id == 7

    def test_cursors_closed(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        dump(conn, outdir)

        conn.probe.close.assert_called_once()
        conn.data.close.assert_called_once()

    def test_success_keeps_session(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        dump(conn, outdir)

        conn.reset.assert_not_called()

    def test_cursor_error_resets_session(self, outdir):
        conn = make_connection(ID_NAME, [])

        def lost_connection():
            yield (b"1", b"Ann")
            raise mysql_errors.OperationalError("Lost connection")

        conn.data.__iter__.return_value = lost_connection()
        _, stats = dump(conn, outdir)

        assert isinstance(stats, TableStats)
        assert stats.success is False
        assert "Lost connection" in stats.error
        conn.probe.close.assert_called_once()
        # Closing the data cursor would read the rest of the result set
        conn.data.close.assert_not_called()
        conn.reset.assert_called_once()

    def test_probe_error_resets_session(self, outdir):
        conn = make_connection(ID_NAME, [])
        conn.probe.fetchall.side_effect = mysql_errors.ProgrammingError("no such table")
        _, stats = dump(conn, outdir)

        assert stats.success is False
        assert conn.stream_query.call_count == 1
        conn.reset.assert_called_once()

    def test_cancelled_stops_without_draining(self, outdir):
        conn = make_connection(ID_NAME, ANN_BO)
        cancel = threading.Event()
        cancel.set()
        dumper = TableDumper(conn, DumpConfig(outdir=outdir), cancel=cancel)
        stats = dumper.dump_table("db", "t")

        assert stats.success is False
        assert "cancelled" in stats.error
        assert stats.rows == 0
        conn.data.close.assert_not_called()
        conn.reset.assert_called_once()

    def test_failed_reset_still_reports_table_error(self, outdir):
        conn = make_connection(ID_NAME, [])
        conn.probe.fetchall.side_effect = mysql_errors.ProgrammingError("no such table")
        conn.reset.side_effect = DumperConnectionError("refused")
        _, stats = dump(conn, outdir)

        assert stats.success is False
        assert "no such table" in stats.error

    def test_unwritable_directory(self, tmp_path):
        conn = make_connection(ID_NAME, ANN_BO)
        _, stats = dump(conn, tmp_path / "missing")

        assert stats.success is False
        assert "cannot write" in stats.error
