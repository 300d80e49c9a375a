"""Tests for the MySQL and PostgreSQL adapters with mocked drivers.

No server is needed: the driver's connect function is replaced, so these
tests cover the session setup, cleanup and error policy of each adapter.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, call

import psycopg2
import psycopg2.errors
import pymysql
import pytest
from pymysql.constants import FIELD_TYPE

from mcp_db_adapter.database.adapters import create_adapter
from mcp_db_adapter.database.adapters import mysql as mysql_module
from mcp_db_adapter.database.adapters import postgresql as postgresql_module
from mcp_db_adapter.database.adapters.mysql import MySQLAdapter
from mcp_db_adapter.database.adapters.postgresql import PostgreSQLAdapter
from mcp_db_adapter.models import MySQLConfig, PostgreSQLConfig


def fake_connection():
    """Connection mock whose cursor() works as a context manager."""
    connection = MagicMock()
    cursor = MagicMock()
    connection.cursor.return_value.__enter__.return_value = cursor
    return connection, cursor


@pytest.fixture
def mysql_config() -> MySQLConfig:
    return MySQLConfig(host="db.internal", user="reader", password="s3cret", database="shop")


@pytest.fixture
def postgresql_config() -> PostgreSQLConfig:
    return PostgreSQLConfig(host="db.internal", user="reader", password="s3cret", database="shop")


class TestMySQLAdapter:

    def test_factory(self):
        assert isinstance(create_adapter("mysql"), MySQLAdapter)

    def test_unreachable_server(self, monkeypatch, mysql_config):
        monkeypatch.setattr(mysql_module.pymysql, "connect",
                            MagicMock(side_effect=pymysql.err.OperationalError(2003, "Can't connect")))
        assert MySQLAdapter().check_reachability(mysql_config) is False

    def test_reachable_server_uses_short_timeout(self, monkeypatch, mysql_config):
        connection, cursor = fake_connection()
        connect = MagicMock(return_value=connection)
        monkeypatch.setattr(mysql_module.pymysql, "connect", connect)

        assert MySQLAdapter().check_reachability(mysql_config) is True
        assert connect.call_args.kwargs["connect_timeout"] == 5
        cursor.execute.assert_any_call("SELECT 1")
        connection.close.assert_called_once()

    def test_execute_query_sets_read_only_session(self, monkeypatch, mysql_config):
        connection, cursor = fake_connection()
        cursor.fetchall.return_value = [{"id": 1, "name": "Alice"}]
        cursor.description = [("id", FIELD_TYPE.LONG), ("name", FIELD_TYPE.VAR_STRING)]
        monkeypatch.setattr(mysql_module.pymysql, "connect", MagicMock(return_value=connection))

        result = MySQLAdapter().execute_query("SELECT id, name FROM customers", mysql_config)

        assert result.success
        assert result.rows == [{"id": 1, "name": "Alice"}]
        assert [(column.name, column.type) for column in result.columns] == [("id", "LONG"), ("name", "VAR_STRING")]
        assert cursor.execute.call_args_list[:2] == [
            call("SET SESSION TRANSACTION READ ONLY"),
            call("SELECT id, name FROM customers"),
        ]
        connection.rollback.assert_called_once()
        connection.close.assert_called_once()

    def test_execute_query_error_is_tagged_and_connection_closed(self, monkeypatch, mysql_config):
        connection, cursor = fake_connection()
        cursor.execute.side_effect = [None, pymysql.err.ProgrammingError(1146, "Table 'shop.nope' doesn't exist")]
        monkeypatch.setattr(mysql_module.pymysql, "connect", MagicMock(return_value=connection))

        result = MySQLAdapter().execute_query("SELECT * FROM nope", mysql_config)

        assert not result.success
        assert "MySQL query execution failed" in result.error
        connection.close.assert_called_once()

    def test_connect_failure_is_tagged(self, monkeypatch, mysql_config):
        monkeypatch.setattr(mysql_module.pymysql, "connect",
                            MagicMock(side_effect=pymysql.err.OperationalError(1045, "Access denied")))
        result = MySQLAdapter().execute_query("SELECT 1", mysql_config)
        assert not result.success
        assert "Failed to connect to MySQL database" in result.error
        assert "s3cret" not in result.error

    def test_profiling_queries_use_backticks(self):
        queries = MySQLAdapter().generate_profiling_queries("order`s", "amount")
        assert set(queries) == {"basic_stats", "numeric_stats", "top_values", "data_quality", "string_analysis"}
        assert "`order``s`" in queries["basic_stats"]
        assert "STDDEV_SAMP" in queries["numeric_stats"]
        assert "CHAR_LENGTH" in queries["string_analysis"]

    def test_table_profile_reads_size_from_information_schema(self):
        queries = MySQLAdapter().generate_profiling_queries("orders")
        assert set(queries) == {"table_overview", "sample_data", "table_data_summary", "table_statistics"}
        assert "DATA_LENGTH + INDEX_LENGTH" in queries["table_data_summary"]
        assert "TABLE_SCHEMA = DATABASE()" in queries["table_statistics"]
        assert queries["sample_data"].endswith("LIMIT 5")

    def test_literals_are_escaped(self):
        assert mysql_module.quote_literal("it's") == "'it\\'s'"


class TestPostgreSQLAdapter:

    def test_factory(self):
        assert isinstance(create_adapter("postgresql"), PostgreSQLAdapter)

    def test_unreachable_server(self, monkeypatch, postgresql_config):
        monkeypatch.setattr(postgresql_module.psycopg2, "connect",
                            MagicMock(side_effect=psycopg2.OperationalError("could not connect")))
        assert PostgreSQLAdapter().check_reachability(postgresql_config) is False

    def test_execute_query_sets_read_only_session(self, monkeypatch, postgresql_config):
        connection, cursor = fake_connection()
        cursor.fetchall.return_value = [{"id": 1}]
        cursor.description = [SimpleNamespace(name="id", type_code=987654321)]
        connect = MagicMock(return_value=connection)
        monkeypatch.setattr(postgresql_module.psycopg2, "connect", connect)

        result = PostgreSQLAdapter().execute_query("SELECT id FROM customers", postgresql_config, timeout=2.0)

        assert result.success
        assert result.rows == [{"id": 1}]
        assert [(column.name, column.type) for column in result.columns] == [("id", "VARCHAR")]
        assert cursor.execute.call_args_list[0] == call("SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY")
        assert "statement_timeout=" in connect.call_args.kwargs["options"]
        connection.rollback.assert_called_once()
        connection.close.assert_called_once()

    def test_read_only_violation_gets_a_hint(self, monkeypatch, postgresql_config):
        connection, cursor = fake_connection()
        cursor.execute.side_effect = [None, psycopg2.errors.ReadOnlySqlTransaction("cannot execute INSERT")]
        monkeypatch.setattr(postgresql_module.psycopg2, "connect", MagicMock(return_value=connection))

        result = PostgreSQLAdapter().execute_query("INSERT INTO t VALUES (1)", postgresql_config)

        assert not result.success
        assert "READ ONLY" in result.error
        connection.close.assert_called_once()

    def test_sql_error_is_tagged(self, monkeypatch, postgresql_config):
        connection, cursor = fake_connection()
        cursor.execute.side_effect = [None, psycopg2.errors.UndefinedTable('relation "nope" does not exist')]
        monkeypatch.setattr(postgresql_module.psycopg2, "connect", MagicMock(return_value=connection))

        result = PostgreSQLAdapter().execute_query("SELECT * FROM nope", postgresql_config)

        assert not result.success
        assert result.error.startswith("PostgreSQL error:")

    def test_stacked_statements_never_reach_the_server(self, monkeypatch, postgresql_config):
        connect = MagicMock()
        monkeypatch.setattr(postgresql_module.psycopg2, "connect", connect)

        result = PostgreSQLAdapter().execute_query(
            "SELECT '--'; COPY (SELECT 1) TO '/tmp/out.csv'; SELECT 1 LIMIT 1", postgresql_config)

        assert not result.success
        assert "Multiple statements are not allowed" in result.error
        connect.assert_not_called()

    def test_semicolon_inside_literal_is_one_statement(self, monkeypatch, postgresql_config):
        connection, cursor = fake_connection()
        cursor.fetchall.return_value = [{"s": ";"}]
        cursor.description = [SimpleNamespace(name="s", type_code=987654321)]
        monkeypatch.setattr(postgresql_module.psycopg2, "connect", MagicMock(return_value=connection))

        result = PostgreSQLAdapter().execute_query("SELECT ';' AS s;", postgresql_config)

        assert result.success
        assert result.rows == [{"s": ";"}]

    def test_only_public_schema_is_exposed(self, monkeypatch, postgresql_config):
        adapter = PostgreSQLAdapter()
        snapshot = MagicMock()
        monkeypatch.setattr(adapter, "fetch_schema", MagicMock(return_value=snapshot))
        assert adapter.fetch_schemas(postgresql_config) == {"public": snapshot}

    def test_profiling_queries(self):
        queries = PostgreSQLAdapter().generate_profiling_queries("orders", "amount")
        assert '"amount"' in queries["basic_stats"]
        assert "DOUBLE PRECISION" in queries["numeric_stats"]
        assert "~ '" in queries["numeric_stats"]

        table_queries = PostgreSQLAdapter().generate_profiling_queries("orders")
        assert "pg_total_relation_size" in table_queries["table_data_summary"]
        assert "table_schema = 'public'" in table_queries["table_statistics"]


class TestDsn:

    def test_password_never_appears_in_dsn(self, mysql_config, postgresql_config):
        assert mysql_config.dsn == "mysql://reader@db.internal:3306/shop"
        assert postgresql_config.dsn == "postgresql://reader@db.internal:5432/shop"
