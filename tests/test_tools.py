"""End-to-end tests of the tool layer against real SQLite and DuckDB files."""

import json

import pytest

from mcp_db_adapter.constants import DB_QUERY_TIMEOUT
from mcp_db_adapter.database.adapters.sqlite import SQLiteAdapter
from mcp_db_adapter.errors import (
    ConnectionUnreachableError,
    ExecutionFailureError,
    NotFoundError,
    UnsafeQueryError,
    ValidationFailureError,
)
from mcp_db_adapter.registry import ConnectionRegistry
from mcp_db_adapter.tools import TOOL_NAMES, DatabaseTools


class RecordingSQLiteAdapter(SQLiteAdapter):
    """SQLite adapter that remembers every query it was asked to run."""

    def __init__(self):
        self.executed = []

    def execute_query(self, query, config, timeout=DB_QUERY_TIMEOUT):
        self.executed.append(query)
        return super().execute_query(query, config, timeout)


@pytest.fixture
def recording_adapter() -> RecordingSQLiteAdapter:
    return RecordingSQLiteAdapter()


@pytest.fixture
def recording_tools(recording_adapter, sqlite_path) -> DatabaseTools:
    tools = DatabaseTools(ConnectionRegistry(adapter_factory=lambda engine: recording_adapter))
    tools.add_database("shop", {"type": "sqlite", "file": str(sqlite_path)})
    return tools


@pytest.fixture
def shop_tools(tools, sqlite_path) -> DatabaseTools:
    tools.add_database("shop", {"type": "sqlite", "file": str(sqlite_path)})
    return tools


class TestRegistration:

    def test_add_list_remove(self, tools, sqlite_path, duckdb_path):
        assert tools.add_database("shop", {"type": "sqlite", "file": str(sqlite_path)}) == \
            "Added sqlite database 'shop'"
        assert tools.add_database("lake", {"type": "duckdb", "file": str(duckdb_path)}) == \
            "Added duckdb database 'lake'"
        assert tools.list_databases() == "Configured databases: shop, lake"

        assert tools.remove_database("shop") == "Removed database 'shop'"
        assert tools.list_databases() == "Configured databases: lake"

    def test_list_with_nothing_registered(self, tools):
        with pytest.raises(NotFoundError, match="No databases configured"):
            tools.list_databases()

    def test_missing_file_is_unreachable(self, tools, tmp_path):
        with pytest.raises(ConnectionUnreachableError):
            tools.add_database("ghost", {"type": "sqlite", "file": str(tmp_path / "ghost.db")})
        assert tools.registry.list() == []

    def test_bad_config_is_rejected(self, tools):
        with pytest.raises(ValidationFailureError):
            tools.add_database("bad", {"type": "oracle"})

    def test_remove_unknown(self, tools):
        with pytest.raises(NotFoundError):
            tools.remove_database("nope")


class TestIntrospectSchema:

    def test_returns_json_and_caches(self, shop_tools):
        payload = json.loads(shop_tools.introspect_schema("shop"))
        assert list(payload) == ["main"]
        assert set(payload["main"]["tables"]) == {"customers", "orders"}
        assert payload["main"]["stats"] == {"total_tables": 2, "total_rows": 8}

        assert shop_tools.cached_schema_names() == ["shop"]
        assert json.loads(shop_tools.read_cached_schema("shop")) == payload

    def test_repeated_introspection_is_stable(self, shop_tools):
        first = shop_tools.introspect_schema("shop")
        assert shop_tools.introspect_schema("shop") == first
        assert shop_tools.read_cached_schema("shop") == first

    def test_unknown_database(self, tools):
        with pytest.raises(NotFoundError):
            tools.introspect_schema("nope")

    def test_no_cache_before_introspection(self, shop_tools):
        assert shop_tools.cached_schema_names() == []
        with pytest.raises(NotFoundError, match="No cached schema"):
            shop_tools.read_cached_schema("shop")


class TestSafeExecuteQuery:

    def test_select_is_formatted_with_implicit_limit(self, shop_tools):
        output = shop_tools.safe_execute_query("shop", "SELECT id, name FROM customers ORDER BY id")
        assert "Database: shop" in output
        assert "Query: SELECT id, name FROM customers ORDER BY id LIMIT 100" in output
        assert "Rows returned: 3" in output
        assert '"name": "Alice"' in output

    def test_empty_result(self, shop_tools):
        output = shop_tools.safe_execute_query("shop", "SELECT * FROM customers WHERE id > 99")
        assert "No rows returned" in output

    def test_unsafe_query_never_reaches_the_engine(self, recording_tools, recording_adapter, sqlite_path,
                                                   count_rows):
        recording_adapter.executed.clear()
        with pytest.raises(UnsafeQueryError, match="Query rejected"):
            recording_tools.safe_execute_query("shop", "DELETE FROM customers")
        assert recording_adapter.executed == []
        assert count_rows(sqlite_path, "customers") == 3

    def test_engine_error_is_raised(self, shop_tools):
        with pytest.raises(ExecutionFailureError, match="Query failed"):
            shop_tools.safe_execute_query("shop", "SELECT * FROM invoices")

    def test_stacked_duckdb_statements_write_nothing(self, tools, duckdb_path, tmp_path):
        tools.add_database("lake", {"type": "duckdb", "file": str(duckdb_path), "readonly": True})
        out = tmp_path / "dump.csv"
        with pytest.raises((UnsafeQueryError, ExecutionFailureError)):
            tools.safe_execute_query("lake", f"SELECT '--'; COPY (SELECT * FROM customers) TO '{out}'; SELECT 1 LIMIT 1")
        assert not out.exists()

    def test_unknown_database(self, tools):
        with pytest.raises(NotFoundError):
            tools.safe_execute_query("nope", "SELECT 1")


class TestProfile:

    def test_table_report(self, shop_tools):
        report = shop_tools.profile_table_or_column("shop", "orders")
        assert "EDA PROFILE REPORT: orders (Table)" in report
        assert "Database Engine: SQLITE" in report
        assert "Total Rows: 5" in report
        assert "Small dataset (5 rows)" in report
        assert "QUERY ERRORS" not in report

    def test_column_report(self, shop_tools):
        report = shop_tools.profile_table_or_column("shop", "orders", "status")
        assert "EDA PROFILE REPORT: orders.status" in report
        assert '"paid" - 3 occurrences (60.00%)' in report
        assert "NUMERIC ANALYSIS" not in report

    def test_numeric_column_report(self, shop_tools):
        report = shop_tools.profile_table_or_column("shop", "orders", "amount")
        assert "Mean Value: 25.00" in report
        assert "Standard Deviation: 12.91" in report

    def test_profiling_queries_bypass_the_classifier(self, recording_tools, recording_adapter):
        recording_adapter.executed.clear()
        recording_tools.profile_table_or_column("shop", "customers", "email")
        assert len(recording_adapter.executed) == 5
        assert all("LIMIT 100" not in query for query in recording_adapter.executed)

    def test_unknown_table(self, shop_tools):
        with pytest.raises(NotFoundError, match="Table 'invoices' not found in database 'shop'"):
            shop_tools.profile_table_or_column("shop", "invoices")

    def test_unknown_column(self, shop_tools):
        with pytest.raises(NotFoundError, match="Column 'discount' not found in table 'orders'"):
            shop_tools.profile_table_or_column("shop", "orders", "discount")

    def test_duckdb_report(self, tools, duckdb_path):
        tools.add_database("lake", {"type": "duckdb", "file": str(duckdb_path)})
        report = tools.profile_table_or_column("lake", "orders")
        assert "Database Engine: DUCKDB" in report
        assert "Estimated Size: unknown" in report


class TestDispatch:
    """Name-based dispatch and argument validation."""

    def test_every_tool_is_dispatched(self, shop_tools):
        assert shop_tools.call("list_databases", None) == "Configured databases: shop"
        assert "main" in json.loads(shop_tools.call("introspect_schema", {"name": "shop"}))
        assert "Rows returned: 1" in shop_tools.call(
            "safe_execute_query", {"name": "shop", "query": "SELECT COUNT(*) AS n FROM orders"})
        assert "orders.amount" in shop_tools.call(
            "profile_table_or_column", {"name": "shop", "table": "orders", "column": "amount"})
        assert "(Table)" in shop_tools.call(
            "profile_table_or_column", {"name": "shop", "table": "orders", "column": ""})
        assert shop_tools.call("remove_database", {"name": "shop"}) == "Removed database 'shop'"

    def test_add_database_through_dispatch(self, tools, sqlite_path):
        message = tools.call("add_database", {"name": "shop", "config": {"type": "sqlite", "file": str(sqlite_path)}})
        assert message == "Added sqlite database 'shop'"

    def test_unknown_tool(self, tools):
        with pytest.raises(NotFoundError, match="Unknown tool 'drop_everything'"):
            tools.call("drop_everything", {})

    @pytest.mark.parametrize("name, arguments, missing", [
        ("add_database", {"name": "x"}, "config"),
        ("add_database", {"config": {"type": "duckdb"}}, "name"),
        ("remove_database", {}, "name"),
        ("safe_execute_query", {"name": "shop"}, "query"),
        ("profile_table_or_column", {"name": "shop", "table": ""}, "table"),
    ])
    def test_missing_arguments(self, tools, name, arguments, missing):
        with pytest.raises(ValidationFailureError, match=f"Missing required parameter '{missing}'"):
            tools.call(name, arguments)

    def test_tool_names(self):
        assert TOOL_NAMES == [
            "add_database", "remove_database", "list_databases",
            "introspect_schema", "safe_execute_query", "profile_table_or_column",
        ]
