"""DuckDB database adapter implementation."""

import logging
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any, Iterator, Optional

import duckdb

from .base import DatabaseAdapter
from ..connection import MULTIPLE_STATEMENTS_ERROR, run_with_timeout
from ..logging import QueryTimer, log_connection, log_query_execution, log_schema_introspection
from ..safety import SafetyPolicy
from ...constants import (
    DB_QUERY_TIMEOUT,
    DEFAULT_DUCKDB_SCHEMA_NAME,
    SAMPLE_ROWS,
    TOP_VALUES_LIMIT,
)
from ...errors import ExecutionFailureError
from ...models import (
    ColumnDescriptor,
    DuckDBConfig,
    QueryResult,
    ResultColumn,
    SchemaSnapshot,
    SchemaStats,
    TableDescriptor,
    TableStats,
)

logger = logging.getLogger(__name__)

DUCKDB_SAFETY_POLICY = SafetyPolicy(
    engine="duckdb",
    dangerous_patterns=(
        # File operations
        r"\bcopy\b.*\bto\b",
        r"\bexport\b",
        r"\binstall\b",
        r"\bload\b",
        r"\bread_text\b",
        r"\bread_blob\b",
        # Extension loading
        r"\bload\s+extension\b",
        # Python/R integration (if extensions loaded)
        r"\bpython\b",
        r"\br\b\s*\(",
        # Attach/detach databases
        r"\battach\b",
        r"\bdetach\b",
        # Pragmas that change engine settings
        r"\bpragma\b.*\benabled?\b",
        r"\bpragma\b.*\bthreads\b",
        r"\bpragma\b.*\bmemory_limit\b",
    ),
    dangerous_keywords=(
        "set",
        "reset",
        "create_secret",
        "drop_secret",
        "attach",
    ),
    max_nested_paren_depth=15,
)

_TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = ?
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_COLUMNS_QUERY = """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = ? AND table_name = ?
    ORDER BY ordinal_position
"""

_CONSTRAINTS_QUERY = """
    SELECT constraint_type, constraint_column_names
    FROM duckdb_constraints()
    WHERE schema_name = ?
      AND table_name = ?
      AND constraint_type IN ('PRIMARY KEY', 'FOREIGN KEY')
"""


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class DuckDBAdapter(DatabaseAdapter):
    """DuckDB database adapter with read-only enforcement."""

    engine = "duckdb"
    sql_dialect = "duckdb"
    safety_policy = DUCKDB_SAFETY_POLICY

    @contextmanager
    def _connect(self, config: DuckDBConfig, read_only: bool = True, external_access: bool = True,
                 probe: bool = False) -> Iterator[duckdb.DuckDBPyConnection]:
        """Open a connection and always close it on exit.

        File databases are opened read-only unless told otherwise; an
        in-memory database cannot be, and nothing in it outlives the call.
        Without external access the connection cannot read or write files
        other than the database itself, attach databases or load extensions.
        """
        options = dict(config.config)
        if not external_access:
            options["enable_external_access"] = False

        if not config.in_memory and not Path(config.path).expanduser().exists():
            # duckdb.connect() would silently create the file
            error_msg = f"Database file not found: {config.path}"
            log_connection(config.dsn, success=False, error=error_msg, probe=probe)
            raise ExecutionFailureError(
                f"Failed to connect to DuckDB database\n"
                f"  Error: {error_msg}\n"
                f"  Hint: Provide the path of an existing DuckDB file or omit 'file' for in-memory"
            )

        timer = QueryTimer()
        try:
            with timer:
                connection = duckdb.connect(
                    database=config.path if config.in_memory else str(Path(config.path).expanduser()),
                    read_only=read_only and not config.in_memory,
                    config=options,
                )
        except duckdb.Error as e:
            log_connection(config.dsn, success=False, error=str(e), duration=timer.duration, probe=probe)
            raise ExecutionFailureError(
                f"Failed to connect to DuckDB database\n"
                f"  Error: {e}\n"
                f"  Hint: Check the file is a DuckDB database and not locked by a writer\n"
                f"  File: {config.path}"
            ) from e

        log_connection(config.dsn, success=True, duration=timer.duration, probe=probe)
        try:
            yield connection
        finally:
            try:
                connection.close()
            except duckdb.Error as e:
                logger.warning(f"Error closing DuckDB connection: {e}")

    def check_reachability(self, config: DuckDBConfig) -> bool:
        """Open the database and run ``SELECT 1``."""
        try:
            with self._connect(config, read_only=config.readonly, probe=True) as connection:
                connection.execute("SELECT 1 AS test").fetchall()
            return True
        except Exception as e:
            logger.warning(f"DuckDB handshake failed for {config.path}: {e}")
            return False

    def fetch_schemas(self, config: DuckDBConfig) -> dict[str, SchemaSnapshot]:
        return {DEFAULT_DUCKDB_SCHEMA_NAME: self.fetch_schema(config)}

    def fetch_schema(self, config: DuckDBConfig) -> SchemaSnapshot:
        timer = QueryTimer()
        try:
            with timer, self._connect(config) as connection:
                table_names = [
                    row[0] for row in connection.execute(_TABLES_QUERY, [DEFAULT_DUCKDB_SCHEMA_NAME]).fetchall()
                ]
                tables = {name: self._describe_table(connection, name) for name in table_names}
        except duckdb.Error as e:
            raise ExecutionFailureError(
                f"Failed to introspect DuckDB schema\n"
                f"  Error: {e}\n"
                f"  File: {config.path}"
            ) from e

        log_schema_introspection(config.dsn, DEFAULT_DUCKDB_SCHEMA_NAME, len(tables), timer.duration)
        return SchemaSnapshot(
            name=DEFAULT_DUCKDB_SCHEMA_NAME,
            tables=tables,
            stats=SchemaStats(
                total_tables=len(tables),
                total_rows=sum(table.stats.row_count for table in tables.values()),
            ),
        )

    def _describe_table(self, connection: duckdb.DuckDBPyConnection, table: str) -> TableDescriptor:
        primary_keys: set[str] = set()
        foreign_keys: set[str] = set()
        constraints = connection.execute(_CONSTRAINTS_QUERY, [DEFAULT_DUCKDB_SCHEMA_NAME, table]).fetchall()
        for constraint_type, column_names in constraints:
            target = primary_keys if constraint_type == "PRIMARY KEY" else foreign_keys
            target.update(column_names or [])

        columns = [
            ColumnDescriptor(
                name=name,
                data_type=data_type.upper(),
                nullable=is_nullable == "YES",
                default=str(default) if default is not None else None,
                is_primary_key=name in primary_keys,
                is_foreign_key=name in foreign_keys,
            )
            for name, data_type, is_nullable, default in connection.execute(
                _COLUMNS_QUERY, [DEFAULT_DUCKDB_SCHEMA_NAME, table]
            ).fetchall()
        ]
        row_count = connection.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()[0]
        # DuckDB exposes no per-table byte size, only database-wide block counts
        return TableDescriptor(name=table, columns=columns, stats=TableStats(row_count=row_count))

    def execute_query(self, query: str, config: DuckDBConfig, timeout: float = DB_QUERY_TIMEOUT) -> QueryResult:
        """Execute read-only query, racing it against the timeout."""
        timer = QueryTimer()
        try:
            # connection.sql() would run every statement of a stacked query
            if len(duckdb.extract_statements(query)) > 1:
                raise ExecutionFailureError(MULTIPLE_STATEMENTS_ERROR)
            with timer, self._connect(config, external_access=False) as connection:
                rows, columns = run_with_timeout(
                    partial(self._run, connection, query),
                    timeout,
                    connection.interrupt,
                )
        except duckdb.Error as e:
            error_msg = f"DuckDB error: {e}"
            log_query_execution(query=query, dsn=config.dsn, success=False, error=error_msg,
                                duration=timer.duration)
            return QueryResult.failure(error_msg)
        except ExecutionFailureError as e:
            log_query_execution(query=query, dsn=config.dsn, success=False, error=str(e),
                                duration=timer.duration)
            return QueryResult.failure(str(e))

        log_query_execution(query=query, dsn=config.dsn, success=True, row_count=len(rows),
                            duration=timer.duration)
        return QueryResult.ok(rows, columns)

    def _run(self, connection: duckdb.DuckDBPyConnection, query: str) -> tuple[list[dict[str, Any]], list[ResultColumn]]:
        relation = connection.sql(query)
        if relation is None:
            # Statements without a result set
            return [], []
        names = relation.columns
        columns = [ResultColumn(name=name, type=str(dtype)) for name, dtype in zip(names, relation.types)]
        rows = [dict(zip(names, values)) for values in relation.fetchall()]
        return rows, columns

    def _scalar(self, config: DuckDBConfig, sql: str, params: list) -> Any:
        try:
            with self._connect(config) as connection:
                return connection.execute(sql, params).fetchone()[0]
        except duckdb.Error as e:
            raise ExecutionFailureError(f"DuckDB catalog query failed\n  Error: {e}") from e

    def table_exists(self, config: DuckDBConfig, table: str) -> bool:
        return self._scalar(
            config,
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = ? AND table_name = ?",
            [DEFAULT_DUCKDB_SCHEMA_NAME, table],
        ) > 0

    def column_exists(self, config: DuckDBConfig, table: str, column: str) -> bool:
        return self._scalar(
            config,
            "SELECT COUNT(*) FROM information_schema.columns "
            "WHERE table_schema = ? AND table_name = ? AND column_name = ?",
            [DEFAULT_DUCKDB_SCHEMA_NAME, table, column],
        ) > 0

    def generate_profiling_queries(self, table: str, column: Optional[str] = None) -> dict[str, str]:
        t = quote_identifier(table)
        queries: dict[str, str] = {}

        if column:
            c = quote_identifier(column)
            as_double = f"TRY_CAST(CAST({c} AS VARCHAR) AS DOUBLE)"
            queries["basic_stats"] = f"""
                SELECT
                    COUNT(*) AS total_count,
                    COUNT({c}) AS non_null_count,
                    COUNT(*) - COUNT({c}) AS null_count,
                    COUNT(DISTINCT {c}) AS distinct_count,
                    CAST(COUNT(DISTINCT {c}) AS DOUBLE) / NULLIF(COUNT(*), 0) AS uniqueness_ratio
                FROM {t}
            """
            queries["numeric_stats"] = f"""
                SELECT
                    MIN({as_double}) AS min_value,
                    MAX({as_double}) AS max_value,
                    AVG({as_double}) AS mean_value,
                    STDDEV_SAMP({as_double}) AS std_dev
                FROM {t}
                WHERE {as_double} IS NOT NULL
            """
            queries["top_values"] = f"""
                SELECT
                    {c} AS value,
                    COUNT(*) AS frequency,
                    CAST(COUNT(*) AS DOUBLE) / (SELECT COUNT(*) FROM {t}) AS percentage
                FROM {t}
                WHERE {c} IS NOT NULL
                GROUP BY {c}
                ORDER BY frequency DESC
                LIMIT {TOP_VALUES_LIMIT}
            """
            queries["data_quality"] = f"""
                SELECT
                    CASE
                        WHEN {c} IS NULL THEN 'NULL'
                        WHEN TRIM(CAST({c} AS VARCHAR)) = '' THEN 'EMPTY'
                        ELSE 'VALID'
                    END AS data_status,
                    COUNT(*) AS count
                FROM {t}
                GROUP BY 1
                ORDER BY 1
            """
            queries["string_analysis"] = f"""
                SELECT
                    MIN(LENGTH(CAST({c} AS VARCHAR))) AS min_length,
                    MAX(LENGTH(CAST({c} AS VARCHAR))) AS max_length,
                    AVG(LENGTH(CAST({c} AS VARCHAR))) AS avg_length
                FROM {t}
                WHERE {c} IS NOT NULL
            """
        else:
            queries["table_overview"] = f"SELECT COUNT(*) AS total_rows FROM {t}"
            queries["sample_data"] = f"SELECT * FROM {t} LIMIT {SAMPLE_ROWS}"
            queries["table_data_summary"] = f"""
                SELECT
                    COUNT(*) AS total_rows,
                    CAST(NULL AS DOUBLE) AS size_mb
                FROM {t}
            """
            queries["table_statistics"] = f"""
                SELECT
                    table_name,
                    column_count,
                    (SELECT COUNT(*) FROM {t}) AS row_count
                FROM duckdb_tables()
                WHERE schema_name = {quote_literal(DEFAULT_DUCKDB_SCHEMA_NAME)}
                  AND table_name = {quote_literal(table)}
            """

        return queries
