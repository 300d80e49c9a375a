"""SQLite database adapter implementation."""

import logging
import math
import sqlite3
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any, Iterator, Optional

from .base import DatabaseAdapter
from ..connection import run_with_timeout, size_in_mb
from ..logging import QueryTimer, log_connection, log_query_execution, log_schema_introspection
from ..safety import SafetyPolicy
from ...constants import (
    DB_CONNECT_TIMEOUT,
    DB_PROBE_TIMEOUT,
    DB_QUERY_TIMEOUT,
    DEFAULT_SQLITE_SCHEMA_NAME,
    GENERIC_COLUMN_TYPE,
    IN_MEMORY_DATABASE,
    SAMPLE_ROWS,
    TOP_VALUES_LIMIT,
)
from ...errors import ExecutionFailureError
from ...models import (
    ColumnDescriptor,
    QueryResult,
    ResultColumn,
    SchemaSnapshot,
    SchemaStats,
    SQLiteConfig,
    TableDescriptor,
    TableStats,
)

logger = logging.getLogger(__name__)

SQLITE_SAFETY_POLICY = SafetyPolicy(
    engine="sqlite",
    dangerous_patterns=(
        # Attach/detach other database files
        r"\battach\b",
        r"\bdetach\b",
        # Extension loading and file access helpers
        r"\bload_extension\b",
        r"\breadfile\b",
        r"\bwritefile\b",
        r"\bfts3_tokenizer\b",
        # Pragmas and maintenance
        r"\bpragma\b",
        r"\bvacuum\b",
    ),
    dangerous_keywords=(
        "pragma",
        "attach",
        "detach",
        "randomblob",
        "zeroblob",
    ),
    max_nested_paren_depth=10,
)

_TABLES_QUERY = """
    SELECT name
    FROM sqlite_master
    WHERE type = 'table'
      AND name NOT LIKE 'sqlite_%'
    ORDER BY name
"""


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class _SampleStdDev:
    """STDDEV aggregate; SQLite ships no standard deviation function."""

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0

    def step(self, value):
        if value is None:
            return
        x = float(value)
        self.count += 1
        delta = x - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (x - self.mean)

    def finalize(self):
        if self.count < 2:
            return None
        return math.sqrt(self.m2 / (self.count - 1))


class SQLiteAdapter(DatabaseAdapter):
    """SQLite database adapter with read-only enforcement."""

    engine = "sqlite"
    sql_dialect = "sqlite"
    safety_policy = SQLITE_SAFETY_POLICY

    @contextmanager
    def _connect(
        self,
        config: SQLiteConfig,
        timeout: float = DB_CONNECT_TIMEOUT,
        mode: str = "ro",
        probe: bool = False,
    ) -> Iterator[sqlite3.Connection]:
        """Open a connection and always close it on exit.

        File databases are opened through a URI so a missing file fails
        instead of being created.
        """
        timer = QueryTimer()
        try:
            with timer:
                if config.in_memory:
                    connection = sqlite3.connect(IN_MEMORY_DATABASE, timeout=timeout, check_same_thread=False)
                else:
                    uri = f"{Path(config.file).expanduser().resolve().as_uri()}?mode={mode}"
                    connection = sqlite3.connect(uri, timeout=timeout, uri=True, check_same_thread=False)
        except sqlite3.Error as e:
            log_connection(config.dsn, success=False, error=str(e), duration=timer.duration, probe=probe)
            raise ExecutionFailureError(
                f"Failed to connect to SQLite database\n"
                f"  Error: {e}\n"
                f"  Hint: Check that the file exists and is readable\n"
                f"  File: {config.file}"
            ) from e

        log_connection(config.dsn, success=True, duration=timer.duration, probe=probe)
        try:
            connection.row_factory = sqlite3.Row
            # Defense in depth: the connection refuses every write
            connection.execute("PRAGMA query_only = ON")
            connection.create_aggregate("stddev", 1, _SampleStdDev)
            yield connection
        finally:
            try:
                connection.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing SQLite connection: {e}")

    def check_reachability(self, config: SQLiteConfig) -> bool:
        """Open the file and run ``PRAGMA quick_check``."""
        mode = "ro" if config.readonly else "rw"
        try:
            with self._connect(config, timeout=DB_PROBE_TIMEOUT, mode=mode, probe=True) as connection:
                row = connection.execute("PRAGMA quick_check").fetchone()
            return row is not None and row[0] == "ok"
        except Exception as e:
            logger.warning(f"SQLite handshake failed for {config.file}: {e}")
            return False

    def fetch_schemas(self, config: SQLiteConfig) -> dict[str, SchemaSnapshot]:
        return {DEFAULT_SQLITE_SCHEMA_NAME: self.fetch_schema(config)}

    def fetch_schema(self, config: SQLiteConfig) -> SchemaSnapshot:
        timer = QueryTimer()
        try:
            with timer, self._connect(config) as connection:
                table_names = [row["name"] for row in connection.execute(_TABLES_QUERY)]
                tables = {name: self._describe_table(connection, name) for name in table_names}
        except sqlite3.Error as e:
            raise ExecutionFailureError(
                f"Failed to introspect SQLite schema\n"
                f"  Error: {e}\n"
                f"  File: {config.file}"
            ) from e

        log_schema_introspection(config.dsn, DEFAULT_SQLITE_SCHEMA_NAME, len(tables), timer.duration)
        return SchemaSnapshot(
            name=DEFAULT_SQLITE_SCHEMA_NAME,
            tables=tables,
            stats=SchemaStats(
                total_tables=len(tables),
                total_rows=sum(table.stats.row_count for table in tables.values()),
            ),
        )

    def _describe_table(self, connection: sqlite3.Connection, table: str) -> TableDescriptor:
        quoted = quote_identifier(table)
        foreign_keys = {row["from"] for row in connection.execute(f"PRAGMA foreign_key_list({quoted})")}
        columns = [
            ColumnDescriptor(
                name=row["name"],
                data_type=(row["type"] or "").upper(),
                nullable=not row["notnull"],
                default=row["dflt_value"],
                is_primary_key=row["pk"] > 0,
                is_foreign_key=row["name"] in foreign_keys,
            )
            for row in connection.execute(f"PRAGMA table_info({quoted})")
        ]
        row_count = connection.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone()[0]
        return TableDescriptor(
            name=table,
            columns=columns,
            stats=TableStats(row_count=row_count, size_mb=self._table_size_mb(connection, table)),
        )

    def _table_size_mb(self, connection: sqlite3.Connection, table: str) -> Optional[float]:
        # dbstat is only available when SQLite was compiled with SQLITE_ENABLE_DBSTAT_VTAB
        try:
            row = connection.execute("SELECT SUM(pgsize) FROM dbstat WHERE name = ?", (table,)).fetchone()
        except sqlite3.OperationalError as e:
            logger.debug(f"dbstat unavailable, table size unknown: {e}")
            return None
        return size_in_mb(row[0])

    def execute_query(self, query: str, config: SQLiteConfig, timeout: float = DB_QUERY_TIMEOUT) -> QueryResult:
        """Execute read-only query, racing it against the timeout."""
        timer = QueryTimer()
        try:
            with timer, self._connect(config) as connection:
                rows, columns = run_with_timeout(
                    partial(self._run, connection, query),
                    timeout,
                    connection.interrupt,
                )
        except sqlite3.Error as e:
            error_str = str(e).lower()
            if "readonly" in error_str or "attempt to write" in error_str:
                error_msg = (
                    f"Write operation blocked by database: {e}\n"
                    f"  Hint: SQLite connections are opened read-only"
                )
            else:
                error_msg = f"SQLite error: {e}"
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

    def _run(self, connection: sqlite3.Connection, query: str) -> tuple[list[dict[str, Any]], list[ResultColumn]]:
        cursor = connection.execute(query)
        try:
            rows = [dict(row) for row in cursor.fetchall()]
            # sqlite3 reports names only, never declared types
            columns = [ResultColumn(name=desc[0], type=GENERIC_COLUMN_TYPE) for desc in cursor.description or []]
        finally:
            cursor.close()
        return rows, columns

    def _scalar(self, config: SQLiteConfig, sql: str, params: tuple) -> Any:
        try:
            with self._connect(config) as connection:
                return connection.execute(sql, params).fetchone()[0]
        except sqlite3.Error as e:
            raise ExecutionFailureError(f"SQLite catalog query failed\n  Error: {e}") from e

    def table_exists(self, config: SQLiteConfig, table: str) -> bool:
        return self._scalar(
            config,
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        ) > 0

    def column_exists(self, config: SQLiteConfig, table: str, column: str) -> bool:
        return self._scalar(
            config,
            "SELECT COUNT(*) FROM pragma_table_info(?) WHERE name = ?",
            (table, column),
        ) > 0

    def generate_profiling_queries(self, table: str, column: Optional[str] = None) -> dict[str, str]:
        t = quote_identifier(table)
        queries: dict[str, str] = {}

        if column:
            c = quote_identifier(column)
            queries["basic_stats"] = f"""
                SELECT
                    COUNT(*) AS total_count,
                    COUNT({c}) AS non_null_count,
                    COUNT(*) - COUNT({c}) AS null_count,
                    COUNT(DISTINCT {c}) AS distinct_count,
                    CAST(COUNT(DISTINCT {c}) AS REAL) / NULLIF(COUNT(*), 0) AS uniqueness_ratio
                FROM {t}
            """
            queries["numeric_stats"] = f"""
                SELECT
                    MIN({c}) AS min_value,
                    MAX({c}) AS max_value,
                    AVG({c}) AS mean_value,
                    STDDEV({c}) AS std_dev
                FROM {t}
                WHERE typeof({c}) IN ('integer', 'real')
            """
            queries["top_values"] = f"""
                SELECT
                    {c} AS value,
                    COUNT(*) AS frequency,
                    CAST(COUNT(*) AS REAL) / (SELECT COUNT(*) FROM {t}) AS percentage
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
                        WHEN TRIM(CAST({c} AS TEXT)) = '' THEN 'EMPTY'
                        ELSE 'VALID'
                    END AS data_status,
                    COUNT(*) AS count
                FROM {t}
                GROUP BY 1
                ORDER BY 1
            """
            queries["string_analysis"] = f"""
                SELECT
                    MIN(LENGTH(CAST({c} AS TEXT))) AS min_length,
                    MAX(LENGTH(CAST({c} AS TEXT))) AS max_length,
                    AVG(LENGTH(CAST({c} AS TEXT))) AS avg_length
                FROM {t}
                WHERE {c} IS NOT NULL
            """
        else:
            queries["table_overview"] = f"SELECT COUNT(*) AS total_rows FROM {t}"
            queries["sample_data"] = f"SELECT * FROM {t} LIMIT {SAMPLE_ROWS}"
            # Page-level sizes need dbstat, which is not always compiled in
            queries["table_data_summary"] = f"""
                SELECT
                    COUNT(*) AS total_rows,
                    NULL AS size_mb
                FROM {t}
            """
            queries["table_statistics"] = f"""
                SELECT
                    {quote_literal(table)} AS table_name,
                    (SELECT COUNT(*) FROM pragma_table_info({quote_literal(table)})) AS column_count,
                    (SELECT COUNT(*) FROM {t}) AS row_count
            """

        return queries
