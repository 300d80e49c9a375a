"""MySQL database adapter implementation."""

import logging
from contextlib import contextmanager
from functools import partial
from typing import Any, Iterator, Optional

import pymysql
from pymysql.constants import FIELD_TYPE
from pymysql.converters import escape_string

from .base import DatabaseAdapter
from ..connection import run_with_timeout
from ..logging import QueryTimer, log_connection, log_query_execution, log_schema_introspection
from ..safety import SafetyPolicy
from ...constants import (
    DB_CONNECT_TIMEOUT,
    DB_PROBE_TIMEOUT,
    DB_QUERY_TIMEOUT,
    GENERIC_COLUMN_TYPE,
    SAMPLE_ROWS,
    TOP_VALUES_LIMIT,
)
from ...errors import ExecutionFailureError
from ...models import (
    ColumnDescriptor,
    MySQLConfig,
    QueryResult,
    ResultColumn,
    SchemaSnapshot,
    SchemaStats,
    TableDescriptor,
    TableStats,
)

logger = logging.getLogger(__name__)

MYSQL_SAFETY_POLICY = SafetyPolicy(
    engine="mysql",
    dangerous_patterns=(
        # File operations
        r"\binto\s+outfile\b",
        r"\binto\s+dumpfile\b",
        r"\bload_file\b",
        # Locking operations
        r"\bfor\s+update\b",
        r"\block\s+in\s+share\s+mode\b",
        # Variable assignments
        r"\binto\s+@",
        # Stored procedures
        r"\bcall\b",
        r"\bexec\b",
        r"\bexecute\b",
    ),
    dangerous_keywords=(
        "benchmark",
        "sleep",
    ),
    max_nested_paren_depth=8,
)

NUMERIC_PATTERN = "^[-+]?[0-9]*[.]?[0-9]+([eE][-+]?[0-9]+)?$"

# FIELD_TYPE defines aliases (CHAR, INTERVAL) after the canonical names
_FIELD_TYPE_NAMES: dict[int, str] = {}
for _name, _code in vars(FIELD_TYPE).items():
    if not _name.startswith("_") and isinstance(_code, int):
        _FIELD_TYPE_NAMES.setdefault(_code, _name)

_TABLES_QUERY = """
    SELECT TABLE_NAME,
           ROUND(((DATA_LENGTH + INDEX_LENGTH) / 1024 / 1024), 2) AS SIZE_MB
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s
      AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""

_COLUMNS_QUERY = """
    SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, COLUMN_DEFAULT, COLUMN_KEY
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
"""

_FOREIGN_KEYS_QUERY = """
    SELECT COLUMN_NAME
    FROM information_schema.KEY_COLUMN_USAGE
    WHERE TABLE_SCHEMA = %s
      AND TABLE_NAME = %s
      AND REFERENCED_TABLE_NAME IS NOT NULL
"""


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def quote_literal(value: str) -> str:
    return "'" + escape_string(value) + "'"


class MySQLAdapter(DatabaseAdapter):
    """MySQL-specific database adapter using pymysql driver."""

    engine = "mysql"
    sql_dialect = "mysql"
    safety_policy = MYSQL_SAFETY_POLICY

    @contextmanager
    def _connect(
        self,
        config: MySQLConfig,
        timeout: float = DB_CONNECT_TIMEOUT,
        read_timeout: float = DB_QUERY_TIMEOUT,
        probe: bool = False,
    ) -> Iterator[pymysql.connections.Connection]:
        """Open a read-only session and always roll back and close it on exit."""
        timer = QueryTimer()
        try:
            with timer:
                connection = pymysql.connect(
                    host=config.host,
                    port=config.port,
                    user=config.user,
                    password=config.password,
                    database=config.database,
                    connect_timeout=int(timeout),
                    read_timeout=int(read_timeout),
                    write_timeout=int(read_timeout),
                    charset="utf8mb4",
                    cursorclass=pymysql.cursors.DictCursor,
                    autocommit=False,
                )
        except pymysql.Error as e:
            log_connection(config.dsn, success=False, error=str(e), duration=timer.duration, probe=probe)
            raise ExecutionFailureError(
                f"Failed to connect to MySQL database\n"
                f"  Error: {e}\n"
                f"  Hint: Check that MySQL server is running and credentials are correct\n"
                f"  Server: {config.host}:{config.port}"
            ) from e

        log_connection(config.dsn, success=True, duration=timer.duration, probe=probe)
        try:
            # Set session to read-only (defense-in-depth)
            with connection.cursor() as cursor:
                cursor.execute("SET SESSION TRANSACTION READ ONLY")
            yield connection
        finally:
            try:
                connection.rollback()
                connection.close()
            except pymysql.Error as e:
                logger.warning(f"Error closing MySQL connection: {e}")

    def check_reachability(self, config: MySQLConfig) -> bool:
        """Ping with the lightest-weight query possible."""
        try:
            with self._connect(config, timeout=DB_PROBE_TIMEOUT, read_timeout=DB_PROBE_TIMEOUT,
                               probe=True) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    cursor.fetchall()
            return True
        except Exception as e:
            logger.warning(f"MySQL handshake failed for {config.host}:{config.port}: {e}")
            return False

    def fetch_schemas(self, config: MySQLConfig) -> dict[str, SchemaSnapshot]:
        # In MySQL the database is the schema
        return {config.database: self.fetch_schema(config)}

    def fetch_schema(self, config: MySQLConfig) -> SchemaSnapshot:
        timer = QueryTimer()
        try:
            with timer, self._connect(config) as connection:
                with connection.cursor() as cursor:
                    cursor.execute(_TABLES_QUERY, (config.database,))
                    table_rows = cursor.fetchall()
                tables = {
                    row["TABLE_NAME"]: self._describe_table(connection, config.database, row)
                    for row in table_rows
                }
        except pymysql.Error as e:
            raise ExecutionFailureError(
                f"Failed to introspect MySQL schema\n"
                f"  Error: {e}\n"
                f"  Database: {config.database}"
            ) from e

        log_schema_introspection(config.dsn, config.database, len(tables), timer.duration)
        return SchemaSnapshot(
            name=config.database,
            tables=tables,
            stats=SchemaStats(
                total_tables=len(tables),
                total_rows=sum(table.stats.row_count for table in tables.values()),
            ),
        )

    def _describe_table(self, connection: pymysql.connections.Connection, database: str,
                        table_row: dict[str, Any]) -> TableDescriptor:
        table = table_row["TABLE_NAME"]
        with connection.cursor() as cursor:
            cursor.execute(_COLUMNS_QUERY, (database, table))
            column_rows = cursor.fetchall()

            cursor.execute(_FOREIGN_KEYS_QUERY, (database, table))
            foreign_keys = {row["COLUMN_NAME"] for row in cursor.fetchall()}

            # Actual count; information_schema.TABLE_ROWS is only an estimate for InnoDB
            cursor.execute(f"SELECT COUNT(*) AS count FROM {quote_identifier(table)}")
            row_count = cursor.fetchone()["count"]

        columns = [
            ColumnDescriptor(
                name=col["COLUMN_NAME"],
                data_type=col["DATA_TYPE"].upper(),
                nullable=col["IS_NULLABLE"] == "YES",
                default=str(col["COLUMN_DEFAULT"]) if col["COLUMN_DEFAULT"] is not None else None,
                is_primary_key=col["COLUMN_KEY"] == "PRI",
                is_foreign_key=col["COLUMN_NAME"] in foreign_keys,
            )
            for col in column_rows
        ]
        size_mb = float(table_row["SIZE_MB"]) if table_row["SIZE_MB"] else None
        return TableDescriptor(
            name=table,
            columns=columns,
            stats=TableStats(row_count=row_count, size_mb=size_mb if size_mb and size_mb > 0 else None),
        )

    def execute_query(self, query: str, config: MySQLConfig, timeout: float = DB_QUERY_TIMEOUT) -> QueryResult:
        """Execute read-only query, racing it against the timeout."""
        timer = QueryTimer()
        try:
            with timer, self._connect(config, read_timeout=timeout) as connection:
                rows, columns = run_with_timeout(
                    partial(self._run, connection, query),
                    timeout,
                    partial(self._kill_query, config, connection.thread_id()),
                )
        except pymysql.Error as e:
            error_msg = f"MySQL query execution failed: {e}"
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

    def _run(self, connection: pymysql.connections.Connection,
             query: str) -> tuple[list[dict[str, Any]], list[ResultColumn]]:
        with connection.cursor() as cursor:
            cursor.execute(query)
            rows = list(cursor.fetchall())
            columns = [
                ResultColumn(name=desc[0], type=_FIELD_TYPE_NAMES.get(desc[1], GENERIC_COLUMN_TYPE))
                for desc in cursor.description or []
            ]
        return rows, columns

    def _kill_query(self, config: MySQLConfig, thread_id: int) -> None:
        """Stop a running statement from a side connection."""
        with self._connect(config, timeout=DB_PROBE_TIMEOUT, read_timeout=DB_PROBE_TIMEOUT) as connection:
            with connection.cursor() as cursor:
                cursor.execute("KILL QUERY %s", (thread_id,))

    def _count(self, config: MySQLConfig, sql: str, params: tuple) -> int:
        try:
            with self._connect(config) as connection:
                with connection.cursor() as cursor:
                    cursor.execute(sql, params)
                    return cursor.fetchone()["count"]
        except pymysql.Error as e:
            raise ExecutionFailureError(f"MySQL catalog query failed\n  Error: {e}") from e

    def table_exists(self, config: MySQLConfig, table: str) -> bool:
        return self._count(
            config,
            "SELECT COUNT(*) AS count FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND TABLE_TYPE = 'BASE TABLE'",
            (config.database, table),
        ) > 0

    def column_exists(self, config: MySQLConfig, table: str, column: str) -> bool:
        return self._count(
            config,
            "SELECT COUNT(*) AS count FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND COLUMN_NAME = %s",
            (config.database, table, column),
        ) > 0

    def generate_profiling_queries(self, table: str, column: Optional[str] = None) -> dict[str, str]:
        t = quote_identifier(table)
        queries: dict[str, str] = {}

        if column:
            c = quote_identifier(column)
            is_numeric = f"CAST({c} AS CHAR) REGEXP '{NUMERIC_PATTERN}'"
            queries["basic_stats"] = f"""
                SELECT
                    COUNT(*) AS total_count,
                    COUNT({c}) AS non_null_count,
                    COUNT(*) - COUNT({c}) AS null_count,
                    COUNT(DISTINCT {c}) AS distinct_count,
                    COUNT(DISTINCT {c}) / NULLIF(COUNT(*), 0) AS uniqueness_ratio
                FROM {t}
            """
            queries["numeric_stats"] = f"""
                SELECT
                    MIN({c} + 0) AS min_value,
                    MAX({c} + 0) AS max_value,
                    AVG({c} + 0) AS mean_value,
                    STDDEV_SAMP({c} + 0) AS std_dev
                FROM {t}
                WHERE {c} IS NOT NULL
                  AND {is_numeric}
            """
            queries["top_values"] = f"""
                SELECT
                    {c} AS value,
                    COUNT(*) AS frequency,
                    COUNT(*) / (SELECT COUNT(*) FROM {t}) AS percentage
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
                        WHEN TRIM(CAST({c} AS CHAR)) = '' THEN 'EMPTY'
                        ELSE 'VALID'
                    END AS data_status,
                    COUNT(*) AS count
                FROM {t}
                GROUP BY 1
                ORDER BY 1
            """
            queries["string_analysis"] = f"""
                SELECT
                    MIN(CHAR_LENGTH(CAST({c} AS CHAR))) AS min_length,
                    MAX(CHAR_LENGTH(CAST({c} AS CHAR))) AS max_length,
                    AVG(CHAR_LENGTH(CAST({c} AS CHAR))) AS avg_length
                FROM {t}
                WHERE {c} IS NOT NULL
            """
        else:
            queries["table_overview"] = f"SELECT COUNT(*) AS total_rows FROM {t}"
            queries["sample_data"] = f"SELECT * FROM {t} LIMIT {SAMPLE_ROWS}"
            queries["table_data_summary"] = f"""
                SELECT
                    COUNT(*) AS total_rows,
                    (SELECT ROUND((DATA_LENGTH + INDEX_LENGTH) / 1024 / 1024, 2)
                     FROM information_schema.TABLES
                     WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = {quote_literal(table)}) AS size_mb
                FROM {t}
            """
            queries["table_statistics"] = f"""
                SELECT
                    {quote_literal(table)} AS table_name,
                    (SELECT COUNT(*) FROM information_schema.COLUMNS
                     WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = {quote_literal(table)}) AS column_count,
                    (SELECT COUNT(*) FROM {t}) AS row_count
            """

        return queries
