"""PostgreSQL database adapter implementation."""

import logging
from contextlib import contextmanager
from functools import partial
from typing import Any, Iterator, Optional

import psycopg2
import psycopg2.errors
import psycopg2.extensions
import psycopg2.extras

from .base import DatabaseAdapter
from ..connection import MULTIPLE_STATEMENTS_ERROR, count_statements, run_with_timeout, size_in_mb
from ..logging import QueryTimer, log_connection, log_query_execution, log_schema_introspection
from ..safety import SafetyPolicy
from ...constants import (
    DB_CANCEL_GRACE_PERIOD,
    DB_CONNECT_TIMEOUT,
    DB_PROBE_TIMEOUT,
    DB_QUERY_TIMEOUT,
    DEFAULT_POSTGRESQL_SCHEMA_NAME,
    GENERIC_COLUMN_TYPE,
    SAMPLE_ROWS,
    TOP_VALUES_LIMIT,
)
from ...errors import ExecutionFailureError
from ...models import (
    ColumnDescriptor,
    PostgreSQLConfig,
    QueryResult,
    ResultColumn,
    SchemaSnapshot,
    SchemaStats,
    TableDescriptor,
    TableStats,
)

logger = logging.getLogger(__name__)

POSTGRESQL_SAFETY_POLICY = SafetyPolicy(
    engine="postgresql",
    dangerous_patterns=(
        # Row locking
        r"\bfor\s+update\b",
        r"\bfor\s+share\b",
        r"\bfor\s+no\s+key\s+update\b",
        r"\bfor\s+key\s+share\b",
        # SELECT ... INTO creates a table
        r"\binto\b",
        # Server-side file access
        r"\bcopy\b",
        r"\blo_import\b",
        r"\blo_export\b",
        r"\bpg_read_file\b",
        r"\bpg_read_binary_file\b",
        r"\bpg_ls_dir\b",
        r"\bdblink\b",
        # Session and backend control
        r"\bset_config\b",
        r"\bpg_terminate_backend\b",
        r"\bpg_cancel_backend\b",
        # Sequence mutation
        r"\bnextval\b",
        r"\bsetval\b",
    ),
    dangerous_keywords=(
        "pg_sleep",
        "pg_sleep_for",
        "pg_sleep_until",
        "pg_advisory_lock",
    ),
    max_nested_paren_depth=10,
)

NUMERIC_PATTERN = "^[-+]?[0-9]*[.]?[0-9]+([eE][-+]?[0-9]+)?$"

_TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_COLUMNS_QUERY = """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""

_KEYS_QUERY = """
    SELECT kcu.column_name, tc.constraint_type
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
     AND tc.table_name = kcu.table_name
    WHERE tc.table_schema = %s
      AND tc.table_name = %s
      AND tc.constraint_type IN ('PRIMARY KEY', 'FOREIGN KEY')
"""

# Literal % must be doubled when the statement carries parameters
_SIZE_QUERY = "SELECT pg_total_relation_size(format('%%I.%%I', %s, %s)::regclass) AS size_bytes"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _type_name(type_code: Any) -> str:
    caster = psycopg2.extensions.string_types.get(type_code)
    return caster.name if caster is not None else GENERIC_COLUMN_TYPE


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL database adapter with read-only enforcement."""

    engine = "postgresql"
    sql_dialect = "postgres"
    safety_policy = POSTGRESQL_SAFETY_POLICY

    @contextmanager
    def _connect(
        self,
        config: PostgreSQLConfig,
        timeout: float = DB_CONNECT_TIMEOUT,
        statement_timeout: float = DB_QUERY_TIMEOUT,
        probe: bool = False,
    ) -> Iterator[Any]:
        """Open a read-only session and always roll back and close it on exit."""
        timer = QueryTimer()
        try:
            with timer:
                connection = psycopg2.connect(
                    host=config.host,
                    port=config.port,
                    dbname=config.database,
                    user=config.user,
                    password=config.password,
                    connect_timeout=int(timeout),
                    # Server-side backstop, a little beyond the client-side race
                    options=f"-c statement_timeout={int((statement_timeout + DB_CANCEL_GRACE_PERIOD) * 1000)}",
                )
        except psycopg2.Error as e:
            log_connection(config.dsn, success=False, error=str(e), duration=timer.duration, probe=probe)
            raise ExecutionFailureError(
                f"Failed to connect to PostgreSQL database\n"
                f"  Error: {e}\n"
                f"  Hint: Check that PostgreSQL server is running and credentials are correct\n"
                f"  Server: {config.host}:{config.port}"
            ) from e

        log_connection(config.dsn, success=True, duration=timer.duration, probe=probe)
        try:
            # Enforce read-only mode at session level
            with connection.cursor() as cursor:
                cursor.execute("SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY")
            yield connection
        finally:
            try:
                connection.rollback()
                connection.close()
            except psycopg2.Error as e:
                logger.warning(f"Error closing PostgreSQL connection: {e}")

    def check_reachability(self, config: PostgreSQLConfig) -> bool:
        try:
            with self._connect(config, timeout=DB_PROBE_TIMEOUT, statement_timeout=DB_PROBE_TIMEOUT,
                               probe=True) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    cursor.fetchone()
            return True
        except Exception as e:
            logger.warning(f"PostgreSQL handshake failed for {config.host}:{config.port}: {e}")
            return False

    def fetch_schemas(self, config: PostgreSQLConfig) -> dict[str, SchemaSnapshot]:
        # Only the public schema is exposed
        return {DEFAULT_POSTGRESQL_SCHEMA_NAME: self.fetch_schema(config)}

    def fetch_schema(self, config: PostgreSQLConfig) -> SchemaSnapshot:
        schema = DEFAULT_POSTGRESQL_SCHEMA_NAME
        timer = QueryTimer()
        try:
            with timer, self._connect(config) as connection:
                with connection.cursor() as cursor:
                    cursor.execute(_TABLES_QUERY, (schema,))
                    table_names = [row[0] for row in cursor.fetchall()]
                tables = {name: self._describe_table(connection, schema, name) for name in table_names}
        except psycopg2.Error as e:
            raise ExecutionFailureError(
                f"Failed to introspect PostgreSQL schema\n"
                f"  Error: {e}\n"
                f"  Database: {config.database}"
            ) from e

        log_schema_introspection(config.dsn, schema, len(tables), timer.duration)
        return SchemaSnapshot(
            name=schema,
            tables=tables,
            stats=SchemaStats(
                total_tables=len(tables),
                total_rows=sum(table.stats.row_count for table in tables.values()),
            ),
        )

    def _describe_table(self, connection: Any, schema: str, table: str) -> TableDescriptor:
        with connection.cursor() as cursor:
            cursor.execute(_KEYS_QUERY, (schema, table))
            key_rows = cursor.fetchall()
            primary_keys = {name for name, kind in key_rows if kind == "PRIMARY KEY"}
            foreign_keys = {name for name, kind in key_rows if kind == "FOREIGN KEY"}

            cursor.execute(_COLUMNS_QUERY, (schema, table))
            columns = [
                ColumnDescriptor(
                    name=name,
                    data_type=data_type.upper(),
                    nullable=is_nullable == "YES",
                    default=default,
                    is_primary_key=name in primary_keys,
                    is_foreign_key=name in foreign_keys,
                )
                for name, data_type, is_nullable, default in cursor.fetchall()
            ]

            cursor.execute(f"SELECT COUNT(*) FROM {quote_identifier(schema)}.{quote_identifier(table)}")
            row_count = cursor.fetchone()[0]

            cursor.execute(_SIZE_QUERY, (schema, table))
            size_bytes = cursor.fetchone()[0]

        return TableDescriptor(
            name=table,
            columns=columns,
            stats=TableStats(row_count=row_count, size_mb=size_in_mb(size_bytes)),
        )

    def execute_query(self, query: str, config: PostgreSQLConfig,
                      timeout: float = DB_QUERY_TIMEOUT) -> QueryResult:
        """Execute read-only query, racing it against the timeout.

        psycopg2 sends queries over the simple protocol, which runs every
        statement of a stacked query, so those are refused before connecting.
        """
        timer = QueryTimer()
        try:
            if count_statements(query, self.sql_dialect) > 1:
                raise ExecutionFailureError(MULTIPLE_STATEMENTS_ERROR)
            with timer, self._connect(config, statement_timeout=timeout) as connection:
                rows, columns = run_with_timeout(
                    partial(self._run, connection, query),
                    timeout,
                    connection.cancel,
                )
        except (psycopg2.errors.InsufficientPrivilege, psycopg2.errors.ReadOnlySqlTransaction) as e:
            error_msg = (
                f"Write operation blocked by database: {e}\n"
                f"  Hint: PostgreSQL session is set to READ ONLY mode"
            )
            log_query_execution(query=query, dsn=config.dsn, success=False, error=error_msg,
                                duration=timer.duration)
            return QueryResult.failure(error_msg)
        except psycopg2.errors.QueryCanceled as e:
            error_msg = f"Query timeout after {timeout:g} seconds: {e}"
            log_query_execution(query=query, dsn=config.dsn, success=False, error=error_msg,
                                duration=timer.duration)
            return QueryResult.failure(error_msg)
        except psycopg2.Error as e:
            error_msg = f"PostgreSQL error: {e}"
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

    def _run(self, connection: Any, query: str) -> tuple[list[dict[str, Any]], list[ResultColumn]]:
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            cursor.execute(query)
            # Convert RealDictRow to regular dict
            rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
            columns = [
                ResultColumn(name=desc.name, type=_type_name(desc.type_code))
                for desc in cursor.description or []
            ]
        return rows, columns

    def _count(self, config: PostgreSQLConfig, sql: str, params: tuple) -> int:
        try:
            with self._connect(config) as connection:
                with connection.cursor() as cursor:
                    cursor.execute(sql, params)
                    return cursor.fetchone()[0]
        except psycopg2.Error as e:
            raise ExecutionFailureError(f"PostgreSQL catalog query failed\n  Error: {e}") from e

    def table_exists(self, config: PostgreSQLConfig, table: str) -> bool:
        return self._count(
            config,
            "SELECT COUNT(*) FROM information_schema.tables "
            "WHERE table_schema = %s AND table_name = %s AND table_type = 'BASE TABLE'",
            (DEFAULT_POSTGRESQL_SCHEMA_NAME, table),
        ) > 0

    def column_exists(self, config: PostgreSQLConfig, table: str, column: str) -> bool:
        return self._count(
            config,
            "SELECT COUNT(*) FROM information_schema.columns "
            "WHERE table_schema = %s AND table_name = %s AND column_name = %s",
            (DEFAULT_POSTGRESQL_SCHEMA_NAME, table, column),
        ) > 0

    def generate_profiling_queries(self, table: str, column: Optional[str] = None) -> dict[str, str]:
        t = quote_identifier(table)
        queries: dict[str, str] = {}

        if column:
            c = quote_identifier(column)
            as_text = f"CAST({c} AS TEXT)"
            as_number = f"CAST({as_text} AS DOUBLE PRECISION)"
            queries["basic_stats"] = f"""
                SELECT
                    COUNT(*) AS total_count,
                    COUNT({c}) AS non_null_count,
                    COUNT(*) - COUNT({c}) AS null_count,
                    COUNT(DISTINCT {c}) AS distinct_count,
                    CAST(COUNT(DISTINCT {c}) AS DOUBLE PRECISION) / NULLIF(COUNT(*), 0) AS uniqueness_ratio
                FROM {t}
            """
            queries["numeric_stats"] = f"""
                SELECT
                    MIN({as_number}) AS min_value,
                    MAX({as_number}) AS max_value,
                    AVG({as_number}) AS mean_value,
                    STDDEV_SAMP({as_number}) AS std_dev
                FROM {t}
                WHERE {c} IS NOT NULL
                  AND {as_text} ~ '{NUMERIC_PATTERN}'
            """
            queries["top_values"] = f"""
                SELECT
                    {c} AS value,
                    COUNT(*) AS frequency,
                    CAST(COUNT(*) AS DOUBLE PRECISION) / (SELECT COUNT(*) FROM {t}) AS percentage
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
                        WHEN TRIM({as_text}) = '' THEN 'EMPTY'
                        ELSE 'VALID'
                    END AS data_status,
                    COUNT(*) AS count
                FROM {t}
                GROUP BY 1
                ORDER BY 1
            """
            queries["string_analysis"] = f"""
                SELECT
                    MIN(CHAR_LENGTH({as_text})) AS min_length,
                    MAX(CHAR_LENGTH({as_text})) AS max_length,
                    AVG(CHAR_LENGTH({as_text})) AS avg_length
                FROM {t}
                WHERE {c} IS NOT NULL
            """
        else:
            queries["table_overview"] = f"SELECT COUNT(*) AS total_rows FROM {t}"
            queries["sample_data"] = f"SELECT * FROM {t} LIMIT {SAMPLE_ROWS}"
            queries["table_data_summary"] = f"""
                SELECT
                    COUNT(*) AS total_rows,
                    ROUND(pg_total_relation_size({quote_literal(t)}::regclass) / 1024.0 / 1024.0, 2) AS size_mb
                FROM {t}
            """
            queries["table_statistics"] = f"""
                SELECT
                    {quote_literal(table)} AS table_name,
                    (SELECT COUNT(*) FROM information_schema.columns
                     WHERE table_schema = {quote_literal(DEFAULT_POSTGRESQL_SCHEMA_NAME)}
                       AND table_name = {quote_literal(table)}) AS column_count,
                    (SELECT COUNT(*) FROM {t}) AS row_count
            """

        return queries
