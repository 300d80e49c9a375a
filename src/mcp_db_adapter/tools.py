"""Tool implementations behind the MCP surface.

Every method is synchronous and returns the text payload of the tool result.
Failures are raised as ``DatabaseAdapterError`` subclasses and turned into
error results by the server.
"""

import logging
from typing import Any, Optional

from .database.connection import add_limit_clause
from .database.formatting import format_profiling_report, format_query_result, to_json
from .database.logging import log_query_execution
from .database.safety import validate_query
from .errors import ExecutionFailureError, NotFoundError, UnsafeQueryError, ValidationFailureError
from .models import QueryResult, RegisteredDatabase, SchemaSnapshot, parse_engine_config
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

TOOL_NAMES = [
    "add_database",
    "remove_database",
    "list_databases",
    "introspect_schema",
    "safe_execute_query",
    "profile_table_or_column",
]


def _schemas_payload(schemas: dict[str, SchemaSnapshot]) -> str:
    return to_json({name: schema.model_dump() for name, schema in schemas.items()})


def _require_str(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailureError(
            f"Missing required parameter '{key}'\n"
            f"  Hint: '{key}' must be a non-empty string"
        )
    return value


def _optional_str(arguments: dict[str, Any], key: str) -> Optional[str]:
    value = arguments.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationFailureError(f"Parameter '{key}' must be a string")
    return value


class DatabaseTools:
    """The six database tools, bound to one connection registry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def call(self, name: str, arguments: Optional[dict[str, Any]]) -> str:
        """Dispatch a tool call by name.

        Raises:
            NotFoundError: If the tool name is unknown
            DatabaseAdapterError: Whatever the tool raises
        """
        arguments = arguments or {}
        if name == "add_database":
            config = arguments.get("config")
            if not isinstance(config, dict):
                raise ValidationFailureError(
                    "Missing required parameter 'config'\n"
                    "  Hint: 'config' must be an object with a 'type' field"
                )
            return self.add_database(_require_str(arguments, "name"), config)
        elif name == "remove_database":
            return self.remove_database(_require_str(arguments, "name"))
        elif name == "list_databases":
            return self.list_databases()
        elif name == "introspect_schema":
            return self.introspect_schema(_require_str(arguments, "name"))
        elif name == "safe_execute_query":
            return self.safe_execute_query(_require_str(arguments, "name"), _require_str(arguments, "query"))
        elif name == "profile_table_or_column":
            return self.profile_table_or_column(
                _require_str(arguments, "name"),
                _require_str(arguments, "table"),
                _optional_str(arguments, "column"),
            )
        else:
            raise NotFoundError(
                f"Unknown tool '{name}'\n"
                f"  Available tools: {', '.join(TOOL_NAMES)}"
            )

    def add_database(self, name: str, config: dict[str, Any]) -> str:
        engine_config = parse_engine_config(config)
        self.registry.add(name, engine_config)
        return f"Added {engine_config.type} database '{name}'"

    def remove_database(self, name: str) -> str:
        self.registry.remove(name)
        return f"Removed database '{name}'"

    def list_databases(self) -> str:
        names = self.registry.list()
        if not names:
            raise NotFoundError(
                "No databases configured\n"
                "  Hint: Register one with add_database"
            )
        return f"Configured databases: {', '.join(names)}"

    def introspect_schema(self, name: str) -> str:
        """Fetch every schema of a database live and refresh the cached copy."""
        database = self.registry.require(name)
        adapter = self.registry.adapter_for(database)
        schemas = adapter.fetch_schemas(database.config)
        self.registry.update_schemas(name, schemas)
        return _schemas_payload(schemas)

    def safe_execute_query(self, name: str, query: str) -> str:
        """Classify, bound and execute a caller query.

        The classifier runs before any connection is opened.
        """
        database = self.registry.require(name)
        adapter = self.registry.adapter_for(database)

        is_valid, error_message = validate_query(query, adapter.safety_policy)
        if not is_valid:
            log_query_execution(query=query, dsn=database.config.dsn, success=False,
                                error=error_message, blocked=True)
            raise UnsafeQueryError(error_message)

        limited_query = add_limit_clause(query, dialect=adapter.sql_dialect)
        result = adapter.execute_query(limited_query, database.config)
        if not result.success:
            raise ExecutionFailureError(f"Query failed: {result.error}")
        return format_query_result(result, limited_query, name)

    def profile_table_or_column(self, name: str, table: str, column: Optional[str] = None) -> str:
        """Run the profiling queries of a table or column and render the report.

        Individual query failures are reported in the output rather than raised.
        """
        database = self.registry.require(name)
        adapter = self.registry.adapter_for(database)

        if not adapter.table_exists(database.config, table):
            raise NotFoundError(f"Table '{table}' not found in database '{name}'")
        if column and not adapter.column_exists(database.config, table, column):
            raise NotFoundError(f"Column '{column}' not found in table '{table}'")

        results: dict[str, QueryResult] = {}
        # Internally generated queries bypass the classifier
        for query_name, query in adapter.generate_profiling_queries(table, column).items():
            results[query_name] = adapter.execute_query(query, database.config)
            if not results[query_name].success:
                logger.warning(f"Profiling query {query_name} failed for {name}.{table}")

        return format_profiling_report(table, column, results, database.engine)

    def cached_schema_names(self) -> list[str]:
        """Registered databases with at least one cached schema."""
        names = []
        for name in self.registry.list():
            database: Optional[RegisteredDatabase] = self.registry.get(name)
            if database is not None and database.schemas:
                names.append(name)
        return names

    def read_cached_schema(self, name: str) -> str:
        database = self.registry.require(name)
        if not database.schemas:
            raise NotFoundError(
                f"No cached schema for database '{name}'\n"
                f"  Hint: Run introspect_schema first"
            )
        return _schemas_payload(database.schemas)
