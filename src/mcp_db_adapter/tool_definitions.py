"""Tool descriptions for the MCP database adapter server."""

from typing import Any

from .constants import DB_QUERY_TIMEOUT, DEFAULT_QUERY_LIMIT, SUPPORTED_ENGINES
from .models import ENGINE_CONFIG_ADAPTER


class ToolDescriptions:
    """Centralized management of tool descriptions and input schemas."""

    @classmethod
    def get_add_database_description(cls) -> str:
        return f"""Register a database connection under a name.

The connection is probed before it is accepted; unreachable servers and missing
database files are rejected. Re-adding an existing name replaces its config.

Engines: {', '.join(SUPPORTED_ENGINES)}
- mysql / postgresql: host, port, user, password, database
- sqlite: file (absolute path or ':memory:'), readonly
- duckdb: file (omit for in-memory), readonly, config (DuckDB settings)

Example: name="shop", config={{"type": "sqlite", "file": "/data/shop.db"}}"""

    @classmethod
    def get_remove_database_description(cls) -> str:
        return "Unregister a database connection and drop its cached schema."

    @classmethod
    def get_list_databases_description(cls) -> str:
        return """List all currently configured database connections available for queries.

No parameters required. Returns an error when no database is configured.
Example output: "Configured databases: production_db, analytics_db\""""

    @classmethod
    def get_introspect_schema_description(cls) -> str:
        return """Analyze the schema of a registered database.

Returns JSON keyed by schema name: tables, columns (type, nullability, default,
primary/foreign key membership) and live row counts. The result is cached and
exposed as the resource schema://<name>."""

    @classmethod
    def get_safe_execute_query_description(cls) -> str:
        return f"""Execute a read-only query on a registered database.

Only a single SELECT statement is accepted. Writes, DDL, file access, locking
clauses, sleep functions and engine-specific escapes are rejected before any
connection is opened, and the connection itself is read-only.

SELECT queries without a trailing LIMIT get LIMIT {DEFAULT_QUERY_LIMIT} appended.
Queries are cancelled after {DB_QUERY_TIMEOUT:g} seconds."""

    @classmethod
    def get_profile_description(cls) -> str:
        return """Generate exploratory data analysis (EDA) statistics for a table or one of its columns.

Table-level (column omitted): row count, estimated size, column count, sample rows
and dataset-size guidance.
Column-level: counts, nulls, distinct values, uniqueness, numeric summary, string
lengths, top 10 values, NULL/EMPTY/VALID buckets and modeling insights
(identifier-like columns, categorical candidates, high missing data).

Examples:
- Profile entire table: table="customers"
- Profile specific column: table="orders", column="amount\""""

    @classmethod
    def get_config_schema(cls) -> dict[str, Any]:
        """JSON schema of the engine config union; references point at ``#/$defs``."""
        return ENGINE_CONFIG_ADAPTER.json_schema()

    @classmethod
    def get_input_schemas(cls) -> dict[str, dict[str, Any]]:
        """Input schema of every tool, keyed by tool name."""
        config_schema = cls.get_config_schema()
        definitions = config_schema.pop("$defs", {})
        name_property = {"type": "string", "description": "Name of the registered database"}

        return {
            "add_database": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Name to register the database under"},
                    "config": {**config_schema, "description": "Engine configuration, discriminated by 'type'"},
                },
                "required": ["name", "config"],
                "$defs": definitions,
            },
            "remove_database": {
                "type": "object",
                "properties": {"name": name_property},
                "required": ["name"],
            },
            "list_databases": {
                "type": "object",
                "properties": {},
            },
            "introspect_schema": {
                "type": "object",
                "properties": {"name": name_property},
                "required": ["name"],
            },
            "safe_execute_query": {
                "type": "object",
                "properties": {
                    "name": name_property,
                    "query": {"type": "string", "description": "A single read-only SELECT statement"},
                },
                "required": ["name", "query"],
            },
            "profile_table_or_column": {
                "type": "object",
                "properties": {
                    "name": name_property,
                    "table": {"type": "string", "description": "Name of the table to profile"},
                    "column": {
                        "type": "string",
                        "description": "Optional: specific column to profile (omit to profile the table)",
                    },
                },
                "required": ["name", "table"],
            },
        }

    @classmethod
    def get_descriptions(cls) -> dict[str, str]:
        return {
            "add_database": cls.get_add_database_description(),
            "remove_database": cls.get_remove_database_description(),
            "list_databases": cls.get_list_databases_description(),
            "introspect_schema": cls.get_introspect_schema_description(),
            "safe_execute_query": cls.get_safe_execute_query_description(),
            "profile_table_or_column": cls.get_profile_description(),
        }
