"""Database integration module for the MCP database adapter.

This module provides read-only access to registered SQL databases:
schema introspection, guarded query execution and profiling.

Architecture:
- safety.py: Query classification against universal and per-engine blocklists
- connection.py: Timeout racing and implicit row limits
- formatting.py: Result and profiling report formatting for AI consumption
- logging.py: Structured JSON events for connections, queries and introspection
- adapters/: Database-specific implementations (MySQL, PostgreSQL, SQLite, DuckDB)
"""

from mcp_db_adapter.database.adapters import create_adapter, get_safety_policy
from mcp_db_adapter.database.connection import add_limit_clause
from mcp_db_adapter.database.formatting import format_profiling_report, format_query_result
from mcp_db_adapter.database.safety import SafetyPolicy, is_safe_query, validate_query

__all__ = [
    "SafetyPolicy",
    "add_limit_clause",
    "create_adapter",
    "format_profiling_report",
    "format_query_result",
    "get_safety_policy",
    "is_safe_query",
    "validate_query",
]
