"""Database adapters for different database types."""

from .base import DatabaseAdapter
from .duckdb_adapter import DUCKDB_SAFETY_POLICY, DuckDBAdapter
from .mysql import MYSQL_SAFETY_POLICY, MySQLAdapter
from .postgresql import POSTGRESQL_SAFETY_POLICY, PostgreSQLAdapter
from .sqlite import SQLITE_SAFETY_POLICY, SQLiteAdapter
from ..safety import SafetyPolicy
from ...constants import SUPPORTED_ENGINES

__all__ = [
    "DatabaseAdapter",
    "DuckDBAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "create_adapter",
    "get_safety_policy",
]


def create_adapter(engine: str) -> DatabaseAdapter:
    """Factory function to create the adapter matching an engine tag.

    Args:
        engine: Engine kind (mysql, postgresql, sqlite, duckdb)

    Returns:
        Appropriate database adapter instance

    Raises:
        ValueError: If engine is not supported
    """
    if engine == "mysql":
        return MySQLAdapter()
    elif engine == "postgresql":
        return PostgreSQLAdapter()
    elif engine == "sqlite":
        return SQLiteAdapter()
    elif engine == "duckdb":
        return DuckDBAdapter()
    else:
        raise ValueError(
            f"Unsupported database engine: {engine}\n"
            f"  Supported engines: {', '.join(SUPPORTED_ENGINES)}"
        )


def get_safety_policy(engine: str) -> SafetyPolicy:
    """Return the classifier policy of an engine kind."""
    policies = {
        "mysql": MYSQL_SAFETY_POLICY,
        "postgresql": POSTGRESQL_SAFETY_POLICY,
        "sqlite": SQLITE_SAFETY_POLICY,
        "duckdb": DUCKDB_SAFETY_POLICY,
    }
    if engine not in policies:
        raise ValueError(
            f"Unsupported database engine: {engine}\n"
            f"  Supported engines: {', '.join(SUPPORTED_ENGINES)}"
        )
    return policies[engine]
