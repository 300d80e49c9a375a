"""Capability contract shared by every engine adapter."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from ...constants import DB_QUERY_TIMEOUT
from ...models import QueryResult, SchemaSnapshot
from ..safety import SafetyPolicy


class DatabaseAdapter(ABC):
    """Interface implemented once per engine kind.

    Adapters hold no connection state: every method opens a connection,
    does its work and closes the connection before returning. There is no
    shared default behaviour, only the contract.
    """

    engine: str
    sql_dialect: str  # sqlglot dialect name, used to lex caller queries
    safety_policy: SafetyPolicy

    @abstractmethod
    def check_reachability(self, config: Any) -> bool:
        """Open a short-timeout connection and run the cheapest probe.

        Returns:
            True if the database answered, False on any error. Never raises.
        """

    @abstractmethod
    def fetch_schemas(self, config: Any) -> dict[str, SchemaSnapshot]:
        """Introspect every namespace this adapter exposes, keyed by name.

        Raises:
            ExecutionFailureError: If the catalog cannot be read
        """

    @abstractmethod
    def fetch_schema(self, config: Any) -> SchemaSnapshot:
        """Introspect the default namespace of the configured database.

        Raises:
            ExecutionFailureError: If the catalog cannot be read
        """

    @abstractmethod
    def execute_query(self, query: str, config: Any, timeout: float = DB_QUERY_TIMEOUT) -> QueryResult:
        """Execute a query read-only, racing it against ``timeout``.

        Every failure, including timeouts and connection errors, is
        returned as ``QueryResult(success=False)`` rather than raised.
        """

    @abstractmethod
    def table_exists(self, config: Any, table: str) -> bool:
        """Check the catalog for a base table."""

    @abstractmethod
    def column_exists(self, config: Any, table: str, column: str) -> bool:
        """Check the catalog for a column of a table."""

    @abstractmethod
    def generate_profiling_queries(self, table: str, column: Optional[str] = None) -> dict[str, str]:
        """Build the named profiling queries for a table or one of its columns."""
