"""Error types raised by the database adapter core."""


class DatabaseAdapterError(Exception):
    """Base class for every error surfaced to tool callers."""


class ConnectionUnreachableError(DatabaseAdapterError, ConnectionError):
    """Reachability probe failed, the configuration was rejected."""


class NotFoundError(DatabaseAdapterError, LookupError):
    """Unknown database, table or column name."""


class UnsafeQueryError(DatabaseAdapterError, ValueError):
    """The safety classifier rejected a query before execution."""


class ExecutionFailureError(DatabaseAdapterError, RuntimeError):
    """The engine returned an error while running a query."""


class QueryTimeoutError(ExecutionFailureError):
    """A query did not finish within its wall-clock limit."""


class ValidationFailureError(DatabaseAdapterError, ValueError):
    """Configuration or persisted state does not match the expected shape."""
