"""Structured logging for database operations.

Every event is one JSON object on the ``mcp_db_adapter.database`` logger.
DSNs come from the engine configs, which never include the password.
"""

import hashlib
import json
import logging
import time
from typing import Any, Optional

db_logger = logging.getLogger("mcp_db_adapter.database")

QUERY_PREVIEW_LENGTH = 100


def hash_query(query: str) -> str:
    """First 16 hex characters of the query's SHA-256, for grouping repeats."""
    return hashlib.sha256(query.encode()).hexdigest()[:16]


def _emit(level: int, event: str, error: Optional[str] = None, **fields: Any) -> None:
    log_data = {"event": event, **fields}
    if error:
        log_data["error"] = error
    db_logger.log(level, json.dumps(log_data, default=str))


def log_connection(dsn: str, success: bool, error: Optional[str] = None, duration: float = 0.0,
                   probe: bool = False) -> None:
    """Log a connection attempt.

    A failed reachability probe is an expected outcome and is logged as a
    warning; any other failed connection is an error.
    """
    if success:
        level = logging.INFO
    elif probe:
        level = logging.WARNING
    else:
        level = logging.ERROR
    _emit(level, "database_probe" if probe else "database_connection", error,
          dsn=dsn, success=success, duration_seconds=round(duration, 3))


def log_query_execution(
    query: str,
    dsn: str,
    success: bool,
    row_count: int = 0,
    duration: float = 0.0,
    error: Optional[str] = None,
    blocked: bool = False
) -> None:
    """Log query execution with metadata.

    Queries rejected by the safety classifier are logged at WARNING level
    with ``blocked`` set, so they can be audited apart from engine errors.

    Args:
        query: SQL query (hashed, and previewed up to 100 characters)
        dsn: Connection string without credentials
        success: Whether query executed successfully
        row_count: Number of rows returned
        duration: Query execution time in seconds
        error: Error message if failed
        blocked: Whether query was blocked by the classifier
    """
    if blocked:
        level = logging.WARNING
    elif success:
        level = logging.INFO
    else:
        level = logging.ERROR
    preview = query[:QUERY_PREVIEW_LENGTH] + ("..." if len(query) > QUERY_PREVIEW_LENGTH else "")
    _emit(
        level,
        "query_execution",
        error,
        query_hash=hash_query(query),
        query_preview=preview,
        dsn=dsn,
        success=success,
        blocked=blocked,
        row_count=row_count,
        duration_seconds=round(duration, 3),
        timestamp=time.time(),
    )


def log_schema_introspection(dsn: str, schema: str, table_count: int, duration: float = 0.0) -> None:
    _emit(logging.INFO, "schema_introspection",
          dsn=dsn, schema=schema, table_count=table_count, duration_seconds=round(duration, 3))


class QueryTimer:
    """Context manager that records how long its block took."""

    def __init__(self):
        self.duration: float = 0.0
        self._start: float = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self._start
