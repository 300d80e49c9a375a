"""Per-call connection helpers: timeout racing, implicit row limits and
statement counting.

No connections are pooled. Each adapter call opens its own connection and
closes it before returning.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, wait
from typing import Callable, Optional, TypeVar

from sqlglot.dialects.dialect import Dialect
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

from ..constants import DB_CANCEL_GRACE_PERIOD, DEFAULT_QUERY_LIMIT
from ..errors import ExecutionFailureError, QueryTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MULTIPLE_STATEMENTS_ERROR = (
    "Multiple statements are not allowed\n"
    "  Hint: Submit exactly one SELECT statement per call"
)


def tokenize(query: str, dialect: Optional[str] = None) -> list[Token]:
    """Lex a query with the engine's SQL dialect.

    String literals, quoted identifiers and comments are handled by the
    lexer, so a ``;`` or ``--`` inside them is not mistaken for syntax.
    Comments do not produce tokens.

    Raises:
        TokenError: If the query cannot be lexed
    """
    return Dialect.get_or_raise(dialect).tokenize(query)


def count_statements(query: str, dialect: Optional[str] = None) -> int:
    """Number of non-empty statements in ``query``.

    Raises:
        ExecutionFailureError: If the query cannot be lexed
    """
    try:
        tokens = tokenize(query, dialect)
    except TokenError as e:
        raise ExecutionFailureError(f"Query could not be tokenized\n  Error: {e}") from e

    statements = 0
    in_statement = False
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            in_statement = False
        elif not in_statement:
            statements += 1
            in_statement = True
    return statements


def _ends_with_limit(tokens: list[Token]) -> bool:
    types = [token.token_type for token in tokens[-4:]]
    if types[-2:] == [TokenType.LIMIT, TokenType.NUMBER]:
        return True
    # LIMIT n OFFSET m, or MySQL's LIMIT m, n
    return types in (
        [TokenType.LIMIT, TokenType.NUMBER, TokenType.OFFSET, TokenType.NUMBER],
        [TokenType.LIMIT, TokenType.NUMBER, TokenType.COMMA, TokenType.NUMBER],
    )


def add_limit_clause(query: str, limit: int = DEFAULT_QUERY_LIMIT, dialect: Optional[str] = None) -> str:
    """Add LIMIT clause to SELECT query if it does not end with one.

    Only the trailing clause counts: a LIMIT inside a subquery or a comment
    does not bound the outer result. Trailing semicolons are dropped and
    trailing comments are kept after the new clause.

    Args:
        query: SQL query
        limit: Row limit to append
        dialect: SQL dialect used to lex the query

    Returns:
        Modified query with LIMIT clause, or the query unchanged
    """
    try:
        tokens = tokenize(query, dialect)
    except TokenError as e:
        # The engine reports the syntax error itself
        logger.warning(f"Query could not be tokenized, no LIMIT added: {e}")
        return query

    if not tokens or tokens[0].token_type != TokenType.SELECT:
        return query

    while tokens and tokens[-1].token_type == TokenType.SEMICOLON:
        tokens.pop()
    if _ends_with_limit(tokens):
        return query

    end = tokens[-1].end + 1
    trailing = query[end:].strip().lstrip(";").strip()
    limited = f"{query[:end].strip()} LIMIT {limit}"
    return f"{limited} {trailing}" if trailing else limited


def size_in_mb(size_bytes: Optional[float]) -> Optional[float]:
    """Convert a byte count to megabytes rounded to 2 places; None when unknown or zero."""
    if not size_bytes:
        return None
    size_mb = round(float(size_bytes) / (1024 * 1024), 2)
    return size_mb if size_mb > 0 else None


def run_with_timeout(work: Callable[[], T], timeout: float, cancel: Callable[[], None]) -> T:
    """Race ``work`` against a wall-clock timer.

    The work runs on a worker thread. If the timer wins, ``cancel`` is asked
    to interrupt the running statement and the worker gets a grace period to
    unwind before the caller releases the connection.

    Args:
        work: Callable that executes the query and fetches its rows
        timeout: Seconds before the query is abandoned
        cancel: Callable that interrupts the running statement

    Returns:
        Whatever ``work`` returns

    Raises:
        QueryTimeoutError: If the timeout elapses first
        Exception: Anything ``work`` raises
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="db-query")
    future = executor.submit(work)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning(f"Query exceeded timeout ({timeout:g}s), cancelling")
        try:
            cancel()
        except Exception as e:
            logger.warning(f"Error cancelling timed out query: {e}")
        done, _ = wait([future], timeout=DB_CANCEL_GRACE_PERIOD)
        if not done:
            logger.warning("Cancelled query is still running; releasing its connection anyway")
        raise QueryTimeoutError(f"Query timeout after {timeout:g} seconds") from None
    finally:
        executor.shutdown(wait=False)
