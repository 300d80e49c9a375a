"""Query safety classification and read-only enforcement.

The classifier is a regex heuristic, not a SQL parser: it matches unanchored
words anywhere in the normalized text, so a blocked word inside a string
literal is rejected too, and dialect features that are not listed slip
through. Adapters pair it with read-only connections at execution time.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

# Data modification anywhere in the statement, including subqueries and CTEs
UNIVERSAL_DANGEROUS_PATTERNS = [
    (r"\binsert\b", "INSERT"),
    (r"\bupdate\b", "UPDATE"),
    (r"\bdelete\b", "DELETE"),
    (r"\bdrop\b", "DROP"),
    (r"\bcreate\b", "CREATE"),
    (r"\balter\b", "ALTER"),
    (r"\btruncate\b", "TRUNCATE"),
    (r"\breplace\b", "REPLACE"),
    (r"\bwith\s+.*\b(insert|update|delete|create|drop|alter)\b", "WITH"),
]

COMPILED_UNIVERSAL_PATTERNS = [(re.compile(pattern), operation)
                               for pattern, operation in UNIVERSAL_DANGEROUS_PATTERNS]

DEFAULT_MAX_NESTED_PAREN_DEPTH = 10

_LINE_COMMENT = re.compile(r"--.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class SafetyPolicy:
    """Engine-specific blocks layered on top of the universal ones.

    Patterns and keywords are matched against the lowercased, comment-free
    statement.
    """

    engine: str
    dangerous_patterns: tuple[str, ...] = ()
    dangerous_keywords: tuple[str, ...] = ()
    max_nested_paren_depth: int = DEFAULT_MAX_NESTED_PAREN_DEPTH
    _compiled_patterns: tuple = field(init=False, repr=False, compare=False)
    _compiled_keywords: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_compiled_patterns",
                           tuple(re.compile(pattern) for pattern in self.dangerous_patterns))
        object.__setattr__(self, "_compiled_keywords",
                           tuple((re.compile(rf"\b{re.escape(keyword.lower())}\b"), keyword)
                                 for keyword in self.dangerous_keywords))


def normalize_query(query: str) -> str:
    """Strip comments, lowercase and collapse whitespace."""
    normalized = _LINE_COMMENT.sub("", query)
    normalized = _BLOCK_COMMENT.sub("", normalized)
    normalized = normalized.lower()
    return _WHITESPACE.sub(" ", normalized).strip()


def validate_query(query: str, policy: SafetyPolicy) -> tuple[bool, Optional[str]]:
    """Validate that a query is a single side-effect-free SELECT.

    Anything uncertain or malformed is rejected.

    Args:
        query: Raw SQL text supplied by the caller
        policy: Safety policy of the target engine

    Returns:
        Tuple of (is_valid, error_message)
        - (True, None) if the query is accepted
        - (False, error_message) describing the first failed check
    """
    if not query or not query.strip():
        return False, "Query cannot be empty"

    normalized = normalize_query(query)
    if not normalized:
        return False, "Query cannot be empty (only comments found)"

    statements = [stmt.strip() for stmt in normalized.split(";") if stmt.strip()]
    if len(statements) > 1:
        return False, _rejection(query, "multiple statements detected",
                                 "Submit exactly one SELECT statement per call")

    stmt = statements[0]
    if not stmt.startswith("select"):
        return False, _rejection(query, "only SELECT statements are allowed",
                                 "Rewrite the query as a single SELECT")

    for pattern, operation in COMPILED_UNIVERSAL_PATTERNS:
        if pattern.search(stmt):
            return False, _rejection(query, f"{operation} operation detected (write operation)",
                                     "Only read-only operations are allowed")

    for pattern in policy._compiled_patterns:
        if pattern.search(stmt):
            return False, _rejection(query, f"pattern '{pattern.pattern}' is not allowed for {policy.engine}",
                                     "File access, locking, variable capture and procedure calls are blocked")

    for pattern, keyword in policy._compiled_keywords:
        if pattern.search(stmt):
            return False, _rejection(query, f"keyword '{keyword}' is not allowed for {policy.engine}",
                                     "Remove the blocked function or statement")

    open_parens = stmt.count("(")
    close_parens = stmt.count(")")
    if open_parens != close_parens:
        return False, _rejection(query, "unbalanced parentheses",
                                 "Check the query for a missing '(' or ')'")

    if open_parens > policy.max_nested_paren_depth:
        return False, _rejection(query, f"too many parentheses ({open_parens} > {policy.max_nested_paren_depth})",
                                 "Simplify the query or split it into smaller queries")

    return True, None


def is_safe_query(query: str, policy: SafetyPolicy) -> bool:
    """Quick check if query is safe for the engine.

    Args:
        query: Query to check
        policy: Safety policy of the target engine

    Returns:
        True if query appears to be read-only
    """
    is_valid, _ = validate_query(query, policy)
    return is_valid


def _rejection(query: str, reason: str, hint: str) -> str:
    return (
        f"Query rejected: {reason}\n"
        f"  Hint: {hint}\n"
        f"  Query: {query[:100]}{'...' if len(query) > 100 else ''}"
    )
