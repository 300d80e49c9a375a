"""Shared fixtures: small SQLite and DuckDB databases built in tmp_path.

Both databases hold the same two tables:
- customers: 3 rows (one NULL email, one empty email)
- orders: 5 rows referencing customers (one NULL amount)
"""

import sqlite3
from pathlib import Path

import duckdb
import pytest

from mcp_db_adapter.models import DuckDBConfig, SQLiteConfig
from mcp_db_adapter.registry import ConnectionRegistry
from mcp_db_adapter.tools import DatabaseTools

CUSTOMERS = [
    (1, "Alice", "alice@example.com"),
    (2, "Bob", None),
    (3, "Carol", ""),
]

ORDERS = [
    (1, 1, 10.0, "paid"),
    (2, 1, 20.0, "paid"),
    (3, 2, 30.0, "pending"),
    (4, 3, 40.0, "paid"),
    (5, 3, None, "refunded"),
]

SCHEMA_DDL = [
    """
    CREATE TABLE customers (
        id INTEGER PRIMARY KEY,
        name VARCHAR NOT NULL,
        email VARCHAR
    )
    """,
    """
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY,
        customer_id INTEGER REFERENCES customers(id),
        amount DOUBLE,
        status VARCHAR
    )
    """,
]


@pytest.fixture
def sqlite_path(tmp_path) -> Path:
    """SQLite file with the customers/orders tables."""
    path = tmp_path / "shop.db"
    connection = sqlite3.connect(path)
    try:
        for ddl in SCHEMA_DDL:
            connection.execute(ddl)
        connection.executemany("INSERT INTO customers VALUES (?, ?, ?)", CUSTOMERS)
        connection.executemany("INSERT INTO orders VALUES (?, ?, ?, ?)", ORDERS)
        connection.commit()
    finally:
        connection.close()
    return path


@pytest.fixture
def duckdb_path(tmp_path) -> Path:
    """DuckDB file with the customers/orders tables.

    The writing connection is closed before tests open the file read-only.
    """
    path = tmp_path / "shop.duckdb"
    connection = duckdb.connect(str(path))
    try:
        for ddl in SCHEMA_DDL:
            connection.execute(ddl)
        connection.executemany("INSERT INTO customers VALUES (?, ?, ?)", [list(row) for row in CUSTOMERS])
        connection.executemany("INSERT INTO orders VALUES (?, ?, ?, ?)", [list(row) for row in ORDERS])
    finally:
        connection.close()
    return path


@pytest.fixture
def sqlite_config(sqlite_path) -> SQLiteConfig:
    return SQLiteConfig(file=str(sqlite_path))


@pytest.fixture
def duckdb_config(duckdb_path) -> DuckDBConfig:
    return DuckDBConfig(file=str(duckdb_path))


@pytest.fixture
def registry() -> ConnectionRegistry:
    """Registry that is not persisted."""
    return ConnectionRegistry()


@pytest.fixture
def tools(registry) -> DatabaseTools:
    return DatabaseTools(registry)


def sqlite_count(path: Path, table: str) -> int:
    """Row count read through a separate connection."""
    connection = sqlite3.connect(path)
    try:
        return connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        connection.close()


@pytest.fixture
def count_rows():
    return sqlite_count
