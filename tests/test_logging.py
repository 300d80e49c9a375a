"""Tests for the JSON event logger."""

import json
import logging
from unittest.mock import MagicMock

import psycopg2
import pytest

from mcp_db_adapter.database.logging import (
    QueryTimer,
    hash_query,
    log_connection,
    log_query_execution,
    log_schema_introspection,
)
from mcp_db_adapter.database.adapters import postgresql as postgresql_module
from mcp_db_adapter.database.adapters.postgresql import PostgreSQLAdapter
from mcp_db_adapter.errors import UnsafeQueryError
from mcp_db_adapter.models import PostgreSQLConfig
from mcp_db_adapter.tools import DatabaseTools

LOGGER = "mcp_db_adapter.database"


def events(caplog):
    return [(record.levelno, json.loads(record.getMessage())) for record in caplog.records if record.name == LOGGER]


class TestEvents:

    def test_connection_levels(self, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER)
        log_connection("sqlite:///shop.db", success=True, duration=0.01234)
        log_connection("sqlite:///shop.db", success=False, error="gone", probe=True)
        log_connection("sqlite:///shop.db", success=False, error="gone")

        (ok_level, ok), (check_level, failed_check), (error_level, failed) = events(caplog)
        assert (ok_level, ok["event"], ok["duration_seconds"]) == (logging.INFO, "database_connection", 0.012)
        assert "error" not in ok
        assert (check_level, failed_check["event"]) == (logging.WARNING, "database_probe")
        assert (error_level, failed["error"]) == (logging.ERROR, "gone")

    @pytest.mark.parametrize("success, blocked, level", [
        (True, False, logging.INFO),
        (False, False, logging.ERROR),
        (False, True, logging.WARNING),
    ])
    def test_query_levels(self, caplog, success, blocked, level):
        caplog.set_level(logging.INFO, logger=LOGGER)
        log_query_execution("SELECT 1", "duckdb://:memory:", success=success, blocked=blocked)

        [(logged_level, event)] = events(caplog)
        assert logged_level == level
        assert event["blocked"] is blocked
        assert event["query_hash"] == hash_query("SELECT 1")

    def test_long_queries_are_previewed(self, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER)
        query = "SELECT " + ", ".join(f"c{i}" for i in range(100)) + " FROM t"
        log_query_execution(query, "sqlite:///shop.db", success=True, row_count=3)

        [(_, event)] = events(caplog)
        assert event["query_preview"] == query[:100] + "..."
        assert event["row_count"] == 3

    def test_schema_introspection(self, caplog):
        caplog.set_level(logging.INFO, logger=LOGGER)
        log_schema_introspection("sqlite:///shop.db", "main", 2)

        [(_, event)] = events(caplog)
        assert event == {"event": "schema_introspection", "dsn": "sqlite:///shop.db", "schema": "main",
                         "table_count": 2, "duration_seconds": 0.0}


def test_hash_is_stable_and_short():
    assert hash_query("SELECT 1") == hash_query("SELECT 1")
    assert hash_query("SELECT 1") != hash_query("SELECT 2")
    assert len(hash_query("SELECT 1")) == 16


def test_query_timer_records_duration():
    with QueryTimer() as timer:
        sum(range(1000))
    assert timer.duration > 0


def test_failed_connection_log_carries_no_password(caplog, monkeypatch):
    caplog.set_level(logging.INFO, logger=LOGGER)
    monkeypatch.setattr(postgresql_module.psycopg2, "connect",
                        MagicMock(side_effect=psycopg2.OperationalError("could not connect")))
    config = PostgreSQLConfig(host="db.internal", user="reader", password="s3cret", database="shop")

    result = PostgreSQLAdapter().execute_query("SELECT 1", config)

    assert not result.success
    assert [event["dsn"] for _, event in events(caplog)] == ["postgresql://reader@db.internal:5432/shop"] * 2
    assert "s3cret" not in caplog.text


def test_blocked_query_is_logged_as_warning(caplog, tools: DatabaseTools, sqlite_path):
    tools.add_database("shop", {"type": "sqlite", "file": str(sqlite_path)})
    caplog.set_level(logging.INFO, logger=LOGGER)

    with pytest.raises(UnsafeQueryError):
        tools.safe_execute_query("shop", "DELETE FROM customers")

    [(level, event)] = events(caplog)
    assert level == logging.WARNING
    assert event["blocked"] is True
    assert event["query_preview"] == "DELETE FROM customers"
