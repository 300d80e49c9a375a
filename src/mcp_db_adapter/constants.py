"""Constants and static configuration for the MCP database adapter server."""

import os
from pathlib import Path

# Application constants
SERVER_NAME = "mcp-db-adapter"
SERVER_VERSION = "0.1.0"
EXIT_SUCCESS = 0
EXIT_FAILURE = 1

# State storage
STATE_DIR_ENV = "MCP_DB_ADAPTER_HOME"
DEFAULT_STATE_DIR = Path(os.environ.get(STATE_DIR_ENV, Path.home() / ".mcp-db-adapter"))
REGISTRY_FILE_NAME = "registry.enc"
KEY_FILE_NAME = ".key"

# Database constants
DB_CONNECT_TIMEOUT = 10.0  # Schema introspection and query connections
DB_PROBE_TIMEOUT = 5.0  # Reachability probes should fail fast
DB_QUERY_TIMEOUT = 30.0  # Wall-clock limit for a single query
DB_CANCEL_GRACE_PERIOD = 5.0  # Time given to a cancelled query to unwind
DEFAULT_QUERY_LIMIT = 100  # Implicit LIMIT for caller queries
SAMPLE_ROWS = 5
TOP_VALUES_LIMIT = 10
GENERIC_COLUMN_TYPE = "VARCHAR"  # Used when a driver does not report column types
IN_MEMORY_DATABASE = ":memory:"
SUPPORTED_ENGINES = ["mysql", "postgresql", "sqlite", "duckdb"]

# Default namespaces
DEFAULT_SQLITE_SCHEMA_NAME = "main"
DEFAULT_DUCKDB_SCHEMA_NAME = "main"
DEFAULT_POSTGRESQL_SCHEMA_NAME = "public"

# Profiling report thresholds
HIGH_UNIQUENESS_PCT = 95.0  # Likely an identifier column
LOW_UNIQUENESS_PCT = 5.0  # Categorical candidate
LOW_COMPLETENESS_PCT = 70.0
FEW_DISTINCT_VALUES = 10
SMALL_DATASET_ROWS = 1_000
MEDIUM_DATASET_ROWS = 100_000
SMALL_DATASET_MB = 1
MEDIUM_DATASET_MB = 100
