"""Name-keyed registry of database configurations."""

import logging
import threading
from typing import Callable, Optional

from pydantic import ValidationError

from .database.adapters import DatabaseAdapter, create_adapter
from .errors import ConnectionUnreachableError, NotFoundError, ValidationFailureError
from .models import EngineConfig, RegisteredDatabase, SchemaSnapshot
from .storage import RegistryStorage

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps caller-chosen names to validated engine configurations.

    Only configurations that answered a reachability probe are accepted.
    When a storage backend is given, the registry is loaded from it on start
    and every write is persisted before it becomes visible.
    """

    def __init__(
        self,
        storage: Optional[RegistryStorage] = None,
        adapter_factory: Callable[[str], DatabaseAdapter] = create_adapter,
    ):
        self._storage = storage
        self._adapter_factory = adapter_factory
        self._databases: dict[str, RegisteredDatabase] = {}
        # Tool calls run on worker threads
        self._lock = threading.Lock()

        if storage is not None:
            self._databases = self._load(storage)

    def _load(self, storage: RegistryStorage) -> dict[str, RegisteredDatabase]:
        databases = {}
        for name, state in storage.load().items():
            entry = RegisteredDatabase.from_state(state)
            if entry.name != name:
                raise ValidationFailureError(
                    f"Persisted registry is inconsistent\n"
                    f"  Error: key {name!r} holds database {entry.name!r}"
                )
            databases[name] = entry
        logger.info(f"Loaded {len(databases)} registered database(s) from {storage.registry_path}")
        return databases

    def _commit(self, databases: dict[str, RegisteredDatabase]) -> None:
        """Persist then publish a new map. Caller holds the lock."""
        if self._storage is not None:
            self._storage.save({name: entry.to_state() for name, entry in databases.items()})
        self._databases = databases

    def adapter_for(self, database: RegisteredDatabase) -> DatabaseAdapter:
        return self._adapter_factory(database.engine)

    def add(self, name: str, config: EngineConfig) -> RegisteredDatabase:
        """Register a database after checking that it is reachable.

        Re-adding an existing name replaces its configuration and drops its
        cached schemas.

        Raises:
            ValidationFailureError: If the name or configuration is invalid
            ConnectionUnreachableError: If the reachability probe fails
        """
        if not name or not name.strip():
            raise ValidationFailureError("Database name cannot be empty")

        try:
            entry = RegisteredDatabase(name=name, engine=config.type, config=config)
        except ValidationError as e:
            raise ValidationFailureError(
                f"Invalid database configuration for {name!r}\n"
                f"  Error: {e}"
            ) from e

        adapter = self._adapter_factory(config.type)
        if not adapter.check_reachability(config):
            raise ConnectionUnreachableError(
                f"Database {name!r} is not reachable\n"
                f"  Hint: Check the connection details and that the server or file exists\n"
                f"  Target: {config.dsn}"
            )

        with self._lock:
            self._commit({**self._databases, name: entry})
        logger.info(f"Registered {config.type} database {name!r}")
        return entry

    def get(self, name: str) -> Optional[RegisteredDatabase]:
        return self._databases.get(name)

    def require(self, name: str) -> RegisteredDatabase:
        """Look up a registered database.

        Raises:
            NotFoundError: If no database is registered under ``name``
        """
        entry = self._databases.get(name)
        if entry is None:
            raise NotFoundError(
                f"Database {name!r} not found\n"
                f"  Hint: Register it first with add_database"
            )
        return entry

    def list(self) -> list[str]:
        """Registered names in insertion order."""
        return list(self._databases)

    def remove(self, name: str) -> None:
        """Unregister a database.

        Raises:
            NotFoundError: If no database is registered under ``name``
        """
        with self._lock:
            if name not in self._databases:
                raise NotFoundError(f"Database {name!r} not found")
            databases = dict(self._databases)
            del databases[name]
            self._commit(databases)
        logger.info(f"Removed database {name!r}")

    def update_schemas(self, name: str, schemas: dict[str, SchemaSnapshot]) -> RegisteredDatabase:
        """Replace the cached schema snapshots of a registered database.

        Raises:
            NotFoundError: If the database was removed meanwhile
            ValidationFailureError: If the snapshots do not validate
        """
        with self._lock:
            current = self._databases.get(name)
            if current is None:
                raise NotFoundError(f"Database {name!r} not found")
            try:
                entry = RegisteredDatabase(
                    name=current.name,
                    engine=current.engine,
                    config=current.config,
                    schemas=schemas,
                )
            except ValidationError as e:
                raise ValidationFailureError(
                    f"Invalid schema snapshot for {name!r}\n"
                    f"  Error: {e}"
                ) from e
            self._commit({**self._databases, name: entry})
        return entry
