"""Unified, engine-agnostic data model.

Every adapter produces these models from its own catalog queries, and the
registry persists them. Engine configurations form a closed union
discriminated by the ``type`` field.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .constants import IN_MEMORY_DATABASE
from .errors import ValidationFailureError

EngineKind = Literal["mysql", "postgresql", "sqlite", "duckdb"]


# ---------- Engine configurations ----------


class _NetworkConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = Field(min_length=1)
    port: int = Field(gt=0, lt=65536)
    user: str
    password: str = ""
    database: str = Field(min_length=1)

    @property
    def dsn(self) -> str:
        """Connection string for logging (password omitted)."""
        return f"{self.type}://{self.user}@{self.host}:{self.port}/{self.database}"


class MySQLConfig(_NetworkConfig):
    type: Literal["mysql"] = "mysql"
    port: int = Field(default=3306, gt=0, lt=65536)


class PostgreSQLConfig(_NetworkConfig):
    type: Literal["postgresql"] = "postgresql"
    port: int = Field(default=5432, gt=0, lt=65536)


class SQLiteConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["sqlite"] = "sqlite"
    file: str = Field(min_length=1)  # absolute path or ':memory:'
    readonly: bool = False

    @property
    def in_memory(self) -> bool:
        return self.file == IN_MEMORY_DATABASE

    @property
    def dsn(self) -> str:
        return f"sqlite:///{self.file}"


class DuckDBConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["duckdb"] = "duckdb"
    file: Optional[str] = None  # None means an in-memory database
    readonly: bool = False
    config: dict[str, Any] = Field(default_factory=dict)  # duckdb.connect() options

    @property
    def path(self) -> str:
        return self.file or IN_MEMORY_DATABASE

    @property
    def in_memory(self) -> bool:
        return self.path == IN_MEMORY_DATABASE

    @property
    def dsn(self) -> str:
        return f"duckdb:///{self.path}"


EngineConfig = Annotated[
    Union[MySQLConfig, PostgreSQLConfig, SQLiteConfig, DuckDBConfig],
    Field(discriminator="type"),
]

ENGINE_CONFIG_ADAPTER: TypeAdapter = TypeAdapter(EngineConfig)


def parse_engine_config(data: Any) -> Union[MySQLConfig, PostgreSQLConfig, SQLiteConfig, DuckDBConfig]:
    """Validate raw tool arguments into an engine configuration.

    Raises:
        ValidationFailureError: If the payload does not match any engine shape
    """
    try:
        return ENGINE_CONFIG_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ValidationFailureError(
            f"Invalid database configuration\n"
            f"  Error: {_summarize_validation_error(e)}\n"
            f"  Hint: 'type' must be one of mysql, postgresql, sqlite, duckdb"
        ) from e


# ---------- Column & table ----------


class ColumnDescriptor(BaseModel):
    name: str
    data_type: str
    nullable: bool
    default: Optional[str] = None
    is_primary_key: Optional[bool] = None
    is_foreign_key: Optional[bool] = None


class TableStats(BaseModel):
    row_count: int = Field(ge=0)
    size_mb: Optional[float] = None


class TableDescriptor(BaseModel):
    name: str
    columns: list[ColumnDescriptor]
    stats: TableStats

    @model_validator(mode="after")
    def _unique_columns(self) -> "TableDescriptor":
        names = [column.name for column in self.columns]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate column names in table {self.name}")
        return self


# ---------- Schema (namespace) ----------


class SchemaStats(BaseModel):
    total_tables: int = Field(ge=0)
    total_rows: Optional[int] = Field(default=None, ge=0)


class SchemaSnapshot(BaseModel):
    name: str
    tables: dict[str, TableDescriptor]
    stats: SchemaStats

    @model_validator(mode="after")
    def _keys_match_names(self) -> "SchemaSnapshot":
        for key, table in self.tables.items():
            if key != table.name:
                raise ValueError(f"table key {key!r} does not match table name {table.name!r}")
        return self


# ---------- Registered database ----------


class RegisteredDatabase(BaseModel):
    name: str = Field(min_length=1)
    engine: EngineKind
    config: EngineConfig
    schemas: dict[str, SchemaSnapshot] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _engine_matches_config(self) -> "RegisteredDatabase":
        if self.engine != self.config.type:
            raise ValueError(f"engine {self.engine!r} does not match config type {self.config.type!r}")
        return self

    def to_state(self) -> dict[str, Any]:
        """Persisted layout: the config is stored without its type tag."""
        return {
            "name": self.name,
            "engine": self.engine,
            "config": self.config.model_dump(exclude={"type"}),
            "schemas": {key: schema.model_dump() for key, schema in self.schemas.items()},
        }

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> "RegisteredDatabase":
        """Rebuild from the persisted layout.

        Raises:
            ValidationFailureError: If the state does not match the model
        """
        try:
            engine = state["engine"]
            config = {**state["config"], "type": engine}
            return cls.model_validate({**state, "config": config})
        except (KeyError, TypeError, ValidationError) as e:
            name = state.get("name") if isinstance(state, dict) else None
            raise ValidationFailureError(
                f"Invalid persisted state for database {name!r}\n"
                f"  Error: {e}"
            ) from e


# ---------- Query results ----------


class ResultColumn(BaseModel):
    name: str
    type: str


class QueryResult(BaseModel):
    success: bool
    rows: list[dict[str, Any]] = Field(default_factory=list)
    columns: list[ResultColumn] = Field(default_factory=list)
    row_count: int = 0
    error: Optional[str] = None

    @classmethod
    def ok(cls, rows: list[dict[str, Any]], columns: list[ResultColumn]) -> "QueryResult":
        return cls(success=True, rows=rows, columns=columns, row_count=len(rows))

    @classmethod
    def failure(cls, error: str) -> "QueryResult":
        return cls(success=False, error=error)


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"]) or "config"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
