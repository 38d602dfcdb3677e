"""
Data models shared by the pgvector provider.

Covers connection parameters, the extra-field value bag, the condition
tree consumed by the filter compiler, index metadata, and the value
objects returned by soft-fail operations.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import quote

DEFAULT_POSTGRES_PORT = 5432

# Columns always present on a collection table. Extra fields may never
# reuse these names.
NATIVE_FIELDS: frozenset[str] = frozenset({
    "id",
    "owning_entity_id",
    "owning_long_id",
    "content",
    "vector",
    "server_id",
    "index_id",
})

# Field types whose values are free text and need literal escaping
STRING_FIELD_TYPES: frozenset[str] = frozenset({"string", "text", "full_text"})

VALID_CONJUNCTIONS: frozenset[str] = frozenset({"AND", "OR"})

# Declared index field type -> Postgres column type
FIELD_SQL_TYPES: dict[str, str] = {
    "string": "TEXT",
    "text": "TEXT",
    "full_text": "TEXT",
    "integer": "BIGINT",
    "date": "BIGINT",
    "decimal": "DOUBLE PRECISION",
    "boolean": "BOOLEAN",
}


def column_type(field_type: str | None, sample: Any = None) -> str:
    """
    Postgres column type for an extra field.

    Uses the declared field type when known, otherwise infers it from a
    sample value. Anything unrecognised is stored as TEXT.
    """
    if field_type is not None and field_type in FIELD_SQL_TYPES:
        return FIELD_SQL_TYPES[field_type]
    if isinstance(sample, bool):
        return "BOOLEAN"
    if isinstance(sample, int):
        return "BIGINT"
    if isinstance(sample, float):
        return "DOUBLE PRECISION"
    return "TEXT"


def coerce_value(sql_type: str, value: Any) -> Any:
    """Convert a value to the Python type asyncpg expects for a column type."""
    if value is None:
        return None
    if sql_type == "BIGINT":
        return int(value)
    if sql_type == "DOUBLE PRECISION":
        return float(value)
    if sql_type == "BOOLEAN":
        return bool(value)
    return str(value)


class SimilarityMetric(str, Enum):
    """Vector distance used to rank nearest neighbours."""

    COSINE = "cosine_similarity"
    EUCLIDEAN = "euclidean_distance"
    INNER_PRODUCT = "inner_product"


@dataclass(frozen=True)
class ConnectionParams:
    """
    Fully resolved connection settings for a pgvector server.

    Attributes:
        host: Server hostname
        port: Server port
        username: Login role
        password: Resolved secret value (never the secret name)
        default_database: Database used when an operation names none
    """

    host: str
    port: int
    username: str
    password: str
    default_database: str

    def dsn(self, database: str | None = None) -> str:
        """Render an asyncpg DSN for the given database (or the default one)."""
        return (
            f"postgresql://{quote(self.username, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{quote(database or self.default_database, safe='')}"
        )

    def __repr__(self) -> str:
        return (
            f"ConnectionParams(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, password='***', "
            f"default_database={self.default_database!r})"
        )


@dataclass(frozen=True)
class FieldValue:
    """
    Tagged value of an extra field.

    Scalar values go to a column on the collection table; multi-valued
    ones go to the field's side table, one row per value. ``field_type``
    is the declared index type, used to pick the column type; when it
    is None the type is inferred from the Python value.
    """

    value: Any
    is_multiple: bool = False
    field_type: str | None = None

    def __post_init__(self) -> None:
        if self.is_multiple and not isinstance(self.value, (list, tuple)):
            raise ValueError(
                f"Multi-valued field requires a list, got {type(self.value).__name__}"
            )

    @classmethod
    def scalar(cls, value: Any, field_type: str | None = None) -> "FieldValue":
        return cls(value=value, is_multiple=False, field_type=field_type)

    @classmethod
    def multi(cls, values: list[Any], field_type: str | None = None) -> "FieldValue":
        return cls(value=list(values), is_multiple=True, field_type=field_type)

    @property
    def values(self) -> list[Any]:
        """Values as a list, regardless of cardinality."""
        if self.is_multiple:
            return list(self.value)
        return [self.value]


@dataclass(frozen=True)
class FieldInfo:
    """
    Declared metadata for an indexed field.

    Attributes:
        identifier: Column name of the field
        type: Declared data type (string, full_text, integer, decimal, boolean, date)
        is_multiple: Whether the field holds several values per document
    """

    identifier: str
    type: str = "string"
    is_multiple: bool = False


class IndexSchema(Protocol):
    """Index metadata the filter compiler and orchestrator consult."""

    id: str
    server_id: str | None

    def get_field(self, name: str) -> FieldInfo | None: ...


@dataclass
class StaticIndexSchema:
    """In-memory IndexSchema backed by a name -> FieldInfo mapping."""

    id: str
    fields: dict[str, FieldInfo] = field(default_factory=dict)
    server_id: str | None = None

    def get_field(self, name: str) -> FieldInfo | None:
        return self.fields.get(name)


@dataclass(frozen=True)
class Condition:
    """A single field/operator/value leaf of a condition tree."""

    field: str
    value: Any
    operator: str = "="

    @property
    def values(self) -> list[Any]:
        if isinstance(self.value, (list, tuple, set, frozenset)):
            return list(self.value)
        return [self.value]


@dataclass
class ConditionGroup:
    """
    A boolean group of conditions and nested groups.

    Attributes:
        conjunction: AND or OR
        conditions: Child Condition leaves and ConditionGroups
    """

    conjunction: str = "AND"
    conditions: list["Condition | ConditionGroup"] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.conjunction = self.conjunction.upper()
        if self.conjunction not in VALID_CONJUNCTIONS:
            raise ValueError(
                f"Invalid conjunction {self.conjunction!r}. "
                f"Must be one of: {sorted(VALID_CONJUNCTIONS)}"
            )

    def add_condition(
        self, field_name: str, value: Any, operator: str = "="
    ) -> "ConditionGroup":
        self.conditions.append(Condition(field_name, value, operator))
        return self

    def add_group(self, group: "ConditionGroup") -> "ConditionGroup":
        self.conditions.append(group)
        return self


@dataclass
class IndexConfiguration:
    """
    Backend configuration of one search index.

    Attributes:
        collection: Collection (table) holding the index's rows
        database_name: Database holding the collection (None = default)
        metric: Similarity metric, fixed for the index
        embeddings_engine: Engine id passed to the embedding producer
        chat_model: Model id passed to the embedding producer
        embedding_strategy_configuration: Opaque producer settings
    """

    collection: str
    database_name: str | None = None
    metric: SimilarityMetric = SimilarityMetric.COSINE
    embeddings_engine: str | None = None
    chat_model: str | None = None
    embedding_strategy_configuration: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.metric = SimilarityMetric(self.metric)


@dataclass
class SourceDocument:
    """A document handed to the indexing orchestrator."""

    id: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class Embedding:
    """One embedded chunk returned by the embedding producer."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecoverableWarning:
    """
    A failure that was absorbed instead of raised.

    Attributes:
        operation: Operation that produced the warning
        message: Human readable description
        benign: True when the failure was an existence conflict
            (already exists / already absent)
    """

    operation: str
    message: str
    benign: bool = False


@dataclass
class CompiledFilter:
    """Output of the filter compiler."""

    where: list[str] = field(default_factory=list)
    joins: list[str] = field(default_factory=list)
    warnings: list[RecoverableWarning] = field(default_factory=list)
    conjunction: str = "AND"

    @property
    def is_empty(self) -> bool:
        return not self.where

    def render(self) -> str:
        """Render as a FROM-clause suffix: joins followed by the WHERE clause."""
        if not self.where:
            return ""
        parts = list(self.joins)
        parts.append("WHERE " + f" {self.conjunction} ".join(self.where))
        return " ".join(parts)
