"""
Postgres + pgvector backend for a generic vector provider contract.

Main components:
- VectorProvider: Abstract base class defining the provider interface
- PostgresProvider: pgvector implementation with per-database pools
- PgVectorClient: SQL for collection DDL, mutations and search
- compile_condition_group: Condition tree -> SQL filter compiler
- VectorIndexer: Delete-then-insert indexing of source documents
- get_provider: Name -> provider registry
"""

from src.vectorstore.base import VectorProvider
from src.vectorstore.client import PgVectorClient
from src.vectorstore.config import VectorStoreConfig
from src.vectorstore.connection import (
    ConnectionResolver,
    EnvSecretStore,
    SecretStore,
    StaticSecretStore,
)
from src.vectorstore.escaping import SqlEscaper
from src.vectorstore.exceptions import (
    CollectionError,
    DatabaseConnectionError,
    DatabaseNotConfiguredError,
    VectorDbError,
)
from src.vectorstore.filters import compile_condition_group, prepare_filters
from src.vectorstore.indexer import EmbeddingStrategy, VectorIndexer, validate_embedding
from src.vectorstore.postgres_provider import PostgresProvider
from src.vectorstore.registry import available_providers, get_provider, register_provider
from src.vectorstore.schemas import (
    CompiledFilter,
    Condition,
    ConditionGroup,
    ConnectionParams,
    FieldInfo,
    FieldValue,
    IndexConfiguration,
    RecoverableWarning,
    SimilarityMetric,
    SourceDocument,
    StaticIndexSchema,
)

__all__ = [
    "VectorProvider",
    "PostgresProvider",
    "PgVectorClient",
    "VectorStoreConfig",
    "ConnectionResolver",
    "SecretStore",
    "EnvSecretStore",
    "StaticSecretStore",
    "SqlEscaper",
    "VectorDbError",
    "DatabaseNotConfiguredError",
    "DatabaseConnectionError",
    "CollectionError",
    "compile_condition_group",
    "prepare_filters",
    "EmbeddingStrategy",
    "VectorIndexer",
    "validate_embedding",
    "get_provider",
    "register_provider",
    "available_providers",
    "CompiledFilter",
    "Condition",
    "ConditionGroup",
    "ConnectionParams",
    "FieldInfo",
    "FieldValue",
    "IndexConfiguration",
    "RecoverableWarning",
    "SimilarityMetric",
    "SourceDocument",
    "StaticIndexSchema",
]
