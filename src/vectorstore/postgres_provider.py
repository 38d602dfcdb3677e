"""
Postgres + pgvector implementation of the VectorProvider interface.

Resolves credentials, keeps one connection pool per database, and runs
PgVectorClient statements on a connection acquired for the duration of
a single operation. Lifecycle and delete failures are absorbed and
returned as RecoverableWarning; configuration, connection, insert and
search failures propagate.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from contextlib import asynccontextmanager, contextmanager
from types import TracebackType
from typing import Any

import asyncpg
import structlog

from src.config.settings import Settings
from src.observability.metrics import MetricsCollector, get_metrics
from src.observability.tracing import get_tracer, traced
from src.storage.database import Database
from src.vectorstore.base import VectorProvider
from src.vectorstore.client import PgVectorClient
from src.vectorstore.config import VectorStoreConfig
from src.vectorstore.connection import ConnectionResolver, EnvSecretStore, SecretStore
from src.vectorstore.escaping import SqlEscaper
from src.vectorstore.exceptions import (
    CollectionError,
    CreateCollectionError,
    DatabaseConnectionError,
    DeleteFromCollectionError,
    DropCollectionError,
    InsertIntoCollectionError,
)
from src.vectorstore.filters import compile_condition_group
from src.vectorstore.schemas import (
    NATIVE_FIELDS,
    CompiledFilter,
    ConditionGroup,
    ConnectionParams,
    FieldValue,
    IndexConfiguration,
    IndexSchema,
    RecoverableWarning,
    SimilarityMetric,
)

logger = structlog.get_logger(__name__)

_REQUIRED_NATIVE_FIELDS = ("owning_entity_id", "owning_long_id", "vector")


class PostgresProvider(VectorProvider):
    """
    pgvector-backed vector provider.

    Usage:
        async with PostgresProvider(overrides={"host": "db"}) as provider:
            await provider.create_collection("docs", dimension=768)
            rows = await provider.vector_search("docs", vector, ["id", "content"])
    """

    name = "postgres"

    def __init__(
        self,
        settings: Settings | None = None,
        secret_store: SecretStore | None = None,
        config: VectorStoreConfig | None = None,
        overrides: Mapping[str, Any] | None = None,
        client: PgVectorClient | None = None,
        database_factory: Callable[[str], Database] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the provider.

        Args:
            settings: Persisted configuration (defaults to get_settings())
            secret_store: Resolves the password secret name
            config: Vector store tuning
            overrides: Per-provider connection settings that win over settings
            client: Statement builder (created if not provided)
            database_factory: Builds a Database from a DSN (for tests)
            metrics: Metrics collector (defaults to the global one)
        """
        self._config = config or VectorStoreConfig()
        self._resolver = ConnectionResolver(
            settings,
            secret_store or EnvSecretStore(prefix=self._config.secret_env_prefix),
        )
        self._overrides = dict(overrides or {})
        self._client = client or PgVectorClient(self._config)
        self._database_factory = database_factory or Database
        self._metrics = metrics or get_metrics()
        self._tracer = get_tracer(__name__)
        self._databases: dict[str, Database] = {}
        self._databases_lock = asyncio.Lock()

    async def __aenter__(self) -> "PostgresProvider":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Connection handling ───────────────────────────────────────────

    def get_connection_data(self) -> ConnectionParams:
        return self._resolver.resolve(self._overrides)

    def is_setup(self) -> bool:
        return bool(self._overrides.get("host") or self._resolver.settings.postgres_configured)

    async def close(self) -> None:
        """Close every pool opened by this provider."""
        databases, self._databases = self._databases, {}
        for database in databases.values():
            await database.close()

    async def _get_database(self, database: str | None) -> Database:
        params = self.get_connection_data()
        name = database or params.default_database
        dsn = params.dsn(name)

        db = self._databases.get(dsn)
        if db is not None:
            return db

        # One pool per DSN even when several operations open it at once
        async with self._databases_lock:
            db = self._databases.get(dsn)
            if db is not None:
                return db

            db = self._database_factory(dsn)
            try:
                await db.connect()
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as e:
                raise DatabaseConnectionError(
                    f"Could not connect to {params.host}:{params.port}/{name}: {e}",
                    database=name,
                ) from e
            self._databases[dsn] = db
        return db

    @asynccontextmanager
    async def _connection(self, database: str | None) -> AsyncIterator[asyncpg.Connection]:
        db = await self._get_database(database)
        async with db.acquire() as conn:
            yield conn

    # ── Observability helpers ─────────────────────────────────────────

    @contextmanager
    def _observe(
        self,
        operation: str,
        collection: str | None = None,
        database: str | None = None,
    ) -> Iterator[dict[str, str]]:
        outcome = {"status": "success"}
        start = time.perf_counter()
        attributes = {"vdb.collection": collection, "vdb.database": database}
        with traced(self._tracer, f"vdb.{operation}", attributes):
            try:
                yield outcome
            except Exception:
                outcome["status"] = "error"
                raise
            finally:
                self._metrics.record_operation(
                    operation, outcome["status"], time.perf_counter() - start
                )

    def _absorb(self, error: CollectionError, outcome: dict[str, str]) -> RecoverableWarning:
        outcome["status"] = "warning"
        self._metrics.record_warning(error.operation, error.benign)
        logger.warning(
            f"{error.operation.replace('_', ' ').capitalize()} error: {error}",
            collection=error.collection,
            benign=error.benign,
        )
        return RecoverableWarning(
            operation=error.operation,
            message=str(error),
            benign=error.benign,
        )

    # ── Collection lifecycle ──────────────────────────────────────────

    async def ping(self, database: str | None = None) -> bool:
        with self._observe("ping", database=database):
            try:
                async with self._connection(database) as conn:
                    return await self._client.ping(conn)
            except DatabaseConnectionError as e:
                logger.warning("Ping could not connect", error=str(e))
                return False

    async def get_collections(self, database: str | None = None) -> list[str]:
        with self._observe("get_collections", database=database):
            async with self._connection(database) as conn:
                return await self._client.get_collections(conn)

    async def create_collection(
        self,
        collection: str,
        dimension: int,
        metric: SimilarityMetric | None = None,
        database: str | None = None,
    ) -> RecoverableWarning | None:
        # An existing collection comes back as a benign warning
        with self._observe("create_collection", collection, database) as outcome:
            async with self._connection(database) as conn:
                try:
                    await self._client.create_collection(
                        conn,
                        collection,
                        dimension,
                        metric or self._config.default_metric,
                    )
                except CreateCollectionError as e:
                    return self._absorb(e, outcome)
        return None

    async def drop_collection(
        self,
        collection: str,
        database: str | None = None,
    ) -> RecoverableWarning | None:
        # A missing collection comes back as a benign warning
        with self._observe("drop_collection", collection, database) as outcome:
            async with self._connection(database) as conn:
                try:
                    await self._client.drop_collection(conn, collection)
                except DropCollectionError as e:
                    return self._absorb(e, outcome)
        return None

    # ── Mutations ─────────────────────────────────────────────────────

    async def insert_into_collection(
        self,
        collection: str,
        data: Mapping[str, FieldValue | Any],
        database: str | None = None,
    ) -> int:
        native, extra = split_fields(data)
        missing = [name for name in _REQUIRED_NATIVE_FIELDS if native.get(name) is None]
        if missing:
            raise InsertIntoCollectionError(
                f"Missing native fields: {', '.join(missing)}",
                collection=collection,
            )

        with self._observe("insert_into_collection", collection, database):
            async with self._connection(database) as conn:
                return await self._client.insert_into_collection(
                    conn,
                    collection,
                    owning_entity_id=native["owning_entity_id"],
                    owning_long_id=native["owning_long_id"],
                    content=native.get("content"),
                    vector=native["vector"],
                    server_id=native.get("server_id"),
                    index_id=native.get("index_id"),
                    extra_fields=extra,
                )

    async def delete_from_collection(
        self,
        collection: str,
        ids: Sequence[int],
        database: str | None = None,
    ) -> RecoverableWarning | None:
        if not ids:
            return None

        # Failures come back as a warning, never raised
        with self._observe("delete_from_collection", collection, database) as outcome:
            async with self._connection(database) as conn:
                try:
                    await self._client.delete_from_collection(conn, collection, ids)
                except DeleteFromCollectionError as e:
                    return self._absorb(e, outcome)
        return None

    async def get_vdb_ids(
        self,
        collection: str,
        owning_ids: Sequence[str],
        database: str | None = None,
    ) -> list[int]:
        if not owning_ids:
            return []

        page_size = self._config.max_limit
        ids: list[int] = []
        with self._observe("get_vdb_ids", collection, database):
            async with self._connection(database) as conn:
                escaper = SqlEscaper.for_connection(conn)
                table = escaper.escape_identifier(collection)
                filters = (
                    f"WHERE {table}.{escaper.escape_identifier('owning_entity_id')} "
                    f"IN {escaper.prepare_string_array(owning_ids)} "
                    f"ORDER BY {table}.id"
                )
                while True:
                    rows = await self._client.query_search(
                        conn,
                        collection,
                        ["id"],
                        filters=filters,
                        limit=page_size,
                        offset=len(ids),
                    )
                    ids.extend(row["id"] for row in rows)
                    if len(rows) < page_size:
                        break
        return ids

    # ── Search ────────────────────────────────────────────────────────

    async def query_search(
        self,
        collection: str,
        output_fields: Sequence[str],
        filters: str = "",
        limit: int | None = None,
        offset: int = 0,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._observe("query_search", collection, database):
            async with self._connection(database) as conn:
                return await self._client.query_search(
                    conn,
                    collection,
                    output_fields,
                    filters=filters,
                    limit=self._config.default_limit if limit is None else limit,
                    offset=offset,
                )

    async def vector_search(
        self,
        collection: str,
        vector: Sequence[float],
        output_fields: Sequence[str],
        filters: str = "",
        limit: int | None = None,
        offset: int = 0,
        metric: SimilarityMetric | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._observe("vector_search", collection, database):
            async with self._connection(database) as conn:
                return await self._client.vector_search(
                    conn,
                    collection,
                    vector,
                    output_fields,
                    filters=filters,
                    limit=self._config.default_limit if limit is None else limit,
                    offset=offset,
                    metric=metric or self._config.default_metric,
                )

    async def search_index(
        self,
        configuration: IndexConfiguration,
        schema: IndexSchema,
        vector: Sequence[float],
        output_fields: Sequence[str],
        conditions: ConditionGroup | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Vector search on an index's collection using the index's metric.

        Compiles ``conditions`` against ``schema`` first, if given.
        """
        filters = ""
        if conditions is not None:
            filters = await self.prepare_filters(
                conditions,
                schema,
                configuration.collection,
                database=configuration.database_name,
            )
        return await self.vector_search(
            configuration.collection,
            vector,
            output_fields,
            filters=filters,
            limit=limit,
            offset=offset,
            metric=configuration.metric,
            database=configuration.database_name,
        )

    async def compile_filters(
        self,
        conditions: ConditionGroup,
        schema: IndexSchema,
        collection: str,
        database: str | None = None,
    ) -> CompiledFilter:
        """Compile a condition tree, logging and counting every dropped condition."""
        async with self._connection(database) as conn:
            escaper = SqlEscaper.for_connection(conn)
        compiled = compile_condition_group(conditions, schema, collection, escaper)
        for warning in compiled.warnings:
            logger.warning(warning.message, index=schema.id, collection=collection)
        self._metrics.record_filter_skips(len(compiled.warnings))
        return compiled

    async def prepare_filters(
        self,
        conditions: ConditionGroup,
        schema: IndexSchema,
        collection: str,
        database: str | None = None,
    ) -> str:
        compiled = await self.compile_filters(conditions, schema, collection, database)
        return compiled.render()


def split_fields(
    data: Mapping[str, FieldValue | Any],
) -> tuple[dict[str, Any], dict[str, FieldValue]]:
    """
    Split an insert payload into native values and extra fields.

    Native values are unwrapped from FieldValue; ``id`` is dropped since
    it is generated. Extra values that are not FieldValue instances are
    wrapped, lists becoming multi-valued.
    """
    native: dict[str, Any] = {}
    extra: dict[str, FieldValue] = {}
    for name, value in data.items():
        if name in NATIVE_FIELDS:
            if name == "id":
                continue
            native[name] = value.value if isinstance(value, FieldValue) else value
        elif isinstance(value, FieldValue):
            extra[name] = value
        elif isinstance(value, (list, tuple)):
            extra[name] = FieldValue.multi(list(value))
        else:
            extra[name] = FieldValue.scalar(value)
    return native, extra
