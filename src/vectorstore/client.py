"""
Low-level pgvector client.

Issues the DDL, DML and search statements for one collection against an
already acquired asyncpg connection. Connection resolution, pooling and
the soft-fail policy live in PostgresProvider; this class only renders
SQL and maps driver errors to the provider's exception types.

Collection layout:

    <collection>                      one row per embedded chunk
        id BIGSERIAL PRIMARY KEY
        owning_entity_id TEXT         source document id
        owning_long_id TEXT           chunk id within the document
        content TEXT
        vector vector(<dim>)
        server_id TEXT, index_id TEXT
        <scalar extra fields>         added on demand

    <collection>__<field>             one row per value of a multi-valued field
        id BIGSERIAL PRIMARY KEY
        chunk_id BIGINT REFERENCES <collection>(id) ON DELETE CASCADE
        value <type>
"""

import hashlib
import math
from collections.abc import Mapping, Sequence
from typing import Any

import asyncpg
import structlog

from src.vectorstore.config import VectorStoreConfig
from src.vectorstore.escaping import MAX_IDENTIFIER_BYTES, SqlEscaper
from src.vectorstore.exceptions import (
    AddFieldIfNotExistsError,
    CreateCollectionError,
    DeleteFromCollectionError,
    DropCollectionError,
    EscapeStringError,
    GetCollectionsError,
    InsertIntoCollectionError,
    QuerySearchError,
    VectorSearchError,
)
from src.vectorstore.filters import side_table_name
from src.vectorstore.schemas import (
    NATIVE_FIELDS,
    FieldValue,
    SimilarityMetric,
    coerce_value,
    column_type,
)

logger = structlog.get_logger(__name__)

# pgvector distance operators; all of them sort ascending best-first
METRIC_OPERATORS: dict[SimilarityMetric, str] = {
    SimilarityMetric.COSINE: "<=>",
    SimilarityMetric.INNER_PRODUCT: "<#>",
    SimilarityMetric.EUCLIDEAN: "<->",
}

METRIC_OPCLASSES: dict[SimilarityMetric, str] = {
    SimilarityMetric.COSINE: "vector_cosine_ops",
    SimilarityMetric.INNER_PRODUCT: "vector_ip_ops",
    SimilarityMetric.EUCLIDEAN: "vector_l2_ops",
}

_INSERT_NATIVE_COLUMNS = (
    "owning_entity_id",
    "owning_long_id",
    "content",
    "vector",
    "server_id",
    "index_id",
)


def format_vector(values: Sequence[float]) -> str:
    """Convert a vector to pgvector's text format, e.g. [0.1,0.2]."""
    rendered = []
    for value in values:
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"Vector contains a non-finite value: {value}")
        rendered.append(repr(number))
    return f"[{','.join(rendered)}]"


def distance_to_score(metric: SimilarityMetric, distance: float) -> float:
    """
    Convert an operator distance to a higher-is-better score.

    cosine: 1 - cosine distance (the cosine similarity)
    inner product: pgvector returns the negated inner product
    euclidean: 1 / (1 + distance)
    """
    if metric == SimilarityMetric.COSINE:
        return 1.0 - distance
    if metric == SimilarityMetric.INNER_PRODUCT:
        return -distance
    return 1.0 / (1.0 + distance)


def index_name(table: str, suffix: str) -> str:
    """Index name that stays within Postgres' identifier limit."""
    name = f"{table}_{suffix}"
    if len(name.encode("utf-8")) <= MAX_IDENTIFIER_BYTES:
        return name
    digest = hashlib.md5(table.encode("utf-8")).hexdigest()[:16]
    return f"idx_{digest}_{suffix}"


class PgVectorClient:
    """
    Statement builder and executor for pgvector collections.

    Every method takes the connection to run on. Methods that issue more
    than one statement wrap them in a transaction.
    """

    def __init__(self, config: VectorStoreConfig | None = None):
        self._config = config or VectorStoreConfig()

    @property
    def config(self) -> VectorStoreConfig:
        return self._config

    async def ping(self, conn: asyncpg.Connection) -> bool:
        """Liveness check."""
        try:
            return await conn.fetchval("SELECT 1") == 1
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning("Ping failed", error=str(e))
            return False

    async def get_collections(self, conn: asyncpg.Connection) -> list[str]:
        """List tables in the current schema that carry a pgvector column."""
        sql = """
            SELECT table_name
            FROM information_schema.columns
            WHERE table_schema = current_schema()
              AND column_name = 'vector'
              AND udt_name = 'vector'
            ORDER BY table_name
        """
        try:
            rows = await conn.fetch(sql)
        except asyncpg.PostgresError as e:
            raise GetCollectionsError(f"Could not list collections: {e}") from e
        return [row["table_name"] for row in rows]

    async def create_collection(
        self,
        conn: asyncpg.Connection,
        collection: str,
        dimension: int,
        metric: SimilarityMetric = SimilarityMetric.COSINE,
    ) -> None:
        """
        Create a collection table and its indexes.

        No existence pre-check is made; an existing table surfaces as a
        CreateCollectionError flagged benign.

        Raises:
            ValueError: If the dimension is out of range
            CreateCollectionError: On any driver or rendering failure
        """
        if not 1 <= dimension <= self._config.max_dimensions:
            raise ValueError(
                f"dimension must be between 1 and {self._config.max_dimensions}, "
                f"got {dimension}"
            )
        metric = SimilarityMetric(metric)

        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
            statements = [
                f"""
                CREATE TABLE {table} (
                    id BIGSERIAL PRIMARY KEY,
                    owning_entity_id TEXT NOT NULL,
                    owning_long_id TEXT NOT NULL,
                    content TEXT,
                    vector vector({int(dimension)}) NOT NULL,
                    server_id TEXT,
                    index_id TEXT
                )
                """,
                f"CREATE INDEX {escaper.escape_identifier(index_name(collection, 'owning_entity_id_idx'))} "
                f"ON {table} (owning_entity_id)",
            ]
            if dimension <= self._config.max_hnsw_dimensions:
                statements.append(
                    f"CREATE INDEX {escaper.escape_identifier(index_name(collection, 'vector_hnsw_idx'))} "
                    f"ON {table} USING hnsw (vector {METRIC_OPCLASSES[metric]}) "
                    f"WITH (m = {self._config.hnsw_m}, "
                    f"ef_construction = {self._config.hnsw_ef_construction})"
                )
            else:
                logger.warning(
                    "Dimension too large for an HNSW index, using sequential scan",
                    collection=collection,
                    dimension=dimension,
                )
        except EscapeStringError as e:
            raise CreateCollectionError(str(e), collection=collection) from e

        try:
            async with conn.transaction():
                for sql in statements:
                    await conn.execute(sql)
        except asyncpg.DuplicateTableError as e:
            raise CreateCollectionError(
                f"Collection {collection} already exists",
                collection=collection,
                benign=True,
            ) from e
        except asyncpg.PostgresError as e:
            raise CreateCollectionError(
                f"Could not create collection {collection}: {e}",
                collection=collection,
            ) from e

        logger.info(
            "Created collection", collection=collection, dimension=dimension, metric=metric.value
        )

    async def drop_collection(self, conn: asyncpg.Connection, collection: str) -> None:
        """
        Drop a collection and its side tables.

        Raises:
            DropCollectionError: On failure; flagged benign when the
                collection did not exist
        """
        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
        except EscapeStringError as e:
            raise DropCollectionError(str(e), collection=collection) from e

        try:
            async with conn.transaction():
                # Side tables are the tables holding a foreign key to the collection
                side_tables = await conn.fetch(
                    """
                    SELECT DISTINCT c.relname AS table_name
                    FROM pg_constraint con
                    JOIN pg_class c ON c.oid = con.conrelid
                    WHERE con.contype = 'f'
                      AND con.confrelid = to_regclass($1::text)
                      AND con.conrelid <> con.confrelid
                    ORDER BY c.relname
                    """,
                    table,
                )
                for row in side_tables:
                    await conn.execute(
                        f"DROP TABLE IF EXISTS {escaper.escape_identifier(row['table_name'])}"
                    )
                await conn.execute(f"DROP TABLE {table}")
        except asyncpg.UndefinedTableError as e:
            raise DropCollectionError(
                f"Collection {collection} does not exist",
                collection=collection,
                benign=True,
            ) from e
        except asyncpg.PostgresError as e:
            raise DropCollectionError(
                f"Could not drop collection {collection}: {e}",
                collection=collection,
            ) from e

        logger.info("Dropped collection", collection=collection, side_tables=len(side_tables))

    async def add_field_if_not_exists(
        self,
        conn: asyncpg.Connection,
        collection: str,
        name: str,
        field_value: FieldValue,
    ) -> str:
        """
        Make sure the column or side table for an extra field exists.

        Returns:
            The Postgres type of the field's values

        Raises:
            AddFieldIfNotExistsError: On a reserved name or driver failure
        """
        if name in NATIVE_FIELDS:
            raise AddFieldIfNotExistsError(
                f"Extra field {name} collides with a native field",
                collection=collection,
            )

        values = field_value.values
        sample = next((v for v in values if v is not None), None)
        sql_type = column_type(field_value.field_type, sample)

        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
            if field_value.is_multiple:
                side = side_table_name(collection, name)
                side_table = escaper.escape_identifier(side)
                chunk_index = escaper.escape_identifier(index_name(side, "chunk_id_idx"))
                statements = [
                    f"""
                    CREATE TABLE IF NOT EXISTS {side_table} (
                        id BIGSERIAL PRIMARY KEY,
                        chunk_id BIGINT NOT NULL REFERENCES {table} (id) ON DELETE CASCADE,
                        value {sql_type}
                    )
                    """,
                    f"CREATE INDEX IF NOT EXISTS {chunk_index} ON {side_table} (chunk_id)",
                ]
            else:
                statements = [
                    f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                    f"{escaper.escape_identifier(name)} {sql_type}"
                ]
            for sql in statements:
                await conn.execute(sql)
        except (EscapeStringError, asyncpg.PostgresError) as e:
            raise AddFieldIfNotExistsError(
                f"Could not add field {name} to {collection}: {e}",
                collection=collection,
            ) from e

        return sql_type

    async def insert_into_collection(
        self,
        conn: asyncpg.Connection,
        collection: str,
        owning_entity_id: str,
        owning_long_id: str,
        content: str | None,
        vector: Sequence[float],
        server_id: str | None,
        index_id: str | None,
        extra_fields: Mapping[str, FieldValue] | None = None,
    ) -> int:
        """
        Insert one chunk row and the side-table rows of its multi-valued fields.

        Runs in a single transaction so a failure leaves nothing behind.

        Returns:
            Internal id of the new row

        Raises:
            AddFieldIfNotExistsError: If an extra field cannot be created
            InsertIntoCollectionError: On any other failure
        """
        extra_fields = extra_fields or {}

        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
            vector_text = format_vector(vector)
        except (EscapeStringError, ValueError) as e:
            raise InsertIntoCollectionError(str(e), collection=collection) from e

        try:
            async with conn.transaction():
                field_types = {}
                for name, field_value in extra_fields.items():
                    field_types[name] = await self.add_field_if_not_exists(
                        conn, collection, name, field_value
                    )

                columns = list(_INSERT_NATIVE_COLUMNS)
                params: list[Any] = [
                    str(owning_entity_id),
                    str(owning_long_id),
                    content,
                    vector_text,
                    server_id,
                    index_id,
                ]
                scalar_fields = {
                    name: fv for name, fv in extra_fields.items() if not fv.is_multiple
                }
                for name, field_value in scalar_fields.items():
                    columns.append(name)
                    params.append(coerce_value(field_types[name], field_value.value))

                placeholders = [
                    f"${i}::vector" if column == "vector" else f"${i}"
                    for i, column in enumerate(columns, start=1)
                ]
                sql = (
                    f"INSERT INTO {table} "
                    f"({', '.join(escaper.escape_identifier(c) for c in columns)}) "
                    f"VALUES ({', '.join(placeholders)}) RETURNING id"
                )
                row_id = await conn.fetchval(sql, *params)

                for name, field_value in extra_fields.items():
                    if not field_value.is_multiple or not field_value.values:
                        continue
                    side_table = escaper.escape_identifier(side_table_name(collection, name))
                    await conn.executemany(
                        f"INSERT INTO {side_table} (chunk_id, value) VALUES ($1, $2)",
                        [
                            (row_id, coerce_value(field_types[name], value))
                            for value in field_value.values
                        ],
                    )
        except AddFieldIfNotExistsError:
            raise
        except (asyncpg.PostgresError, EscapeStringError, TypeError, ValueError) as e:
            raise InsertIntoCollectionError(
                f"Could not insert into {collection}: {e}",
                collection=collection,
            ) from e

        logger.debug(
            "Inserted chunk",
            collection=collection,
            owning_entity_id=owning_entity_id,
            owning_long_id=owning_long_id,
            row_id=row_id,
        )
        return row_id

    async def delete_from_collection(
        self,
        conn: asyncpg.Connection,
        collection: str,
        ids: Sequence[int | str],
    ) -> int:
        """
        Delete rows by internal id.

        Side-table rows are removed by the foreign key cascade.

        Returns:
            Number of rows deleted

        Raises:
            DeleteFromCollectionError: On failure; flagged benign when the
                collection does not exist
        """
        if not ids:
            return 0

        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
            row_ids = [int(i) for i in ids]
        except (EscapeStringError, TypeError, ValueError) as e:
            raise DeleteFromCollectionError(str(e), collection=collection) from e

        try:
            rows = await conn.fetch(
                f"DELETE FROM {table} WHERE id = ANY($1::bigint[]) RETURNING id",
                row_ids,
            )
        except asyncpg.UndefinedTableError as e:
            raise DeleteFromCollectionError(
                f"Collection {collection} does not exist",
                collection=collection,
                benign=True,
            ) from e
        except asyncpg.PostgresError as e:
            raise DeleteFromCollectionError(
                f"Could not delete from {collection}: {e}",
                collection=collection,
            ) from e

        deleted = len(rows)
        if deleted == 0:
            logger.warning("No rows matched for deletion", collection=collection, ids=row_ids)
        else:
            logger.info(f"Deleted {deleted}/{len(row_ids)} rows", collection=collection)
        return deleted

    async def query_search(
        self,
        conn: asyncpg.Connection,
        collection: str,
        output_fields: Sequence[str],
        filters: str = "",
        limit: int = 10,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Plain projection with an optional rendered filter clause.

        Args:
            conn: Connection to run on
            collection: Collection to read
            output_fields: Columns to return (empty = all)
            filters: Rendered "<joins> WHERE ..." suffix, or ""
            limit: Maximum rows, capped at max_limit; zero or less returns no rows
            offset: Rows to skip

        Raises:
            QuerySearchError: On failure
        """
        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
            columns = self._select_list(escaper, table, output_fields)
        except EscapeStringError as e:
            raise QuerySearchError(str(e), collection=collection) from e

        if limit <= 0:
            return []

        sql = f"SELECT {columns} FROM {table} {filters} LIMIT $1 OFFSET $2"
        try:
            rows = await conn.fetch(sql, self._clamp_limit(limit), max(0, offset))
        except asyncpg.PostgresError as e:
            raise QuerySearchError(
                f"Query on {collection} failed: {e}",
                collection=collection,
            ) from e
        return [dict(row) for row in rows]

    async def vector_search(
        self,
        conn: asyncpg.Connection,
        collection: str,
        vector: Sequence[float],
        output_fields: Sequence[str],
        filters: str = "",
        limit: int = 10,
        offset: int = 0,
        metric: SimilarityMetric = SimilarityMetric.COSINE,
    ) -> list[dict[str, Any]]:
        """
        Nearest-neighbour search ordered best match first.

        Each returned row carries the requested fields plus ``distance``
        (the raw operator value) and ``score`` (higher is better). Limits
        are capped at max_limit; zero or less returns no rows.

        Raises:
            VectorSearchError: On failure
        """
        metric = SimilarityMetric(metric)
        operator = METRIC_OPERATORS[metric]
        if limit <= 0:
            return []

        try:
            escaper = SqlEscaper.for_connection(conn)
            table = escaper.escape_identifier(collection)
            columns = self._select_list(escaper, table, output_fields)
            vector_text = format_vector(vector)
        except (EscapeStringError, ValueError) as e:
            raise VectorSearchError(str(e), collection=collection) from e

        sql = (
            f"SELECT {columns}, ({table}.vector {operator} $1::vector) AS distance "
            f"FROM {table} {filters} "
            f"ORDER BY distance ASC LIMIT $2 OFFSET $3"
        )
        try:
            rows = await conn.fetch(
                sql, vector_text, self._clamp_limit(limit), max(0, offset)
            )
        except asyncpg.PostgresError as e:
            raise VectorSearchError(
                f"Vector search on {collection} failed: {e}",
                collection=collection,
            ) from e

        results = []
        for row in rows:
            item = dict(row)
            distance = float(item["distance"])
            item["distance"] = distance
            item["score"] = distance_to_score(metric, distance)
            results.append(item)
        return results

    def _select_list(
        self, escaper: SqlEscaper, table: str, output_fields: Sequence[str]
    ) -> str:
        if not output_fields:
            return f"{table}.*"
        return ", ".join(
            f"{table}.{escaper.escape_identifier(name)}" for name in output_fields
        )

    def _clamp_limit(self, limit: int) -> int:
        return min(int(limit), self._config.max_limit)
