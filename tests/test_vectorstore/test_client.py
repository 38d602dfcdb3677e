"""Tests for PgVectorClient statement rendering and error mapping."""

from unittest.mock import AsyncMock

import asyncpg
import pytest

from src.vectorstore.client import (
    distance_to_score,
    format_vector,
    index_name,
)
from src.vectorstore.exceptions import (
    AddFieldIfNotExistsError,
    CreateCollectionError,
    DeleteFromCollectionError,
    DropCollectionError,
    GetCollectionsError,
    InsertIntoCollectionError,
    QuerySearchError,
)
from src.vectorstore.schemas import FieldValue, SimilarityMetric


def _statements(mock) -> list[str]:
    return [" ".join(call.args[0].split()) for call in mock.await_args_list]


class TestHelpers:
    def test_format_vector(self):
        assert format_vector([1, 0.5, -2]) == "[1.0,0.5,-2.0]"

    def test_format_vector_rejects_nan(self):
        with pytest.raises(ValueError):
            format_vector([1.0, float("nan")])

    def test_scores(self):
        assert distance_to_score(SimilarityMetric.COSINE, 0.25) == 0.75
        assert distance_to_score(SimilarityMetric.INNER_PRODUCT, -3.0) == 3.0
        assert distance_to_score(SimilarityMetric.EUCLIDEAN, 1.0) == 0.5

    def test_index_name_is_bounded(self):
        name = index_name("c" * 60, "vector_hnsw_idx")
        assert len(name.encode()) <= 63
        assert name.endswith("_vector_hnsw_idx")


class TestCollections:
    """Tests for collection DDL."""

    @pytest.mark.asyncio
    async def test_ping(self, client, mock_conn):
        assert await client.ping(mock_conn) is True

    @pytest.mark.asyncio
    async def test_ping_failure(self, client, mock_conn):
        mock_conn.fetchval = AsyncMock(side_effect=OSError("connection reset"))
        assert await client.ping(mock_conn) is False

    @pytest.mark.asyncio
    async def test_get_collections(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(
            return_value=[{"table_name": "articles"}, {"table_name": "faq"}]
        )
        assert await client.get_collections(mock_conn) == ["articles", "faq"]

    @pytest.mark.asyncio
    async def test_get_collections_failure(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(side_effect=asyncpg.PostgresError("boom"))
        with pytest.raises(GetCollectionsError):
            await client.get_collections(mock_conn)

    @pytest.mark.asyncio
    async def test_create_collection(self, client, mock_conn):
        await client.create_collection(mock_conn, "articles", 3, SimilarityMetric.COSINE)

        statements = _statements(mock_conn.execute)
        assert len(statements) == 3
        assert statements[0].startswith('CREATE TABLE "articles" (')
        assert "vector vector(3) NOT NULL" in statements[0]
        assert statements[1] == (
            'CREATE INDEX "articles_owning_entity_id_idx" ON "articles" (owning_entity_id)'
        )
        assert 'USING hnsw (vector vector_cosine_ops)' in statements[2]
        mock_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "metric, opclass",
        [
            (SimilarityMetric.INNER_PRODUCT, "vector_ip_ops"),
            (SimilarityMetric.EUCLIDEAN, "vector_l2_ops"),
        ],
    )
    async def test_create_collection_opclass(self, client, mock_conn, metric, opclass):
        await client.create_collection(mock_conn, "articles", 3, metric)
        assert f"(vector {opclass})" in _statements(mock_conn.execute)[2]

    @pytest.mark.asyncio
    async def test_large_dimension_skips_hnsw(self, client, mock_conn):
        await client.create_collection(mock_conn, "articles", 3072)
        assert len(_statements(mock_conn.execute)) == 2

    @pytest.mark.asyncio
    async def test_invalid_dimension(self, client, mock_conn):
        with pytest.raises(ValueError):
            await client.create_collection(mock_conn, "articles", 0)
        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_existing_is_benign(self, client, mock_conn):
        mock_conn.execute = AsyncMock(
            side_effect=asyncpg.DuplicateTableError('relation "articles" already exists')
        )

        with pytest.raises(CreateCollectionError) as exc_info:
            await client.create_collection(mock_conn, "articles", 3)

        assert exc_info.value.benign is True
        assert exc_info.value.collection == "articles"

    @pytest.mark.asyncio
    async def test_create_other_failure_not_benign(self, client, mock_conn):
        mock_conn.execute = AsyncMock(
            side_effect=asyncpg.UndefinedObjectError('type "vector" does not exist')
        )

        with pytest.raises(CreateCollectionError) as exc_info:
            await client.create_collection(mock_conn, "articles", 3)

        assert exc_info.value.benign is False

    @pytest.mark.asyncio
    async def test_drop_collection_drops_side_tables_first(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(return_value=[{"table_name": "articles__tags"}])

        await client.drop_collection(mock_conn, "articles")

        sql, regclass = mock_conn.fetch.await_args.args
        assert "pg_constraint" in sql
        assert regclass == '"articles"'
        assert _statements(mock_conn.execute) == [
            'DROP TABLE IF EXISTS "articles__tags"',
            'DROP TABLE "articles"',
        ]

    @pytest.mark.asyncio
    async def test_drop_collection_finds_side_tables_by_foreign_key(self, client, mock_conn):
        """A collection whose name merely starts with '<name>__' is not a side table."""
        await client.drop_collection(mock_conn, "articles")

        sql = mock_conn.fetch.await_args.args[0]
        assert "confrelid" in sql
        assert "table_name LIKE" not in sql
        assert "left(" not in sql
        assert _statements(mock_conn.execute) == ['DROP TABLE "articles"']

    @pytest.mark.asyncio
    async def test_drop_missing_is_benign(self, client, mock_conn):
        mock_conn.execute = AsyncMock(
            side_effect=asyncpg.UndefinedTableError('table "articles" does not exist')
        )

        with pytest.raises(DropCollectionError) as exc_info:
            await client.drop_collection(mock_conn, "articles")

        assert exc_info.value.benign is True


class TestInsert:
    """Tests for inserting chunks."""

    @pytest.mark.asyncio
    async def test_insert_native_only(self, client, mock_conn):
        mock_conn.fetchval = AsyncMock(return_value=42)

        row_id = await client.insert_into_collection(
            mock_conn,
            "articles",
            owning_entity_id="node:1",
            owning_long_id="node:1:0",
            content="hello",
            vector=[0.1, 0.2],
            server_id="srv",
            index_id="articles",
        )

        assert row_id == 42
        sql, *params = mock_conn.fetchval.await_args.args
        assert " ".join(sql.split()) == (
            'INSERT INTO "articles" ("owning_entity_id", "owning_long_id", "content", '
            '"vector", "server_id", "index_id") '
            "VALUES ($1, $2, $3, $4::vector, $5, $6) RETURNING id"
        )
        assert params == ["node:1", "node:1:0", "hello", "[0.1,0.2]", "srv", "articles"]
        mock_conn.executemany.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insert_extra_fields(self, client, mock_conn):
        mock_conn.fetchval = AsyncMock(return_value=7)

        await client.insert_into_collection(
            mock_conn,
            "articles",
            owning_entity_id="node:1",
            owning_long_id="node:1:0",
            content=None,
            vector=[0.1],
            server_id=None,
            index_id=None,
            extra_fields={
                "year": FieldValue.scalar(2024),
                "tags": FieldValue.multi(["ai", "chips"]),
            },
        )

        ddl = _statements(mock_conn.execute)
        assert 'ALTER TABLE "articles" ADD COLUMN IF NOT EXISTS "year" BIGINT' in ddl
        assert any(s.startswith('CREATE TABLE IF NOT EXISTS "articles__tags"') for s in ddl)

        sql, *params = mock_conn.fetchval.await_args.args
        assert '"year"' in sql
        assert params[-1] == 2024

        side_sql, rows = mock_conn.executemany.await_args.args
        assert side_sql == 'INSERT INTO "articles__tags" (chunk_id, value) VALUES ($1, $2)'
        assert rows == [(7, "ai"), (7, "chips")]

    @pytest.mark.asyncio
    async def test_reserved_extra_field(self, client, mock_conn):
        with pytest.raises(AddFieldIfNotExistsError):
            await client.insert_into_collection(
                mock_conn,
                "articles",
                owning_entity_id="node:1",
                owning_long_id="node:1:0",
                content=None,
                vector=[0.1],
                server_id=None,
                index_id=None,
                extra_fields={"vector": FieldValue.scalar("x")},
            )

    @pytest.mark.asyncio
    async def test_insert_driver_failure(self, client, mock_conn):
        mock_conn.fetchval = AsyncMock(
            side_effect=asyncpg.DataError("expected 3 dimensions, not 2")
        )

        with pytest.raises(InsertIntoCollectionError):
            await client.insert_into_collection(
                mock_conn,
                "articles",
                owning_entity_id="node:1",
                owning_long_id="node:1:0",
                content=None,
                vector=[0.1, 0.2],
                server_id=None,
                index_id=None,
            )


class TestDelete:
    """Tests for deleting rows by internal id."""

    @pytest.mark.asyncio
    async def test_empty_ids_issue_no_statement(self, client, mock_conn):
        assert await client.delete_from_collection(mock_conn, "articles", []) == 0
        mock_conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(return_value=[{"id": 1}, {"id": 2}])

        deleted = await client.delete_from_collection(mock_conn, "articles", [1, "2"])

        assert deleted == 2
        sql, ids = mock_conn.fetch.await_args.args
        assert sql == 'DELETE FROM "articles" WHERE id = ANY($1::bigint[]) RETURNING id'
        assert ids == [1, 2]

    @pytest.mark.asyncio
    async def test_delete_missing_collection_is_benign(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(side_effect=asyncpg.UndefinedTableError("missing"))

        with pytest.raises(DeleteFromCollectionError) as exc_info:
            await client.delete_from_collection(mock_conn, "articles", [1])

        assert exc_info.value.benign is True


class TestSearch:
    """Tests for plain and vector search."""

    @pytest.mark.asyncio
    async def test_query_search(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(return_value=[{"id": 1, "content": "a"}])

        rows = await client.query_search(
            mock_conn,
            "articles",
            ["id", "content"],
            filters="WHERE (\"articles\".\"year\" = (2024))",
            limit=5,
            offset=10,
        )

        assert rows == [{"id": 1, "content": "a"}]
        sql, limit, offset = mock_conn.fetch.await_args.args
        assert sql == (
            'SELECT "articles"."id", "articles"."content" FROM "articles" '
            'WHERE ("articles"."year" = (2024)) LIMIT $1 OFFSET $2'
        )
        assert (limit, offset) == (5, 10)

    @pytest.mark.asyncio
    async def test_query_search_all_columns_and_clamped_limit(self, client, mock_conn):
        await client.query_search(mock_conn, "articles", [], limit=10_000, offset=-3)

        sql, limit, offset = mock_conn.fetch.await_args.args
        assert sql.startswith('SELECT "articles".* FROM "articles"')
        assert (limit, offset) == (1000, 0)

    @pytest.mark.asyncio
    async def test_query_search_failure(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(side_effect=asyncpg.UndefinedColumnError("nope"))
        with pytest.raises(QuerySearchError):
            await client.query_search(mock_conn, "articles", ["nope"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -5])
    async def test_non_positive_limit_returns_nothing(self, client, mock_conn, limit):
        assert await client.query_search(mock_conn, "articles", ["id"], limit=limit) == []
        assert await client.vector_search(
            mock_conn, "articles", [1.0, 0.0], ["id"], limit=limit
        ) == []
        mock_conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "metric, operator",
        [
            (SimilarityMetric.COSINE, "<=>"),
            (SimilarityMetric.INNER_PRODUCT, "<#>"),
            (SimilarityMetric.EUCLIDEAN, "<->"),
        ],
    )
    async def test_vector_search_operator(self, client, mock_conn, metric, operator):
        await client.vector_search(mock_conn, "articles", [1.0, 0.0], ["id"], metric=metric)

        sql, vector, limit, offset = mock_conn.fetch.await_args.args
        assert f'("articles".vector {operator} $1::vector) AS distance' in sql
        assert sql.endswith("ORDER BY distance ASC LIMIT $2 OFFSET $3")
        assert vector == "[1.0,0.0]"

    @pytest.mark.asyncio
    async def test_vector_search_scores(self, client, mock_conn):
        mock_conn.fetch = AsyncMock(
            return_value=[{"id": 1, "distance": 0.0}, {"id": 2, "distance": 0.4}]
        )

        rows = await client.vector_search(mock_conn, "articles", [1.0, 0.0], ["id"])

        assert [row["id"] for row in rows] == [1, 2]
        assert rows[0]["score"] == 1.0
        assert rows[1]["score"] == pytest.approx(0.6)
