"""Pytest fixtures for vectorstore tests."""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.vectorstore.client import PgVectorClient
from src.vectorstore.config import VectorStoreConfig
from src.vectorstore.connection import StaticSecretStore
from src.vectorstore.escaping import SqlEscaper
from src.vectorstore.postgres_provider import PostgresProvider
from src.vectorstore.schemas import FieldInfo, IndexConfiguration, StaticIndexSchema


@asynccontextmanager
async def _null_transaction():
    yield


def make_connection(standard_conforming_strings: str = "on") -> MagicMock:
    """Fake asyncpg connection recording the statements it receives."""
    conn = MagicMock()
    conn.get_settings.return_value = SimpleNamespace(
        standard_conforming_strings=standard_conforming_strings,
        client_encoding="UTF8",
    )
    conn.execute = AsyncMock(return_value="OK")
    conn.executemany = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=1)
    conn.transaction = MagicMock(side_effect=lambda: _null_transaction())
    return conn


def make_database(conn: MagicMock) -> MagicMock:
    """Fake Database whose acquire() yields the given connection."""
    db = MagicMock()
    db.connect = AsyncMock()
    db.close = AsyncMock()

    @asynccontextmanager
    async def acquire():
        yield conn

    db.acquire = MagicMock(side_effect=acquire)
    return db


@pytest.fixture
def vector_store_config() -> VectorStoreConfig:
    """Default vector store configuration for tests."""
    return VectorStoreConfig(
        default_limit=10,
        max_limit=1000,
        max_hnsw_dimensions=2000,
    )


@pytest.fixture
def escaper() -> SqlEscaper:
    return SqlEscaper()


@pytest.fixture
def mock_conn() -> MagicMock:
    return make_connection()


@pytest.fixture
def client(vector_store_config) -> PgVectorClient:
    return PgVectorClient(vector_store_config)


@pytest.fixture
def mock_database(mock_conn) -> MagicMock:
    return make_database(mock_conn)


@pytest.fixture
def database_factory(mock_database) -> MagicMock:
    """Factory returning the same fake Database for every DSN."""
    return MagicMock(return_value=mock_database)


@pytest.fixture
def provider(
    test_settings, vector_store_config, database_factory, metrics
) -> PostgresProvider:
    """PostgresProvider wired to fake pools."""
    return PostgresProvider(
        settings=test_settings,
        secret_store=StaticSecretStore({"vdb_password": "s3cret"}),
        config=vector_store_config,
        database_factory=database_factory,
        metrics=metrics,
    )


@pytest.fixture
def index_schema() -> StaticIndexSchema:
    """Index declaring one field of each shape the compiler handles."""
    return StaticIndexSchema(
        id="articles",
        server_id="search_server",
        fields={
            "title": FieldInfo("title", type="string"),
            "body": FieldInfo("body", type="full_text"),
            "year": FieldInfo("year", type="integer"),
            "rating": FieldInfo("rating", type="decimal"),
            "published": FieldInfo("published", type="boolean"),
            "tags": FieldInfo("tags", type="string", is_multiple=True),
            "category_ids": FieldInfo("category_ids", type="integer", is_multiple=True),
        },
    )


@pytest.fixture
def index_configuration() -> IndexConfiguration:
    return IndexConfiguration(
        collection="articles",
        database_name="vectors",
        embeddings_engine="openai__text-embedding-3-small",
        chat_model="gpt-4o-mini",
    )
