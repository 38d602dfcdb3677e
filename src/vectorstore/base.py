"""
Abstract base class for vector database providers.

Defines the contract a search/indexing layer uses to talk to a vector
backend. Implementations are registered by name in registry.py.

Soft-fail operations (create, drop, delete) return a RecoverableWarning
when a failure was absorbed and None otherwise; everything else raises.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from src.vectorstore.schemas import (
    ConditionGroup,
    ConnectionParams,
    FieldValue,
    IndexConfiguration,
    IndexSchema,
    RecoverableWarning,
    SimilarityMetric,
)


class VectorProvider(ABC):
    """
    Abstract base class for vector database providers.

    All I/O methods are async. Each call acquires its own connection and
    releases it before returning, so a provider may be shared between
    concurrent callers. Re-indexing the same owning id concurrently is
    not serialized; callers that can overlap writes for one document
    must serialize them.
    """

    name: str = ""

    @abstractmethod
    def get_connection_data(self) -> ConnectionParams:
        """
        Resolve connection parameters.

        Raises:
            DatabaseNotConfiguredError: If a required field is missing
        """
        ...

    @abstractmethod
    def is_setup(self) -> bool:
        """Whether enough configuration exists to attempt a connection."""
        ...

    @abstractmethod
    async def ping(self, database: str | None = None) -> bool:
        """Liveness check against the resolved server."""
        ...

    @abstractmethod
    async def get_collections(self, database: str | None = None) -> list[str]:
        """List existing collections."""
        ...

    @abstractmethod
    async def create_collection(
        self,
        collection: str,
        dimension: int,
        metric: SimilarityMetric | None = None,
        database: str | None = None,
    ) -> RecoverableWarning | None:
        """
        Create a collection. Calling it for an existing collection is not an error.

        Returns:
            A warning when creation failed and the failure was absorbed
        """
        ...

    @abstractmethod
    async def drop_collection(
        self,
        collection: str,
        database: str | None = None,
    ) -> RecoverableWarning | None:
        """Drop a collection. Dropping a missing collection is not an error."""
        ...

    @abstractmethod
    async def insert_into_collection(
        self,
        collection: str,
        data: Mapping[str, FieldValue | Any],
        database: str | None = None,
    ) -> int:
        """
        Insert one chunk.

        Args:
            collection: Target collection
            data: Native and extra fields keyed by name

        Returns:
            Internal id of the inserted row
        """
        ...

    @abstractmethod
    async def delete_from_collection(
        self,
        collection: str,
        ids: Sequence[int],
        database: str | None = None,
    ) -> RecoverableWarning | None:
        """Delete rows by internal id. An empty list issues no statement."""
        ...

    @abstractmethod
    async def get_vdb_ids(
        self,
        collection: str,
        owning_ids: Sequence[str],
        database: str | None = None,
    ) -> list[int]:
        """Resolve owning entity ids to internal row ids."""
        ...

    async def delete_items(
        self,
        configuration: IndexConfiguration,
        item_ids: Sequence[str],
    ) -> RecoverableWarning | None:
        """
        Delete every row owned by the given source documents.

        Resolves owning ids to row ids, then deletes those rows.
        """
        vdb_ids = await self.get_vdb_ids(
            configuration.collection,
            item_ids,
            database=configuration.database_name,
        )
        if not vdb_ids:
            return None
        return await self.delete_from_collection(
            configuration.collection,
            vdb_ids,
            database=configuration.database_name,
        )

    @abstractmethod
    async def query_search(
        self,
        collection: str,
        output_fields: Sequence[str],
        filters: str = "",
        limit: int | None = None,
        offset: int = 0,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        """Plain projection with a rendered filter clause."""
        ...

    @abstractmethod
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
        """Nearest-neighbour search, best match first."""
        ...

    @abstractmethod
    async def prepare_filters(
        self,
        conditions: ConditionGroup,
        schema: IndexSchema,
        collection: str,
        database: str | None = None,
    ) -> str:
        """Compile a condition tree into a rendered filter clause."""
        ...

    async def close(self) -> None:
        """Release any pooled resources."""
        return None
