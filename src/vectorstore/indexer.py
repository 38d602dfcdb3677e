"""
Indexing orchestrator.

VectorIndexer turns a batch of source documents into collection rows:
it deletes whatever the documents previously indexed, asks the
embedding producer for chunks, and inserts one row per chunk.
"""

import math
from collections.abc import Mapping, Sequence
from numbers import Real
from typing import Any, Protocol

import structlog

from src.observability.metrics import MetricsCollector, get_metrics
from src.vectorstore.base import VectorProvider
from src.vectorstore.exceptions import InvalidEmbeddingError
from src.vectorstore.schemas import (
    NATIVE_FIELDS,
    Embedding,
    FieldValue,
    IndexConfiguration,
    IndexSchema,
    RecoverableWarning,
    SourceDocument,
)

logger = structlog.get_logger(__name__)

# Native columns an embedding's metadata is allowed to set. The owning
# ids and the vector always come from the document and the embedding.
_METADATA_NATIVE_FIELDS = frozenset({"content", "server_id", "index_id"})


class EmbeddingStrategy(Protocol):
    """Produces the embedded chunks of one document."""

    async def get_embedding(
        self,
        engine_id: str | None,
        model_id: str | None,
        strategy_config: Mapping[str, Any],
        fields: Mapping[str, Any],
        document: SourceDocument,
        index: IndexSchema,
    ) -> list[Mapping[str, Any]]: ...


def validate_embedding(raw: Any) -> Embedding:
    """
    Check the shape of one producer result and convert it to an Embedding.

    Raises:
        InvalidEmbeddingError: If id, values or metadata is missing or malformed
    """
    if not isinstance(raw, Mapping):
        raise InvalidEmbeddingError(f"Embedding must be a mapping, got {type(raw).__name__}")

    embedding_id = raw.get("id")
    if embedding_id is None or embedding_id == "":
        raise InvalidEmbeddingError("Embedding has no id")

    values = raw.get("values")
    if not isinstance(values, (list, tuple)) or not values:
        raise InvalidEmbeddingError(f"Embedding {embedding_id} has no values")
    for value in values:
        if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
            raise InvalidEmbeddingError(
                f"Embedding {embedding_id} has a non-numeric value: {value!r}"
            )

    if "metadata" not in raw:
        raise InvalidEmbeddingError(f"Embedding {embedding_id} has no metadata")
    metadata = raw["metadata"]
    if not isinstance(metadata, Mapping):
        raise InvalidEmbeddingError(f"Embedding {embedding_id} metadata must be a mapping")

    return Embedding(
        id=str(embedding_id),
        values=[float(v) for v in values],
        metadata=dict(metadata),
    )


class VectorIndexer:
    """
    Delete-then-insert indexing for a VectorProvider.

    Rows are never updated in place: re-indexing a document removes all
    of its chunks before the new ones are written.
    """

    def __init__(
        self,
        provider: VectorProvider,
        embedding_strategy: EmbeddingStrategy,
        metrics: MetricsCollector | None = None,
    ):
        self._provider = provider
        self._strategy = embedding_strategy
        self._metrics = metrics or get_metrics()

    async def index_items(
        self,
        configuration: IndexConfiguration,
        index: IndexSchema,
        items: Sequence[SourceDocument],
    ) -> list[str]:
        """
        Index a batch of documents.

        Documents whose embeddings cannot be produced or are malformed are
        logged and left out of the result. Insert failures propagate.

        Args:
            configuration: Backend configuration of the index
            index: Index metadata used to type extra fields
            items: Documents to index

        Returns:
            Ids of the documents that were indexed
        """
        if not items:
            return []

        await self.delete_index_items(configuration, [item.id for item in items])

        indexed: list[str] = []
        failed = 0
        chunks = 0
        for item in items:
            try:
                embeddings = await self._embed(configuration, index, item)
            except Exception as e:
                logger.error(
                    f"Could not embed item: {e}",
                    item_id=item.id,
                    index=index.id,
                )
                failed += 1
                continue

            for embedding in embeddings:
                await self._provider.insert_into_collection(
                    configuration.collection,
                    self._build_row(index, item, embedding),
                    database=configuration.database_name,
                )
                chunks += 1
            indexed.append(item.id)

        self._metrics.record_indexing(len(indexed), failed, chunks)
        logger.info(
            "Indexed items",
            index=index.id,
            collection=configuration.collection,
            indexed=len(indexed),
            failed=failed,
            chunks=chunks,
        )
        return indexed

    async def delete_index_items(
        self,
        configuration: IndexConfiguration,
        item_ids: Sequence[str],
    ) -> RecoverableWarning | None:
        return await self._provider.delete_items(configuration, item_ids)

    async def _embed(
        self,
        configuration: IndexConfiguration,
        index: IndexSchema,
        item: SourceDocument,
    ) -> list[Embedding]:
        raw_embeddings = await self._strategy.get_embedding(
            configuration.embeddings_engine,
            configuration.chat_model,
            configuration.embedding_strategy_configuration,
            item.fields,
            item,
            index,
        )
        return [validate_embedding(raw) for raw in raw_embeddings]

    def _build_row(
        self,
        index: IndexSchema,
        item: SourceDocument,
        embedding: Embedding,
    ) -> dict[str, Any]:
        row: dict[str, Any] = {
            "owning_entity_id": item.id,
            "owning_long_id": embedding.id,
            "vector": embedding.values,
            "server_id": index.server_id,
            "index_id": index.id,
        }
        for key, value in embedding.metadata.items():
            if key in NATIVE_FIELDS:
                if key in _METADATA_NATIVE_FIELDS:
                    row[key] = value
                continue

            field_info = index.get_field(key)
            field_type = field_info.type if field_info else None
            if (field_info and field_info.is_multiple) or isinstance(value, (list, tuple)):
                values = list(value) if isinstance(value, (list, tuple)) else [value]
                row[key] = FieldValue.multi(values, field_type=field_type)
            else:
                row[key] = FieldValue.scalar(value, field_type=field_type)
        return row
