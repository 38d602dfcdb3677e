"""
Exception hierarchy for the pgvector provider.

Fatal errors are raised. Create/drop/delete failures and filter
compilation skips are reported as RecoverableWarning values instead
(see schemas.py), so callers can tell the two categories apart
without reading logs.
"""


class VectorDbError(Exception):
    """Base exception for vector database errors."""

    pass


class DatabaseNotConfiguredError(VectorDbError):
    """Raised when a required connection field is missing after resolution."""

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Postgres {field} is not configured")
        self.field = field


class DatabaseConnectionError(VectorDbError):
    """Raised when a connection to the server cannot be established."""

    def __init__(self, message: str, database: str | None = None):
        super().__init__(message)
        self.database = database


class EscapeStringError(VectorDbError):
    """Raised when a value or identifier cannot be rendered safely."""

    pass


class CollectionError(VectorDbError):
    """
    Base exception for failures on a specific collection.

    ``benign`` marks existence conflicts (the table already exists, or was
    already gone) as opposed to genuine failures.
    """

    operation = "collection"

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        benign: bool = False,
    ):
        super().__init__(message)
        self.collection = collection
        self.benign = benign


class CreateCollectionError(CollectionError):
    operation = "create_collection"


class DropCollectionError(CollectionError):
    operation = "drop_collection"


class GetCollectionsError(CollectionError):
    operation = "get_collections"


class InsertIntoCollectionError(CollectionError):
    operation = "insert_into_collection"


class DeleteFromCollectionError(CollectionError):
    operation = "delete_from_collection"


class AddFieldIfNotExistsError(CollectionError):
    """Raised when an extra column or side table cannot be added at index time."""

    operation = "add_field_if_not_exists"


class QuerySearchError(CollectionError):
    operation = "query_search"


class VectorSearchError(CollectionError):
    operation = "vector_search"


class InvalidEmbeddingError(VectorDbError):
    """Raised when an embedding producer returns a malformed embedding."""

    pass
