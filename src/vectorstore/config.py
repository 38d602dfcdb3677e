"""
Configuration for vector store operations.

Uses Pydantic BaseSettings for environment variable support.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.vectorstore.schemas import SimilarityMetric


class VectorStoreConfig(BaseSettings):
    """
    Configuration for PostgresProvider and PgVectorClient.

    All settings can be overridden via environment variables with
    VECTORSTORE_ prefix (e.g., VECTORSTORE_DEFAULT_LIMIT=20).
    """

    # Search defaults
    default_limit: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Default number of results to return",
    )
    max_limit: int = Field(
        default=1000,
        ge=1,
        description="Upper bound applied to any requested limit",
    )
    default_metric: SimilarityMetric = Field(
        default=SimilarityMetric.COSINE,
        description="Metric used when an index configuration names none",
    )

    # HNSW index parameters
    hnsw_m: int = Field(
        default=16,
        ge=2,
        le=100,
        description="Max connections per HNSW graph layer",
    )
    hnsw_ef_construction: int = Field(
        default=64,
        ge=4,
        le=1000,
        description="Candidate list size while building the HNSW graph",
    )
    max_hnsw_dimensions: int = Field(
        default=2000,
        ge=1,
        description="Largest vector dimension pgvector can index with HNSW",
    )
    max_dimensions: int = Field(
        default=16000,
        ge=1,
        description="Largest dimension a vector column accepts",
    )

    # Secret resolution
    secret_env_prefix: str = Field(
        default="",
        description="Prefix for environment variables read by EnvSecretStore",
    )

    model_config = SettingsConfigDict(env_prefix="VECTORSTORE_")
