"""Storage layer for pgvector connection pooling."""

from src.storage.database import Database

__all__ = ["Database"]
