"""Storage abstraction layer for the floor core."""

from .base import Storage
from .inmemory import InMemoryStorage
from .sqlalchemy_adapter import SQLAlchemyStorage

__all__ = ["Storage", "InMemoryStorage", "SQLAlchemyStorage", "create_storage"]


def create_storage(backend: str = "inmemory", database_url: str = "sqlite:///criollo.db",
                   use_alembic: bool = False) -> Storage:
    """Build the storage backend named by STORAGE_BACKEND."""
    if backend == "inmemory":
        return InMemoryStorage()
    if backend in ("sqlalchemy", "sqlite"):
        return SQLAlchemyStorage(database_url, use_alembic=use_alembic)
    raise ValueError(f"Unknown storage backend '{backend}' (expected inmemory or sqlalchemy)")
