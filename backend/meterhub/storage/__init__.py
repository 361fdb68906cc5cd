"""
Persistence backends and the factory that picks one at startup.
"""
from typing import Optional

from meterhub.core.config import settings
from meterhub.core.logging import get_logger
from meterhub.storage.base import PersistenceBackend
from meterhub.storage.memory import MemoryBackend
from meterhub.storage.sql import SqlAlchemyBackend

logger = get_logger(__name__)


def create_backend(provider: Optional[str] = None, database_url: Optional[str] = None) -> PersistenceBackend:
    """
    Build the persistence backend named by configuration.

    Args:
        provider: "memory" or "sql"; defaults to settings.STORAGE_BACKEND
        database_url: Overrides settings.DATABASE_URL for the sql provider

    Returns:
        An uninitialized backend; call initialize() before use
    """
    provider = (provider or settings.STORAGE_BACKEND).lower()

    if provider == "memory":
        backend = MemoryBackend()
    elif provider == "sql":
        backend = SqlAlchemyBackend(database_url=database_url)
    else:
        raise ValueError(f"Unsupported storage backend: {provider}")

    logger.info(f"Using {backend.name} storage backend")
    return backend


__all__ = [
    "PersistenceBackend",
    "MemoryBackend",
    "SqlAlchemyBackend",
    "create_backend",
]
