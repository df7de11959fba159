# Storage backings
import logging

from fleet_registry.core.config import Settings
from fleet_registry.exceptions import ConfigurationError
from fleet_registry.storage.base import Storage
from fleet_registry.storage.memory import InMemoryStorage

logger = logging.getLogger(__name__)

__all__ = ["InMemoryStorage", "Storage", "build_storage"]


async def build_storage(settings: Settings) -> Storage:
    """Create the backing selected by ``settings.storage_backend``."""
    backend = settings.storage_backend.strip().lower()

    if backend == "memory":
        logger.info("Using in-memory storage")
        return InMemoryStorage()

    if backend == "sql":
        from fleet_registry.core.database import create_engine
        from fleet_registry.storage.sql import SqlStorage

        storage = SqlStorage(create_engine(settings.database_url))
        await storage.create_schema()
        logger.info("Using SQL storage")
        return storage

    raise ConfigurationError(f"Unknown storage backend: {settings.storage_backend!r}")
