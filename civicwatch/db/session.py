from fastapi import Request

from civicwatch.core.config import Settings
from civicwatch.db.storage import StorageAdapter
from civicwatch.db.storage.base import logger
from civicwatch.db.storage.file import FileStorage
from civicwatch.db.storage.sql import SqlStorage


async def connect_storage(settings: Settings) -> StorageAdapter:
    """
    Pick the storage backend once, at startup.

    In ``auto`` mode the database is tried first; any failure switches the
    process to JSON files under DATA_DIR for its whole lifetime.
    """
    if settings.STORAGE_MODE != "file":
        storage = SqlStorage(settings.DATABASE_URI, connect_timeout=settings.DB_CONNECT_TIMEOUT)
        try:
            await storage.connect()
            logger.info("Using database storage")
            return storage
        except Exception as e:
            if settings.STORAGE_MODE == "database":
                raise
            logger.warning(f"Database connection failed, switching to local JSON storage: {e}")

    storage = FileStorage(settings.DATA_DIR)
    await storage.connect()
    logger.info("Using local JSON storage (fallback mode)")
    return storage


def get_storage(request: Request) -> StorageAdapter:
    return request.app.state.storage
