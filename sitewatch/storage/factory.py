"""
Backend selection for the log store.
"""

from loguru import logger

from ..core.settings import Settings
from .base import LogStore
from .errors import StorageError
from .memory import MemoryLogStore
from .sqlite import SQLiteLogStore


def create_store(settings: Settings) -> LogStore:
    """Create the backend named by `storage.type`. Raises StorageError."""
    kind = str(settings.get('storage.type') or 'sqlite').lower()

    if kind == 'sqlite':
        return SQLiteLogStore(settings.get('storage.sqlite_path'))
    if kind == 'memory':
        capacity = int(settings.get('storage.max_memory_logs') or MemoryLogStore.DEFAULT_CAPACITY)
        logger.info(f"Memory storage initialized (capacity={capacity})")
        return MemoryLogStore(capacity)

    raise StorageError(f"unknown storage type: {kind!r}")
