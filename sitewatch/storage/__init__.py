from .base import LogStore
from .errors import StorageError
from .memory import MemoryLogStore
from .sqlite import SQLiteLogStore
from .factory import create_store

__all__ = [
    'LogStore',
    'StorageError',
    'MemoryLogStore',
    'SQLiteLogStore',
    'create_store',
]
