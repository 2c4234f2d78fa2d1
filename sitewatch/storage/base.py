"""
Log store contract shared by the in-memory and SQLite backends.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.models import LogEntry


class LogStore(ABC):
    """Append-and-query store for probe history. Implementations are thread-safe."""

    @abstractmethod
    def append(self, entry: LogEntry) -> int:
        """Store an entry and return the id assigned to it."""

    @abstractmethod
    def query(
        self,
        site_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 0,
    ) -> List[LogEntry]:
        """Entries matching both filters, newest first. limit <= 0 means no limit."""

    @abstractmethod
    def all_entries(self) -> List[LogEntry]:
        """Full history, oldest first."""

    @abstractmethod
    def close(self):
        """Release backend resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
