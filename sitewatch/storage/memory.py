"""
Bounded in-memory log store (ring buffer).
"""

import dataclasses
import threading
from collections import deque
from typing import Deque, List, Optional

from ..core.models import LogEntry
from .base import LogStore


class MemoryLogStore(LogStore):
    """Keeps the newest `capacity` entries; the oldest is evicted on overflow."""

    DEFAULT_CAPACITY = 1000

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity if capacity > 0 else self.DEFAULT_CAPACITY
        self._entries: Deque[LogEntry] = deque(maxlen=self.capacity)
        self._counter = 0
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> int:
        with self._lock:
            self._counter += 1
            self._entries.append(dataclasses.replace(entry, id=self._counter))
            return self._counter

    def query(
        self,
        site_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 0,
    ) -> List[LogEntry]:
        with self._lock:
            snapshot = list(self._entries)

        matched = []
        for entry in reversed(snapshot):
            if site_id and entry.site_id != site_id:
                continue
            if success is not None and entry.success != success:
                continue
            matched.append(entry)
            if 0 < limit <= len(matched):
                break
        return matched

    def all_entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def close(self):
        pass
