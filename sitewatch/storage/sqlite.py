"""
Durable SQLite log store.
"""

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..core.models import LineType, LogEntry
from .base import LogStore
from .errors import StorageError


_SCHEMA = """
CREATE TABLE IF NOT EXISTS ping_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    site_id TEXT NOT NULL,
    site_name TEXT NOT NULL,
    target TEXT NOT NULL,
    ip TEXT NOT NULL,
    success INTEGER NOT NULL,
    latency REAL,
    error TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_timestamp ON ping_logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_site_id ON ping_logs(site_id);
CREATE INDEX IF NOT EXISTS idx_site_timestamp ON ping_logs(site_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_success ON ping_logs(success);
"""

# Columns added after the first release; applied to older databases in place.
_MIGRATIONS = [
    ("packets_sent", "INTEGER DEFAULT 0"),
    ("packets_recv", "INTEGER DEFAULT 0"),
    ("packets_duplicates", "INTEGER DEFAULT 0"),
    ("packet_loss", "REAL"),
    ("min_latency", "REAL"),
    ("max_latency", "REAL"),
    ("jitter", "REAL"),
    ("blocked", "INTEGER DEFAULT 0"),
]

_COLUMNS = (
    "id, timestamp, site_id, site_name, target, ip, success, latency, error, "
    "packets_sent, packets_recv, packets_duplicates, packet_loss, "
    "min_latency, max_latency, jitter, blocked"
)


def _to_db_time(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class SQLiteLogStore(LogStore):
    """Unbounded history in a single SQLite file (WAL mode)."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._init_schema()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"failed to open SQLite database {db_path}: {e}") from e

        logger.info(f"SQLite storage initialized: {db_path}")

    def _init_schema(self):
        self._conn.executescript(_SCHEMA)

        existing = {row[1] for row in self._conn.execute("PRAGMA table_info(ping_logs)")}
        for column, definition in _MIGRATIONS:
            if column not in existing:
                self._conn.execute(f"ALTER TABLE ping_logs ADD COLUMN {column} {definition}")
                logger.info(f"Migrated ping_logs: added column {column}")

        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_packet_loss ON ping_logs(packet_loss)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_latency ON ping_logs(latency)")

    def append(self, entry: LogEntry) -> int:
        query = (
            "INSERT INTO ping_logs (timestamp, site_id, site_name, target, ip, success, latency, "
            "error, packets_sent, packets_recv, packets_duplicates, packet_loss, "
            "min_latency, max_latency, jitter, blocked) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
        )
        params = (
            _to_db_time(entry.timestamp),
            entry.site_id,
            entry.site_name,
            entry.line.value,
            entry.ip,
            int(entry.success),
            entry.latency,
            entry.error,
            entry.packets_sent,
            entry.packets_recv,
            entry.packets_duplicates,
            entry.packet_loss,
            entry.min_latency,
            entry.max_latency,
            entry.jitter,
            int(entry.blocked),
        )
        with self._lock:
            try:
                cursor = self._conn.execute(query, params)
            except sqlite3.Error as e:
                raise StorageError(f"failed to insert ping log: {e}") from e
            return cursor.lastrowid

    def query(
        self,
        site_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 0,
    ) -> List[LogEntry]:
        sql = f"SELECT {_COLUMNS} FROM ping_logs WHERE 1=1"
        args: list = []
        if site_id:
            sql += " AND site_id = ?"
            args.append(site_id)
        if success is not None:
            sql += " AND success = ?"
            args.append(int(success))
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit > 0:
            sql += " LIMIT ?"
            args.append(limit)
        return self._fetch(sql, args)

    def all_entries(self) -> List[LogEntry]:
        return self._fetch(f"SELECT {_COLUMNS} FROM ping_logs ORDER BY timestamp ASC, id ASC", [])

    def _fetch(self, sql: str, args: list) -> List[LogEntry]:
        with self._lock:
            try:
                rows = self._conn.execute(sql, args).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"failed to query ping logs: {e}") from e
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row) -> LogEntry:
        return LogEntry(
            id=row[0],
            timestamp=_from_db_time(row[1]),
            site_id=row[2],
            site_name=row[3],
            line=LineType(row[4]),
            ip=row[5],
            success=bool(row[6]),
            latency=row[7],
            error=row[8] or "",
            packets_sent=row[9] or 0,
            packets_recv=row[10] or 0,
            packets_duplicates=row[11] or 0,
            packet_loss=row[12],
            min_latency=row[13],
            max_latency=row[14],
            jitter=row[15],
            blocked=bool(row[16]),
        )

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
