"""SQLite-backed storage for training metadata and parameter snapshots.

Three tables hold opaque blobs (serialized with torch.save):
    - metadata, keyed by (session_id, type_id)
    - static_info, keyed by (session_id, type_id, worker_id)
    - updates, keyed by (session_id, type_id, worker_id, timestamp)

Writing to an existing key replaces the old entry.
"""
from __future__ import annotations

import io
import logging
import sqlite3
from typing import Any

import torch

logger = logging.getLogger(__name__)


_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS metadata (
    session_id TEXT NOT NULL,
    type_id TEXT NOT NULL,
    object_bytes BLOB NOT NULL,
    PRIMARY KEY (session_id, type_id)
);
CREATE TABLE IF NOT EXISTS static_info (
    session_id TEXT NOT NULL,
    type_id TEXT NOT NULL,
    worker_id TEXT NOT NULL,
    object_bytes BLOB NOT NULL,
    PRIMARY KEY (session_id, type_id, worker_id)
);
CREATE TABLE IF NOT EXISTS updates (
    session_id TEXT NOT NULL,
    type_id TEXT NOT NULL,
    worker_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    object_bytes BLOB NOT NULL,
    PRIMARY KEY (session_id, type_id, worker_id, timestamp)
);
"""


def serialize(obj: Any) -> bytes:
    buffer = io.BytesIO()
    torch.save(obj, buffer)
    return buffer.getvalue()


def deserialize(blob: bytes) -> Any:
    """Inverse of serialize. Only tensors, containers and primitive types are loaded."""
    return torch.load(io.BytesIO(blob), weights_only=True)


class SQLiteStatsStorage:
    def __init__(self,
                 path: str = ":memory:"):
        """Open (and if necessary create) a storage database.

        Parameters:
            path: Database file. ':memory:' gives a throwaway in-memory database.
        """
        self.path = path
        self.connection = sqlite3.connect(path)
        self.closed = False
        self.connection.executescript(_CREATE_TABLES)
        logger.info("Opened stats storage at %s", path)

    def __enter__(self) -> SQLiteStatsStorage:
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.connection.close()
        self.closed = True

    def put_metadata(self,
                     session_id: str,
                     type_id: str,
                     obj: Any):
        with self.connection:
            self.connection.execute(
                "INSERT OR REPLACE INTO metadata (session_id, type_id, object_bytes) VALUES (?, ?, ?)",
                (session_id, type_id, serialize(obj)))

    def get_metadata(self,
                     session_id: str,
                     type_id: str) -> Any | None:
        row = self.connection.execute(
            "SELECT object_bytes FROM metadata WHERE session_id = ? AND type_id = ?",
            (session_id, type_id)).fetchone()
        return None if row is None else deserialize(row[0])

    def put_static_info(self,
                        session_id: str,
                        type_id: str,
                        worker_id: str,
                        obj: Any):
        with self.connection:
            self.connection.execute(
                "INSERT OR REPLACE INTO static_info (session_id, type_id, worker_id, object_bytes) VALUES (?, ?, ?, ?)",
                (session_id, type_id, worker_id, serialize(obj)))

    def get_static_info(self,
                        session_id: str,
                        type_id: str,
                        worker_id: str) -> Any | None:
        row = self.connection.execute(
            "SELECT object_bytes FROM static_info WHERE session_id = ? AND type_id = ? AND worker_id = ?",
            (session_id, type_id, worker_id)).fetchone()
        return None if row is None else deserialize(row[0])

    def put_update(self,
                   session_id: str,
                   type_id: str,
                   worker_id: str,
                   timestamp: int,
                   obj: Any):
        with self.connection:
            self.connection.execute(
                "INSERT OR REPLACE INTO updates (session_id, type_id, worker_id, timestamp, object_bytes) "
                "VALUES (?, ?, ?, ?, ?)",
                (session_id, type_id, worker_id, timestamp, serialize(obj)))

    def get_latest_update(self,
                          session_id: str,
                          type_id: str,
                          worker_id: str) -> tuple[int, Any] | None:
        """Returns (timestamp, object) of the most recent update, or None if there is none."""
        row = self.connection.execute(
            "SELECT timestamp, object_bytes FROM updates WHERE session_id = ? AND type_id = ? AND worker_id = ? "
            "ORDER BY timestamp DESC LIMIT 1",
            (session_id, type_id, worker_id)).fetchone()
        return None if row is None else (row[0], deserialize(row[1]))

    def get_all_updates_after(self,
                              session_id: str,
                              type_id: str,
                              worker_id: str,
                              timestamp: int) -> list[tuple[int, Any]]:
        """All updates with a timestamp strictly greater than the given one, oldest first."""
        rows = self.connection.execute(
            "SELECT timestamp, object_bytes FROM updates WHERE session_id = ? AND type_id = ? AND worker_id = ? "
            "AND timestamp > ? ORDER BY timestamp",
            (session_id, type_id, worker_id, timestamp)).fetchall()
        return [(row[0], deserialize(row[1])) for row in rows]

    def num_updates(self,
                    session_id: str,
                    type_id: str,
                    worker_id: str) -> int:
        return self.connection.execute(
            "SELECT COUNT(*) FROM updates WHERE session_id = ? AND type_id = ? AND worker_id = ?",
            (session_id, type_id, worker_id)).fetchone()[0]

    def list_session_ids(self) -> list[str]:
        rows = self.connection.execute(
            "SELECT session_id FROM metadata UNION SELECT session_id FROM static_info "
            "UNION SELECT session_id FROM updates ORDER BY session_id").fetchall()
        return [row[0] for row in rows]

    def list_worker_ids(self,
                        session_id: str) -> list[str]:
        rows = self.connection.execute(
            "SELECT worker_id FROM static_info WHERE session_id = ? "
            "UNION SELECT worker_id FROM updates WHERE session_id = ? ORDER BY worker_id",
            (session_id, session_id)).fetchall()
        return [row[0] for row in rows]

    def list_type_ids(self,
                      session_id: str) -> list[str]:
        rows = self.connection.execute(
            "SELECT type_id FROM metadata WHERE session_id = ? UNION SELECT type_id FROM static_info "
            "WHERE session_id = ? UNION SELECT type_id FROM updates WHERE session_id = ? ORDER BY type_id",
            (session_id, session_id, session_id)).fetchall()
        return [row[0] for row in rows]

    def session_exists(self,
                       session_id: str) -> bool:
        return session_id in self.list_session_ids()

    def get_update(self,
                   session_id: str,
                   type_id: str,
                   worker_id: str,
                   timestamp: int) -> Any | None:
        """The update stored at exactly this timestamp, or None."""
        row = self.connection.execute(
            "SELECT object_bytes FROM updates WHERE session_id = ? AND type_id = ? AND worker_id = ? "
            "AND timestamp = ?",
            (session_id, type_id, worker_id, timestamp)).fetchone()
        return None if row is None else deserialize(row[0])

    def get_all_static_infos(self,
                             session_id: str,
                             type_id: str) -> dict[str, Any]:
        """Static info of every worker in a session, keyed by worker id."""
        rows = self.connection.execute(
            "SELECT worker_id, object_bytes FROM static_info WHERE session_id = ? AND type_id = ? ORDER BY worker_id",
            (session_id, type_id)).fetchall()
        return {row[0]: deserialize(row[1]) for row in rows}

    def get_latest_update_all_workers(self,
                                      session_id: str,
                                      type_id: str) -> dict[str, tuple[int, Any]]:
        """Most recent (timestamp, object) per worker. Workers without updates are absent."""
        rows = self.connection.execute(
            "SELECT u.worker_id, u.timestamp, u.object_bytes FROM updates u "
            "JOIN (SELECT worker_id, MAX(timestamp) AS latest FROM updates WHERE session_id = ? AND type_id = ? "
            "GROUP BY worker_id) m ON u.worker_id = m.worker_id AND u.timestamp = m.latest "
            "WHERE u.session_id = ? AND u.type_id = ? ORDER BY u.worker_id",
            (session_id, type_id, session_id, type_id)).fetchall()
        return {row[0]: (row[1], deserialize(row[2])) for row in rows}
