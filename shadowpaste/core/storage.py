"""SQLite storage backend for clipboard history."""

import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from shadowpaste.core.config import DEFAULT_DB_PATH
from shadowpaste.core.errors import StorageError
from shadowpaste.models.schemas import Entry, content_from_parts

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS clipboard_history (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    content_type TEXT    NOT NULL,
    content      TEXT    NOT NULL,
    copied_at    TEXT    NOT NULL,
    embedding    BLOB
);
"""


def embedding_to_bytes(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype="<f4").tobytes()


def bytes_to_embedding(data: bytes) -> List[float]:
    usable = len(data) - len(data) % 4
    return np.frombuffer(data[:usable], dtype="<f4").tolist()


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601, so that string order matches time order."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Local-time datetime; unparseable values fall back to now."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable timestamp {value!r}, using current time")
        return datetime.now().astimezone()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone()


class ClipStorage:
    """Durable clipboard history in a single SQLite table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def open(self) -> "ClipStorage":
        """Open (or create) the database and ensure the schema exists."""
        with self._lock:
            if self.conn is not None:
                return self
            try:
                if self.db_path != ":memory:":
                    parent = os.path.dirname(os.path.abspath(self.db_path))
                    os.makedirs(parent, exist_ok=True)
                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.executescript(SCHEMA)
                conn.commit()
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"Failed to open database at {self.db_path}: {e}") from e
            self.conn = conn
        logger.info(f"Opened clipboard history at {self.db_path}")
        return self

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StorageError("Storage is not open")
        return self.conn

    def insert(self, entry: Entry) -> int:
        """Persist ``entry`` and return the id assigned to it."""
        content = entry.content
        emb_bytes = (
            embedding_to_bytes(entry.embedding) if entry.embedding is not None else None
        )

        with self._lock:
            conn = self._connection()
            try:
                cursor = conn.execute(
                    "INSERT INTO clipboard_history (content_type, content, copied_at, embedding) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        content.kind,
                        content.payload,
                        format_timestamp(entry.captured_at),
                        emb_bytes,
                    ),
                )
                conn.commit()
            except (sqlite3.Error, UnicodeEncodeError, OverflowError) as e:
                # Lone surrogates in clipboard text cannot be encoded as UTF-8
                raise StorageError(f"Insert failed: {e}") from e
            return int(cursor.lastrowid)

    def delete_by_id(self, entry_id: int) -> None:
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("DELETE FROM clipboard_history WHERE id = ?", (entry_id,))
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Delete failed: {e}") from e

    def load_all(self) -> List[Entry]:
        """Every entry, oldest first."""
        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(
                    "SELECT id, content_type, content, copied_at, embedding "
                    "FROM clipboard_history ORDER BY copied_at ASC, id ASC"
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Load failed: {e}") from e

        entries = []
        for entry_id, content_type, content, copied_at, emb_bytes in rows:
            entries.append(
                Entry(
                    id=entry_id,
                    content=content_from_parts(content_type, content or ""),
                    captured_at=parse_timestamp(copied_at),
                    embedding=(
                        bytes_to_embedding(emb_bytes) if emb_bytes is not None else None
                    ),
                )
            )
        return entries

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about stored entries."""
        with self._lock:
            conn = self._connection()
            try:
                df = pd.read_sql_query(
                    "SELECT content_type, content, copied_at, "
                    "embedding IS NOT NULL AS has_embedding FROM clipboard_history",
                    conn,
                )
            except (sqlite3.Error, pd.errors.DatabaseError) as e:
                raise StorageError(f"Stats query failed: {e}") from e

        if len(df) == 0:
            return {
                "total_entries": 0,
                "by_type": {},
                "embedded_entries": 0,
                "avg_text_length": 0,
                "storage_path": self.db_path,
            }

        by_type = {str(k): int(v) for k, v in df["content_type"].value_counts().items()}
        texts = df[df["content_type"] == "text"]["content"]
        avg_length = texts.str.len().mean() if len(texts) else 0

        return {
            "total_entries": int(len(df)),
            "by_type": by_type,
            "embedded_entries": int(df["has_embedding"].sum()),
            "avg_text_length": round(float(avg_length), 1),
            "storage_path": self.db_path,
            "oldest_entry": str(df["copied_at"].min()),
            "newest_entry": str(df["copied_at"].max()),
        }
