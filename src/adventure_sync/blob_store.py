"""SQLite-backed store for photo bytes of queued uploads.

Each queued upload owns one row in ``uploads`` (keyed by its local id) and
one row per photo in ``upload_photos``. The database file survives process
restarts, so bytes queued while offline are still there on the next run.

The store is blocking; async callers run its methods with
``asyncio.to_thread``. One lock serializes access to the shared connection.

Usage:
    store = BlobStore(Path("~/.adventure_sync/uploads.db").expanduser())
    store.put("album_1700000000000_abc123xyz", photos)
    record = store.get("album_1700000000000_abc123xyz")
    store.delete("album_1700000000000_abc123xyz")
    store.close()
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from adventure_sync.exceptions import LocalStoreError
from adventure_sync.models import BlobRecord, PhotoBlob

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


class BlobStore:
    """Durable key-value store of photo bytes, keyed by local upload id."""

    def __init__(self, db_path: str | Path = IN_MEMORY) -> None:
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        if self.db_path != IN_MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA foreign_keys=ON")
            if self.db_path != IN_MEMORY:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to open blob store {self.db_path}: {e}") from e
        logger.debug(f"Blob store opened: {self.db_path}")

    def __enter__(self) -> BlobStore:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS uploads (
                local_id TEXT PRIMARY KEY,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS upload_photos (
                local_id TEXT NOT NULL REFERENCES uploads(local_id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                file_name TEXT NOT NULL,
                mime_type TEXT NOT NULL,
                caption TEXT,
                order_index INTEGER NOT NULL,
                data BLOB NOT NULL,
                PRIMARY KEY (local_id, position)
            );
        """)
        self._conn.commit()

    def put(self, local_id: str, photos: list[PhotoBlob]) -> None:
        """Store the photos for an upload, replacing any previous entry."""
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM uploads WHERE local_id = ?", (local_id,))
                self._conn.execute(
                    "INSERT INTO uploads (local_id, created_at) VALUES (?, ?)",
                    (local_id, time.time()),
                )
                self._conn.executemany(
                    "INSERT INTO upload_photos "
                    "(local_id, position, file_name, mime_type, caption, order_index, data) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            local_id,
                            position,
                            photo.file_name,
                            photo.mime_type,
                            photo.caption,
                            photo.order_index,
                            sqlite3.Binary(photo.data),
                        )
                        for position, photo in enumerate(photos)
                    ],
                )
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to store files for {local_id}: {e}") from e
        logger.info(f"Stored {len(photos)} photo(s) offline for {local_id}")

    def get(self, local_id: str) -> BlobRecord | None:
        """Return the stored record, or None if there is none."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT created_at FROM uploads WHERE local_id = ?", (local_id,)
                ).fetchone()
                if row is None:
                    return None
                photo_rows = self._conn.execute(
                    "SELECT file_name, mime_type, caption, order_index, data "
                    "FROM upload_photos WHERE local_id = ? ORDER BY position ASC",
                    (local_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to read files for {local_id}: {e}") from e

        photos = [
            PhotoBlob(
                data=bytes(data),
                file_name=file_name,
                mime_type=mime_type,
                caption=caption,
                order_index=order_index,
            )
            for file_name, mime_type, caption, order_index, data in photo_rows
        ]
        return BlobRecord(
            local_id=local_id,
            photos=photos,
            created_at=datetime.fromtimestamp(row[0], tz=timezone.utc),
        )

    def delete(self, local_id: str) -> None:
        """Remove an upload's bytes. Deleting a missing id is not an error."""
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM uploads WHERE local_id = ?", (local_id,))
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to delete files for {local_id}: {e}") from e
        if cursor.rowcount:
            logger.info(f"Removed offline files for {local_id}")

    def list_ids(self) -> list[str]:
        """Local ids currently holding bytes, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT local_id FROM uploads ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM uploads").fetchone()[0])

    def clear(self) -> int:
        """Drop every stored upload. Returns how many were removed."""
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM uploads")
        logger.info(f"Cleared {cursor.rowcount} offline upload(s)")
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
