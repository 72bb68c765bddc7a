"""SQLite persistence for upload rows and their recorded uploader IP."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..errors import PersistenceFailure
from ..models import UploadRecord

_SCHEMA = """
CREATE TABLE IF NOT EXISTS uploads (
    id TEXT PRIMARY KEY,
    size INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    uploader_ip TEXT
)
"""


class UploadStore:
    """SQLite-backed record of uploads, shared between the engine and the provenance recorder."""

    def __init__(self, path: str = ":memory:") -> None:
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        if self._conn is not None:
            return
        if self.path != ":memory:":
            Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, check_same_thread=False)
        with conn:
            conn.execute(_SCHEMA)
        self._conn = conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def create_upload(self, upload_id: str, size: int, created_at: Optional[datetime] = None) -> None:
        stamp = (created_at or datetime.now(timezone.utc)).isoformat()
        self._execute(
            "INSERT INTO uploads (id, size, created_at) VALUES (?, ?, ?)",
            (upload_id, size, stamp),
        )

    def update_uploader_ip(self, upload_id: str, ip: str) -> None:
        rowcount = self._execute(
            "UPDATE uploads SET uploader_ip = ? WHERE id = ?",
            (ip, upload_id),
        )
        if rowcount != 1:
            raise PersistenceFailure(f"Expected to update 1 upload row for {upload_id}, updated {rowcount}")

    def get_upload(self, upload_id: str) -> Optional[UploadRecord]:
        with self._lock:
            conn = self._require_connection()
            row = conn.execute(
                "SELECT id, size, created_at, uploader_ip FROM uploads WHERE id = ?",
                (upload_id,),
            ).fetchone()
        if row is None:
            return None
        return UploadRecord(
            id=row[0],
            size=row[1],
            created_at=datetime.fromisoformat(row[2]),
            uploader_ip=row[3],
        )

    def _execute(self, sql: str, params: tuple) -> int:
        with self._lock:
            conn = self._require_connection()
            try:
                with conn:
                    cursor = conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise PersistenceFailure(str(exc)) from exc
            return cursor.rowcount

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceFailure("Upload store is not connected")
        return self._conn
