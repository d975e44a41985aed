from __future__ import annotations

import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from bmplannr.app_logger import get_logger
from bmplannr.services.store import StoreError

logger = get_logger("sqlite_store")

COLUMNS: Dict[str, tuple[str, ...]] = {
    "grades": (
        "id", "user_id", "subject_id", "type", "value", "semester", "name", "weight",
        "date_taken", "description", "duration", "created_at", "updated_at",
    ),
    "bm_settings": ("id", "user_id", "bm_type", "study_mode", "created_at", "updated_at"),
    "scheduled_tests": (
        "id", "user_id", "subject_id", "title", "description", "test_type", "scheduled_date",
        "duration", "weight", "semester", "status", "grade_id", "created_at", "updated_at",
    ),
}


class SqliteStore:
    def __init__(self, db_path: str = "bmplannr.db") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # one connection is shared by the API worker threads
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS grades (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              subject_id TEXT NOT NULL,
              type TEXT NOT NULL,
              value REAL NOT NULL,
              semester INTEGER,
              name TEXT,
              weight REAL,
              date_taken TEXT,
              description TEXT,
              duration TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS bm_settings (
              id TEXT PRIMARY KEY,
              user_id TEXT UNIQUE NOT NULL,
              bm_type TEXT NOT NULL,
              study_mode TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS scheduled_tests (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              subject_id TEXT NOT NULL,
              title TEXT NOT NULL,
              description TEXT,
              test_type TEXT NOT NULL,
              scheduled_date TEXT NOT NULL,
              duration INTEGER,
              weight REAL,
              semester INTEGER,
              status TEXT NOT NULL,
              grade_id TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              FOREIGN KEY(grade_id) REFERENCES grades(id) ON DELETE SET NULL
            );

            CREATE INDEX IF NOT EXISTS idx_grades_user ON grades(user_id);
            CREATE INDEX IF NOT EXISTS idx_tests_user ON scheduled_tests(user_id);
            """
        )
        self.conn.commit()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _columns(collection: str) -> tuple[str, ...]:
        try:
            return COLUMNS[collection]
        except KeyError as exc:
            raise StoreError(f"Unknown collection: {collection}") from exc

    def _checked(self, collection: str, data: Mapping) -> Dict:
        columns = self._columns(collection)
        unknown = [key for key in data if key not in columns]
        if unknown:
            raise StoreError(f"Unknown fields for {collection}: {', '.join(unknown)}")
        return dict(data)

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cur = self.conn.execute(sql, params)
                self.conn.commit()
                return cur
            except sqlite3.Error as exc:
                self.conn.rollback()
                logger.exception("SQLite statement failed: %s", sql.split()[0])
                raise StoreError(str(exc)) from exc

    def insert(self, collection: str, data: Mapping) -> Dict:
        row = self._checked(collection, data)
        now = self._now()
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("created_at", now)
        row["updated_at"] = now
        keys = list(row)
        with self._lock:
            self._execute(
                f"INSERT INTO {collection}({', '.join(keys)}) VALUES({', '.join('?' for _ in keys)})",
                tuple(row[k] for k in keys),
            )
            stored = self.get(collection, row["id"])
        if stored is None:
            raise StoreError(f"{collection} record was not stored: {row['id']}")
        return stored

    def get(self, collection: str, record_id: str) -> Optional[Dict]:
        self._columns(collection)
        with self._lock:
            found = self._execute(f"SELECT * FROM {collection} WHERE id=?", (record_id,)).fetchone()
        return dict(found) if found else None

    def query(self, collection: str, filters: Mapping, order_by: Optional[str] = None) -> List[Dict]:
        checked = self._checked(collection, filters)
        sql = f"SELECT * FROM {collection}"
        if checked:
            sql += " WHERE " + " AND ".join(f"{key}=?" for key in checked)
        if order_by:
            self._checked(collection, {order_by: None})
            sql += f" ORDER BY {order_by}"
        with self._lock:
            rows = self._execute(sql, tuple(checked.values())).fetchall()
        return [dict(row) for row in rows]

    def update(self, collection: str, record_id: str, partial: Mapping) -> Dict:
        changes = self._checked(collection, partial)
        changes.pop("id", None)
        changes["updated_at"] = self._now()
        with self._lock:
            cur = self._execute(
                f"UPDATE {collection} SET {', '.join(f'{key}=?' for key in changes)} WHERE id=?",
                (*changes.values(), record_id),
            )
            if cur.rowcount == 0:
                raise StoreError(f"{collection} record not found: {record_id}")
            return self.get(collection, record_id) or {}

    def delete(self, collection: str, record_id: str) -> None:
        self._columns(collection)
        self._execute(f"DELETE FROM {collection} WHERE id=?", (record_id,))

    def upsert(self, collection: str, data: Mapping, conflict_key: str) -> Dict:
        row = self._checked(collection, data)
        if conflict_key not in row:
            raise StoreError(f"Upsert requires a value for {conflict_key}")
        with self._lock:
            existing = self.query(collection, {conflict_key: row[conflict_key]})
            if existing:
                return self.update(collection, existing[0]["id"], row)
            return self.insert(collection, row)
