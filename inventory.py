from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from config import DEFAULT_DB_PATH
from models import ItemId, LibraryItem, PersistenceError

# Column name -> SQLite type, in LibraryItem field order (id excluded).
COLUMNS: Dict[str, str] = {
    "title": "TEXT NOT NULL",
    "author": "TEXT",
    "type": "TEXT NOT NULL DEFAULT 'book'",
    "category": "TEXT",
    "publishing_year": "INTEGER",
    "pages": "INTEGER",
    "language": "TEXT",
    "status": "TEXT",
    "difficulty": "INTEGER",
    "rating": "REAL",
    "summary": "TEXT",
    "notes": "TEXT",
    "cover_url": "TEXT",
    "url": "TEXT",
    "isbn": "TEXT",
    "doi": "TEXT",
    "publisher": "TEXT",
    "date_added": "TEXT",
    "date_modified": "TEXT",
}


class LibraryBackend(Protocol):
    """The four operations a persistence backend offers over library items."""

    def get_all(self) -> List[LibraryItem]:
        ...

    def insert(self, item: LibraryItem) -> LibraryItem:
        ...

    def update(self, item: LibraryItem) -> LibraryItem:
        ...

    def delete(self, item_id: ItemId) -> None:
        ...


class InventoryStore:
    """SQLite-backed store for the local library."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # --------------------------------------------------------------------- #
    # Schema
    # --------------------------------------------------------------------- #
    def _ensure_schema(self) -> None:
        columns = ",\n".join(f"{name} {kind}" for name, kind in COLUMNS.items())
        with self._lock, self._conn:
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS library_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    {columns}
                );
                """
            )
            self._ensure_columns()
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_library_items_title
                ON library_items(title COLLATE NOCASE);
                """
            )

    def _ensure_columns(self) -> None:
        """Add columns introduced after a database file was first created."""
        existing = {
            row["name"] for row in self._conn.execute("PRAGMA table_info('library_items');")
        }
        for name, kind in COLUMNS.items():
            if name in existing:
                continue
            # NOT NULL columns need a default to be added to a populated table.
            if "NOT NULL" in kind and "DEFAULT" not in kind:
                kind = f"{kind} DEFAULT ''"
            self._conn.execute(f"ALTER TABLE library_items ADD COLUMN {name} {kind};")

    # --------------------------------------------------------------------- #
    # Utility helpers
    # --------------------------------------------------------------------- #
    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> LibraryItem:
        return LibraryItem.from_dict(dict(row))

    @staticmethod
    def _values(item: LibraryItem) -> List[Any]:
        data = item.to_dict()
        return [data[name] for name in COLUMNS]

    @staticmethod
    def _local_id(item_id: ItemId) -> int:
        try:
            return int(item_id)
        except (TypeError, ValueError):
            raise KeyError(item_id) from None

    # --------------------------------------------------------------------- #
    # Item management
    # --------------------------------------------------------------------- #
    def get_all(self) -> List[LibraryItem]:
        try:
            with self._lock:
                rows = self._conn.execute("SELECT * FROM library_items ORDER BY id;").fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not read library: {exc}") from exc
        return [self._row_to_item(row) for row in rows]

    def get(self, item_id: ItemId) -> Optional[LibraryItem]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM library_items WHERE id = ?;", (self._local_id(item_id),)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def _insert_locked(self, item: LibraryItem) -> LibraryItem:
        if not item.date_added:
            item.touch(created=True)
        placeholders = ", ".join("?" for _ in COLUMNS)
        cursor = self._conn.execute(
            f"INSERT INTO library_items ({', '.join(COLUMNS)}) VALUES ({placeholders});",
            self._values(item),
        )
        item.id = int(cursor.lastrowid)
        return item

    def insert(self, item: LibraryItem) -> LibraryItem:
        """Persist a new item, assigning its id and timestamps."""
        item.id = None
        try:
            with self._lock, self._conn:
                return self._insert_locked(item)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not save item: {exc}") from exc

    def update(self, item: LibraryItem) -> LibraryItem:
        local_id = self._local_id(item.id)
        item.touch()
        assignments = ", ".join(f"{name} = ?" for name in COLUMNS)
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    f"UPDATE library_items SET {assignments} WHERE id = ?;",
                    [*self._values(item), local_id],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not update item: {exc}") from exc
        if cursor.rowcount == 0:
            raise KeyError(item.id)
        return item

    def delete(self, item_id: ItemId) -> None:
        local_id = self._local_id(item_id)
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM library_items WHERE id = ?;", (local_id,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not delete item: {exc}") from exc
        if cursor.rowcount == 0:
            raise KeyError(item_id)

    def replace_all(self, items: Iterable[LibraryItem]) -> List[LibraryItem]:
        """Swap the whole collection in one transaction; fresh ids are assigned."""
        stored: List[LibraryItem] = []
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM library_items;")
                for item in items:
                    item.id = None
                    stored.append(self._insert_locked(item))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not import library: {exc}") from exc
        return stored

    def clear(self) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM library_items;")
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not clear library: {exc}") from exc

    def count(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM library_items;").fetchone()[0])
