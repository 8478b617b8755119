from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client, create_client

from config import Settings
from models import ItemId, LibraryItem, PersistenceError, parse_float, parse_int

logger = logging.getLogger(__name__)

TABLE = "libraries"


class AuthenticationError(RuntimeError):
    """Raised when a bearer token does not resolve to a Supabase user."""


@dataclass
class UserSession:
    user_id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


def create_supabase_client(settings: Settings) -> Optional[Client]:
    if not settings.supabase_enabled:
        return None
    return create_client(settings.supabase_url, settings.supabase_key)


def authenticate(client: Any, token: str) -> UserSession:
    """Resolve an access token into a session and scope ``client`` to it."""
    try:
        response = client.auth.get_user(token)
    except Exception as exc:
        raise AuthenticationError(f"Invalid session: {exc}") from exc
    user = getattr(response, "user", None)
    if user is None:
        raise AuthenticationError("Invalid session")
    # Row-level security evaluates queries as this user from here on.
    client.postgrest.auth(token)
    return UserSession(user_id=str(user.id), email=getattr(user, "email", None), access_token=token)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------
def item_to_row(item: LibraryItem, user_id: str) -> Dict[str, Any]:
    """Convert an item into a full ``libraries`` row; blanks are stored as NULL.

    Every column is written so an update that clears a field clears it remotely.
    """
    row: Dict[str, Any] = {
        "user_id": user_id,
        "title": item.title or "",
        "type": (item.type or "book").lower(),
    }
    for name in ("author", "category", "status", "language", "url", "summary", "notes", "isbn", "doi"):
        row[name] = getattr(item, name) or None

    year = parse_int(item.publishing_year)
    row["publishing_year"] = year
    row["year"] = year
    row["pages"] = parse_int(item.pages)
    row["rating"] = parse_float(item.rating)
    difficulty = parse_int(item.difficulty)
    row["difficulty"] = difficulty if difficulty is not None and 1 <= difficulty <= 5 else None

    row["cover_url"] = item.cover_url or None
    row["cover_image"] = item.cover_url or None
    row["date_modified"] = item.date_modified or None
    return row


def row_to_item(row: Dict[str, Any]) -> LibraryItem:
    data = dict(row)
    data["publishing_year"] = row.get("publishing_year") or row.get("year")
    data["cover_url"] = row.get("cover_url") or row.get("cover_image") or ""
    data.pop("cover_image", None)
    return LibraryItem.from_dict(data)


class SupabaseStore:
    """The ``libraries`` table, scoped to one authenticated user."""

    def __init__(self, client: Any, session: UserSession):
        self.client = client
        self.session = session

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def _table(self) -> Any:
        return self.client.table(TABLE)

    def _execute(self, action: str, query: Any) -> List[Dict[str, Any]]:
        try:
            response = query.execute()
        except Exception as exc:
            logger.warning("Supabase %s failed: %s", action, exc)
            raise PersistenceError(f"Could not {action}: {exc}") from exc
        return list(getattr(response, "data", None) or [])

    def get_all(self) -> List[LibraryItem]:
        rows = self._execute(
            "load library",
            self._table().select("*").eq("user_id", self.user_id).order("date_added", desc=True),
        )
        return [row_to_item(row) for row in rows]

    def insert(self, item: LibraryItem) -> LibraryItem:
        rows = self._execute("save item", self._table().insert(item_to_row(item, self.user_id)))
        if rows:
            stored = row_to_item(rows[0])
            item.id = stored.id
            item.date_added = stored.date_added or item.date_added
        return item

    def update(self, item: LibraryItem) -> LibraryItem:
        item.touch()
        rows = self._execute(
            "update item",
            self._table()
            .update(item_to_row(item, self.user_id))
            .eq("id", item.id)
            .eq("user_id", self.user_id),
        )
        if not rows:
            raise KeyError(item.id)
        return item

    def delete(self, item_id: ItemId) -> None:
        rows = self._execute(
            "delete item",
            self._table().delete().eq("id", item_id).eq("user_id", self.user_id),
        )
        if not rows:
            raise KeyError(item_id)

    def clear(self) -> None:
        self._execute("clear library", self._table().delete().eq("user_id", self.user_id))

    def replace_all(self, items: Iterable[LibraryItem]) -> List[LibraryItem]:
        items = list(items)
        self.clear()
        if not items:
            return []
        rows = self._execute(
            "import library",
            self._table().insert([item_to_row(item, self.user_id) for item in items]),
        )
        for item, row in zip(items, rows):
            item.id = row_to_item(row).id
        return items
