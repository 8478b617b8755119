from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import filters
import views
from filters import FilterConfig
from inventory import LibraryBackend
from models import (
    CAMEL_ALIASES,
    ItemId,
    LibraryItem,
    PersistenceError,
    ValidationError,
    item_from_input,
    same_id,
)
from remote import UserSession

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    message: str
    level: str = "info"

    def to_dict(self) -> Dict[str, str]:
        return {"message": self.message, "level": self.level}


class LibraryState:
    """The in-memory collection plus everything the views need to draw it.

    Writes go to the remote store while a session is attached, otherwise to
    the local store. The collection only changes after the backend accepted
    the write.
    """

    def __init__(
        self,
        local: LibraryBackend,
        remote: Optional[LibraryBackend] = None,
        session: Optional[UserSession] = None,
    ):
        self.local = local
        self.remote = remote
        self.session = session
        self.items: List[LibraryItem] = []
        self.filters = FilterConfig()
        self.notifications: List[Notification] = []
        self.source = "local"

    @property
    def backend(self) -> LibraryBackend:
        if self.session is not None and self.remote is not None:
            return self.remote
        return self.local

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #
    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append(Notification(message, level))

    def drain_notifications(self) -> List[Notification]:
        pending, self.notifications = self.notifications, []
        return pending

    # ------------------------------------------------------------------ #
    # Loading and writes
    # ------------------------------------------------------------------ #
    def load(self) -> List[LibraryItem]:
        backend = self.backend
        try:
            self.items = backend.get_all()
            self.source = "remote" if backend is self.remote else "local"
        except PersistenceError as exc:
            if backend is self.local:
                self.notify(f"Error loading library: {exc}", "error")
                raise
            logger.warning("Remote load failed, falling back to local store: %s", exc)
            self.notify("Could not reach your online library; showing local items.", "error")
            self.items = self.local.get_all()
            self.source = "local"
        return self.items

    def _index_of(self, item_id: ItemId) -> int:
        for index, item in enumerate(self.items):
            if same_id(item.id, item_id):
                return index
        raise KeyError(item_id)

    def get(self, item_id: ItemId) -> LibraryItem:
        return self.items[self._index_of(item_id)]

    def _persist_failed(self, action: str, exc: PersistenceError) -> None:
        logger.warning("Failed to %s: %s", action, exc)
        self.notify(f"Error {action}: {exc}", "error")

    def add_item(self, data: Mapping[str, Any]) -> LibraryItem:
        item = item_from_input(data)
        item.touch(created=True)
        try:
            stored = self.backend.insert(item)
        except PersistenceError as exc:
            self._persist_failed("saving item", exc)
            raise
        self.items.append(stored)
        self.notify(f'Added "{stored.title}" to your library.', "success")
        return stored

    def update_item(self, item_id: ItemId, changes: Mapping[str, Any]) -> LibraryItem:
        index = self._index_of(item_id)
        current = self.items[index]
        merged = current.to_dict()
        for key, value in changes.items():
            merged[CAMEL_ALIASES.get(key, key)] = value
        merged["id"] = current.id
        merged["date_added"] = current.date_added

        item = item_from_input(merged)
        try:
            stored = self.backend.update(item)
        except PersistenceError as exc:
            self._persist_failed("updating item", exc)
            raise
        self.items[index] = stored
        return stored

    def delete_item(self, item_id: ItemId) -> LibraryItem:
        index = self._index_of(item_id)
        target = self.items[index]
        try:
            self.backend.delete(target.id)
        except PersistenceError as exc:
            self._persist_failed("deleting item", exc)
            raise
        del self.items[index]
        self.notify(f'Removed "{target.title}".', "info")
        return target

    def import_items(self, payload: Any) -> List[LibraryItem]:
        """Replace the collection with an exported JSON list of items."""
        records = payload.get("items") if isinstance(payload, Mapping) else payload
        if not isinstance(records, list):
            raise ValidationError("Import must be a JSON list of items.")
        parsed = []
        for position, record in enumerate(records, start=1):
            if not isinstance(record, Mapping):
                raise ValidationError(f"Item {position} is not an object.")
            try:
                parsed.append(item_from_input(record))
            except ValidationError as exc:
                raise ValidationError(f"Item {position}: {exc}") from None
        for item in parsed:
            if not item.date_added:
                item.touch(created=True)

        try:
            self.items = self.backend.replace_all(parsed)
        except PersistenceError as exc:
            self._persist_failed("importing library", exc)
            raise
        self.notify("Library imported successfully!", "success")
        return self.items

    def export_items(self) -> List[Dict[str, Any]]:
        return [item.to_dict() for item in self.items]

    def clear(self) -> None:
        try:
            self.backend.clear()
        except PersistenceError as exc:
            self._persist_failed("clearing library", exc)
            raise
        self.items = []
        self.notify("Library cleared successfully!", "info")

    # ------------------------------------------------------------------ #
    # Filtering and presentation
    # ------------------------------------------------------------------ #
    def set_filter(self, name: str, value: Any) -> FilterConfig:
        self.filters = self.filters.with_value(name, value)
        self._announce_filter()
        return self.filters

    def set_filters(self, values: Mapping[str, Any]) -> FilterConfig:
        self.filters = FilterConfig.from_mapping(values)
        self._announce_filter()
        return self.filters

    def clear_filters(self) -> FilterConfig:
        self.filters = self.filters.cleared()
        return self.filters

    def _announce_filter(self) -> None:
        message = filters.filter_summary(len(self.items), len(self.visible_items()), self.filters)
        if message:
            self.notify(message, "info")

    def visible_items(self) -> List[LibraryItem]:
        return filters.apply_filters(self.items, self.filters)

    def search(self, query: Optional[str]) -> List[LibraryItem]:
        return filters.search_items(self.items, query)

    def highlight(self, query: Optional[str]) -> Optional[List[int]]:
        return filters.highlight_matches(self.items, query)

    def search_existing(self, query: Optional[str], limit: int = 5) -> List[LibraryItem]:
        return filters.search_existing(self.items, query, limit)

    def categories(self) -> List[str]:
        return filters.available_categories(self.items)

    def render(self, mode: str = "masonry", items: Optional[Sequence[LibraryItem]] = None) -> List[Dict[str, Any]]:
        return views.render(self.visible_items() if items is None else items, mode)
