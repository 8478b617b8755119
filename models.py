from __future__ import annotations

import re
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

ITEM_TYPES = ("book", "paper", "article", "report")

ItemId = Union[str, int]


class ValidationError(ValueError):
    """Raised when user input cannot be admitted into the library."""


class PersistenceError(RuntimeError):
    """Raised when a storage backend rejects or cannot complete an operation."""


# Browser exports use camelCase; rows and the API use snake_case.
CAMEL_ALIASES = {
    "publishingYear": "publishing_year",
    "coverUrl": "cover_url",
    "coverImage": "cover_url",
    "dateAdded": "date_added",
    "dateModified": "date_modified",
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_int(value: Any) -> Optional[int]:
    """Return the leading integer of ``value`` or ``None`` when there is none."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = re.match(r"\s*(-?\d+)", str(value))
    return int(match.group(1)) if match else None


def parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class LibraryItem:
    title: str = ""
    id: Optional[ItemId] = None
    author: str = ""
    type: str = "book"
    category: str = ""
    publishing_year: Optional[int] = None
    pages: Optional[int] = None
    language: str = ""
    status: str = ""
    difficulty: Optional[int] = None
    rating: Optional[float] = None
    summary: str = ""
    notes: str = ""
    cover_url: str = ""
    url: str = ""
    isbn: str = ""
    doi: str = ""
    publisher: str = ""
    date_added: Optional[str] = None
    date_modified: Optional[str] = None

    @classmethod
    def field_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LibraryItem":
        """Build an item from a snake_case or camelCase mapping.

        Numeric fields are coerced; values that cannot be coerced are dropped
        to ``None`` rather than rejected. Call :meth:`validate` to enforce the
        item invariants.
        """
        known = set(cls.field_names())
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = CAMEL_ALIASES.get(key, key)
            if name not in known or (name in values and values[name]):
                continue
            values[name] = value

        return cls(
            title=_text(values.get("title")),
            id=values.get("id"),
            author=_text(values.get("author")),
            type=_text(values.get("type") or "book").strip().lower(),
            category=_text(values.get("category")),
            publishing_year=parse_int(values.get("publishing_year")),
            pages=parse_int(values.get("pages")),
            language=_text(values.get("language")),
            status=_text(values.get("status")),
            difficulty=parse_int(values.get("difficulty")),
            rating=parse_float(values.get("rating")),
            summary=_text(values.get("summary")),
            notes=_text(values.get("notes")),
            cover_url=_text(values.get("cover_url")),
            url=_text(values.get("url")),
            isbn=_text(values.get("isbn")),
            doi=_text(values.get("doi")),
            publisher=_text(values.get("publisher")),
            date_added=values.get("date_added") or None,
            date_modified=values.get("date_modified") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> "LibraryItem":
        if self.type not in ITEM_TYPES:
            raise ValidationError(
                f"Type must be one of: {', '.join(ITEM_TYPES)}."
            )
        if self.rating is not None and not 0 <= self.rating <= 5:
            raise ValidationError("Rating must be between 0 and 5.")
        if self.difficulty is not None and not 1 <= self.difficulty <= 5:
            raise ValidationError("Difficulty must be between 1 and 5.")
        if self.pages is not None and self.pages < 0:
            raise ValidationError("Pages cannot be negative.")
        return self

    def touch(self, *, created: bool = False) -> None:
        now = utc_now()
        if created or not self.date_added:
            self.date_added = now
        self.date_modified = now


NUMERIC_FIELDS = {
    "publishing_year": parse_int,
    "pages": parse_int,
    "difficulty": parse_int,
    "rating": parse_float,
}


def item_from_input(data: Mapping[str, Any]) -> LibraryItem:
    """Build and validate an item from user-entered data.

    Unlike :meth:`LibraryItem.from_dict`, malformed numbers and a missing
    title are rejected instead of being dropped.
    """
    if data.get("title") is None:
        raise ValidationError("Title is required.")
    for key, value in data.items():
        name = CAMEL_ALIASES.get(key, key)
        parser = NUMERIC_FIELDS.get(name)
        if parser is None or value is None or (isinstance(value, str) and not value.strip()):
            continue
        if parser(value) is None:
            label = name.replace("_", " ").capitalize()
            raise ValidationError(f"{label} must be a number.")
    return LibraryItem.from_dict(data).validate()


def same_id(left: Optional[ItemId], right: Optional[ItemId]) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)
