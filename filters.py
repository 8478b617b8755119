from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from models import LibraryItem, ValidationError, parse_float, parse_int

ALL = "all"

# Inclusive ranges. Items only carry difficulty 1-5, so "medium" stops at 5 in
# practice and "hard" never matches; kept until the scale is settled.
DIFFICULTY_BUCKETS: Dict[str, tuple] = {
    "easy": (1, 3),
    "medium": (4, 7),
    "hard": (8, 10),
}

SEARCH_FIELDS = ("title", "author", "category", "type")
EXISTING_SEARCH_FIELDS = ("title", "author", "category")


@dataclass(frozen=True)
class FilterConfig:
    type: str = ALL
    status: str = ALL
    rating: str = ALL
    difficulty: str = ALL
    language: str = ALL
    category: str = ALL

    @classmethod
    def names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "FilterConfig":
        """Build a config from request values, rejecting unusable ones."""
        unknown = set(values) - set(cls.names())
        if unknown:
            raise ValidationError(f"Unknown filter: {', '.join(sorted(unknown))}.")

        cleaned: Dict[str, str] = {}
        for name in cls.names():
            raw = values.get(name)
            value = ALL if raw is None or str(raw).strip() == "" else str(raw).strip()
            cleaned[name] = value

        if cleaned["rating"] != ALL and parse_float(cleaned["rating"]) is None:
            raise ValidationError("Rating filter must be 'all' or a number.")
        if cleaned["difficulty"] != ALL and cleaned["difficulty"] not in DIFFICULTY_BUCKETS:
            raise ValidationError(
                "Difficulty filter must be one of: all, " + ", ".join(DIFFICULTY_BUCKETS) + "."
            )
        return cls(**cleaned)

    def with_value(self, name: str, value: Any) -> "FilterConfig":
        if name not in self.names():
            raise ValidationError(f"Unknown filter: {name}.")
        current = self.as_dict()
        current[name] = value
        return FilterConfig.from_mapping(current)

    def as_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in self.names()}

    def active_count(self) -> int:
        return sum(1 for value in self.as_dict().values() if value != ALL)

    def cleared(self) -> "FilterConfig":
        return replace(self, **{name: ALL for name in self.names()})


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _rating_passes(item: Any, threshold: str) -> bool:
    limit = parse_float(threshold)
    rating = parse_float(_field(item, "rating"))
    if limit is None or rating is None:
        return False
    return rating >= limit


def _difficulty_passes(item: Any, bucket: str) -> bool:
    bounds = DIFFICULTY_BUCKETS.get(bucket)
    difficulty = parse_int(_field(item, "difficulty"))
    if bounds is None or difficulty is None:
        return False
    low, high = bounds
    return low <= difficulty <= high


def matches(item: Any, config: FilterConfig) -> bool:
    for name, wanted in config.as_dict().items():
        if wanted == ALL:
            continue
        if name == "rating":
            if not _rating_passes(item, wanted):
                return False
        elif name == "difficulty":
            if not _difficulty_passes(item, wanted):
                return False
        else:
            value = _field(item, name)
            if not _present(value) or value != wanted:
                return False
    return True


def apply_filters(items: Sequence[LibraryItem], config: FilterConfig) -> List[LibraryItem]:
    """Return the items passing every active predicate, in their original order."""
    return [item for item in items if matches(item, config)]


def filter_summary(total: int, shown: int, config: FilterConfig) -> Optional[str]:
    if config.active_count() == 0:
        return None
    return f"Showing {shown} of {total} items"


def available_categories(items: Sequence[LibraryItem]) -> List[str]:
    seen: List[str] = []
    for item in items:
        category = _field(item, "category")
        if isinstance(category, str) and category.strip() and category not in seen:
            seen.append(category)
    return seen


# ---------------------------------------------------------------------------
# Free-text search
# ---------------------------------------------------------------------------
def _text_match(item: Any, term: str, names: Sequence[str]) -> bool:
    for name in names:
        value = _field(item, name)
        if value is None:
            continue
        if term in str(value).lower():
            return True
    return False


def _normalize_query(query: Optional[str]) -> str:
    return (query or "").strip().lower()


def search_items(items: Sequence[LibraryItem], query: Optional[str]) -> List[LibraryItem]:
    """Library search view: a blank query returns the whole collection."""
    term = _normalize_query(query)
    if not term:
        return list(items)
    return [item for item in items if _text_match(item, term, SEARCH_FIELDS)]


def highlight_matches(items: Sequence[LibraryItem], query: Optional[str]) -> Optional[List[int]]:
    """Overlay search view: positions to highlight, or ``None`` for no highlighting."""
    term = _normalize_query(query)
    if not term:
        return None
    return [index for index, item in enumerate(items) if _text_match(item, term, SEARCH_FIELDS)]


def search_existing(items: Sequence[LibraryItem], query: Optional[str], limit: int = 5) -> List[LibraryItem]:
    term = _normalize_query(query)
    if not term:
        return []
    found = [item for item in items if _text_match(item, term, EXISTING_SEARCH_FIELDS)]
    return found[:limit]
