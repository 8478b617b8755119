from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from models import LibraryItem, parse_int

SUMMARY_LIMIT = 500
COVER_KEYS = ("extraLarge", "large", "medium", "small", "thumbnail", "smallThumbnail")

MISSING = object()


@dataclass(frozen=True)
class FieldRule:
    """Copy the value found at ``path`` in a raw record into ``target``.

    Targets that are not :class:`LibraryItem` fields are collected into
    :attr:`ExternalResult.extras`. ``transform`` runs on every non-missing
    value; ``default`` fills in when the path is missing or the transform
    yields ``None``/empty.
    """

    target: str
    path: Tuple[str, ...]
    transform: Optional[Callable[[Any], Any]] = None
    default: Any = None


@dataclass
class ExternalResult:
    source: str
    item: LibraryItem
    extras: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = self.item.to_dict()
        payload.update(self.extras)
        payload["source"] = self.source
        return payload


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------
def _lookup(raw: Any, path: Sequence[str]) -> Any:
    current = raw
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return MISSING
        current = current[key]
    return current


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def join_names(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return _clean_text(value)
    if isinstance(value, Iterable):
        names = []
        for entry in value:
            name = entry.get("name") if isinstance(entry, dict) else entry
            name = _clean_text(name)
            if name:
                names.append(name)
        return ", ".join(names) or None
    return None


def first_entry(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return _clean_text(value[0]) if value else None
    return _clean_text(value)


def leading_year(value: Any) -> Optional[int]:
    """Year from the leading numeric component of a date like ``2004-05-01``."""
    if value is None:
        return None
    return parse_int(str(value).split("-")[0])


def first_year(value: Any) -> Optional[int]:
    """Year from the first four-digit run anywhere in the text."""
    if value is None:
        return None
    match = re.search(r"\d{4}", str(value))
    return int(match.group(0)) if match else None


def leading_count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    match = re.search(r"\d+", str(value))
    return int(match.group(0)) if match else 0


def select_isbn(identifiers: Any) -> Optional[str]:
    """Prefer the ISBN_13 identifier, then ISBN_10."""
    if not isinstance(identifiers, list):
        return None
    by_type: Dict[str, str] = {}
    for identifier in identifiers:
        if not isinstance(identifier, dict):
            continue
        kind = identifier.get("type")
        value = identifier.get("identifier")
        if kind and value and kind not in by_type:
            by_type[kind] = str(value)
    return by_type.get("ISBN_13") or by_type.get("ISBN_10")


def best_cover(image_links: Any) -> Optional[str]:
    if not isinstance(image_links, dict):
        return None
    for key in COVER_KEYS:
        candidate = image_links.get(key)
        if candidate:
            return str(candidate).replace("http://", "https://")
    return None


def truncate(text: Any, limit: int = SUMMARY_LIMIT) -> Optional[str]:
    value = _clean_text(text)
    if not value or len(value) <= limit:
        return value
    return value[:limit].strip() + "..."


def as_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(entry) for entry in value if entry]
    if value:
        return [str(value)]
    return []


def nested_url(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("url") or None
    return _clean_text(value)


# ---------------------------------------------------------------------------
# Mapping tables
# ---------------------------------------------------------------------------
GOOGLE_BOOKS_MAPPING: Tuple[FieldRule, ...] = (
    FieldRule("external_id", ("id",)),
    FieldRule("title", ("volumeInfo", "title"), _clean_text, "Unknown Title"),
    FieldRule("author", ("volumeInfo", "authors"), join_names, "Unknown Author"),
    FieldRule("publisher", ("volumeInfo", "publisher"), _clean_text, ""),
    FieldRule("published_date", ("volumeInfo", "publishedDate")),
    FieldRule("publishing_year", ("volumeInfo", "publishedDate"), leading_year),
    FieldRule("description", ("volumeInfo", "description"), _clean_text, ""),
    FieldRule("summary", ("volumeInfo", "description"), truncate, ""),
    FieldRule("isbn", ("volumeInfo", "industryIdentifiers"), select_isbn, ""),
    FieldRule("pages", ("volumeInfo", "pageCount"), parse_int),
    FieldRule("language", ("volumeInfo", "language"), _clean_text, "en"),
    FieldRule("categories", ("volumeInfo", "categories"), as_list, []),
    FieldRule("category", ("volumeInfo", "categories"), first_entry, "General"),
    FieldRule("average_rating", ("volumeInfo", "averageRating")),
    FieldRule("ratings_count", ("volumeInfo", "ratingsCount"), parse_int, 0),
    FieldRule("cover_url", ("volumeInfo", "imageLinks"), best_cover, ""),
    FieldRule("url", ("volumeInfo", "infoLink"), _clean_text, ""),
    FieldRule("preview_link", ("volumeInfo", "previewLink")),
)

# Raw records produced by ``scholar.parse_scholar_html``.
SCHOLAR_MAPPING: Tuple[FieldRule, ...] = (
    FieldRule("title", ("title",), _clean_text),
    FieldRule("author", ("authors",), _clean_text, "Unknown Authors"),
    FieldRule("publishing_year", ("authors",), first_year),
    FieldRule("summary", ("snippet",), _clean_text, ""),
    FieldRule("cited_by", ("cited_by",), leading_count, 0),
    FieldRule("url", ("link",), _clean_text, ""),
    FieldRule("pdf_link", ("pdf_link",)),
    FieldRule("category", (), lambda _: "Research"),
)

SEMANTIC_SCHOLAR_MAPPING: Tuple[FieldRule, ...] = (
    FieldRule("external_id", ("paperId",)),
    FieldRule("title", ("title",), _clean_text, "Unknown Title"),
    FieldRule("author", ("authors",), join_names, "Unknown Author"),
    FieldRule("publishing_year", ("year",), parse_int),
    FieldRule("published_date", ("publicationDate",)),
    FieldRule("summary", ("abstract",), _clean_text, "No abstract available"),
    FieldRule("cited_by", ("citationCount",), leading_count, 0),
    FieldRule("venue", ("venue",), _clean_text, "Unknown Venue"),
    FieldRule("pdf_link", ("openAccessPdf",), nested_url),
    FieldRule("category", (), lambda _: "Research"),
)

# Fields returned by ``gemini.parse_gemini_response``.
GEMINI_MAPPING: Tuple[FieldRule, ...] = (
    FieldRule("title", ("title",), _clean_text, ""),
    FieldRule("author", ("author",), join_names, ""),
    FieldRule("isbn", ("isbn",), _clean_text, ""),
    FieldRule("publisher", ("publisher",), _clean_text, ""),
    FieldRule("publishing_year", ("year",), first_year),
    FieldRule("summary", ("description",), _clean_text, ""),
    FieldRule("category", ("category",), _clean_text, ""),
    FieldRule("confidence", ("confidence",)),
)

SOURCES: Dict[str, Tuple[Tuple[FieldRule, ...], str]] = {
    "google_books": (GOOGLE_BOOKS_MAPPING, "book"),
    "google_scholar": (SCHOLAR_MAPPING, "paper"),
    "semantic_scholar": (SEMANTIC_SCHOLAR_MAPPING, "paper"),
    "gemini_ai": (GEMINI_MAPPING, "book"),
}


def _empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def apply_mapping(
    raw: Dict[str, Any],
    mapping: Sequence[FieldRule],
    *,
    source: str,
    item_type: str,
) -> ExternalResult:
    item_fields = set(LibraryItem.field_names())
    item_values: Dict[str, Any] = {"type": item_type}
    extras: Dict[str, Any] = {}

    for rule in mapping:
        # An empty path means the rule derives its value without reading the record.
        value = _lookup(raw, rule.path) if rule.path else None
        if value is MISSING:
            value = None
        elif rule.transform is not None:
            value = rule.transform(value)
        if _empty(value):
            value = rule.default
        target = item_values if rule.target in item_fields else extras
        target[rule.target] = value

    item = LibraryItem.from_dict(item_values)
    return ExternalResult(source=source, item=item, extras=extras, raw=raw)


def normalize(source: str, raw: Dict[str, Any]) -> ExternalResult:
    try:
        mapping, item_type = SOURCES[source]
    except KeyError:
        raise ValueError(f"Unknown source: {source}") from None
    return apply_mapping(raw, mapping, source=source, item_type=item_type)


def normalize_google_books(items: Iterable[Dict[str, Any]]) -> List[ExternalResult]:
    return [normalize("google_books", item) for item in items if isinstance(item, dict)]


def normalize_scholar(records: Iterable[Dict[str, Any]]) -> List[ExternalResult]:
    """Normalize scraped records, excluding those left without a title."""
    results = []
    for record in records:
        if not isinstance(record, dict):
            continue
        result = normalize("google_scholar", record)
        if not result.item.title:
            continue
        results.append(result)
    return results


def normalize_semantic_scholar(papers: Iterable[Dict[str, Any]]) -> List[ExternalResult]:
    return [normalize("semantic_scholar", paper) for paper in papers if isinstance(paper, dict)]
