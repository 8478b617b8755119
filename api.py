from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from normalize import ExternalResult, normalize_google_books

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
MAX_RESULTS_CAP = 40  # Google Books API limit
DEFAULT_TIMEOUT = 15
PAGE_SIZE = 5


@dataclass
class BookQuery:
    """Encapsulates a Google Books volume search."""

    general: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    limit: int = 10

    def to_q(self) -> str:
        parts: List[str] = []
        if self.general:
            parts.append(self.general.strip())
        if self.title:
            parts.append(f'intitle:"{self.title.strip()}"')
        if self.author:
            parts.append(f'inauthor:"{self.author.strip()}"')
        if self.isbn:
            parts.append(f"isbn:{self.isbn.strip()}")
        return " ".join(part for part in parts if part)

    def to_params(self, api_key: Optional[str] = None) -> Dict[str, str]:
        params: Dict[str, str] = {
            "q": self.to_q(),
            "maxResults": str(max(1, min(self.limit, MAX_RESULTS_CAP))),
            "printType": "books",
        }
        if api_key:
            params["key"] = api_key
        return params


def fetch_volumes(
    query: BookQuery,
    *,
    api_key: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> List[Dict[str, Any]]:
    """Fetch raw volume resources; any failure yields an empty list."""
    if not query.to_q():
        return []
    try:
        response = requests.get(
            GOOGLE_BOOKS_URL,
            params=query.to_params(api_key),
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as error:
        logger.warning("Google Books search failed for %r: %s", query.to_q(), error)
        return []

    items = data.get("items") if isinstance(data, dict) else None
    return [item for item in items or [] if isinstance(item, dict)]


def search_books(
    text: str,
    max_results: int = 10,
    *,
    api_key: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> List[ExternalResult]:
    query = BookQuery(general=text, limit=max_results)
    volumes = fetch_volumes(query, api_key=api_key, timeout=timeout)
    return normalize_google_books(volumes)[:max_results]


def get_book_by_isbn(
    isbn: str,
    *,
    api_key: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[ExternalResult]:
    volumes = fetch_volumes(BookQuery(isbn=isbn, limit=1), api_key=api_key, timeout=timeout)
    results = normalize_google_books(volumes)
    return results[0] if results else None


def describe_result(result: ExternalResult, index: int) -> str:
    """Return a printable description for a normalized search result."""
    item = result.item
    lines = [
        f"{index}. {item.title or 'Untitled'}",
        f"   Author(s): {item.author or 'Unknown author'}",
    ]
    if item.publishing_year:
        lines.append(f"   Year: {item.publishing_year}")
    if item.publisher:
        lines.append(f"   Publisher: {item.publisher}")
    if item.isbn:
        lines.append(f"   ISBN: {item.isbn}")
    cited_by = result.extras.get("cited_by")
    if cited_by:
        lines.append(f"   Cited by: {cited_by}")
    if item.category:
        lines.append(f"   Category: {item.category}")
    lines.append(f"   Source: {result.source}")
    return "\n".join(lines)
