from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

from models import LibraryItem, ValidationError

TYPE_ICONS = {
    "book": "📚",
    "paper": "📄",
    "article": "📰",
    "report": "📊",
}
DEFAULT_ICON = "📖"
UNKNOWN_AUTHOR = "Unknown Author"

VIEW_MODES = ("masonry", "planet")

PLANET_RADIUS = 200
PLANET_CENTER = 225


def type_icon(item_type: Optional[str]) -> str:
    return TYPE_ICONS.get((item_type or "book").lower(), DEFAULT_ICON)


def rating_stars(rating: Optional[float]) -> str:
    """Full stars for the whole part, one hollow star for any fraction."""
    if not rating:
        return ""
    stars = "★" * int(math.floor(rating))
    if rating % 1:
        stars += "☆"
    return stars


def meta_chips(item: LibraryItem) -> List[str]:
    chips: List[str] = []
    if item.publishing_year:
        chips.append(str(item.publishing_year))
    if item.pages:
        chips.append(f"{item.pages} pages")
    if item.category:
        chips.append(item.category)
    if item.language:
        chips.append(item.language)
    return chips


def masonry_cards(items: Sequence[LibraryItem]) -> List[Dict[str, Any]]:
    cards = []
    for index, item in enumerate(items):
        cover = item.cover_url.strip() if item.cover_url else ""
        cards.append(
            {
                "id": item.id,
                "index": index,
                "title": item.title,
                "author": item.author or UNKNOWN_AUTHOR,
                "meta": meta_chips(item),
                "summary": item.summary or None,
                "type_label": item.type.capitalize() if item.type else "Book",
                "cover_url": cover or None,
                "fallback_icon": type_icon(item.type),
                "paper_cover": not cover and item.type == "paper",
                "stars": rating_stars(item.rating),
                "animation_delay": round(index * 0.05, 4),
            }
        )
    return cards


def planet_particles(
    items: Sequence[LibraryItem],
    radius: float = PLANET_RADIUS,
    center: float = PLANET_CENTER,
) -> List[Dict[str, Any]]:
    """Spread items evenly over a sphere using the Fibonacci lattice."""
    total = len(items)
    particles = []
    for index, item in enumerate(items):
        phi = math.acos(1 - 2 * (index + 0.5) / total)
        theta = math.pi * (1 + math.sqrt(5)) * index
        particles.append(
            {
                "id": item.id,
                "index": index,
                "title": item.title,
                "author": item.author or UNKNOWN_AUTHOR,
                "x": radius * math.sin(phi) * math.cos(theta) + center,
                "y": radius * math.sin(phi) * math.sin(theta) + center,
                "z": radius * math.cos(phi),
                "cover_url": item.cover_url or None,
                "fallback_icon": type_icon(item.type),
                "animation_delay": round(index * 0.1, 4),
            }
        )
    return particles


def render(items: Sequence[LibraryItem], mode: str = "masonry") -> List[Dict[str, Any]]:
    if mode == "masonry":
        return masonry_cards(items)
    if mode == "planet":
        return planet_particles(items)
    raise ValidationError(f"View mode must be one of: {', '.join(VIEW_MODES)}.")
