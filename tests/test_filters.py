from __future__ import annotations

import unittest

import pytest

from filters import (
    FilterConfig,
    apply_filters,
    available_categories,
    filter_summary,
    highlight_matches,
    matches,
    search_existing,
    search_items,
)
from models import LibraryItem, ValidationError


def _collection():
    return [
        LibraryItem(
            id=1,
            title="Attention Is All You Need",
            author="Vaswani",
            type="paper",
            category="AI",
            language="English",
            status="read",
            rating=5.0,
            difficulty=4,
        ),
        LibraryItem(
            id=2,
            title="Deep Learning",
            author="Goodfellow",
            type="book",
            category="AI",
            status="reading",
            rating=4.5,
            difficulty=2,
        ),
        LibraryItem(id=3, title="Dune", author="Herbert", type="book", category="Fiction", language="English"),
        LibraryItem(id=4, title="Quarterly notes", type="report", rating=0.0, difficulty=3),
    ]


class ApplyFiltersTests(unittest.TestCase):
    def setUp(self) -> None:
        self.items = _collection()

    def _ids(self, items):
        return [item.id for item in items]

    def test_all_sentinels_return_collection_unchanged(self) -> None:
        result = apply_filters(self.items, FilterConfig())
        self.assertEqual(result, self.items)
        self.assertIsNot(result, self.items)

    def test_rating_is_an_inclusive_minimum(self) -> None:
        self.assertEqual(self._ids(apply_filters(self.items, FilterConfig(rating="4.5"))), [1, 2])
        self.assertEqual(self._ids(apply_filters(self.items, FilterConfig(rating="5"))), [1])

    def test_items_without_rating_never_pass_threshold(self) -> None:
        result = apply_filters(self.items, FilterConfig(rating="0"))
        self.assertEqual(self._ids(result), [1, 2, 4])

    def test_filtering_is_idempotent(self) -> None:
        config = FilterConfig(type="book", rating="1")
        once = apply_filters(self.items, config)
        self.assertEqual(apply_filters(once, config), once)

    def test_difficulty_buckets(self) -> None:
        self.assertEqual(self._ids(apply_filters(self.items, FilterConfig(difficulty="easy"))), [2, 4])
        self.assertEqual(self._ids(apply_filters(self.items, FilterConfig(difficulty="medium"))), [1])
        self.assertEqual(apply_filters(self.items, FilterConfig(difficulty="hard")), [])

    def test_predicates_combine_conjunctively(self) -> None:
        result = apply_filters(self.items, FilterConfig(type="book", category="AI"))
        self.assertEqual(self._ids(result), [2])

    def test_missing_field_never_matches_concrete_value(self) -> None:
        result = apply_filters(self.items, FilterConfig(language="English"))
        self.assertEqual(self._ids(result), [1, 3])

    def test_input_is_not_mutated(self) -> None:
        before = list(self.items)
        apply_filters(self.items, FilterConfig(type="paper"))
        self.assertEqual(self.items, before)


def test_matches_accepts_plain_mappings() -> None:
    assert matches({"type": "book", "rating": "4"}, FilterConfig(type="book", rating="3.5"))
    assert not matches({"type": "book"}, FilterConfig(rating="1"))


def test_from_mapping_treats_blank_as_all() -> None:
    config = FilterConfig.from_mapping({"type": "", "status": None, "category": " AI "})
    assert config.type == "all"
    assert config.status == "all"
    assert config.category == "AI"
    assert config.active_count() == 1


@pytest.mark.parametrize(
    "values",
    [
        {"colour": "red"},
        {"rating": "high"},
        {"difficulty": "extreme"},
    ],
)
def test_from_mapping_rejects_unusable_values(values) -> None:
    with pytest.raises(ValidationError):
        FilterConfig.from_mapping(values)


def test_with_value_and_cleared() -> None:
    config = FilterConfig().with_value("status", "read")
    assert config.status == "read"
    assert config.cleared() == FilterConfig()
    with pytest.raises(ValidationError):
        config.with_value("shelf", "A")


def test_filter_summary_only_when_a_filter_is_active() -> None:
    assert filter_summary(4, 4, FilterConfig()) is None
    assert filter_summary(4, 2, FilterConfig(type="book")) == "Showing 2 of 4 items"


def test_available_categories_are_unique_and_ordered() -> None:
    items = _collection() + [LibraryItem(title="x", category="  "), LibraryItem(title="y", category="AI")]
    assert available_categories(items) == ["AI", "Fiction"]


class FreeTextSearchTests(unittest.TestCase):
    def setUp(self) -> None:
        self.items = _collection()

    def test_search_is_case_insensitive(self) -> None:
        upper = search_items(self.items, "ATTENTION")
        lower = search_items(self.items, "attention")
        self.assertEqual(upper, lower)
        self.assertEqual([item.id for item in upper], [1])

    def test_search_covers_author_category_and_type(self) -> None:
        self.assertEqual([item.id for item in search_items(self.items, "herbert")], [3])
        self.assertEqual([item.id for item in search_items(self.items, "fiction")], [3])
        self.assertEqual([item.id for item in search_items(self.items, "report")], [4])

    def test_blank_library_search_returns_everything(self) -> None:
        self.assertEqual(search_items(self.items, "   "), self.items)
        self.assertEqual(search_items(self.items, None), self.items)

    def test_blank_overlay_search_means_no_highlighting(self) -> None:
        self.assertIsNone(highlight_matches(self.items, ""))
        self.assertEqual(highlight_matches(self.items, "DUNE"), [2])
        self.assertEqual(highlight_matches(self.items, "zzz"), [])

    def test_existing_search_is_limited(self) -> None:
        found = search_existing(self.items, "e", limit=2)
        self.assertEqual([item.id for item in found], [1, 2])
        self.assertEqual(search_existing(self.items, ""), [])
