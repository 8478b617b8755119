from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from models import LibraryItem
from normalize import ExternalResult

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.3
EXTERNAL_LIMIT = 5
EXISTING_LIMIT = 5
COMBINED_LIMIT = 10

SearchFn = Callable[[str], List[ExternalResult]]


@dataclass
class SearchOutcome:
    query: str
    generation: int
    books: List[ExternalResult] = field(default_factory=list)
    papers: List[ExternalResult] = field(default_factory=list)


def merge_add_results(
    external: Sequence[ExternalResult],
    existing: Sequence[LibraryItem],
    *,
    search_type: str = "book",
) -> List[Dict[str, Any]]:
    """Results for the add dialog: up to five external hits, then up to five
    library matches, never more than ten in total."""
    combined: List[Dict[str, Any]] = []
    for result in list(external)[:EXTERNAL_LIMIT]:
        entry = result.to_dict()
        entry["search_type"] = search_type
        combined.append(entry)
    for item in list(existing)[:EXISTING_LIMIT]:
        entry = item.to_dict()
        entry["source"] = "library"
        entry["search_type"] = "existing"
        combined.append(entry)
    return combined[:COMBINED_LIMIT]


class SearchCoordinator:
    """Debounced, concurrent book and paper search.

    Every ``submit`` starts a new generation. Only the newest generation's
    results reach the callback; older ones are dropped when they finish.
    Callbacks run under the coordinator lock, so a ``submit`` from another
    thread waits for an in-flight delivery to finish.
    """

    def __init__(
        self,
        book_search: SearchFn,
        paper_search: SearchFn,
        *,
        debounce: float = DEFAULT_DEBOUNCE,
        max_workers: int = 4,
    ):
        self.book_search = book_search
        self.paper_search = paper_search
        self.debounce = debounce
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="search")
        self._lock = threading.RLock()
        self._generation = 0
        self._timer: Optional[threading.Timer] = None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def submit(self, query: str, callback: Callable[[SearchOutcome], None]) -> int:
        """Schedule a search after the debounce delay, superseding any earlier one."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
            if not query or not query.strip():
                self._timer = None
                return generation
            timer = threading.Timer(self.debounce, self._fire, args=(generation, query, callback))
            timer.daemon = True
            self._timer = timer
        timer.start()
        return generation

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self, generation: int, query: str, callback: Callable[[SearchOutcome], None]) -> None:
        if not self.is_current(generation):
            return
        outcome = self._run(query, generation)
        # Held through delivery so a concurrent submit cannot slip in after the check.
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale results for %r (generation %d)", query, generation)
                return
            callback(outcome)

    def _guarded(self, label: str, search: SearchFn, query: str) -> List[ExternalResult]:
        try:
            return search(query)
        except Exception as exc:
            logger.warning("%s search failed for %r: %s", label, query, exc)
            return []

    def _run(self, query: str, generation: int) -> SearchOutcome:
        books = self._executor.submit(self._guarded, "Book", self.book_search, query)
        papers = self._executor.submit(self._guarded, "Paper", self.paper_search, query)
        return SearchOutcome(query, generation, books=books.result(), papers=papers.result())

    def search_now(self, query: str) -> SearchOutcome:
        """Run both searches concurrently and wait for them."""
        return self._run(query, self.generation)

    def shutdown(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=False)
