"""Infinite scroll driver for the catalog grid

One controller per browsing context. It keeps the pages loaded so far for the
current FilterState and makes sure that

- only one page request is outstanding at a time (``_in_flight``),
- results that belong to an older FilterState are thrown away (``generation``),
- a failed request leaves the loaded pages and cursor untouched.
"""

from __future__ import annotations
import enum
import logging
from typing import List, Optional, Set

from .errors import FetchError, StoreError
from .models import FilterState, Gemstone, PageResult
from .store import CatalogStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 24


class FetchState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    REFETCHING = "refetching"


def merge_unique(existing: List[Gemstone], incoming: List[Gemstone]) -> List[Gemstone]:
    """Append ``incoming`` to ``existing``, skipping ids already present"""
    seen: Set[str] = {item.id for item in existing}
    merged = list(existing)
    for item in incoming:
        if item.id in seen:
            continue
        seen.add(item.id)
        merged.append(item)
    return merged


class PagedFetchController:
    def __init__(
        self,
        store: CatalogStore,
        filters: Optional[FilterState] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.store = store
        self.filters = filters or FilterState()
        self.page_size = page_size
        self.generation = 0
        self.state = FetchState.IDLE
        self.items: List[Gemstone] = []
        self.page = 0
        self.total_count = 0
        self.used_fuzzy = False
        self.error: Optional[FetchError] = None
        self._total_known = False
        self._in_flight = False

    @property
    def has_next_page(self) -> bool:
        if not self._total_known:
            return True
        return self.page * self.page_size < self.total_count

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def snapshot(self) -> PageResult:
        return PageResult(
            items=list(self.items),
            page=self.page,
            page_size=self.page_size,
            total_count=self.total_count,
            used_fuzzy=self.used_fuzzy,
            has_next_page=self.has_next_page,
        )

    async def set_filters(self, filters: FilterState) -> bool:
        """Switch to a new FilterState and load its first page

        Returns False without touching anything when ``filters`` equals the
        current state.
        """
        if filters == self.filters:
            return False
        self.filters = filters
        self.generation += 1
        # Drop the old results before the new first page arrives
        self.items = []
        self.page = 0
        self.total_count = 0
        self.used_fuzzy = False
        self._total_known = False
        self.error = None
        self.state = FetchState.REFETCHING
        self._in_flight = True
        await self._fetch(1, self.generation)
        return True

    async def reset(self) -> bool:
        return await self.set_filters(FilterState())

    async def load_more(self) -> bool:
        """Fetch the next page if nothing else is loading

        Returns True when a page was merged, False when the call was a no-op
        or its result turned out to be stale.
        """
        if self._in_flight or self.state != FetchState.IDLE or not self.has_next_page:
            return False
        # Taken before the first await so a burst of scroll events starts one request
        self._in_flight = True
        self.state = FetchState.FETCHING
        return await self._fetch(self.page + 1, self.generation)

    async def retry(self) -> bool:
        # Caller-initiated; resumes from the page that failed
        return await self.load_more()

    async def _fetch(self, page: int, token: int) -> bool:
        filters = self.filters
        try:
            result = await self.store.fetch_page(filters, page, self.page_size)
        except Exception as e:
            if token != self.generation:
                logger.debug("ignoring failure of stale fetch (generation %d, now %d)", token, self.generation)
                return False
            self.error = FetchError(page, f"page {page} could not be loaded: {e}")
            if isinstance(e, StoreError):
                logger.warning("catalog page %d failed: %s", page, e)
            else:
                logger.exception("catalog page %d failed unexpectedly", page)
            raise self.error from e
        finally:
            # Also runs on cancellation; a newer generation owns the lock otherwise
            if token == self.generation:
                self.state = FetchState.IDLE
                self._in_flight = False

        if token != self.generation:
            logger.debug("discarding stale page %d (generation %d, now %d)", page, token, self.generation)
            return False

        if page == 1:
            self.total_count = result.total_count
            self.used_fuzzy = result.used_fuzzy
            self._total_known = True
        self.items = merge_unique(self.items, result.items)
        self.page = page
        self.error = None
        return True
