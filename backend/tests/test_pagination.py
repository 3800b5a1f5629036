import asyncio

import pandas as pd
import pytest

from catalog.errors import FetchError, StoreError
from catalog.models import FilterState, Gemstone
from catalog.pagination import FetchState, PagedFetchController, merge_unique
from catalog.store import DataFrameCatalogStore


def big_catalog(gem, n=10):
    return pd.DataFrame([gem(f"g-{i:02d}", price=1000 * (i + 1)) for i in range(n)])


class GatedStore(DataFrameCatalogStore):
    """Store whose page requests wait until the test opens the gate"""

    def __init__(self, df):
        super().__init__(df)
        self.gate = asyncio.Event()
        self.calls = []
        self.fail_next = False

    async def fetch_page(self, filters, page, page_size):
        self.calls.append((filters, page))
        await self.gate.wait()
        if self.fail_next:
            self.fail_next = False
            raise StoreError("connection reset")
        return await super().fetch_page(filters, page, page_size)


def item(gid):
    return Gemstone(id=gid, type="ruby", color="red", price_amount=1)


def test_merge_unique_skips_known_ids():
    merged = merge_unique([item("a"), item("b")], [item("b"), item("c"), item("c")])
    assert [i.id for i in merged] == ["a", "b", "c"]


# Pages accumulate in order and the cursor stops at the end
@pytest.mark.asyncio
async def test_load_more_until_exhausted(make_gem):
    ctrl = PagedFetchController(DataFrameCatalogStore(big_catalog(make_gem, 10)), page_size=4)
    assert ctrl.has_next_page
    assert await ctrl.load_more()
    assert ctrl.total_count == 10
    assert await ctrl.load_more()
    assert await ctrl.load_more()
    assert len(ctrl.items) == 10
    assert not ctrl.has_next_page
    assert not await ctrl.load_more()
    snap = ctrl.snapshot()
    assert snap.page == 3 and not snap.has_next_page


# Two load_more calls while one is pending start a single request
@pytest.mark.asyncio
async def test_concurrent_load_more_issues_one_request(make_gem):
    store = GatedStore(big_catalog(make_gem, 10))
    ctrl = PagedFetchController(store, page_size=4)
    first = asyncio.create_task(ctrl.load_more())
    await asyncio.sleep(0)
    assert ctrl.in_flight
    assert not await ctrl.load_more()
    store.gate.set()
    assert await first
    assert len(store.calls) == 1
    assert [i.id for i in ctrl.items] == ["g-00", "g-01", "g-02", "g-03"]


# A page that resolves after the filters changed never lands in the list
@pytest.mark.asyncio
async def test_stale_page_is_discarded(make_gem):
    store = GatedStore(big_catalog(make_gem, 10))
    ctrl = PagedFetchController(store, page_size=4)
    old = asyncio.create_task(ctrl.load_more())
    await asyncio.sleep(0)
    new_filters = FilterState(sort_by="price_amount", sort_direction="asc")
    new = asyncio.create_task(ctrl.set_filters(new_filters))
    await asyncio.sleep(0)
    # Old results are gone before the new first page arrives
    assert ctrl.items == []
    assert ctrl.state == FetchState.REFETCHING
    store.gate.set()
    assert await old is False
    assert await new is True
    assert ctrl.filters == new_filters
    assert [i.id for i in ctrl.items] == ["g-00", "g-01", "g-02", "g-03"]
    assert ctrl.page == 1
    assert ctrl.state == FetchState.IDLE
    assert not ctrl.in_flight


@pytest.mark.asyncio
async def test_same_filters_do_not_refetch(store):
    ctrl = PagedFetchController(store, filters=FilterState(colors={"blue"}))
    assert not await ctrl.set_filters(FilterState(colors={"blue"}))
    assert ctrl.generation == 0
    assert ctrl.items == []


# A failed page keeps what was loaded, and retry asks for the same page again
@pytest.mark.asyncio
async def test_failure_keeps_state_and_retry_resumes(make_gem):
    store = GatedStore(big_catalog(make_gem, 10))
    store.gate.set()
    ctrl = PagedFetchController(store, page_size=4)
    await ctrl.load_more()
    store.fail_next = True
    with pytest.raises(FetchError) as exc:
        await ctrl.load_more()
    assert exc.value.page == 2
    assert ctrl.error is exc.value
    assert ctrl.page == 1
    assert len(ctrl.items) == 4
    assert ctrl.state == FetchState.IDLE
    assert await ctrl.retry()
    assert store.calls[-1][1] == 2
    assert ctrl.page == 2
    assert ctrl.error is None
    assert len(ctrl.items) == 8


# A failed first page leaves the controller ready to try page 1 again
@pytest.mark.asyncio
async def test_failed_first_page_can_retry(make_gem):
    store = GatedStore(big_catalog(make_gem, 3))
    store.gate.set()
    store.fail_next = True
    ctrl = PagedFetchController(store, filters=FilterState(types={"ruby"}))
    with pytest.raises(FetchError):
        await ctrl.set_filters(FilterState(types={"sapphire"}))
    assert ctrl.has_next_page
    assert await ctrl.retry()
    assert store.calls[-1][1] == 1
    assert ctrl.total_count == 3


@pytest.mark.asyncio
async def test_reset_returns_to_default_filters(store):
    ctrl = PagedFetchController(store, filters=FilterState(types={"ruby"}), page_size=2)
    await ctrl.load_more()
    assert {i.type for i in ctrl.items} == {"ruby"}
    assert await ctrl.reset()
    assert ctrl.filters == FilterState()
    assert ctrl.total_count == 7


def test_page_size_must_be_positive(store):
    with pytest.raises(ValueError):
        PagedFetchController(store, page_size=0)


# A fetch abandoned by its caller releases the lock so scrolling can resume
@pytest.mark.asyncio
async def test_cancelled_load_more_releases_lock(make_gem):
    store = GatedStore(big_catalog(make_gem, 10))
    ctrl = PagedFetchController(store, page_size=4)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(ctrl.load_more(), 0.05)
    assert not ctrl.in_flight
    assert ctrl.state == FetchState.IDLE
    assert ctrl.page == 0
    store.gate.set()
    assert await ctrl.load_more()
    assert len(store.calls) == 2
    assert store.calls[-1][1] == 1
    assert len(ctrl.items) == 4


class BrokenStore(DataFrameCatalogStore):
    async def fetch_page(self, filters, page, page_size):
        raise RuntimeError("driver crashed")


# Unexpected store exceptions surface as FetchError and leave the controller usable
@pytest.mark.asyncio
async def test_unexpected_error_becomes_fetch_error(catalog_df):
    ctrl = PagedFetchController(BrokenStore(catalog_df))
    with pytest.raises(FetchError) as exc:
        await ctrl.load_more()
    assert exc.value.page == 1
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert not ctrl.in_flight
    assert ctrl.state == FetchState.IDLE


# An old request failing after the filters changed leaves no error behind
@pytest.mark.asyncio
async def test_stale_failure_is_ignored(make_gem):
    store = GatedStore(big_catalog(make_gem, 10))
    ctrl = PagedFetchController(store, page_size=4)
    old = asyncio.create_task(ctrl.load_more())
    await asyncio.sleep(0)
    store.fail_next = True
    new = asyncio.create_task(ctrl.set_filters(FilterState(types={"sapphire"})))
    await asyncio.sleep(0)
    store.gate.set()
    assert await old is False
    assert await new is True
    assert ctrl.error is None
    assert ctrl.page == 1
    assert len(ctrl.items) == 4
    assert not ctrl.in_flight


@pytest.mark.asyncio
async def test_snapshot_reports_fuzzy_results(store):
    ctrl = PagedFetchController(store, filters=FilterState(types={"ruby"}))
    await ctrl.set_filters(FilterState(search="saphire"))
    snap = ctrl.snapshot()
    assert snap.used_fuzzy
    assert {i.type for i in snap.items} == {"sapphire"}
