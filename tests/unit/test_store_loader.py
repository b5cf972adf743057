import asyncio
import random

import pytest
from conftest import AUSTIN, FakeDocumentStore, make_doc

from deckfeed.models.content import FeedType, FilterSpec, Target, TierKind
from deckfeed.services.store_loader import FeedPool, StoreLoader

NEARBY = [f"Town {i}, Texas, United States" for i in range(6)]


def make_loader(store, catalog, settings, error_handler=None):
    return StoreLoader(store, catalog, settings, error_handler, rng=random.Random(7))


@pytest.mark.asyncio
async def test_unfiltered_main_load_drops_secondary(catalog, settings):
    store = FakeDocumentStore([make_doc(i) for i in range(4)] + [make_doc(10, activity="dinner")])
    loader = make_loader(store, catalog, settings)

    items = await loader.load("austin, tx, usa", [], FilterSpec(), FeedType.MAIN)
    assert sorted(i.id for i in items) == ["doc-0", "doc-1", "doc-2", "doc-3"]


@pytest.mark.asyncio
async def test_records_stored_under_alias_spellings_are_found(catalog, settings):
    store = FakeDocumentStore([
        make_doc(1, location="Austin, TX, USA"),
        make_doc(2, location="Austin, Texas, US"),
        make_doc(3, location="Dallas, Texas, United States"),
    ])
    loader = make_loader(store, catalog, settings)
    items = await loader.load(AUSTIN, [], FilterSpec(), FeedType.MAIN)
    assert sorted(i.id for i in items) == ["doc-1", "doc-2"]


@pytest.mark.asyncio
async def test_region_batches_respect_disjunction_ceiling(catalog, settings):
    store = FakeDocumentStore()
    loader = make_loader(store, catalog, settings)
    spec = FilterSpec(quick=("Fun & Playful",))

    await loader.load(AUSTIN, NEARBY, spec, FeedType.MAIN)

    activities = len(catalog.rule("Fun & Playful").activities)
    assert store.queries
    for q in store.queries:
        assert len(q.regions) * activities <= settings.max_disjunction
        assert q.predicate.activity_in == catalog.rule("Fun & Playful").activities
    queried = [r for q in store.queries for r in q.regions]
    assert queried == loader.regions_to_match(AUSTIN, NEARBY)


@pytest.mark.asyncio
async def test_sparse_budget_result_widens_price(catalog, settings):
    docs = [make_doc(i, price="$") for i in range(2)] + [make_doc(i, price="$$") for i in range(2, 6)]
    store = FakeDocumentStore(docs)
    loader = make_loader(store, catalog, settings)

    items = await loader.load(AUSTIN, [], FilterSpec(quick=("Budget-Friendly",)), FeedType.MAIN)

    assert len(items) == 6
    assert [q.predicate.price_in for q in store.queries] == [("Free", "$"), ("Free", "$", "$$")]


@pytest.mark.asyncio
async def test_client_side_filters_apply_after_fetch(catalog, settings):
    store = FakeDocumentStore([
        make_doc(1, activity="arcade", category="ind", price="$"),
        make_doc(2, activity="arcade", category="out", price="$"),
        make_doc(3, activity="museum", category="ind", price="$"),
    ])
    loader = make_loader(store, catalog, settings)
    spec = FilterSpec(quick=("Fun & Playful", "Indoor Activities"))

    items = await loader.load(AUSTIN, [], spec, FeedType.MAIN)
    assert [i.id for i in items] == ["doc-1"]


@pytest.mark.asyncio
async def test_restaurant_feed_keeps_only_secondary(catalog, settings):
    store = FakeDocumentStore([make_doc(1, activity="dinner"), make_doc(2, activity="museum")])
    loader = make_loader(store, catalog, settings)
    spec = FilterSpec(advanced=("Romantic Dinner",))

    items = await loader.load(AUSTIN, [], spec, FeedType.RESTAURANT, include_secondary=True)
    assert [i.id for i in items] == ["doc-1"]
    assert store.queries[0].predicate.chosen_label == "Romantic Dinner"


@pytest.mark.asyncio
async def test_main_feed_with_only_secondary_shows_a_few(catalog, settings):
    store = FakeDocumentStore([make_doc(i, activity="coffeeshop") for i in range(10)])
    loader = make_loader(store, catalog, settings)
    items = await loader.load(AUSTIN, [], FilterSpec(), FeedType.MAIN)
    assert len(items) == settings.secondary_fallback_count


@pytest.mark.asyncio
async def test_store_failure_yields_empty(catalog, settings, error_handler):
    store = FakeDocumentStore([make_doc(1)])
    store.fail = True
    loader = make_loader(store, catalog, settings, error_handler)

    assert await loader.load(AUSTIN, [], FilterSpec(), FeedType.MAIN) == []
    assert await loader.load_by_ids(["doc-1"]) == []
    assert error_handler.get_error_statistics()["total_errors"] == 2


@pytest.mark.asyncio
async def test_no_region_yields_empty(catalog, settings, store):
    loader = make_loader(store, catalog, settings)
    assert await loader.load(None, [], FilterSpec(), FeedType.MAIN) == []
    assert store.queries == []


@pytest.mark.asyncio
async def test_load_by_ids_keeps_cached_order(catalog, settings):
    store = FakeDocumentStore([make_doc(i) for i in range(3)])
    loader = make_loader(store, catalog, settings)
    items = await loader.load_by_ids(["doc-2", "missing", "doc-0"])
    assert [i.id for i in items] == ["doc-2", "doc-0"]


@pytest.mark.asyncio
async def test_pool_caps_session_slice_for_capped_tiers(catalog, settings):
    store = FakeDocumentStore([make_doc(i) for i in range(8)])
    loader = make_loader(store, catalog, settings)
    pool = FeedPool(loader, AUSTIN, FilterSpec(), FeedType.MAIN, Target(TierKind.GUEST, 5), False)

    snapshot = await pool.load()
    assert snapshot.total_count == 8
    assert len(snapshot.session_pool) == 5

    premium = FeedPool(loader, AUSTIN, FilterSpec(), FeedType.MAIN, Target(TierKind.PREMIUM, 40), False)
    assert len((await premium.load()).session_pool) == 8


@pytest.mark.asyncio
async def test_pool_preserves_previous_on_empty_fetch(catalog, settings):
    store = FakeDocumentStore([make_doc(i) for i in range(3)])
    loader = make_loader(store, catalog, settings)
    pool = FeedPool(loader, AUSTIN, FilterSpec(), FeedType.MAIN, Target(TierKind.FREE, 20), False)
    await pool.load()

    store.docs.clear()
    await pool.load(preserve_on_empty=True)
    assert pool.total_count == 3
    await pool.load()
    assert pool.total_count == 0


@pytest.mark.asyncio
async def test_sparse_filtered_pool_widens_to_nearby(catalog, settings):
    store = FakeDocumentStore([
        make_doc(1, activity="arcade"),
        make_doc(2, activity="arcade", location=NEARBY[0]),
        make_doc(3, activity="arcade", location=NEARBY[1]),
    ])
    loader = make_loader(store, catalog, settings)
    spec = FilterSpec(quick=("Fun & Playful",))
    pool = FeedPool(loader, AUSTIN, spec, FeedType.MAIN, Target(TierKind.FREE, 10), True)

    future = asyncio.get_running_loop().create_future()
    future.set_result(NEARBY)
    pool.attach_nearby(future)
    await asyncio.sleep(0)

    await pool.load()
    assert pool.total_count == 3


@pytest.mark.asyncio
async def test_widen_to_nearby_merges(catalog, settings):
    store = FakeDocumentStore([make_doc(1), make_doc(2, location=NEARBY[0])])
    loader = make_loader(store, catalog, settings)
    pool = FeedPool(loader, AUSTIN, FilterSpec(), FeedType.MAIN, Target(TierKind.FREE, 20), False)

    async def nearby():
        return [AUSTIN, NEARBY[0]]

    pool.attach_nearby(asyncio.ensure_future(nearby()))
    await pool.load()
    assert pool.total_count == 1
    await pool.widen_to_nearby()
    assert sorted(i.id for i in pool.full_pool) == ["doc-1", "doc-2"]
