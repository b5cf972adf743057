"""
Store loader: batched region queries, price widening, activity scoping.

StoreLoader turns (regions, filters, feed type) into a clean, shuffled list
of content items. FeedPool keeps the pool for one boot: the last fetched
full pool, the tier's session slice, and the nearby-region list once it is
known.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from deckfeed.models.content import ContentItem, FeedType, FilterSpec, Target
from deckfeed.services.document_store import DocumentStore, StoreQuery
from deckfeed.services.filter_catalog import FilterCatalog
from deckfeed.services.filter_predicates import (
    StorePredicate,
    build_store_predicate,
    region_batch_size,
    widen_price,
)
from deckfeed.settings import DeckSettings
from deckfeed.utils.error_monitoring import ErrorHandler
from deckfeed.utils.identity import attach_stable_ids, clean_items
from deckfeed.utils.logging_config import log_stage_metrics
from deckfeed.utils.regions import canonical_region, expand_location_aliases, uniq_strings


class StoreLoader:
    """
    One store read for a region set.

    Steps: pick the store predicate, expand region aliases, query in
    batches that respect the disjunction ceiling, widen the budget price
    group when sparse, scope secondary activities, shuffle, then apply the
    remaining labels client-side. Any failure yields [].
    """

    def __init__(
        self,
        store: DocumentStore,
        catalog: FilterCatalog,
        settings: Optional[DeckSettings] = None,
        error_handler: Optional[ErrorHandler] = None,
        rng: Optional[random.Random] = None
    ):
        self.store = store
        self.catalog = catalog
        self.settings = settings or DeckSettings()
        self.error_handler = error_handler or ErrorHandler()
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)

    def regions_to_match(self, primary: Optional[str], nearby: Sequence[str]) -> List[str]:
        base = [r for r in [canonical_region(primary)] + [canonical_region(n) for n in nearby or []] if r]
        return uniq_strings(base + expand_location_aliases(base), case_insensitive=False)

    async def _fetch_batched(self, regions: List[str], predicate: StorePredicate) -> List[Dict[str, Any]]:
        batch = region_batch_size(predicate, self.settings.max_disjunction, self.settings.region_in_limit)
        self.logger.debug(
            f"🔢 disjunction control: batch={batch}, activities={len(predicate.activity_in) or 1}, "
            f"prices={len(predicate.price_in) or 1}"
        )

        docs: List[Dict[str, Any]] = []
        for i in range(0, len(regions), batch):
            chunk = tuple(regions[i:i + batch])
            query = StoreQuery(
                regions=chunk,
                predicate=predicate,
                limit=self.settings.max_fetch_per_query,
                in_limit=self.settings.region_in_limit,
            )
            results = await self.store.query(query)
            self.logger.debug(f"🗂️ Store batch {i // batch + 1} size={len(chunk)} fetched={len(results)}")
            docs.extend(results)
        return docs

    async def load(
        self,
        primary: Optional[str],
        nearby: Sequence[str],
        filters: FilterSpec,
        feed_type: FeedType,
        include_secondary: bool = False
    ) -> List[ContentItem]:
        t0 = time.monotonic()
        try:
            regions = self.regions_to_match(primary, nearby)
            if not regions:
                self.logger.warning("No region to query; returning empty")
                return []

            predicate = build_store_predicate(self.catalog, filters, include_secondary=include_secondary)
            items = clean_items(attach_stable_ids(await self._fetch_batched(regions, predicate)))

            if (not filters.is_empty and predicate.price_in
                    and len(items) < self.settings.sparse_threshold):
                widened = widen_price(self.catalog, predicate)
                if widened != predicate:
                    wide_items = clean_items(attach_stable_ids(await self._fetch_batched(regions, widened)))
                    self.logger.info(f"💸 Price widened: {len(items)} → {len(wide_items)}")
                    if len(wide_items) > len(items):
                        items = wide_items

            scoped = self._scope_activities(items, filters, feed_type, include_secondary)
            shuffled = list(scoped)
            self.rng.shuffle(shuffled)

            reduced = self.catalog.reduce_filters_by_priority(filters)
            if reduced.is_empty:
                final = shuffled
            else:
                final = [it for it in shuffled if self.catalog.passes_all_filters(it, reduced)]
                if not final:
                    self.logger.warning("⚠️ No items passed the reduced filters")

            log_stage_metrics(
                self.logger, 'store_load', len(items), len(final),
                (time.monotonic() - t0) * 1000.0,
                regions=len(regions), chosen_label=predicate.chosen_label, feed=feed_type.value,
            )
            return final

        except Exception as e:
            self.error_handler.handle_error(
                e, 'document_store', 'load',
                {'primary': primary, 'nearby': len(nearby or []), 'feed': feed_type.value}
            )
            return []

    def _scope_activities(
        self,
        items: List[ContentItem],
        filters: FilterSpec,
        feed_type: FeedType,
        include_secondary: bool
    ) -> List[ContentItem]:
        secondary = [it for it in items if self.catalog.is_secondary_item(it)]
        others = [it for it in items if not self.catalog.is_secondary_item(it)]

        if feed_type == FeedType.RESTAURANT or include_secondary:
            return secondary
        if not others and secondary:
            # an unfiltered main feed shows a few secondary items rather than nothing
            return secondary[:self.settings.secondary_fallback_count] if filters.is_empty else others
        return others

    async def load_by_ids(self, ids: Sequence[str]) -> List[ContentItem]:
        """Items for a cached id list, in cached order."""
        if not ids:
            return []
        try:
            docs = await self.store.get_documents(ids)
        except Exception as e:
            self.error_handler.handle_error(e, 'document_store', 'load_by_ids', {'count': len(ids)})
            return []
        by_id = {item.id: item for item in clean_items(attach_stable_ids(docs))}
        return [by_id[i] for i in ids if i in by_id]


@dataclass
class PoolSnapshot:
    session_pool: List[ContentItem]
    total_count: int


class FeedPool:
    """Pool state for one boot of one feed."""

    def __init__(
        self,
        loader: StoreLoader,
        primary: Optional[str],
        filters: FilterSpec,
        feed_type: FeedType,
        target: Target,
        is_filtered: bool,
        include_secondary: bool = False,
        sparse_threshold: int = 5
    ):
        self.loader = loader
        self.primary = canonical_region(primary) or None
        self.filters = filters if is_filtered else FilterSpec()
        self.feed_type = feed_type
        self.target = target
        self.is_filtered = is_filtered
        self.include_secondary = include_secondary
        self.sparse_threshold = sparse_threshold
        self.full_pool: List[ContentItem] = []
        self._nearby: List[str] = []
        self._nearby_task: Optional[asyncio.Future] = None
        self.logger = logging.getLogger(__name__)

    def attach_nearby(self, task: asyncio.Future) -> None:
        """Nearby regions resolve in the background; remember the result when it lands."""
        self._nearby_task = task
        task.add_done_callback(self._on_nearby)

    def _on_nearby(self, task: asyncio.Future) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        self._nearby = list(task.result() or [])

    @property
    def nearby(self) -> List[str]:
        return list(self._nearby)

    async def await_nearby(self) -> List[str]:
        task = self._nearby_task
        if task is not None and not task.cancelled():
            try:
                self._nearby = list(await task or [])
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning(f"Nearby regions unavailable: {e}")
        return self.nearby

    def session_pool(self) -> List[ContentItem]:
        """The whole pool for premium; capped tiers see at most ``bound`` items."""
        if self.target.is_unlimited:
            return list(self.full_pool)
        return list(self.full_pool[:self.target.bound])

    @property
    def total_count(self) -> int:
        return len(self.full_pool)

    async def _fetch(self, nearby: Sequence[str]) -> List[ContentItem]:
        return await self.loader.load(
            self.primary, nearby, self.filters, self.feed_type, self.include_secondary
        )

    async def load(self, preserve_on_empty: bool = False, primary_only: bool = True) -> PoolSnapshot:
        """
        Refetch the pool.

        A filtered primary-only fetch that comes back sparse is retried once
        with the nearby regions (when known) and the larger result is kept.
        With ``preserve_on_empty`` an empty fetch leaves the previous pool in place.
        """
        cleaned = clean_items(await self._fetch([] if primary_only else self._nearby))

        if (self.is_filtered and primary_only and len(cleaned) < self.sparse_threshold
                and self._nearby):
            widened = clean_items(await self._fetch(self._nearby))
            if len(widened) > len(cleaned):
                self.logger.info(f"🧭 Sparse filtered result widened to nearby: {len(cleaned)} → {len(widened)}")
                cleaned = widened

        if not cleaned and preserve_on_empty:
            return PoolSnapshot(self.session_pool(), self.total_count)

        self.full_pool = cleaned
        return PoolSnapshot(self.session_pool(), self.total_count)

    async def widen_to_nearby(self) -> PoolSnapshot:
        """Merge a primary+nearby fetch into the current pool (waits for the nearby list)."""
        nearby = await self.await_nearby()
        extra = await self._fetch(nearby)
        self.full_pool = clean_items(self.full_pool + extra)
        return PoolSnapshot(self.session_pool(), self.total_count)
