"""
Batch delivery: how the ensured pool reaches the visible feed.

Capped tiers (guest, free) grow the feed in fixed-size batches from a
cursor and end with one limit-reached sentinel. The premium tier swaps the
whole feed for each new pool (stale-while-revalidate) and never goes from
non-empty back to empty. Until anything arrives the feed is a single
loading-more sentinel.
"""

import logging
from typing import List, Optional

from deckfeed.models.content import (
    LIMIT_REACHED,
    LOADING_MORE,
    ContentItem,
    FeedEntry,
    Target,
    is_sentinel,
)
from deckfeed.utils.identity import clean_items, dedupe_by_id


class BatchDeliveryController:
    def __init__(self, target: Target, batch_size: int = 5, previous: Optional[List[ContentItem]] = None):
        self.target = target
        self.batch_size = batch_size
        self.feed: List[FeedEntry] = [LOADING_MORE]
        self.pool: List[ContentItem] = []
        self.cursor = 0
        self.logger = logging.getLogger(__name__)

        kept = clean_items(previous or []) if target.is_unlimited else []
        if kept:
            # a reboot keeps the old deck on screen until replace() gets a non-empty pool
            self.pool = list(kept)
            self.cursor = len(kept)
            self.feed = list(kept)

    @property
    def items(self) -> List[ContentItem]:
        """Delivered content, sentinels excluded."""
        return [e for e in self.feed if not is_sentinel(e)]

    @property
    def reached_end(self) -> bool:
        return bool(self.pool) and self.cursor >= len(self.pool)

    @property
    def has_limit_sentinel(self) -> bool:
        return LIMIT_REACHED in self.feed

    def accept_pool(self, pool: List[ContentItem]) -> bool:
        """
        Take a freshly ensured pool.

        Premium replaces the feed. Capped tiers keep what is already shown
        as the head of the pool (so the cursor stays meaningful), append
        unseen items up to the bound and push the next batch.
        """
        if self.target.is_unlimited:
            return self.replace(pool)

        incoming = clean_items(pool)
        if not incoming and not self.pool:
            return False

        delivered = self.items
        seen = {item.id for item in delivered}
        merged = delivered + [item for item in incoming if item.id not in seen]
        self.pool = merged[:max(self.target.bound, len(delivered))]

        if self.cursor < len(self.pool) and self.has_limit_sentinel:
            # more content than when the end was reached: drop the sentinel
            self.feed = list(delivered)
        return self.push_next_batch()

    def push_next_batch(self) -> bool:
        """Deliver the next batch for capped tiers. Returns True if the feed changed."""
        if self.target.is_unlimited:
            return self.replace(self.pool)
        if not self.pool:
            return False

        before = list(self.feed)
        start = self.cursor
        end = min(start + self.batch_size, len(self.pool))
        batch = self.pool[start:end]

        merged = dedupe_by_id(self.items + batch)
        self.cursor = end

        if self.cursor >= len(self.pool):
            self.feed = merged + [LIMIT_REACHED]
        else:
            self.feed = merged

        changed = [e.id for e in before] != [e.id for e in self.feed]
        if changed:
            self.logger.debug(f"📦 Delivered {len(merged)}/{len(self.pool)} (cursor={self.cursor})")
        return changed

    def load_more(self) -> bool:
        if self.target.is_unlimited or self.cursor >= len(self.pool):
            return False
        return self.push_next_batch()

    def replace(self, pool: List[ContentItem]) -> bool:
        """Stale-while-revalidate swap for the premium tier."""
        incoming = clean_items(pool)
        if not incoming:
            # never regress a non-empty feed to empty
            return False

        current_ids = [item.id for item in self.items]
        incoming_ids = [item.id for item in incoming]
        if current_ids == incoming_ids:
            return False

        self.pool = list(incoming)
        self.cursor = len(incoming)
        self.feed = list(incoming)
        self.logger.debug(f"🔁 Feed replaced with {len(incoming)} items")
        return True

    def mark_exhausted(self) -> None:
        """Supply gave up: a capped feed with nothing to show ends at limit-reached."""
        if self.target.is_unlimited:
            return
        if not self.items:
            self.feed = [LIMIT_REACHED]
