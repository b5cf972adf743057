"""
Presentation loop: turns the delivered feed into a keyed render list.

Every rendered entry gets a key ``prefix#pass:index``. The prefix is
assigned once per canonical id and kept for the life of the loop, so a
card that reappears in a later reshuffled pass keeps its identity prefix
while the pass/index suffix keeps keys unique. Premium feeds loop: near
the tail, another shuffled pass of the whole base pool is appended.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from deckfeed.models.content import (
    LIMIT_REACHED,
    LOADING_MORE,
    ContentItem,
    FeedEntry,
    Sentinel,
    TierKind,
    is_sentinel,
)
from deckfeed.settings import DeckSettings
from deckfeed.utils.identity import dedupe_by_id, is_valid_item, normalize_id

PLACEHOLDER_KEY = "loading-placeholder"


@dataclass(frozen=True)
class RenderedEntry:
    key: str
    entry: Optional[FeedEntry]
    kind: str  # 'card', 'loading' or 'limit'
    pass_no: int = 0

    @property
    def prefix(self) -> str:
        return self.key.split('#', 1)[0]


class RenderKeyRegistry:
    """Canonical id -> stable key prefix, assigned in first-seen order."""

    def __init__(self, ceiling: int = 2000):
        self.ceiling = ceiling
        self._seq = 0
        self._prefixes: Dict[str, str] = {}

    def prefix_for(self, entry: FeedEntry, index: int = 0) -> str:
        if is_sentinel(entry):
            return entry.id
        base_id = normalize_id(entry, index)
        prefix = self._prefixes.get(base_id)
        if prefix is None:
            self._seq += 1
            prefix = f"k{self._seq}:{base_id}"
            self._prefixes[base_id] = prefix
        return prefix

    def maybe_trim(self, known_ids: Iterable[str]) -> int:
        """Above the ceiling, forget every id not in ``known_ids``."""
        if len(self._prefixes) <= self.ceiling:
            return 0
        keep = set(known_ids)
        stale = [k for k in self._prefixes if k not in keep]
        for k in stale:
            del self._prefixes[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._prefixes)


class PresentationLoop:
    def __init__(
        self,
        tier: TierKind,
        settings: Optional[DeckSettings] = None,
        rng: Optional[random.Random] = None,
        load_more: Optional[Callable[[], object]] = None
    ):
        settings = settings or DeckSettings()
        self.endless = tier == TierKind.PREMIUM
        self.prefetch_window = settings.prefetch_window
        self.max_buffer = settings.max_buffer
        self.trim_to = settings.trim_to
        self.rng = rng or random.Random()
        self.load_more = load_more
        self.registry = RenderKeyRegistry(settings.render_key_ceiling)
        self.logger = logging.getLogger(__name__)

        self.feed: List[FeedEntry] = []
        self.base: List[ContentItem] = []
        self.buffer: List[RenderedEntry] = []
        self.pass_counter = 0  # appended passes only; never reset

    # ------------------------------------------------------------------
    # Feed updates
    # ------------------------------------------------------------------

    def _entry_for(self, item: FeedEntry, pass_no: int, index: int, base_index: int) -> RenderedEntry:
        key = f"{self.registry.prefix_for(item, base_index)}#{pass_no}:{index}"
        if isinstance(item, Sentinel):
            kind = 'limit' if item == LIMIT_REACHED else 'loading'
            return RenderedEntry(key=key, entry=item, kind=kind, pass_no=pass_no)
        if not is_valid_item(item):
            return RenderedEntry(key=key, entry=item, kind='loading', pass_no=pass_no)
        return RenderedEntry(key=key, entry=item, kind='card', pass_no=pass_no)

    def update(self, feed: List[FeedEntry]) -> bool:
        """
        Take a new delivered feed. Returns True if the render list changed.

        Premium renders only the valid base cards; capped tiers render the
        feed as delivered, sentinels included.
        """
        self.feed = list(feed or [])
        self.base = dedupe_by_id([e for e in self.feed if not is_sentinel(e) and is_valid_item(e)])

        source = self.base if self.endless else self.feed
        fresh = [self._entry_for(item, 0, i, i) for i, item in enumerate(source)]

        self.registry.maybe_trim(normalize_id(it, i) for i, it in enumerate(self.base))

        if fresh and [e.key for e in fresh] == [e.key for e in self.buffer[:len(fresh)]]:
            # same base as the head of the buffer: keep any appended passes
            return False
        self.buffer = fresh
        return True

    # ------------------------------------------------------------------
    # Looping
    # ------------------------------------------------------------------

    def append_pass(self) -> bool:
        """Append one reshuffled pass of the whole base pool."""
        if not self.endless or not self.base:
            return False

        self.pass_counter += 1
        pass_no = self.pass_counter
        order = list(range(len(self.base)))
        self.rng.shuffle(order)
        self.buffer.extend(
            self._entry_for(self.base[i], pass_no, local, i) for local, i in enumerate(order)
        )

        if len(self.buffer) > self.max_buffer:
            self.buffer = self.buffer[-self.trim_to:]
            self.logger.debug(f"Loop buffer trimmed to {len(self.buffer)}")
        return True

    def on_visible_index(self, index: int) -> bool:
        """Viewer reached ``index``; loop again when within the prefetch window of the tail."""
        if not self.endless or not self.buffer or not self.base:
            return False
        if index >= max(len(self.buffer) - self.prefetch_window, 0):
            return self.append_pass()
        return False

    def on_momentum_end(self, index: int) -> bool:
        if not self.endless or not self.base:
            return False
        if index >= len(self.buffer) - 1:
            return self.append_pass()
        return False

    def on_end_reached(self) -> bool:
        """Capped tiers ask for the next batch at the end of the list."""
        if self.endless or self.load_more is None:
            return False
        self.load_more()
        return True

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @property
    def blocking(self) -> bool:
        return not self.base

    def render(self) -> List[RenderedEntry]:
        """Render list; a single blocking placeholder while there is no valid card."""
        if self.blocking:
            return [RenderedEntry(key=PLACEHOLDER_KEY, entry=LOADING_MORE, kind='loading')]
        return list(self.buffer)
