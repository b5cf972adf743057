"""
Per-day deck id cache.

Stores the id list of the first non-empty unfiltered session for a
(user, feed, region, filter signature, date) key so a later boot on the
same day can show a provisional deck before the store answers.
"""

import hashlib
import json
import logging
from typing import List, Optional

from deckfeed.models.content import FeedType
from deckfeed.services.kv_store import KeyValueStore
from deckfeed.utils.error_monitoring import DeckError, ErrorHandler

CACHE_PREFIX = "deckCache:"


class CacheCorruptionError(DeckError):
    """A persisted cache value could not be decoded."""
    pass


def deck_cache_key(
    user_id: Optional[str],
    feed_type: FeedType,
    region: Optional[str],
    filter_signature: str,
    date_str: str
) -> str:
    """
    Composite cache key. The date is always the last segment so stale-day
    purging can match on the suffix alone.
    """
    region_part = str(region or "").strip() or "unknown"
    digest = hashlib.md5(filter_signature.encode("utf-8")).hexdigest()[:12]
    return f"{CACHE_PREFIX}{user_id or 'guest'}:{feed_type.value}:{region_part}:{digest}:{date_str}"


def is_cache_usable(feed_type: FeedType, is_filtered: bool) -> bool:
    """Filtered and secondary-feed results are too volatile to cache."""
    return feed_type == FeedType.MAIN and not is_filtered


class SessionCache:
    def __init__(self, kv: KeyValueStore, error_handler: Optional[ErrorHandler] = None):
        self.kv = kv
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger(__name__)

    async def load_ids(self, key: str) -> Optional[List[str]]:
        """Cached id list, or None on a miss. Unreadable entries are cleared."""
        try:
            raw = await self.kv.get(key)
        except Exception as e:
            self.error_handler.handle_error(e, 'session_cache', 'load_ids', {'key': key})
            return None

        if raw is None:
            return None

        error: Optional[CacheCorruptionError] = None
        try:
            parsed = json.loads(raw)
            if not isinstance(parsed, list):
                error = CacheCorruptionError(f"Expected a list of ids, got {type(parsed).__name__}")
        except ValueError as e:
            error = CacheCorruptionError(f"Unparsable cache value: {e}")

        if error is not None:
            self.error_handler.handle_error(error, 'session_cache', 'load_ids', {'key': key})
            await self._remove_quietly(key)
            return None

        return [str(x) for x in parsed if x is not None and str(x) != ""]

    async def save_ids(self, key: str, ids: List[str]) -> bool:
        try:
            await self.kv.set(key, json.dumps(list(ids)))
            return True
        except Exception as e:
            self.error_handler.handle_error(e, 'session_cache', 'save_ids', {'key': key, 'count': len(ids)})
            return False

    async def purge_stale(self, today: str) -> int:
        """Remove deck caches from any day other than ``today``."""
        try:
            keys = await self.kv.list_keys_with_prefix(CACHE_PREFIX)
            stale = [k for k in keys if not k.endswith(f":{today}")]
            if stale:
                await self.kv.remove_many(stale)
                self.logger.info(f"🧹 Purged {len(stale)} stale deck caches")
            return len(stale)
        except Exception as e:
            self.error_handler.handle_error(e, 'session_cache', 'purge_stale', {'today': today})
            return 0

    async def list_keys(self) -> List[str]:
        return await self.kv.list_keys_with_prefix(CACHE_PREFIX)

    async def _remove_quietly(self, key: str) -> None:
        try:
            await self.kv.remove(key)
        except Exception as e:
            self.error_handler.handle_error(e, 'session_cache', 'remove', {'key': key})
