import logging
import time
from typing import Callable, Dict, Optional

from deckfeed.models.content import FeedType


def attempt_key(feed_type: FeedType, region: Optional[str], filter_signature: str, date_str: str) -> str:
    region_part = str(region or "").strip() or "unknown"
    return f"{feed_type.value}|{region_part}|{filter_signature}|{date_str}"


class AttemptGuard:
    """
    Time-boxed memo of remote generation triggers.

    A trigger for a key may fire only when no attempt is recorded or the
    recorded one is older than ``ttl`` seconds. Records expire; they are
    never deleted explicitly. One guard instance is shared by every feed of
    an engine, so it is passed in rather than held at module level.
    """

    def __init__(self, ttl: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._attempts: Dict[str, float] = {}
        self.logger = logging.getLogger(__name__)

    def has_fresh_attempt(self, key: str) -> bool:
        ts = self._attempts.get(key)
        if ts is None:
            return False
        return (self.clock() - ts) < self.ttl

    def mark(self, key: str) -> None:
        self._attempts[key] = self.clock()

    def try_acquire(self, key: str) -> bool:
        """Record an attempt and return True unless a fresh one already exists."""
        if self.has_fresh_attempt(key):
            self.logger.debug(f"Trigger suppressed, recent attempt for {key}")
            return False
        self.mark(key)
        return True

