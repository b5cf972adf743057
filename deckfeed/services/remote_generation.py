"""
Remote generation: a two-phase protocol over a fire-and-forget trigger.

Phase one (`request_generation`) posts the request and returns a trigger
id; the service replies with nothing usable. Phase two (`poll_for_result`)
observes success by re-reading the store on a short fixed schedule and
returning the first non-empty read.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from deckfeed.models.content import ContentItem, Coordinates, FeedType, FilterSpec
from deckfeed.services.http_session import HttpServiceClient
from deckfeed.utils.error_monitoring import DeckError

logger = logging.getLogger(__name__)


class RemoteGenerationError(DeckError):
    """The generation trigger could not be delivered."""
    pass


@dataclass
class GenerationRequest:
    """What the generator needs to produce content for one feed."""
    region: Optional[str]
    coordinates: Optional[Coordinates]
    filters: FilterSpec
    feed_type: FeedType
    include_secondary: bool
    min_count: int
    user_id: str = "guest"
    query: str = ""
    nearby: List[str] = field(default_factory=list)
    expand_radius: bool = True

    def to_payload(self, trigger_id: str) -> Dict[str, Any]:
        coords = None
        if self.coordinates is not None:
            coords = {'lat': self.coordinates.lat, 'lon': self.coordinates.lon}
        return {
            'triggerId': trigger_id,
            'city': self.region,
            'coords': coords,
            'filters': {
                'Quick Filters': list(self.filters.quick),
                'Advanced Filters': list(self.filters.advanced),
            },
            'userId': self.user_id,
            'expandRadius': self.expand_radius,
            'query': self.query,
            'deckType': self.feed_type.value,
            'includeRestaurants': self.include_secondary,
            'nearbyCities': list(self.nearby),
            'minCount': self.min_count,
        }


def build_query_string(filters: FilterSpec) -> str:
    """Human-readable context for the generator: advanced labels, then quick."""
    advanced = ", ".join(filters.advanced)
    quick = ", ".join(filters.quick)
    return " | ".join(part for part in (advanced, quick) if part)


async def poll_for_result(
    reload: Callable[[], Awaitable[Sequence[ContentItem]]],
    max_attempts: int = 3,
    backoff_schedule: Sequence[float] = (0.9, 1.2, 1.6),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> Optional[List[ContentItem]]:
    """
    Re-read until something shows up.

    Waits ``backoff_schedule[i]`` before attempt i (the last delay repeats
    if the schedule is shorter than ``max_attempts``). Returns the first
    non-empty read, or None when every attempt came back empty.
    """
    for attempt in range(max_attempts):
        delay = backoff_schedule[min(attempt, len(backoff_schedule) - 1)] if backoff_schedule else 0
        await sleep(delay)
        items = list(await reload() or [])
        if items:
            logger.info(f"🔄 Re-read found {len(items)} items after trigger (attempt {attempt + 1})")
            return items
    logger.info(f"🔄 Re-read found nothing after {max_attempts} attempts")
    return None


class RemoteGenerationClient(HttpServiceClient):
    """POSTs generation requests to the generator endpoint."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        super().__init__(base_url, timeout=timeout, max_retries=1)

    async def request_generation(self, request: GenerationRequest) -> str:
        trigger_id = uuid.uuid4().hex
        self.logger.info(
            f"📡 Triggering generation for {request.region or 'unknown'} "
            f"feed={request.feed_type.value} min={request.min_count} filters={request.filters.labels}"
        )
        try:
            await self._request_json('POST', '', json_body=request.to_payload(trigger_id))
        except Exception as e:
            raise RemoteGenerationError(f"Generation trigger failed: {e}") from e
        return trigger_id

    async def poll_for_result(
        self,
        trigger_id: str,
        reload: Callable[[], Awaitable[Sequence[ContentItem]]],
        max_attempts: int = 3,
        backoff_schedule: Sequence[float] = (0.9, 1.2, 1.6),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ) -> Optional[List[ContentItem]]:
        self.logger.debug(f"Polling store for trigger {trigger_id}")
        return await poll_for_result(reload, max_attempts, backoff_schedule, sleep)
