"""
Nearby-region resolution and region-set expansion.

NearbyRegionClient talks to the nearby-cities service in two modes:
  - radius: alias names for places within a small radius of the point
  - offsets: a coarser grid of neighbouring cities
LocationExpander merges both (aliases first), persists the combined list
for a while keyed by rounded coordinates, and always puts the primary
region first. Lookup failures fall back to the primary region alone.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Dict, List, Optional

from deckfeed.models.content import Coordinates
from deckfeed.services.http_session import HttpServiceClient
from deckfeed.services.kv_store import KeyValueStore
from deckfeed.utils.error_monitoring import DeckError, ErrorHandler
from deckfeed.utils.regions import canonical_region, uniq_strings

NEARBY_PREFIX = "nearbyRegions:"


class NearbyLookupError(DeckError):
    """The nearby-region service could not be reached or answered badly."""
    pass


class NearbyRegionClient(HttpServiceClient):
    """HTTP client for the nearby-cities service, memoized per rounded point and mode."""

    def __init__(self, base_url: str, radius_meters: int = 1000, timeout: float = 30.0):
        super().__init__(base_url, timeout=timeout, max_retries=2)
        self.radius_meters = radius_meters
        self._mode_cache: Dict[str, List[str]] = {}

    async def fetch_mode(self, coords: Coordinates, mode: str = 'offsets') -> List[str]:
        """
        Region strings for one lookup mode.

        Errors are raised as NearbyLookupError; an answer without cities is
        memoized as an empty list.
        """
        key = f"{coords.lat:.4f},{coords.lon:.4f}::{mode}::{self.radius_meters}"
        if key in self._mode_cache:
            return self._mode_cache[key]

        params = {'lat': str(coords.lat), 'lon': str(coords.lon), 'mode': mode}
        if mode == 'radius':
            params['radiusMeters'] = str(self.radius_meters)

        try:
            data = await self._request_json('GET', '', params=params)
        except Exception as e:
            raise NearbyLookupError(f"Nearby lookup failed (mode={mode}): {e}") from e

        cities = self._parse_cities(data)
        if not cities:
            self.logger.warning(f"⚠️ No cities returned for mode={mode}")
        self._mode_cache[key] = cities
        return cities

    @staticmethod
    def _parse_cities(data) -> List[str]:
        raw = data.get('cities') if isinstance(data, dict) else None
        if not isinstance(raw, list):
            return []
        cities = []
        for entry in raw:
            if isinstance(entry, str):
                if entry:
                    cities.append(entry)
            elif isinstance(entry, dict):
                # legacy shape: {name, regionName, countryName}
                parts = [entry.get('name'), entry.get('regionName'), entry.get('countryName')]
                text = ', '.join(str(p) for p in parts if p)
                if text:
                    cities.append(text)
        return cities

    async def preferred_order(self, coords: Coordinates) -> List[str]:
        """
        Radius aliases first, then offset cities, case-insensitively de-duplicated.

        A failing mode contributes nothing; only when both fail is the
        first error raised.
        """
        modes = ('radius', 'offsets')
        results = await asyncio.gather(
            *(self.fetch_mode(coords, mode) for mode in modes),
            return_exceptions=True,
        )
        cities: List[str] = []
        errors: List[Exception] = []
        for mode, result in zip(modes, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self.logger.warning(f"⚠️ Nearby mode {mode} failed: {result}")
                errors.append(result)
                continue
            cities.extend(result)
        if len(errors) == len(modes):
            raise errors[0]
        return uniq_strings(cities)


class LocationExpander:
    def __init__(
        self,
        client: Optional[NearbyRegionClient],
        kv: Optional[KeyValueStore] = None,
        cache_seconds: float = 12 * 60 * 60,
        error_handler: Optional[ErrorHandler] = None,
        clock: Callable[[], float] = time.time
    ):
        self.client = client
        self.kv = kv
        self.cache_seconds = cache_seconds
        self.error_handler = error_handler or ErrorHandler()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def cache_key(coords: Coordinates) -> str:
        return f"{NEARBY_PREFIX}{coords.lat:.3f},{coords.lon:.3f}"

    async def _read_cached(self, coords: Coordinates) -> Optional[List[str]]:
        if self.kv is None:
            return None
        raw = await self.kv.get(self.cache_key(coords))
        if not raw:
            return None
        try:
            entry = json.loads(raw)
        except ValueError:
            return None
        cities = entry.get('cities') if isinstance(entry, dict) else None
        timestamp = entry.get('timestamp', 0) if isinstance(entry, dict) else 0
        if isinstance(cities, list) and self.clock() - float(timestamp) < self.cache_seconds:
            return cities
        return None

    async def _write_cached(self, coords: Coordinates, cities: List[str]) -> None:
        if self.kv is None:
            return
        await self.kv.set(
            self.cache_key(coords),
            json.dumps({'cities': cities, 'timestamp': self.clock()})
        )

    async def nearby_cached(self, coords: Coordinates) -> List[str]:
        cached = await self._read_cached(coords)
        if cached is not None:
            return cached
        if self.client is None:
            return []
        cities = await self.client.preferred_order(coords)
        await self._write_cached(coords, cities)
        return cities

    async def expand(self, coords: Optional[Coordinates], primary: Optional[str]) -> List[str]:
        """
        Ordered canonical region list, primary first.

        Never raises: any lookup failure yields the primary region alone.
        """
        primary_only = [canonical_region(r) for r in uniq_strings([primary])]
        if coords is None:
            self.logger.debug("No coordinates; using primary region only")
            return primary_only

        try:
            nearby = await self.nearby_cached(coords)
        except Exception as e:
            self.error_handler.handle_error(
                e, 'nearby_regions', 'expand',
                {'lat': coords.lat, 'lon': coords.lon, 'primary': primary}
            )
            return primary_only

        merged = uniq_strings([primary] + list(nearby))
        regions = uniq_strings(canonical_region(r) for r in merged)
        self.logger.info(f"📍 {len(regions)} regions near {primary or 'unknown'}")
        return regions
