import json

import pytest
from conftest import FakeNearbyClient

from deckfeed.models.content import Coordinates
from deckfeed.services.location_service import LocationExpander, NearbyLookupError, NearbyRegionClient

AUSTIN = "Austin, Texas, United States"
COORDS = Coordinates(30.2672, -97.7431)


class Clock:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_primary_comes_first_and_regions_are_canonical(kv):
    client = FakeNearbyClient(["round rock, tx, usa", "Austin, TX, USA", "cedar park, texas, us"])
    expander = LocationExpander(client, kv)

    regions = await expander.expand(COORDS, AUSTIN)
    assert regions == [
        AUSTIN,
        "Round Rock, Texas, United States",
        "Cedar Park, Texas, United States",
    ]


@pytest.mark.asyncio
async def test_without_coordinates_only_primary(kv):
    client = FakeNearbyClient(["Elsewhere"])
    expander = LocationExpander(client, kv)
    assert await expander.expand(None, "austin, tx, usa") == [AUSTIN]
    assert client.calls == []


@pytest.mark.asyncio
async def test_lookup_failure_falls_back_to_primary(kv, error_handler):
    client = FakeNearbyClient(error=ConnectionError("down"))
    expander = LocationExpander(client, kv, error_handler=error_handler)

    assert await expander.expand(COORDS, AUSTIN) == [AUSTIN]
    assert error_handler.error_counts["ConnectionError"] == 1


@pytest.mark.asyncio
async def test_nearby_list_is_cached_until_it_expires(kv):
    clock = Clock()
    client = FakeNearbyClient(["Round Rock, Texas, United States"])
    expander = LocationExpander(client, kv, cache_seconds=12 * 3600, clock=clock)

    await expander.expand(COORDS, AUSTIN)
    await expander.expand(COORDS, AUSTIN)
    assert len(client.calls) == 1

    stored = json.loads(await kv.get(LocationExpander.cache_key(COORDS)))
    assert stored["cities"] == ["Round Rock, Texas, United States"]

    clock.now += 12 * 3600
    await expander.expand(COORDS, AUSTIN)
    assert len(client.calls) == 2


def test_cache_key_rounds_to_three_decimals():
    assert LocationExpander.cache_key(Coordinates(30.26721, -97.74312)) == "nearbyRegions:30.267,-97.743"


def test_parse_cities_accepts_both_shapes():
    data = {"cities": ["Austin, TX, USA", "", {"name": "Round Rock", "regionName": "TX", "countryName": "USA"}]}
    assert NearbyRegionClient._parse_cities(data) == ["Austin, TX, USA", "Round Rock, TX, USA"]
    assert NearbyRegionClient._parse_cities({"error": "x"}) == []
    assert NearbyRegionClient._parse_cities(None) == []


def test_coordinates_from_mapping():
    assert Coordinates.from_any({"latitude": "1.5", "longitude": 2}) == Coordinates(1.5, 2.0)
    assert Coordinates.from_any({"lat": None, "lon": 1}) is None
    assert Coordinates.from_any(None) is None


@pytest.mark.asyncio
async def test_one_failing_mode_keeps_the_other(monkeypatch):
    client = NearbyRegionClient("http://nearby.invalid")

    async def fake(method, path, params=None, json_body=None):
        if params["mode"] == "radius":
            raise ConnectionError("radius down")
        return {"cities": ["Round Rock, TX, USA", "round rock, tx, usa", "Pflugerville, TX, USA"]}

    monkeypatch.setattr(client, "_request_json", fake)
    assert await client.preferred_order(COORDS) == ["Round Rock, TX, USA", "Pflugerville, TX, USA"]
    await client.close_session()


@pytest.mark.asyncio
async def test_both_modes_failing_raises(monkeypatch):
    client = NearbyRegionClient("http://nearby.invalid")

    async def fake(method, path, params=None, json_body=None):
        raise ConnectionError("down")

    monkeypatch.setattr(client, "_request_json", fake)
    with pytest.raises(NearbyLookupError):
        await client.preferred_order(COORDS)
    await client.close_session()
