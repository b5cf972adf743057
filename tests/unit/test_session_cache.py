import json

import pytest

from deckfeed.models.content import FeedType
from deckfeed.services.session_cache import CACHE_PREFIX, deck_cache_key, is_cache_usable

AUSTIN = "Austin, Texas, United States"


@pytest.mark.asyncio
async def test_kv_roundtrip_and_prefix_listing(kv):
    await kv.set("deckCache:a", "1")
    await kv.set("deckCache:b", "2")
    await kv.set("nearbyRegions:x", "3")
    await kv.set("deckCache:a", "updated")

    assert await kv.get("deckCache:a") == "updated"
    assert await kv.get("missing") is None
    assert await kv.list_keys_with_prefix("deckCache:") == ["deckCache:a", "deckCache:b"]

    assert await kv.remove_many(["deckCache:a", "deckCache:b"]) == 2
    assert await kv.list_keys_with_prefix("deckCache:") == []
    assert await kv.get("nearbyRegions:x") == "3"


@pytest.mark.asyncio
async def test_prefix_listing_treats_wildcards_literally(kv):
    await kv.set("deck_x", "1")
    await kv.set("deckAx", "2")
    assert await kv.list_keys_with_prefix("deck_") == ["deck_x"]


def test_cache_key_shape():
    key = deck_cache_key("u1", FeedType.MAIN, AUSTIN, '{"advanced":[],"quick":[]}', "2025-08-19")
    assert key.startswith(f"{CACHE_PREFIX}u1:main:{AUSTIN}:")
    assert key.endswith(":2025-08-19")
    assert deck_cache_key(None, FeedType.MAIN, None, "", "2025-08-19").startswith("deckCache:guest:main:unknown:")


def test_cache_keys_isolate_every_dimension():
    base = ("u1", FeedType.MAIN, AUSTIN, "sig", "2025-08-19")
    variants = [
        ("u2", FeedType.MAIN, AUSTIN, "sig", "2025-08-19"),
        ("u1", FeedType.RESTAURANT, AUSTIN, "sig", "2025-08-19"),
        ("u1", FeedType.MAIN, "Dallas, Texas, United States", "sig", "2025-08-19"),
        ("u1", FeedType.MAIN, AUSTIN, "other", "2025-08-19"),
        ("u1", FeedType.MAIN, AUSTIN, "sig", "2025-08-20"),
    ]
    keys = {deck_cache_key(*base)} | {deck_cache_key(*v) for v in variants}
    assert len(keys) == 6


def test_cache_only_for_unfiltered_main():
    assert is_cache_usable(FeedType.MAIN, False)
    assert not is_cache_usable(FeedType.MAIN, True)
    assert not is_cache_usable(FeedType.RESTAURANT, False)


@pytest.mark.asyncio
async def test_save_and_load_ids(session_cache):
    key = deck_cache_key("u1", FeedType.MAIN, AUSTIN, "sig", "2025-08-19")
    assert await session_cache.load_ids(key) is None
    assert await session_cache.save_ids(key, ["a", "b"])
    assert await session_cache.load_ids(key) == ["a", "b"]


@pytest.mark.asyncio
async def test_corrupt_entry_reads_as_miss_and_is_removed(session_cache, kv, error_handler):
    await kv.set("deckCache:bad", "{not json")
    await kv.set("deckCache:dict", json.dumps({"ids": ["a"]}))

    assert await session_cache.load_ids("deckCache:bad") is None
    assert await session_cache.load_ids("deckCache:dict") is None
    assert await kv.get("deckCache:bad") is None
    assert await kv.get("deckCache:dict") is None
    assert error_handler.error_counts["CacheCorruptionError"] == 2


@pytest.mark.asyncio
async def test_purge_removes_other_days_only(session_cache, kv):
    await kv.set("deckCache:u1:main:x:abc:2025-08-18", "[]")
    await kv.set("deckCache:u1:main:x:abc:2025-08-19", "[]")
    await kv.set("nearbyRegions:1,2", "{}")

    assert await session_cache.purge_stale("2025-08-19") == 1
    assert await session_cache.list_keys() == ["deckCache:u1:main:x:abc:2025-08-19"]
    assert await kv.get("nearbyRegions:1,2") == "{}"
