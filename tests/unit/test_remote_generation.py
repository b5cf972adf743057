import pytest

from deckfeed.models.content import ContentItem, Coordinates, FeedType, FilterSpec
from deckfeed.services.remote_generation import (
    GenerationRequest,
    RemoteGenerationClient,
    RemoteGenerationError,
    build_query_string,
    poll_for_result,
)


def test_payload_carries_filters_and_context():
    request = GenerationRequest(
        region="Austin, Texas, United States",
        coordinates=Coordinates(30.27, -97.74),
        filters=FilterSpec(advanced=("Jazz Night",)),
        feed_type=FeedType.MAIN,
        include_secondary=False,
        min_count=15,
        user_id="u1",
        query="Jazz Night",
        nearby=["Round Rock, Texas, United States"],
    )
    payload = request.to_payload("t-1")

    assert payload["triggerId"] == "t-1"
    assert payload["city"] == "Austin, Texas, United States"
    assert payload["coords"] == {"lat": 30.27, "lon": -97.74}
    assert payload["filters"] == {"Quick Filters": [], "Advanced Filters": ["Jazz Night"]}
    assert payload["deckType"] == "main"
    assert payload["includeRestaurants"] is False
    assert payload["minCount"] == 15
    assert payload["nearbyCities"] == ["Round Rock, Texas, United States"]
    assert payload["expandRadius"] is True


def test_payload_without_coordinates():
    request = GenerationRequest(None, None, FilterSpec(), FeedType.RESTAURANT, True, 10)
    payload = request.to_payload("t")
    assert payload["coords"] is None
    assert payload["city"] is None
    assert payload["userId"] == "guest"


def test_query_string_lists_advanced_first():
    assert build_query_string(FilterSpec(quick=("A", "B"), advanced=("C",))) == "C | A, B"
    assert build_query_string(FilterSpec(quick=("A",))) == "A"
    assert build_query_string(FilterSpec()) == ""


@pytest.mark.asyncio
async def test_poll_returns_first_non_empty_read():
    reads = [[], [], [ContentItem.from_record({"id": "a", "title": "A"})]]
    sleeps = []

    async def reload():
        return reads.pop(0)

    async def sleep(delay):
        sleeps.append(delay)

    result = await poll_for_result(reload, max_attempts=3, backoff_schedule=(0.9, 1.2, 1.6), sleep=sleep)
    assert [i.id for i in result] == ["a"]
    assert sleeps == [0.9, 1.2, 1.6]


@pytest.mark.asyncio
async def test_poll_gives_up_and_repeats_last_delay():
    sleeps = []

    async def reload():
        return []

    async def sleep(delay):
        sleeps.append(delay)

    assert await poll_for_result(reload, max_attempts=4, backoff_schedule=(0.9, 1.2), sleep=sleep) is None
    assert sleeps == [0.9, 1.2, 1.2, 1.2]


@pytest.mark.asyncio
async def test_client_wraps_transport_failures(monkeypatch):
    client = RemoteGenerationClient("http://generator.invalid")

    async def boom(*args, **kwargs):
        raise ConnectionError("refused")

    monkeypatch.setattr(client, "_request_json", boom)
    request = GenerationRequest("X", None, FilterSpec(), FeedType.MAIN, False, 20)
    with pytest.raises(RemoteGenerationError):
        await client.request_generation(request)
    await client.close_session()


@pytest.mark.asyncio
async def test_client_returns_trigger_id(monkeypatch):
    client = RemoteGenerationClient("http://generator.invalid")
    sent = []

    async def fake(method, path, params=None, json_body=None):
        sent.append((method, json_body))
        return None

    monkeypatch.setattr(client, "_request_json", fake)
    request = GenerationRequest("X", None, FilterSpec(), FeedType.MAIN, False, 20)
    trigger_id = await client.request_generation(request)

    assert sent[0][0] == "POST"
    assert sent[0][1]["triggerId"] == trigger_id
