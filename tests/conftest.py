import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

from deckfeed.models.content import Coordinates
from deckfeed.pipeline.scheduler import Scheduler
from deckfeed.services.document_store import DocumentStore, StoreQuery, StoreQueryError
from deckfeed.services.filter_catalog import load_filter_catalog
from deckfeed.services.kv_store import KeyValueStore
from deckfeed.services.remote_generation import GenerationRequest, poll_for_result
from deckfeed.services.session_cache import SessionCache
from deckfeed.settings import DeckSettings
from deckfeed.utils.error_monitoring import ErrorHandler

AUSTIN = "Austin, Texas, United States"


def make_doc(n: int, activity: str = "museum", location: str = AUSTIN,
             category: str = "ind", price: str = "$", **extra: Any) -> Dict[str, Any]:
    doc = {
        "id": f"doc-{n}",
        "title": f"Card {n}",
        "activity": activity,
        "category": category,
        "price": price,
        "location": location,
    }
    doc.update(extra)
    return doc


class FakeDocumentStore(DocumentStore):
    """In-memory store that evaluates StoreQuery clauses and records every call."""

    def __init__(self, docs: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self.docs: List[Dict[str, Any]] = list(docs or [])
        self.queries: List[StoreQuery] = []
        self.id_lookups: List[List[str]] = []
        self.fail = False
        self.on_query: Optional[Callable[["FakeDocumentStore"], None]] = None

    def add(self, docs: Iterable[Dict[str, Any]]) -> None:
        self.docs.extend(docs)

    def _matches(self, doc: Dict[str, Any], query: StoreQuery) -> bool:
        pred = query.predicate
        if doc.get("location") not in query.regions:
            return False
        if pred.activity_in and str(doc.get("activity", "")).lower() not in pred.activity_in:
            return False
        if pred.category_eq and doc.get("category") != pred.category_eq:
            return False
        if pred.price_in and doc.get("price") not in pred.price_in:
            return False
        return True

    async def query(self, query: StoreQuery) -> List[Dict[str, Any]]:
        self.queries.append(query)
        if self.fail:
            raise StoreQueryError("store unavailable")
        result = [dict(d) for d in self.docs if self._matches(d, query)][:query.limit]
        if self.on_query is not None:
            self.on_query(self)
        return result

    async def get_documents(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(ids)
        self.id_lookups.append(ids)
        if self.fail:
            raise StoreQueryError("store unavailable")
        wanted = set(ids)
        return [dict(d) for d in self.docs if d.get("id") in wanted]


class FakeGenerator:
    """Records generation requests; ``on_trigger`` may seed the store."""

    def __init__(self, on_trigger: Optional[Callable[[GenerationRequest], None]] = None) -> None:
        self.requests: List[GenerationRequest] = []
        self.on_trigger = on_trigger
        self.fail = False

    async def request_generation(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.fail:
            raise ConnectionError("generator unreachable")
        if self.on_trigger is not None:
            self.on_trigger(request)
        return f"trigger-{len(self.requests)}"

    async def poll_for_result(self, trigger_id, reload, max_attempts=3,
                              backoff_schedule=(0.9, 1.2, 1.6), sleep=asyncio.sleep):
        return await poll_for_result(reload, max_attempts, backoff_schedule, sleep)


class FakeNearbyClient:
    def __init__(self, cities: Optional[List[str]] = None, error: Optional[Exception] = None) -> None:
        self.cities = list(cities or [])
        self.error = error
        self.calls: List[Coordinates] = []

    async def preferred_order(self, coords: Coordinates) -> List[str]:
        self.calls.append(coords)
        if self.error is not None:
            raise self.error
        return list(self.cities)


class FakeScheduler(Scheduler):
    """Virtual clock: sleeps are recorded and return after one loop turn."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def settings() -> DeckSettings:
    return DeckSettings(enable_load_metrics=False)


@pytest.fixture
def catalog():
    return load_filter_catalog()


@pytest.fixture
def error_handler() -> ErrorHandler:
    return ErrorHandler()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest_asyncio.fixture
async def kv(tmp_path) -> KeyValueStore:
    store = KeyValueStore(str(tmp_path / "cache" / "deck.db"))
    await store.initialize()
    return store


@pytest.fixture
def session_cache(kv, error_handler) -> SessionCache:
    return SessionCache(kv, error_handler)
