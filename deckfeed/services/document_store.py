"""
Document store query interface and its HTTP client.

A query is a region-membership clause (at most ``in_limit`` values) plus at
most one of activity membership, category equality or price membership,
with a fixed per-call result cap.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from deckfeed.services.filter_predicates import StorePredicate
from deckfeed.services.http_session import HttpServiceClient
from deckfeed.utils.error_monitoring import DeckError


class StoreQueryError(DeckError):
    """A store read failed."""
    pass


@dataclass(frozen=True)
class StoreQuery:
    regions: Tuple[str, ...]
    predicate: StorePredicate = StorePredicate()
    limit: int = 200
    in_limit: int = 10

    def __post_init__(self):
        if not self.regions:
            raise ValueError("StoreQuery needs at least one region")
        if len(self.regions) > self.in_limit:
            raise ValueError(f"Region clause holds {len(self.regions)} values, limit is {self.in_limit}")
        clauses = sum(1 for c in (self.predicate.activity_in, self.predicate.category_eq, self.predicate.price_in) if c)
        if clauses > 1:
            raise ValueError("StoreQuery accepts at most one of activity, category or price")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'location_in': list(self.regions),
            'limit': self.limit,
        }
        if self.predicate.activity_in:
            payload['activity_in'] = list(self.predicate.activity_in[:self.in_limit])
        if self.predicate.category_eq:
            payload['category_eq'] = self.predicate.category_eq
        if self.predicate.price_in:
            payload['price_in'] = list(self.predicate.price_in[:self.in_limit])
        return payload


class DocumentStore:
    """Read side of the content store."""

    async def query(self, query: StoreQuery) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_documents(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        raise NotImplementedError


class HttpDocumentStore(HttpServiceClient, DocumentStore):
    """
    Document store reached over HTTP.

    POST {base}/query with the query payload, GET {base}/documents?ids=...
    for id lookups (batched to the same ``in`` ceiling). Both return
    ``{"documents": [...]}``.
    """

    def __init__(self, base_url: str, timeout: float = 30.0, in_limit: int = 10):
        super().__init__(base_url, timeout=timeout)
        self.in_limit = in_limit

    async def query(self, query: StoreQuery) -> List[Dict[str, Any]]:
        try:
            data = await self._request_json('POST', '/query', json_body=query.to_payload())
        except Exception as e:
            raise StoreQueryError(f"Store query failed for {len(query.regions)} regions: {e}") from e
        return self._documents(data)

    async def get_documents(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = [str(i) for i in ids if i]
        out: List[Dict[str, Any]] = []
        for i in range(0, len(ids), self.in_limit):
            chunk = ids[i:i + self.in_limit]
            try:
                data = await self._request_json('GET', '/documents', params={'ids': ','.join(chunk)})
            except Exception as e:
                raise StoreQueryError(f"Document lookup failed for {len(chunk)} ids: {e}") from e
            out.extend(self._documents(data))
        return out

    def _documents(self, data: Any) -> List[Dict[str, Any]]:
        docs = data.get('documents') if isinstance(data, dict) else data
        if not isinstance(docs, list):
            self.logger.warning("Store response carried no document list")
            return []
        return [d for d in docs if isinstance(d, dict)]
