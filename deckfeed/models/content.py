"""
Content models for the deck feed engine.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Candidate id-bearing fields, tried in priority order
ID_FIELDS: Tuple[str, ...] = ("id", "place_id", "docId", "key")
# Candidate display-text fields, tried in priority order
TEXT_FIELDS: Tuple[str, ...] = ("title", "name", "venue_name", "place_name")


class FeedType(Enum):
    """Which of the two parallel content streams is being supplied"""
    MAIN = "main"
    RESTAURANT = "restaurant"


class TierKind(Enum):
    """Viewer tier; decides whether the target is a cap or a minimum"""
    GUEST = "guest"
    FREE = "free"
    PREMIUM = "premium"


class SentinelType(Enum):
    LOADING_MORE = "loading-more"
    LIMIT_REACHED = "limit-reached"


@dataclass
class ContentItem:
    """A content card as read from the document store. Read-only to the engine."""
    id: str
    source_id: Optional[str]
    title: Optional[str]
    activity: str = ""
    category: str = ""
    price: str = ""
    location: str = ""
    record: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], fallback_index: int = 0) -> "ContentItem":
        """
        Build an item from a raw store record.

        The id comes from the first populated field in ID_FIELDS; records
        without one get a positional fallback id and keep source_id=None so
        the validity check can still reject them.
        """
        source_id = None
        for name in ID_FIELDS:
            value = record.get(name)
            if value is not None and str(value) != "":
                source_id = str(value)
                break

        title = None
        for name in TEXT_FIELDS:
            value = record.get(name)
            if value:
                title = str(value)
                break

        return cls(
            id=source_id if source_id is not None else f"item-{fallback_index}",
            source_id=source_id,
            title=title,
            activity=str(record.get("activity") or ""),
            category=str(record.get("category") or ""),
            price=str(record.get("price") or "").strip(),
            location=str(record.get("location") or ""),
            record=dict(record),
        )


@dataclass(frozen=True)
class Sentinel:
    """Non-content marker kept in the feed to signal loading or exhaustion"""
    type: SentinelType

    @property
    def id(self) -> str:
        return self.type.value


LOADING_MORE = Sentinel(SentinelType.LOADING_MORE)
LIMIT_REACHED = Sentinel(SentinelType.LIMIT_REACHED)

FeedEntry = Union[ContentItem, Sentinel]


def is_sentinel(entry: Any) -> bool:
    return isinstance(entry, Sentinel)


@dataclass(frozen=True)
class FilterSpec:
    """User filter selection, split into the quick and advanced buckets."""
    quick: Tuple[str, ...] = ()
    advanced: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "FilterSpec":
        data = data or {}
        quick = data.get("quick", data.get("Quick Filters")) or []
        advanced = data.get("advanced", data.get("Advanced Filters")) or []
        return cls(quick=tuple(quick), advanced=tuple(advanced))

    @property
    def labels(self) -> List[str]:
        """All selected labels, quick bucket first, in selection order"""
        return list(self.quick) + list(self.advanced)

    @property
    def is_empty(self) -> bool:
        return not self.quick and not self.advanced

    def with_advanced(self, label: str) -> "FilterSpec":
        if label in self.advanced:
            return self
        return FilterSpec(quick=self.quick, advanced=self.advanced + (label,))

    def signature(self) -> str:
        """Stable string form used in cache and attempt keys"""
        return json.dumps(
            {"advanced": list(self.advanced), "quick": list(self.quick)},
            separators=(",", ":"),
        )


@dataclass(frozen=True)
class Target:
    """
    Population target for a feed.

    For premium the bound is a minimum desired pool size (the deck loops);
    for guest and free it is the hard maximum delivered count.
    """
    tier: TierKind
    bound: int

    @property
    def is_unlimited(self) -> bool:
        return self.tier == TierKind.PREMIUM


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lon: float

    @classmethod
    def from_any(cls, value: Any) -> Optional["Coordinates"]:
        """Accept {lat, lon}, {latitude, longitude} or an existing instance."""
        if value is None:
            return None
        if isinstance(value, Coordinates):
            return value
        if isinstance(value, Mapping):
            lat = value.get("lat", value.get("latitude"))
            lon = value.get("lon", value.get("longitude"))
            try:
                return cls(float(lat), float(lon))
            except (TypeError, ValueError):
                return None
        return None
