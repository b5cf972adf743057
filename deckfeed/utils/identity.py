"""
Identity helpers: canonical id extraction, validity, de-duplication.
"""

from typing import Any, Iterable, List, Mapping, Optional

from deckfeed.models.content import ID_FIELDS, ContentItem, Sentinel


def extract_id(record: Mapping[str, Any]) -> Optional[str]:
    """Return the first populated id field of a raw record, or None."""
    if not isinstance(record, Mapping):
        return None
    for name in ID_FIELDS:
        value = record.get(name)
        if value is not None and str(value) != "":
            return str(value)
    return None


def normalize_id(entry: Any, fallback_index: int = 0) -> str:
    """Single string id for any feed entry, raw record or item."""
    if isinstance(entry, (ContentItem, Sentinel)):
        return entry.id
    found = extract_id(entry) if isinstance(entry, Mapping) else None
    return found if found is not None else f"item-{fallback_index}"


def is_valid_item(entry: Any) -> bool:
    """True for content items that carry a real id and some display text."""
    if not isinstance(entry, ContentItem):
        return False
    return bool(entry.source_id) and bool(entry.title)


def attach_stable_ids(records: Iterable[Mapping[str, Any]]) -> List[ContentItem]:
    """Convert raw records to items, assigning positional ids where missing."""
    items = []
    for index, record in enumerate(records or []):
        if not isinstance(record, Mapping):
            continue
        items.append(ContentItem.from_record(record, fallback_index=index))
    return items


def dedupe_by_id(entries: Iterable[Any]) -> List[Any]:
    """
    Drop later entries whose id was already seen, keeping first-seen order.

    Sentinels pass through untouched and keep their relative position.
    """
    seen = set()
    out = []
    for index, entry in enumerate(entries or []):
        if entry is None:
            continue
        if isinstance(entry, Sentinel):
            out.append(entry)
            continue
        entry_id = normalize_id(entry, index)
        if entry_id in seen:
            continue
        seen.add(entry_id)
        out.append(entry)
    return out


def clean_items(entries: Iterable[Any]) -> List[ContentItem]:
    """Valid-only, de-duplicated content items."""
    return dedupe_by_id([e for e in entries or [] if is_valid_item(e)])


def ids_hash(items: Iterable[Any]) -> str:
    """Order-insensitive content hash built from the sorted id list."""
    ids = sorted(
        normalize_id(item) for item in items or []
        if isinstance(item, ContentItem) and item.source_id
    )
    return "|".join(ids)
