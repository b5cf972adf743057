"""
Filter catalog and priority reduction.

The catalog is static data (config/filters.yaml): every label carries one
client-side rule, a priority, an optional layerable flag and a conflict
set. Reduction turns a multi-select FilterSpec into one dominant label plus
whatever layerable labels can stack with it.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import yaml

from deckfeed.models.content import ContentItem, FeedType, FilterSpec

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)),
    'config',
    'filters.yaml'
)


@dataclass(frozen=True)
class FilterRule:
    """One selectable label and the predicate it stands for."""
    label: str
    bucket: str
    priority: int
    activities: Tuple[str, ...] = ()
    category: Optional[str] = None
    price: Tuple[str, ...] = ()
    layerable: bool = False
    conflicts: FrozenSet[str] = frozenset()

    @property
    def kind(self) -> str:
        if self.activities:
            return 'activity'
        if self.category:
            return 'category'
        if self.price:
            return 'price'
        return 'none'


class FilterCatalog:
    """
    Lookup tables for filter semantics.

    Conflicts are treated symmetrically: if either label lists the other,
    the pair conflicts.
    """

    def __init__(self, data: Mapping[str, Any]):
        self.max_simultaneous = int(data.get('max_simultaneous_filters', 3))
        self.secondary_activities: FrozenSet[str] = frozenset(
            str(a).lower() for a in data.get('secondary_activities') or []
        )
        self.secondary_default_label: str = data.get('secondary_default_label', 'Romantic Dinner')
        self.activity_aliases: Dict[str, str] = dict(data.get('activity_aliases') or {})

        groups = data.get('price_groups') or {}
        self.price_primary: Tuple[str, ...] = tuple(groups.get('primary') or ('Free', '$'))
        self.price_wide: Tuple[str, ...] = tuple(groups.get('wide') or ('Free', '$', '$$'))

        self.rules: Dict[str, FilterRule] = {}
        for label, spec in (data.get('filters') or {}).items():
            spec = spec or {}
            self.rules[label] = FilterRule(
                label=label,
                bucket=spec.get('bucket', 'quick'),
                priority=int(spec.get('priority', 0)),
                activities=tuple(self.canonical_activity(a) for a in spec.get('activities') or []),
                category=(str(spec['category']).lower() if spec.get('category') else None),
                price=tuple(spec.get('price') or ()),
                layerable=bool(spec.get('layerable', False)),
                conflicts=frozenset(spec.get('conflicts') or ()),
            )

        logger.debug(f"Filter catalog loaded with {len(self.rules)} labels")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def rule(self, label: str) -> Optional[FilterRule]:
        return self.rules.get(label)

    def priority(self, label: str) -> int:
        rule = self.rules.get(label)
        return rule.priority if rule else 0

    def is_layerable(self, label: str) -> bool:
        rule = self.rules.get(label)
        return bool(rule and rule.layerable)

    def labels_in_bucket(self, bucket: str) -> List[str]:
        return [label for label, rule in self.rules.items() if rule.bucket == bucket]

    def canonical_activity(self, raw: Any) -> str:
        """Map a stored activity token to its canonical lowercase form."""
        token = str(raw or '')
        return self.activity_aliases.get(token, token).lower()

    def is_secondary_item(self, item: ContentItem) -> bool:
        return str(item.activity or '').lower() in self.secondary_activities

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def is_mutually_conflicting(self, a: str, b: str) -> bool:
        if a == b:
            return False
        rule_a = self.rules.get(a)
        rule_b = self.rules.get(b)
        return bool(
            (rule_a and b in rule_a.conflicts) or
            (rule_b and a in rule_b.conflicts)
        )

    def get_conflicts(self, label: str, existing: Iterable[str]) -> List[str]:
        """Labels from ``existing`` that cannot be combined with ``label``."""
        return [other for other in existing if self.is_mutually_conflicting(label, other)]

    # ------------------------------------------------------------------
    # Reduction
    # ------------------------------------------------------------------

    def reduce_filters_by_priority(self, spec: FilterSpec) -> FilterSpec:
        """
        Reduce a selection to at most one non-layerable label plus layerables.

        The non-layerable with the highest priority wins; ties go to the
        label selected first. Layerables stack unless they conflict with the
        winner or with a layerable kept before them, so the result never
        holds a conflicting pair. Bucket order is preserved.
        """
        selected = spec.labels
        if not selected:
            return FilterSpec()

        chosen = None
        best = float('-inf')
        for label in selected:
            if self.is_layerable(label):
                continue
            score = self.priority(label)
            if score > best:
                best = score
                chosen = label

        keep: List[str] = [chosen] if chosen else []
        for label in selected:
            if not self.is_layerable(label) or label in keep:
                continue
            if self.get_conflicts(label, keep):
                logger.debug(f"Dropping layerable '{label}': conflicts with {self.get_conflicts(label, keep)}")
                continue
            keep.append(label)

        kept = set(keep)
        quick: List[str] = []
        advanced: List[str] = []
        for label in spec.quick:
            if label in kept and label not in quick:
                quick.append(label)
        for label in spec.advanced:
            if label in kept and label not in quick and label not in advanced:
                advanced.append(label)

        return FilterSpec(quick=tuple(quick), advanced=tuple(advanced))

    def single_dominant_label(self, spec: FilterSpec) -> Optional[str]:
        """Highest-priority label of any kind (first selected wins ties)."""
        best = None
        best_score = float('-inf')
        for label in spec.labels:
            score = self.priority(label)
            if score > best_score:
                best_score = score
                best = label
        return best

    # ------------------------------------------------------------------
    # Client-side matching
    # ------------------------------------------------------------------

    def matches(self, item: ContentItem, label: str) -> bool:
        rule = self.rules.get(label)
        if rule is None:
            # Unknown labels never exclude anything
            return True
        if rule.activities:
            return self.canonical_activity(item.activity) in rule.activities
        if rule.category:
            return str(item.category or '').lower() == rule.category
        if rule.price:
            price = str(item.price or '').strip().lower()
            return price in {p.lower() for p in rule.price}
        return True

    def passes_all_filters(self, item: ContentItem, spec: FilterSpec) -> bool:
        return all(self.matches(item, label) for label in spec.labels)

    def apply_local_filters(
        self,
        items: Iterable[ContentItem],
        feed_type: FeedType,
        reduced: FilterSpec,
        include_secondary: bool = False
    ) -> List[ContentItem]:
        """
        Client-side pass over fetched items.

        The main feed drops secondary activities unless they were asked for;
        selected labels apply whenever any are present, and always on the
        secondary feed.
        """
        filtered = list(items or [])

        if feed_type == FeedType.MAIN and not include_secondary:
            filtered = [it for it in filtered if not self.is_secondary_item(it)]

        if feed_type == FeedType.RESTAURANT or not reduced.is_empty:
            filtered = [it for it in filtered if self.passes_all_filters(it, reduced)]

        return filtered


_default_catalog: Optional[FilterCatalog] = None


def load_filter_catalog(path: Optional[str] = None) -> FilterCatalog:
    """Load the catalog from YAML; the default path is read once per process."""
    global _default_catalog
    if path is None and _default_catalog is not None:
        return _default_catalog

    config_path = path or DEFAULT_CATALOG_PATH
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    logger.info(f"Loaded filter catalog from {config_path}")

    catalog = FilterCatalog(data)
    if path is None:
        _default_catalog = catalog
    return catalog
