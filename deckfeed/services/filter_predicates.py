"""
Translate a filter selection into one store-queryable predicate.

The store accepts a region clause plus at most one of activity membership,
category equality or price membership. Everything else in the selection is
applied client-side after the fetch, so the store result is always a
superset of what is finally shown.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from deckfeed.models.content import FilterSpec
from deckfeed.services.filter_catalog import FilterCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorePredicate:
    """At most one of the three clauses is set."""
    activity_in: Tuple[str, ...] = ()
    category_eq: Optional[str] = None
    price_in: Tuple[str, ...] = ()
    chosen_label: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.activity_in and not self.category_eq and not self.price_in

    def as_dict(self):
        out = {}
        if self.activity_in:
            out['activityIn'] = list(self.activity_in)
        if self.category_eq:
            out['categoryEq'] = self.category_eq
        if self.price_in:
            out['priceIn'] = list(self.price_in)
        return out


def build_store_predicate(
    catalog: FilterCatalog,
    filters: FilterSpec,
    include_secondary: bool = False
) -> StorePredicate:
    """
    Pick the single best clause for the store.

    Order: the highest-priority activity-group label, then the first
    category label, then the budget price group. When nothing applies and
    secondary activities are wanted, bias to the default dinner-like set.
    """
    selected = filters.labels

    activity_labels = [
        label for label in selected
        if catalog.rule(label) is not None and catalog.rule(label).activities
    ]
    if activity_labels:
        # sorted() is stable, so equal priorities keep selection order
        chosen = sorted(activity_labels, key=lambda label: -catalog.priority(label))[0]
        return StorePredicate(activity_in=catalog.rule(chosen).activities, chosen_label=chosen)

    for label in selected:
        rule = catalog.rule(label)
        if rule is not None and rule.category:
            return StorePredicate(category_eq=rule.category, chosen_label=label)

    for label in selected:
        rule = catalog.rule(label)
        if rule is not None and rule.price:
            return StorePredicate(price_in=catalog.price_primary, chosen_label=label)

    if include_secondary:
        default = catalog.rule(catalog.secondary_default_label)
        if default is not None:
            return StorePredicate(activity_in=default.activities, chosen_label=default.label)

    return StorePredicate()


def widen_price(catalog: FilterCatalog, predicate: StorePredicate) -> StorePredicate:
    """Swap the tight price group for the wide one; other predicates are returned as-is."""
    if predicate.price_in and len(predicate.price_in) == len(catalog.price_primary):
        return replace(predicate, price_in=catalog.price_wide)
    return predicate


def reduce_to_single_label(catalog: FilterCatalog, filters: FilterSpec) -> FilterSpec:
    """Keep only the single highest-priority label, in the bucket it came from."""
    best = catalog.single_dominant_label(filters)
    if best is None:
        return FilterSpec()
    if best in filters.quick:
        return FilterSpec(quick=(best,))
    return FilterSpec(advanced=(best,))


def region_batch_size(
    predicate: StorePredicate,
    max_disjunction: int = 30,
    in_limit: int = 10
) -> int:
    """
    Regions per query so that regions x activities x prices stays within
    the store's disjunction ceiling. Category equality does not count.
    """
    act_n = min(len(predicate.activity_in), in_limit) if predicate.activity_in else 1
    price_n = min(len(predicate.price_in), in_limit) if predicate.price_in else 1
    denom = max(1, act_n * price_n)
    return min(in_limit, max(1, max_disjunction // denom))
