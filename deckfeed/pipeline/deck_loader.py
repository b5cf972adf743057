"""
Deck loader: boots one feed and keeps its delivered view current.

A boot resolves the effective filters and target for the current inputs,
starts the nearby-region lookup in the background and runs the supply
ensurer. Boots are keyed by (feed, region, filter signature, tier); a new
key supersedes the running boot through a monotonically increasing boot
token, and rapid input changes are coalesced by a short debounce.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from deckfeed.models.content import (
    ContentItem,
    Coordinates,
    FeedEntry,
    FeedType,
    FilterSpec,
    Target,
    TierKind,
)
from deckfeed.pipeline.batch_delivery import BatchDeliveryController
from deckfeed.pipeline.scheduler import DelayedTask, Scheduler
from deckfeed.pipeline.supply_ensurer import EnsureOutcome, EnsureState, SupplyEnsurer
from deckfeed.services.attempt_guard import AttemptGuard, attempt_key
from deckfeed.services.filter_catalog import FilterCatalog, load_filter_catalog
from deckfeed.services.filter_predicates import reduce_to_single_label
from deckfeed.services.location_service import LocationExpander
from deckfeed.services.remote_generation import GenerationRequest, build_query_string
from deckfeed.services.session_cache import SessionCache, deck_cache_key, is_cache_usable
from deckfeed.services.store_loader import FeedPool, StoreLoader
from deckfeed.settings import DeckSettings
from deckfeed.utils.error_monitoring import ErrorHandler
from deckfeed.utils.regions import canonical_region
from deckfeed.utils.time_keys import Stopwatch, today_ymd


@dataclass
class DeckContext:
    """
    Shared collaborators for every feed of one engine instance.

    The attempt guard and session cache are the only state shared across
    boots; holding them here keeps separate engines (and tests) isolated.
    """
    loader: StoreLoader
    generator: object
    expander: LocationExpander
    session_cache: SessionCache
    attempt_guard: AttemptGuard
    catalog: FilterCatalog = field(default_factory=load_filter_catalog)
    settings: DeckSettings = field(default_factory=DeckSettings)
    scheduler: Scheduler = field(default_factory=Scheduler)
    error_handler: ErrorHandler = field(default_factory=ErrorHandler)


@dataclass
class DeckInputs:
    """What the viewer currently asks for. ``tier=None`` means not resolved yet."""
    feed_type: FeedType = FeedType.MAIN
    region: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    filters: FilterSpec = field(default_factory=FilterSpec)
    tier: Optional[TierKind] = None
    user_id: str = "guest"
    include_secondary: bool = False


@dataclass
class BootPlan:
    """Everything derived from the inputs for one boot."""
    region: str
    effective_filters: FilterSpec
    reduced_filters: FilterSpec
    is_filtered: bool
    include_secondary: bool
    target: Target
    boot_key: str
    today: str


class DeckLoader:
    def __init__(self, context: DeckContext):
        self.context = context
        self.settings = context.settings
        self.logger = logging.getLogger(__name__)

        self.boot_token = 0
        self.last_boot_key = ""
        self.delivery: Optional[BatchDeliveryController] = None
        self.plan: Optional[BootPlan] = None
        self.last_outcome: Optional[EnsureOutcome] = None

        self.loading = True
        self.reloading = False

        self._pending: Optional[DelayedTask] = None
        self._fired: List[DelayedTask] = []

    # ------------------------------------------------------------------
    # Inputs → plan
    # ------------------------------------------------------------------

    def plan_boot(self, inputs: DeckInputs) -> BootPlan:
        catalog = self.context.catalog
        region = canonical_region(inputs.region)

        if inputs.feed_type == FeedType.RESTAURANT:
            # the secondary feed always runs on its default label
            effective = FilterSpec().with_advanced(catalog.secondary_default_label)
            is_filtered = True
            include_secondary = True
        else:
            effective = inputs.filters
            is_filtered = inputs.tier != TierKind.GUEST and not effective.is_empty
            include_secondary = inputs.include_secondary

        target = self.settings.compute_target(inputs.tier, inputs.feed_type, is_filtered)
        reduced = catalog.reduce_filters_by_priority(effective)
        boot_key = f"{inputs.feed_type.value}|{region}|{effective.signature()}|{inputs.tier.value}"

        return BootPlan(
            region=region,
            effective_filters=effective,
            reduced_filters=reduced,
            is_filtered=is_filtered,
            include_secondary=include_secondary,
            target=target,
            boot_key=boot_key,
            today=today_ymd(self.settings.timezone),
        )

    # ------------------------------------------------------------------
    # Boot
    # ------------------------------------------------------------------

    def request_boot(self, inputs: DeckInputs) -> None:
        """
        Debounced boot: only the last request inside the window runs.

        A boot whose debounce already elapsed keeps running; a newer boot
        supersedes it through the boot token.
        """
        if inputs.tier is None:
            return
        if self._pending is not None:
            if self._pending.fired:
                self._fired.append(self._pending)
            else:
                self._pending.cancel()
        self._fired = [handle for handle in self._fired if not handle.done()]
        self._pending = self.context.scheduler.call_later(
            self.settings.boot_debounce, lambda: self.boot(inputs)
        )

    async def boot(self, inputs: DeckInputs) -> Optional[EnsureOutcome]:
        """
        Run one boot for ``inputs``.

        Returns None when the tier is unresolved or the boot key has not
        changed; otherwise the ensurer outcome.
        """
        if inputs.tier is None:
            self.logger.debug("Tier not resolved yet; boot gated")
            return None

        plan = self.plan_boot(inputs)
        if plan.boot_key == self.last_boot_key:
            return None
        self.last_boot_key = plan.boot_key
        self.boot_token += 1
        token = self.boot_token

        label = f"{inputs.feed_type.value}:{inputs.tier.value}:{'filtered' if plan.is_filtered else 'unfiltered'}"
        stopwatch = Stopwatch(label, enabled=self.settings.enable_load_metrics, logger=self.logger)

        had_items = bool(self.delivery and self.delivery.items)
        self.reloading = had_items
        self.loading = not had_items
        self.plan = plan
        previous = self.delivery.items if had_items else None
        delivery = BatchDeliveryController(plan.target, self.settings.batch_size, previous=previous)
        self.delivery = delivery

        try:
            return await self._supply(inputs, plan, token, delivery, stopwatch)
        except asyncio.CancelledError:
            if token == self.boot_token:
                # let the same inputs boot again
                self.last_boot_key = ""
                self.loading = False
                self.reloading = False
            raise

    async def _supply(
        self,
        inputs: DeckInputs,
        plan: BootPlan,
        token: int,
        delivery: BatchDeliveryController,
        stopwatch: Stopwatch,
    ) -> EnsureOutcome:
        ctx = self.context
        await ctx.session_cache.purge_stale(plan.today)

        pool = FeedPool(
            ctx.loader,
            plan.region,
            plan.reduced_filters,
            inputs.feed_type,
            plan.target,
            plan.is_filtered,
            include_secondary=plan.include_secondary,
            sparse_threshold=self.settings.sparse_threshold,
        )
        pool.attach_nearby(asyncio.ensure_future(ctx.expander.expand(inputs.coordinates, plan.region)))

        def is_current() -> bool:
            return token == self.boot_token

        def deliver(items: List[ContentItem]) -> None:
            if is_current():
                delivery.accept_pool(items)

        def request_factory() -> GenerationRequest:
            single = reduce_to_single_label(ctx.catalog, plan.reduced_filters)
            return GenerationRequest(
                region=plan.region or None,
                coordinates=inputs.coordinates,
                filters=single,
                feed_type=inputs.feed_type,
                include_secondary=inputs.feed_type == FeedType.RESTAURANT,
                min_count=plan.target.bound,
                user_id=inputs.user_id or "guest",
                query=build_query_string(plan.reduced_filters),
                nearby=pool.nearby,
            )

        signature = plan.reduced_filters.signature()
        ensurer = SupplyEnsurer(
            pool=pool,
            target=plan.target,
            is_filtered=plan.is_filtered,
            deliver=deliver,
            generator=ctx.generator,
            request_factory=request_factory,
            attempt_guard=ctx.attempt_guard,
            attempt_key=attempt_key(inputs.feed_type, plan.region, signature, plan.today),
            scheduler=ctx.scheduler,
            settings=self.settings,
            session_cache=ctx.session_cache,
            cache_key=deck_cache_key(inputs.user_id, inputs.feed_type, plan.region, signature, plan.today),
            cache_usable=is_cache_usable(inputs.feed_type, plan.is_filtered),
            boot_widening=(inputs.tier == TierKind.FREE and inputs.feed_type == FeedType.MAIN),
            is_current=is_current,
            error_handler=ctx.error_handler,
            stopwatch=stopwatch,
        )

        outcome = await ensurer.run()
        if is_current():
            if outcome.state in (EnsureState.EXHAUSTED, EnsureState.STABLE) and not delivery.items:
                delivery.mark_exhausted()
            self.last_outcome = outcome
            self.loading = False
            self.reloading = False
        return outcome

    async def wait_idle(self) -> None:
        """Wait for the debounced boot and any earlier boot still running."""
        handles = list(self._fired)
        if self._pending is not None:
            handles.append(self._pending)
        for handle in handles:
            await handle.wait()
        self._fired = [handle for handle in self._fired if not handle.done()]

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    @property
    def feed(self) -> List[FeedEntry]:
        return list(self.delivery.feed) if self.delivery else []

    def load_more(self) -> bool:
        return self.delivery.load_more() if self.delivery else False

    @property
    def total_available_now(self) -> int:
        return len(self.delivery.pool) if self.delivery else 0

    @property
    def is_endless(self) -> bool:
        return bool(self.plan and self.plan.target.is_unlimited)

    @property
    def should_append_limit_reached(self) -> bool:
        if not self.delivery or self.is_endless:
            return False
        return self.delivery.cursor >= len(self.delivery.pool)
