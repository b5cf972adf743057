"""
Supply ensurer: keeps one feed populated up to its target.

Stages run in order and stop as soon as the target is met:

  CHECKING_CACHE      provisional deck from today's cached id list
  CHECKING_STORE      primary-region store read (plus free-tier widening)
  TRIGGERING_REMOTE   guarded generation trigger
  WAITING_POST_TRIGGER short re-read schedule after a trigger
  POLLING             backoff re-reads until satisfied, stable or exhausted

All timing goes through the injected Scheduler, so every stop condition
and transition can be exercised without real timers.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from deckfeed.models.content import ContentItem, Target
from deckfeed.pipeline.scheduler import Scheduler
from deckfeed.services.attempt_guard import AttemptGuard
from deckfeed.services.remote_generation import GenerationRequest
from deckfeed.services.session_cache import SessionCache
from deckfeed.services.store_loader import FeedPool
from deckfeed.settings import DeckSettings
from deckfeed.utils.error_monitoring import ErrorHandler
from deckfeed.utils.identity import ids_hash
from deckfeed.utils.time_keys import Stopwatch


class EnsureState(Enum):
    CHECKING_CACHE = "checking_cache"
    CHECKING_STORE = "checking_store"
    TRIGGERING_REMOTE = "triggering_remote"
    WAITING_POST_TRIGGER = "waiting_post_trigger"
    POLLING = "polling"
    SATISFIED = "satisfied"
    STABLE = "stable"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"


TERMINAL_STATES = {
    EnsureState.SATISFIED,
    EnsureState.STABLE,
    EnsureState.EXHAUSTED,
    EnsureState.SUPERSEDED,
}


@dataclass
class EnsureOutcome:
    """How an ensure run ended and what it did on the way."""
    state: EnsureState = EnsureState.CHECKING_CACHE
    stage: Optional[EnsureState] = None
    ticks: int = 0
    triggers: int = 0
    provisional_count: int = 0
    backoff_delays: List[float] = field(default_factory=list)
    transitions: List[EnsureState] = field(default_factory=list)


class SupplyEnsurer:
    def __init__(
        self,
        pool: FeedPool,
        target: Target,
        is_filtered: bool,
        deliver: Callable[[List[ContentItem]], Any],
        generator: Any,
        request_factory: Callable[[], GenerationRequest],
        attempt_guard: AttemptGuard,
        attempt_key: str,
        scheduler: Optional[Scheduler] = None,
        settings: Optional[DeckSettings] = None,
        session_cache: Optional[SessionCache] = None,
        cache_key: Optional[str] = None,
        cache_usable: bool = False,
        boot_widening: bool = False,
        is_current: Callable[[], bool] = lambda: True,
        error_handler: Optional[ErrorHandler] = None,
        stopwatch: Optional[Stopwatch] = None
    ):
        self.pool = pool
        self.target = target
        self.is_filtered = is_filtered
        self.deliver = deliver
        self.generator = generator
        self.request_factory = request_factory
        self.attempt_guard = attempt_guard
        self.attempt_key = attempt_key
        self.scheduler = scheduler or Scheduler()
        self.settings = settings or DeckSettings()
        self.session_cache = session_cache
        self.cache_key = cache_key
        self.cache_usable = cache_usable and session_cache is not None and cache_key is not None
        self.boot_widening = boot_widening
        self.is_current = is_current
        self.error_handler = error_handler or ErrorHandler()
        self.stopwatch = stopwatch
        self.logger = logging.getLogger(__name__)

        self.outcome = EnsureOutcome()
        self._cache_written = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(self, state: EnsureState) -> None:
        self.outcome.state = state
        self.outcome.transitions.append(state)
        self.logger.debug(f"ensure[{self.attempt_key}] → {state.value}")

    def _finish(self, state: EnsureState, stage: Optional[EnsureState] = None) -> EnsureOutcome:
        self.outcome.stage = stage
        self._enter(state)
        if self.stopwatch:
            self.stopwatch.end(
                f"ensure {state.value}",
                pool=self.pool.total_count, ticks=self.outcome.ticks, triggers=self.outcome.triggers
            )
        return self.outcome

    def _mark(self, name: str, **extra) -> None:
        if self.stopwatch:
            self.stopwatch.mark(name, **extra)

    @property
    def _satisfied(self) -> bool:
        return self.pool.total_count >= self.target.bound

    def _deliver(self, items: List[ContentItem]) -> None:
        if items and self.is_current():
            self.deliver(list(items))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _check_cache(self) -> None:
        self._enter(EnsureState.CHECKING_CACHE)
        if not self.cache_usable:
            return
        ids = await self.session_cache.load_ids(self.cache_key)
        if not ids:
            return
        self._mark("cache ids loaded", count=len(ids))
        items = await self.pool.loader.load_by_ids(ids)
        if items:
            self.outcome.provisional_count = len(items)
            self._deliver(items)
            self._mark("provisional render", count=len(items))

    async def _check_store(self) -> None:
        self._enter(EnsureState.CHECKING_STORE)
        await self.pool.load(preserve_on_empty=True, primary_only=True)
        self._mark("store checked", total=self.pool.total_count)

        if self.boot_widening and not self._satisfied:
            await self.pool.widen_to_nearby()
            self._mark("boot widened", total=self.pool.total_count)

        session = self.pool.session_pool()
        self._deliver(session)

        if self.cache_usable and not self._cache_written and session:
            await self.session_cache.save_ids(self.cache_key, [it.id for it in session])
            self._cache_written = True
            self._mark("cache ids saved", count=len(session))

    async def _maybe_trigger(self) -> Optional[str]:
        """Fire one generation request unless the attempt guard blocks it."""
        if not self.attempt_guard.try_acquire(self.attempt_key):
            self.logger.debug("Generation trigger skipped: recent attempt within TTL")
            return None

        request = self.request_factory()
        self.outcome.triggers += 1
        self.logger.info(
            f"🚨 Generation trigger: {'zero' if self.pool.total_count == 0 else 'below target'} "
            f"({self.pool.total_count}/{self.target.bound})"
        )
        try:
            return await self.generator.request_generation(request)
        except Exception as e:
            self.error_handler.handle_error(
                e, 'remote_generation', 'request_generation',
                {'key': self.attempt_key, 'count': self.pool.total_count}
            )
            return None

    async def _reload(self) -> List[ContentItem]:
        await self.pool.load(preserve_on_empty=True, primary_only=True)
        return self.pool.session_pool()

    async def _wait_post_trigger(self, trigger_id: str) -> None:
        self._enter(EnsureState.WAITING_POST_TRIGGER)
        schedule = self.settings.reread_schedule
        items = await self.generator.poll_for_result(
            trigger_id,
            self._reload,
            max_attempts=len(schedule),
            backoff_schedule=schedule,
            sleep=self.scheduler.sleep,
        )
        if items:
            self._deliver(items)
            self._mark("post-trigger recheck", total=self.pool.total_count)

    async def _poll(self) -> EnsureOutcome:
        self._enter(EnsureState.POLLING)
        settings = self.settings
        backoff = settings.refresh_interval
        last_hash = ids_hash(self.pool.session_pool())
        unchanged_streak = 0
        ticks = 0

        while True:
            self.outcome.backoff_delays.append(backoff)
            await self.scheduler.sleep(backoff)
            if not self.is_current():
                return self._finish(EnsureState.SUPERSEDED)

            ticks += 1
            self.outcome.ticks = ticks
            session = await self._reload()
            if not self.is_current():
                return self._finish(EnsureState.SUPERSEDED)

            incoming = ids_hash(session)
            changed = incoming != last_hash
            if changed:
                self._deliver(session)
            self._mark("refresh tick", ticks=ticks, total=self.pool.total_count, session=len(session))

            if self._satisfied:
                return self._finish(EnsureState.SATISFIED, EnsureState.POLLING)
            if (self.target.is_unlimited and self.is_filtered
                    and ticks >= settings.max_ticks_premium_filtered):
                return self._finish(EnsureState.STABLE, EnsureState.POLLING)
            if not changed:
                unchanged_streak += 1
                if unchanged_streak >= settings.stable_tick_limit:
                    return self._finish(EnsureState.STABLE, EnsureState.POLLING)
            if ticks >= settings.max_refresh_ticks:
                return self._finish(EnsureState.EXHAUSTED, EnsureState.POLLING)

            if not changed:
                # no new data: retry the trigger (a no-op while the guard holds)
                await self._maybe_trigger()
                backoff = min(backoff * 2, settings.max_backoff)
            else:
                unchanged_streak = 0
                backoff = settings.refresh_interval
                last_hash = incoming

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> EnsureOutcome:
        await self._check_cache()
        if not self.is_current():
            return self._finish(EnsureState.SUPERSEDED)

        await self._check_store()
        if not self.is_current():
            return self._finish(EnsureState.SUPERSEDED)
        if self._satisfied:
            return self._finish(EnsureState.SATISFIED, EnsureState.CHECKING_STORE)

        self._enter(EnsureState.TRIGGERING_REMOTE)
        trigger_id = await self._maybe_trigger()
        if trigger_id is not None:
            await self._wait_post_trigger(trigger_id)
            if not self.is_current():
                return self._finish(EnsureState.SUPERSEDED)
            if self._satisfied:
                return self._finish(EnsureState.SATISFIED, EnsureState.WAITING_POST_TRIGGER)

        return await self._poll()
