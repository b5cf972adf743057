"""
Runtime settings for the deck feed engine, read from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from deckfeed.models.content import FeedType, Target, TierKind


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class DeckSettings:
    """Tunables shared across the engine"""
    # Capped tiers: hard maximum delivered count
    guest_main_limit: int = 5
    guest_restaurant_limit: int = 5
    free_main_limit: int = 20
    free_main_filtered_limit: int = 10
    free_restaurant_limit: int = 10

    # Premium: minimum desired pool size
    premium_main_min: int = 40
    premium_main_filtered_min: int = 15
    premium_restaurant_min: int = 20

    batch_size: int = 5

    # Ensurer timing (seconds)
    refresh_interval: float = 3.0
    max_backoff: float = 24.0
    attempt_ttl: float = 600.0
    boot_debounce: float = 0.25
    reread_schedule: Tuple[float, ...] = (0.9, 1.2, 1.6)
    max_refresh_ticks: int = 10
    max_ticks_premium_filtered: int = 3
    stable_tick_limit: int = 4

    # Store query shape
    max_fetch_per_query: int = 200
    region_in_limit: int = 10
    max_disjunction: int = 30
    sparse_threshold: int = 5
    secondary_fallback_count: int = 6

    # Nearby lookup
    nearby_cache_seconds: float = 12 * 60 * 60
    nearby_radius_meters: int = 1000

    # Presentation loop
    prefetch_window: int = 4
    max_buffer: int = 220
    trim_to: int = 160
    render_key_ceiling: int = 2000

    # Endpoints and paths
    store_url: str = "http://localhost:8080/store"
    generation_url: str = "http://localhost:8080/generate"
    nearby_url: str = "http://localhost:8080/nearby"
    http_timeout: float = 30.0
    cache_db_path: str = "data/deck_cache.db"
    timezone: str = "America/New_York"
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_json: bool = False
    enable_load_metrics: bool = True

    def compute_target(self, tier: TierKind, feed_type: FeedType, is_filtered: bool) -> Target:
        """Population target for a tier on a feed."""
        if tier == TierKind.PREMIUM:
            if feed_type == FeedType.MAIN:
                bound = self.premium_main_filtered_min if is_filtered else self.premium_main_min
            else:
                bound = self.premium_restaurant_min
            return Target(tier=tier, bound=bound)
        if tier == TierKind.GUEST:
            bound = self.guest_main_limit if feed_type == FeedType.MAIN else self.guest_restaurant_limit
            return Target(tier=tier, bound=bound)
        if feed_type == FeedType.MAIN:
            bound = self.free_main_filtered_limit if is_filtered else self.free_main_limit
        else:
            bound = self.free_restaurant_limit
        return Target(tier=tier, bound=bound)


def load_settings(env_file: Optional[str] = None) -> DeckSettings:
    """Load settings from environment (and an optional .env file)"""
    load_dotenv(env_file)
    return DeckSettings(
        batch_size=_int_env('DECK_BATCH_SIZE', 5),
        refresh_interval=_float_env('DECK_REFRESH_INTERVAL', 3.0),
        max_backoff=_float_env('DECK_MAX_BACKOFF', 24.0),
        attempt_ttl=_float_env('DECK_ATTEMPT_TTL', 600.0),
        boot_debounce=_float_env('DECK_BOOT_DEBOUNCE', 0.25),
        max_refresh_ticks=_int_env('DECK_MAX_REFRESH_TICKS', 10),
        nearby_cache_seconds=_float_env('DECK_NEARBY_CACHE_SECONDS', 12 * 60 * 60),
        store_url=os.getenv('DECK_STORE_URL', 'http://localhost:8080/store'),
        generation_url=os.getenv('DECK_GENERATION_URL', 'http://localhost:8080/generate'),
        nearby_url=os.getenv('DECK_NEARBY_URL', 'http://localhost:8080/nearby'),
        http_timeout=_float_env('DECK_HTTP_TIMEOUT', 30.0),
        cache_db_path=os.getenv('DECK_CACHE_DB', 'data/deck_cache.db'),
        timezone=os.getenv('DECK_TIMEZONE', 'America/New_York'),
        log_dir=os.getenv('LOG_DIR', 'logs'),
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
        log_json=(os.getenv('LOG_JSON', 'false').lower() == 'true'),
        enable_load_metrics=(os.getenv('DECK_LOAD_METRICS', 'true').lower() == 'true'),
    )
