#!/usr/bin/env python3
import sys
import asyncio
import logging
import random
from typing import List, Optional

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from deckfeed.models.content import Coordinates, FeedType, FilterSpec, TierKind
from deckfeed.pipeline.deck_loader import DeckContext, DeckInputs, DeckLoader
from deckfeed.pipeline.presentation_loop import PresentationLoop
from deckfeed.services.attempt_guard import AttemptGuard
from deckfeed.services.document_store import HttpDocumentStore
from deckfeed.services.filter_catalog import FilterCatalog, load_filter_catalog
from deckfeed.services.kv_store import KeyValueStore
from deckfeed.services.location_service import LocationExpander, NearbyRegionClient
from deckfeed.services.remote_generation import RemoteGenerationClient
from deckfeed.services.session_cache import SessionCache
from deckfeed.services.store_loader import StoreLoader
from deckfeed.settings import DeckSettings, load_settings
from deckfeed.utils.error_monitoring import ErrorHandler
from deckfeed.utils.logging_config import setup_logging


def build_filters(catalog: FilterCatalog, labels: List[str]) -> FilterSpec:
    """Sort --filter labels into their catalog buckets; unknown labels go to quick."""
    quick: List[str] = []
    advanced: List[str] = []
    for label in labels or []:
        rule = catalog.rule(label)
        if rule is not None and rule.bucket == 'advanced':
            advanced.append(label)
        else:
            quick.append(label)
    return FilterSpec(quick=tuple(quick), advanced=tuple(advanced))


async def handle_cache_management(args, settings: DeckSettings) -> None:
    """Handle cache management commands"""
    kv = KeyValueStore(settings.cache_db_path)
    await kv.initialize()
    cache = SessionCache(kv)

    if args.cache_keys:
        keys = await cache.list_keys()
        print(f"📊 {len(keys)} deck cache entries")
        for key in keys:
            print(f"  {key}")

    if args.purge_cache:
        from deckfeed.utils.time_keys import today_ymd
        removed = await cache.purge_stale(today_ymd(settings.timezone))
        print(f"✅ Purged {removed} stale deck caches")


async def run_feed(args, settings: DeckSettings) -> int:
    catalog = load_filter_catalog()
    error_handler = ErrorHandler()

    kv = KeyValueStore(settings.cache_db_path)
    await kv.initialize()

    store = HttpDocumentStore(settings.store_url, timeout=settings.http_timeout,
                              in_limit=settings.region_in_limit)
    generator = RemoteGenerationClient(settings.generation_url, timeout=settings.http_timeout)
    nearby_client = NearbyRegionClient(settings.nearby_url, radius_meters=settings.nearby_radius_meters,
                                       timeout=settings.http_timeout)

    context = DeckContext(
        loader=StoreLoader(store, catalog, settings, error_handler, random.Random(args.seed)),
        generator=generator,
        expander=LocationExpander(nearby_client, kv, settings.nearby_cache_seconds, error_handler),
        session_cache=SessionCache(kv, error_handler),
        attempt_guard=AttemptGuard(ttl=settings.attempt_ttl),
        catalog=catalog,
        settings=settings,
        error_handler=error_handler,
    )

    coords: Optional[Coordinates] = None
    if args.lat is not None and args.lon is not None:
        coords = Coordinates(args.lat, args.lon)

    inputs = DeckInputs(
        feed_type=FeedType(args.feed),
        region=args.region,
        coordinates=coords,
        filters=build_filters(catalog, args.filter),
        tier=TierKind(args.tier),
        user_id=args.user,
        include_secondary=args.include_secondary,
    )

    loader = DeckLoader(context)
    try:
        outcome = await loader.boot(inputs)
    finally:
        for client in (store, generator, nearby_client):
            await client.close_session()

    view = PresentationLoop(inputs.tier, settings, random.Random(args.seed), load_more=loader.load_more)
    while loader.load_more():
        pass
    view.update(loader.feed)

    state = outcome.state.value if outcome else 'skipped'
    print(f"🃏 {inputs.feed_type.value} feed for {inputs.region or 'unknown'} "
          f"({inputs.tier.value}) → {state}, {loader.total_available_now} available")
    for entry in view.render():
        if entry.kind == 'card':
            print(f"  {entry.key:<40} {entry.entry.title or entry.entry.id}")
        else:
            print(f"  {entry.key:<40} [{entry.kind}]")

    stats = error_handler.get_error_statistics()
    if stats.get('total_errors'):
        print(f"⚠️ {stats['total_errors']} errors recorded during the load")
    return 0 if outcome is None or view.base else 1


async def main():
    """Main entry point"""
    import argparse
    parser = argparse.ArgumentParser(description="Deck feed loader")
    parser.add_argument('--region', help='Primary region, e.g. "Austin, TX, United States"')
    parser.add_argument('--lat', type=float, help='Latitude for nearby-region expansion')
    parser.add_argument('--lon', type=float, help='Longitude for nearby-region expansion')
    parser.add_argument('--tier', choices=[t.value for t in TierKind], default=TierKind.FREE.value)
    parser.add_argument('--feed', choices=[f.value for f in FeedType], default=FeedType.MAIN.value)
    parser.add_argument('--filter', action='append', default=[], help='Filter label (repeatable)')
    parser.add_argument('--include-secondary', action='store_true', help='Scope the main feed to secondary items')
    parser.add_argument('--user', default='guest', help='User id for cache keys and generation requests')
    parser.add_argument('--seed', type=int, help='Shuffle seed for reproducible output')
    parser.add_argument('--env-file', help='Optional .env file to load settings from')

    # Cache management commands
    parser.add_argument('--cache-keys', action='store_true', help='List deck cache keys')
    parser.add_argument('--purge-cache', action='store_true', help='Remove deck caches from earlier days')
    args = parser.parse_args()

    settings = load_settings(args.env_file)
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir,
                  enable_structured_logging=settings.log_json)

    try:
        if args.cache_keys or args.purge_cache:
            await handle_cache_management(args, settings)
            return
        code = await run_feed(args, settings)
        if code:
            sys.exit(code)
    except KeyboardInterrupt:
        print("\n⚠️ Shutting down gracefully...")
    except Exception as e:  # noqa: BLE001
        print(f"❌ Fatal error: {e}")
        logging.exception("Fatal error in main")
        sys.exit(1)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
