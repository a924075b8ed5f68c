import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .listing_cache import ListingCache
from .scanner import ScanFailure

logger = logging.getLogger(__name__)

JOB_ID = "refresh_listing"


def warm_cache(listing_cache: ListingCache) -> None:
    try:
        snapshot = listing_cache.force_refresh()
        logger.debug("[Warmer] Listing warmed: %d images", len(snapshot.entries))
    except ScanFailure as exc:
        logger.error("[Warmer] Listing refresh failed: %s", exc)


def start_cache_warmer(listing_cache: ListingCache, interval_seconds: int) -> Optional[BackgroundScheduler]:
    """Refresh the listing every `interval_seconds` in a background thread (0 disables)."""
    if interval_seconds <= 0:
        logger.info("[Warmer] Background cache warming disabled")
        return None

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        warm_cache,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[listing_cache],
        id=JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info("[Warmer] Refreshing listing every %ss", interval_seconds)
    return scheduler
