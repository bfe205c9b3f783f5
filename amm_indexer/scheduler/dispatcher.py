from celery import chain, shared_task
from redis import Redis
from redlock import Redlock
import os

from amm_indexer.sources.amm_pipeline.ingestion.schedule_ingest import backfill_events, discover_pairs
import logging
log = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

# only ONE resync may be dispatched at a time
LOCKER = Redlock([Redis.from_url(REDIS_URL)])

GLOBAL_LOCK_MS = 5 * 60 * 1000
RESYNC_HOURS_AGO = 1


@shared_task(name="dispatch_resync", queue="dispatch", bind=True)
def dispatch_resync(self):
    log.info("🔄  Starting resync dispatcher…")

    lock = LOCKER.lock("amm_resync_lock", GLOBAL_LOCK_MS)
    if not lock:
        log.info("🔒 Another dispatcher is running; skipping.")
        return

    try:
        # pairs first so the event backfill watches every known pair
        result = chain(
            discover_pairs.si(),
            backfill_events.si(hours_ago=RESYNC_HOURS_AGO),
        ).apply_async()
        log.info(f"🚀 Queued pair discovery + {RESYNC_HOURS_AGO}h backfill ({result.id})")
    finally:
        LOCKER.unlock(lock)
