# Celery wrappers around the same job functions the CLI runs.
from celery import shared_task

from amm_indexer.sources.amm_pipeline.ingestion.cli_ingest import (
    backfill_events_job,
    discover_pairs_job,
    snapshots_job,
)
import logging
log = logging.getLogger(__name__)


@shared_task(name="discover_pairs", queue="orchestrate")
def discover_pairs() -> dict:
    log.info("🔄  Starting scheduled pair discovery")
    return discover_pairs_job(source="celery", worker=True)


@shared_task(name="backfill_events", queue="orchestrate")
def backfill_events(*, hours_ago: float = 1, chunk_size: int | None = None) -> dict:
    """Re-index the trailing window; overlapping runs are harmless."""
    log.info(f"🔄  Starting scheduled AMM backfill for the last {hours_ago}h")
    kwargs = {"chunk_size": chunk_size} if chunk_size else {}
    return backfill_events_job(hours_ago=hours_ago, source="celery", worker=True, **kwargs)


@shared_task(name="compute_snapshots", queue="aggregate")
def compute_snapshots() -> dict:
    log.info("📸  Computing hourly pair snapshots")
    return snapshots_job(source="celery", worker=True)
