from dataclasses import asdict, dataclass
from typing import List
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amm_indexer.sources.amm_pipeline.evm.utils.amm_decoder import (
    AmmEvent,
    classify,
    is_expected_origin,
)
from amm_indexer.sources.amm_pipeline.evm.utils.blocks import BlockTimestampResolver
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.upsert.upsert_pairs import (
    apply_sync,
    register_pair,
)
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.upsert.upsert_raw_events import (
    filter_already_processed,
    mark_raw_event,
    store_raw_event,
)
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.upsert.upsert_transactions import (
    append_transaction,
)
from amm_indexer.storage.models.amm_event import EVENT_FAILED, EVENT_PROCESSED
from amm_indexer.utils.errors import EventDecodeError

log = logging.getLogger(__name__)


@dataclass
class ProjectionCounters:
    found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def project_event(db: Session, event: AmmEvent, timestamp: int, factory_address: str) -> bool:
    """Write one classified event; returns whether any row changed."""
    match event.kind:
        case "PairCreated":
            return register_pair(db, event, timestamp, factory_address)
        case "Sync":
            return apply_sync(db, event, timestamp)
        case "Mint" | "Burn" | "Swap":
            return append_transaction(db, event, timestamp)
    raise EventDecodeError(f"no projection for event kind {event.kind!r}")


def _record_failure(db: Session, network: str, raw_log: dict, source: str, error: Exception) -> None:
    try:
        event_id = store_raw_event(db, network, raw_log, source)
        mark_raw_event(db, event_id, EVENT_FAILED, str(error)[:1000])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"could not record failed event {raw_log.get('transactionHash')}: {e}")


def process_logs(
    db: Session,
    logs: List[dict],
    network: str,
    factory_address: str,
    source: str,
    resolver: BlockTimestampResolver,
    counters: ProjectionCounters | None = None,
) -> ProjectionCounters:
    """Classify and project fetched logs, one commit per event.

    ``removed`` logs, logs already processed by an earlier run, unknown
    topics and logs from the wrong emitter are counted as skipped. A decode
    or persistence failure rolls back that event only and counts it as
    failed. Timestamp resolution failing aborts the whole call; a caller
    that passes ``counters`` keeps whatever was counted up to that point.
    """
    if counters is None:
        counters = ProjectionCounters()
    counters.found = len(logs)

    live = [raw_log for raw_log in logs if not raw_log.get("removed")]
    counters.skipped += len(logs) - len(live)

    fresh, done = filter_already_processed(db, network, live)
    counters.skipped += len(done)
    if not fresh:
        return counters

    resolver.assign_timestamps(fresh)

    for raw_log in fresh:
        try:
            event_id = store_raw_event(db, network, raw_log, source)
            event = classify(raw_log)
            if event is None or not is_expected_origin(event, factory_address):
                mark_raw_event(db, event_id, EVENT_PROCESSED, "ignored")
                db.commit()
                counters.skipped += 1
                continue

            project_event(db, event, raw_log["timestamp"], factory_address)
            mark_raw_event(db, event_id, EVENT_PROCESSED)
            db.commit()
            counters.processed += 1
        except (EventDecodeError, SQLAlchemyError) as e:
            db.rollback()
            counters.failed += 1
            log.error(f"event {raw_log.get('transactionHash')}#{raw_log.get('logIndex')} failed: {e}")
            _record_failure(db, network, raw_log, source, e)

    log.info(
        f"Projected {counters.processed} events "
        f"(skipped {counters.skipped}, failed {counters.failed}) of {counters.found}"
    )
    return counters
