from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Tuple
import logging
import time

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from web3 import Web3

from amm_indexer.sources.amm_pipeline.config.settings import (
    AMM_FACTORY_ADDRESS,
    AMM_TOPICS,
    CHAIN_NETWORK,
    DEFAULT_CHUNK_DELAY_MS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HOURS_AGO,
)
from amm_indexer.sources.amm_pipeline.evm.utils.blocks import BlockClient, BlockTimestampResolver
from amm_indexer.sources.amm_pipeline.evm.utils.events import fetch_logs
from amm_indexer.sources.amm_pipeline.evm.utils.pair_registry import get_pair_count, iter_pair_batches
from amm_indexer.sources.amm_pipeline.evm.utils.rate_limit import DiscoveryPolicy, FetchPolicy
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.aggreation.pair_analytics import TokenRegistry
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.aggregator_and_upsert_handler import (
    compute_all_snapshots,
)
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.upsert.upsert_pairs import upsert_pairs
from amm_indexer.sources.amm_pipeline.utils.event_projector import ProjectionCounters, process_logs
from amm_indexer.sources.amm_pipeline.utils.sync_runs import RunCounters, complete_run, fail_run, start_run
from amm_indexer.storage.models.amm_pair import AmmPair
from amm_indexer.utils.errors import IndexerError, InvalidRequestError
from amm_indexer.utils.sanitize import is_address

log = logging.getLogger(__name__)


@dataclass
class BackfillRequest:
    """Parameters of one event backfill.

    Either an explicit ``from_block`` (``to_block`` defaults to latest) or a
    relative ``hours_ago`` window. ``pair_address`` selects pair mode;
    without it the factory and every known pair are watched.
    """
    from_block: int | None = None
    to_block: int | None = None
    hours_ago: float | None = None
    pair_address: str | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: int = DEFAULT_CHUNK_DELAY_MS
    source: str = "api"

    @property
    def mode(self) -> str:
        return "pair" if self.pair_address else "general"

    def validate(self) -> FetchPolicy:
        """Checks that need no RPC or DB; returns the fetch policy."""
        if self.pair_address is not None and not is_address(self.pair_address):
            raise InvalidRequestError(
                "Invalid pair address format. Should be 0x followed by 40 hex characters."
            )
        if self.hours_ago is not None and self.hours_ago <= 0:
            raise InvalidRequestError("hoursAgo must be positive")
        for name, value in (("fromBlock", self.from_block), ("toBlock", self.to_block)):
            if value is not None and value < 0:
                raise InvalidRequestError(f"Invalid block numbers: {name} must be non-negative")
        if self.from_block is not None and self.to_block is not None and self.from_block > self.to_block:
            raise InvalidRequestError(
                "Invalid block range: fromBlock must be less than or equal to toBlock"
            )
        return FetchPolicy(chunk_size=self.chunk_size, delay_ms=self.delay_ms)


def resolve_block_range(w3: Web3, request: BackfillRequest, now: float | None = None) -> Tuple[int, int]:
    blocks = BlockClient(w3)
    latest = blocks.get_latest_block()
    to_block = request.to_block if request.to_block is not None else latest

    if request.from_block is not None:
        from_block = request.from_block
    else:
        hours_ago = request.hours_ago if request.hours_ago is not None else DEFAULT_HOURS_AGO
        from_block = blocks.block_hours_ago(hours_ago, min(to_block, latest), now=now)
        log.info(f"Resolved {hours_ago}h window to blocks {from_block}-{to_block}")

    if from_block > to_block:
        raise InvalidRequestError(
            "Invalid block range: fromBlock must be less than or equal to toBlock"
        )
    return from_block, to_block


def watched_addresses(db: Session, request: BackfillRequest, factory_address: str) -> List[str]:
    if request.pair_address:
        return [request.pair_address.lower()]
    known = db.execute(select(AmmPair.pair_address).order_by(AmmPair.id)).scalars().all()
    return [factory_address.lower(), *known]


def _record_failure(db: Session, run_id: int | None, error: Exception, counters: RunCounters) -> None:
    db.rollback()
    try:
        fail_run(db, run_id, str(error) or error.__class__.__name__, counters)
    except (SQLAlchemyError, IndexerError) as e:
        db.rollback()
        log.error(f"Could not mark sync run {run_id} failed: {e}")


def run_event_backfill(
    db: Session,
    w3: Web3,
    request: BackfillRequest,
    factory_address: str = AMM_FACTORY_ADDRESS,
    network: str = CHAIN_NETWORK,
    rpc_url: str | None = None,
    sleep: Callable[[float], None] | None = None,
    now: float | None = None,
) -> dict:
    """Fetch, classify and project AMM logs over a block range.

    Invalid input raises :class:`InvalidRequestError` before a run is
    recorded. Anything failing after that marks the run failed and
    propagates.
    """
    policy = request.validate()
    from_block, to_block = resolve_block_range(w3, request, now=now)
    addresses = watched_addresses(db, request, factory_address)
    source = f"amm-backfill-{request.mode}"
    blocks_processed = to_block - from_block + 1

    run_id = start_run(
        db,
        job_name="amm-backfill",
        source=source,
        start_block=from_block,
        end_block=to_block,
        metadata={
            "mode": request.mode,
            "addresses": addresses,
            "pairAddress": request.pair_address,
            "chunkSize": policy.chunk_size,
            "delayMs": policy.delay_ms,
            "trigger": request.source,
        },
    )

    summary = {
        "mode": request.mode,
        "filter": {"fromBlock": from_block, "toBlock": to_block, "addresses": addresses},
        "syncRunId": run_id,
    }
    counters = ProjectionCounters()
    try:
        logs = fetch_logs(
            w3,
            {"address": [Web3.to_checksum_address(a) for a in addresses],
             "topics": [AMM_TOPICS],
             "fromBlock": from_block,
             "toBlock": to_block},
            chunk_size=policy.chunk_size,
            delay_ms=policy.delay_ms,
            sleep=sleep,
        )
        log.info(f"Found {len(logs)} AMM logs in blocks {from_block}-{to_block}")

        if logs:
            resolver = BlockTimestampResolver(w3, rpc_url=rpc_url)
            process_logs(db, logs, network, factory_address, source, resolver, counters=counters)
        else:
            summary["message"] = "No AMM events found in the specified range"

        complete_run(db, run_id, _run_counters(counters, blocks_processed))
    except Exception as e:
        log.error(f"AMM backfill {from_block}-{to_block} failed: {e}")
        _record_failure(db, run_id, e, _run_counters(counters, blocks_processed))
        raise

    return {
        **summary,
        "eventsFound": counters.found,
        "processed": counters.processed,
        "skipped": counters.skipped,
        "failed": counters.failed,
    }


def run_webhook_ingest(
    db: Session,
    logs: List[dict],
    resolver: BlockTimestampResolver,
    factory_address: str = AMM_FACTORY_ADDRESS,
    network: str = CHAIN_NETWORK,
    source: str = "alchemy_webhook",
) -> dict:
    """Project logs pushed by a webhook provider instead of fetched by range."""
    blocks = sorted({log_entry["blockNumber"] for log_entry in logs})
    run_id = start_run(
        db,
        job_name="amm-webhook",
        source=source,
        start_block=blocks[0],
        end_block=blocks[-1],
        metadata={"events": len(logs), "blocks": len(blocks)},
    )

    counters = ProjectionCounters()
    try:
        process_logs(db, logs, network, factory_address, source, resolver, counters=counters)
        complete_run(db, run_id, _run_counters(counters, len(blocks)))
    except Exception as e:
        log.error(f"Webhook batch of {len(logs)} logs failed: {e}")
        _record_failure(db, run_id, e, _run_counters(counters, len(blocks)))
        raise

    return {
        "success": True,
        "message": "AMM events processed successfully",
        "total": counters.found,
        "processed": counters.processed,
        "skipped": counters.skipped,
        "failed": counters.failed,
        "syncRunId": run_id,
    }


def _run_counters(counters: ProjectionCounters, blocks_processed: int) -> RunCounters:
    return RunCounters(
        events_found=counters.found,
        events_processed=counters.processed,
        events_skipped=counters.skipped,
        events_failed=counters.failed,
        blocks_processed=blocks_processed,
    )


def run_pair_discovery(
    db: Session,
    w3: Web3,
    factory_address: str = AMM_FACTORY_ADDRESS,
    policy: DiscoveryPolicy | None = None,
    source: str = "amm-pairs-backfill",
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """Walk the factory's pair list and upsert each batch as it arrives.

    A batch whose upsert fails is rolled back and counted as failed in
    full; earlier batches stay committed.
    """
    policy = policy or DiscoveryPolicy()
    total = get_pair_count(w3, factory_address)
    log.info(f"Factory {factory_address} reports {total} pairs")
    if total == 0:
        return {"message": "No pairs found in Factory", "totalPairs": 0, "processed": 0,
                "failed": 0, "syncRunId": None}

    latest = BlockClient(w3).get_latest_block()
    run_id = start_run(
        db,
        job_name="amm-pairs-discovery",
        source=source,
        start_block=latest,
        end_block=latest,
        metadata={
            "factoryAddress": factory_address.lower(),
            "totalPairs": total,
            "batchSize": policy.batch_size,
            "delayMs": policy.delay_ms,
            "method": "factory_query",
        },
    )

    processed, failed, batches = 0, 0, 0
    try:
        for batch in iter_pair_batches(w3, factory_address, policy, total=total, sleep=sleep):
            batches += 1
            failed += batch.errors
            try:
                processed += upsert_pairs(db, batch.readings, factory_address)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                failed += len(batch.readings)
                log.error(f"Batch {batch.index} upsert failed, {len(batch.readings)} pairs dropped: {e}")

        counters = RunCounters(events_found=total, events_processed=processed,
                               events_failed=failed, blocks_processed=1)
        complete_run(db, run_id, counters)
    except Exception as e:
        log.error(f"Pair discovery failed: {e}")
        _record_failure(db, run_id, e, RunCounters(events_found=total, events_processed=processed,
                                                   events_failed=failed, blocks_processed=1))
        raise

    log.info(f"Pair discovery: {processed} upserted, {failed} errors, {batches} batches")
    return {
        "message": "AMM pairs discovery completed",
        "factoryAddress": factory_address.lower(),
        "totalPairs": total,
        "processed": processed,
        "failed": failed,
        "batches": batches,
        "syncRunId": run_id,
    }


def run_snapshots(
    db: Session,
    now: datetime | None = None,
    tokens: TokenRegistry | None = None,
    source: str = "api",
) -> dict:
    run_id = start_run(db, job_name="amm-snapshots", source=source)
    try:
        result = compute_all_snapshots(db, now=now, tokens=tokens)
        complete_run(db, run_id, RunCounters(
            events_found=result["created"] + result["errors"],
            events_processed=result["created"],
            events_failed=result["errors"],
        ))
    except Exception as e:
        log.error(f"Snapshot run failed: {e}")
        _record_failure(db, run_id, e, RunCounters())
        raise
    return {**result, "syncRunId": run_id}
