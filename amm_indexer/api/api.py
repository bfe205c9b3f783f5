from datetime import datetime, timezone
from typing import Callable, Literal
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session
from web3 import Web3

from amm_indexer.sources.amm_pipeline.config import settings
from amm_indexer.sources.amm_pipeline.evm.utils.blocks import BlockTimestampResolver
from amm_indexer.sources.amm_pipeline.evm.utils.client import get_web3_factory
from amm_indexer.sources.amm_pipeline.evm.utils.orchestrator import (
    BackfillRequest,
    run_event_backfill,
    run_pair_discovery,
    run_snapshots,
    run_webhook_ingest,
)
from amm_indexer.sources.amm_pipeline.evm.utils.rate_limit import DiscoveryPolicy
from amm_indexer.sources.amm_pipeline.utils.sync_runs import recent_runs, run_stats
from amm_indexer.sources.amm_pipeline.utils.webhook_payload import extract_webhook_logs, verify_signature
from amm_indexer.storage.db import get_db
from amm_indexer.utils.errors import InvalidRequestError

log = logging.getLogger(__name__)

router = APIRouter()


def check_api_key(api_key: str | None) -> None:
    # no configured key means nothing is accepted
    if not settings.BACKFILL_API_KEY or api_key != settings.BACKFILL_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def _failed(what: str, e: Exception) -> HTTPException:
    log.error(f"{what} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail={"error": f"Failed to {what}", "details": str(e)})


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.get("/")
def read_root():
    return {"message": "AMM indexer is running"}


@router.get("/backfill/amm-events")
def backfill_amm_events(
    from_block: int | None = Query(None, alias="fromBlock"),
    to_block: int | None = Query(None, alias="toBlock"),
    hours_ago: float | None = Query(None, alias="hoursAgo"),
    pair_address: str | None = Query(None, alias="pairAddress"),
    chunk_size: int = Query(settings.DEFAULT_CHUNK_SIZE, alias="chunkSize"),
    delay_ms: int = Query(settings.DEFAULT_CHUNK_DELAY_MS, alias="delayMs"),
    api_key: str | None = Query(None, alias="apiKey"),
    db: Session = Depends(get_db),
    connect: Callable[[], Web3] = Depends(get_web3_factory),
):
    check_api_key(api_key)
    request = BackfillRequest(
        from_block=from_block,
        to_block=to_block,
        hours_ago=hours_ago,
        pair_address=pair_address,
        chunk_size=chunk_size,
        delay_ms=delay_ms,
        source="api",
    )
    log.info(f"AMM backfill requested: mode={request.mode} from={from_block} to={to_block} hoursAgo={hours_ago}")
    try:
        request.validate()
        return run_event_backfill(db, connect(), request, rpc_url=settings.AMM_RPC_URL)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise _failed("process AMM backfill request", e)


@router.get("/backfill/amm-pairs")
def backfill_amm_pairs(
    batch_size: int = Query(settings.DEFAULT_BATCH_SIZE, alias="batchSize"),
    delay_ms: int = Query(settings.DEFAULT_BATCH_DELAY_MS, alias="delayMs"),
    api_key: str | None = Query(None, alias="apiKey"),
    db: Session = Depends(get_db),
    connect: Callable[[], Web3] = Depends(get_web3_factory),
):
    check_api_key(api_key)
    try:
        policy = DiscoveryPolicy(batch_size=batch_size, delay_ms=delay_ms)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        return run_pair_discovery(db, connect(), settings.AMM_FACTORY_ADDRESS, policy)
    except Exception as e:
        raise _failed("discover AMM pairs", e)


@router.post("/analytics/snapshots")
def create_snapshots(
    api_key: str | None = Query(None, alias="apiKey"),
    db: Session = Depends(get_db),
):
    check_api_key(api_key)
    try:
        return run_snapshots(db, source="api")
    except Exception as e:
        raise _failed("compute pair snapshots", e)


@router.get("/admin/sync-runs")
def sync_runs(
    action: Literal["list", "stats"] = Query("list"),
    limit: int = Query(20, ge=1, le=500),
    api_key: str | None = Query(None, alias="apiKey"),
    db: Session = Depends(get_db),
):
    check_api_key(api_key)
    if action == "stats":
        return run_stats(db)
    return {"runs": recent_runs(db, limit=limit)}


@router.post("/webhooks/amm-tracking")
def amm_tracking_webhook(
    body: bytes = Depends(raw_body),
    signature: str | None = Header(None, alias="x-alchemy-signature"),
    db: Session = Depends(get_db),
    connect: Callable[[], Web3] = Depends(get_web3_factory),
):
    if not verify_signature(body, signature, settings.WEBHOOK_SIGNING_KEY):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    try:
        events = extract_webhook_logs(payload)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not events:
        log.info("AMM webhook carried no logs")
        return {"message": "No events to process", "processed": 0}

    log.info(f"AMM webhook received {len(events)} logs")
    try:
        # providers that stamp blockTimestamp need no RPC round trip
        if all(e.get("blockTimestamp") is not None for e in events):
            resolver = BlockTimestampResolver(None)
        else:
            resolver = BlockTimestampResolver(connect(), rpc_url=settings.AMM_RPC_URL)
        return run_webhook_ingest(db, events, resolver)
    except Exception as e:
        raise _failed("process AMM webhook", e)


@router.get("/webhooks/amm-tracking")
def amm_tracking_health():
    return {
        "status": "healthy",
        "endpoint": "amm-tracking",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
