from datetime import datetime, timezone
from typing import Iterable
import logging

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from amm_indexer.sources.amm_pipeline.evm.utils.amm_decoder import PairCreated, Sync
from amm_indexer.sources.amm_pipeline.evm.utils.pair_registry import PairReading
from amm_indexer.storage.db_utils import upsert_insert
from amm_indexer.storage.models.amm_pair import AmmPair

log = logging.getLogger(__name__)

# columns an update may touch; creation fields are never rewritten
PAIR_STATE_COLUMNS = ("reserve0", "reserve1", "total_supply", "last_sync_block", "last_sync_timestamp", "updated_at")


def _utc(ts: int) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def upsert_pairs(
    db: Session,
    readings: Iterable[PairReading],
    factory_address: str,
) -> int:
    """Insert-or-update pairs keyed by ``pair_address``.

    Every reading is a self-consistent on-chain read, so repeated calls are
    safe and the latest call wins.
    """
    now = datetime.now(timezone.utc)
    rows = [
        {
            "pair_address": r.pair_address.lower(),
            "token0_address": r.token0.lower(),
            "token1_address": r.token1.lower(),
            "factory_address": factory_address.lower(),
            "reserve0": str(r.reserve0),
            "reserve1": str(r.reserve1),
            "total_supply": str(r.total_supply),
            # exact creation block is unknown from a factory walk
            "created_at_block": r.observed_at_block,
            "created_at_timestamp": _utc(r.observed_at_timestamp),
            "last_sync_block": r.observed_at_block,
            "last_sync_timestamp": _utc(r.observed_at_timestamp),
            "created_at": now,
            "updated_at": now,
        }
        for r in readings
    ]
    if not rows:
        return 0

    table = AmmPair.__table__
    stmt = upsert_insert(db, table).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["pair_address"],
        set_={col: stmt.excluded[col] for col in PAIR_STATE_COLUMNS},
    )
    db.execute(stmt)
    log.info(f"--------Upserted {len(rows)} pairs")
    return len(rows)


def register_pair(
    db: Session,
    event: PairCreated,
    timestamp: int,
    factory_address: str,
) -> bool:
    """Insert a newly created pair with empty reserves; no-op if already known."""
    now = datetime.now(timezone.utc)
    table = AmmPair.__table__
    stmt = upsert_insert(db, table).values(
        pair_address=event.pair_address,
        token0_address=event.token0,
        token1_address=event.token1,
        factory_address=factory_address.lower(),
        reserve0="0",
        reserve1="0",
        total_supply="0",
        created_at_block=event.ref.block_number,
        created_at_timestamp=_utc(timestamp),
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing(index_elements=["pair_address"])
    return db.execute(stmt).rowcount > 0


def apply_sync(db: Session, event: Sync, timestamp: int) -> bool:
    """Overwrite a known pair's reserves with a Sync event's values.

    Syncs older than the stored ``last_sync_block`` are ignored so replaying
    an old range cannot roll reserves back. Returns whether a row changed.
    """
    block = event.ref.block_number
    stmt = (
        update(AmmPair)
        .where(AmmPair.pair_address == event.pair_address)
        .where(or_(AmmPair.last_sync_block.is_(None), AmmPair.last_sync_block <= block))
        .values(
            reserve0=str(event.reserve0),
            reserve1=str(event.reserve1),
            last_sync_block=block,
            last_sync_timestamp=_utc(timestamp),
            updated_at=datetime.now(timezone.utc),
        )
    )
    return db.execute(stmt).rowcount > 0
