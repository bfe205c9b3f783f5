from datetime import datetime, timezone
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.aggreation.pair_analytics import (
    TokenRegistry,
    compute_snapshot,
    hour_bucket,
    resolve_native_price_usd,
)
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.upsert.upsert_snapshots import upsert_snapshot
from amm_indexer.storage.models.amm_pair import AmmPair

logger = logging.getLogger(__name__)


def compute_all_snapshots(
    db: Session,
    now: datetime | None = None,
    tokens: TokenRegistry | None = None,
) -> dict:
    """Snapshot every known pair into the current hour bucket.

    Each pair commits on its own; a failing pair is rolled back, logged and
    counted without stopping the rest.
    """
    now = now or datetime.now(timezone.utc)
    tokens = tokens or TokenRegistry()
    bucket = hour_bucket(now)

    native_price_usd = resolve_native_price_usd(db, tokens)
    logger.info(f"Native price ${native_price_usd:.6f}, snapshot bucket {bucket.isoformat()}")

    pairs = db.execute(select(AmmPair).order_by(AmmPair.id)).scalars().all()
    created, errors = 0, 0
    for pair in pairs:
        pair_address = pair.pair_address
        try:
            values = compute_snapshot(db, pair, native_price_usd, now, tokens)
            upsert_snapshot(db, values.as_row(pair_address, bucket))
            db.commit()
            created += 1
        except (SQLAlchemyError, ArithmeticError, ValueError) as e:
            db.rollback()
            errors += 1
            logger.error(f"Snapshot failed for pair {pair_address}: {e}")

    logger.info(f"Snapshots: {created} created, {errors} errors ({len(pairs)} pairs)")
    return {"created": created, "errors": errors}
