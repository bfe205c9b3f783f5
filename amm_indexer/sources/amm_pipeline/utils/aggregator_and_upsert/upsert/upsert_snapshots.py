from sqlalchemy.orm import Session
import logging

from amm_indexer.storage.db_utils import upsert_insert
from amm_indexer.storage.models.pair_snapshot import PairSnapshot

log = logging.getLogger(__name__)

SNAPSHOT_VALUE_COLUMNS = (
    "tvl_usd", "price_token0", "price_token1", "volume_24h", "fees_24h", "apr",
    "reserve0", "reserve1", "total_supply",
)


def upsert_snapshot(db: Session, row: dict) -> None:
    """Upsert one snapshot keyed by (pair_address, snapshot_timestamp).

    Re-running the same bucket overwrites it with the fresh computation.
    """
    table = PairSnapshot.__table__
    stmt = upsert_insert(db, table).values(row)
    stmt = stmt.on_conflict_do_update(
        index_elements=["pair_address", "snapshot_timestamp"],
        set_={col: stmt.excluded[col] for col in SNAPSHOT_VALUE_COLUMNS},
    )
    db.execute(stmt)
