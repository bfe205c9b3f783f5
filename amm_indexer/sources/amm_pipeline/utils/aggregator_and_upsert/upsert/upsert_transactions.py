from datetime import datetime, timezone
from sqlalchemy.orm import Session

from amm_indexer.sources.amm_pipeline.evm.utils.amm_decoder import Burn, Mint, Swap
from amm_indexer.storage.db_utils import upsert_insert
from amm_indexer.storage.models.amm_transaction import AmmTransaction


def transaction_row(event: Mint | Burn | Swap, timestamp: int) -> dict:
    """Map a decoded pair event onto an ``amm_transactions`` row.

    For swaps ``amount0``/``amount1`` carry the *in* amounts.
    """
    row = {
        "pair_address": event.pair_address,
        "event_type": event.kind.lower(),
        "user_address": event.sender,
        "amount0_out": "0",
        "amount1_out": "0",
        "block_number": event.ref.block_number,
        "transaction_hash": event.ref.tx_hash,
        "log_index": event.ref.log_index,
        "timestamp": datetime.fromtimestamp(int(timestamp), tz=timezone.utc),
        "created_at": datetime.now(timezone.utc),
    }
    if isinstance(event, Swap):
        row.update(
            amount0=str(event.amount0_in),
            amount1=str(event.amount1_in),
            amount0_out=str(event.amount0_out),
            amount1_out=str(event.amount1_out),
            raw_event_data={
                "sender": event.sender, "to": event.to,
                "amount0In": str(event.amount0_in), "amount1In": str(event.amount1_in),
                "amount0Out": str(event.amount0_out), "amount1Out": str(event.amount1_out),
            },
        )
    else:
        row.update(
            amount0=str(event.amount0),
            amount1=str(event.amount1),
            raw_event_data={
                "sender": event.sender,
                "amount0": str(event.amount0),
                "amount1": str(event.amount1),
                **({"to": event.to} if isinstance(event, Burn) else {}),
            },
        )
    return row


def append_transaction(db: Session, event: Mint | Burn | Swap, timestamp: int) -> bool:
    """Insert-only. A repeat of (transaction_hash, log_index) is ignored."""
    stmt = (
        upsert_insert(db, AmmTransaction.__table__)
        .values(transaction_row(event, timestamp))
        .on_conflict_do_nothing(index_elements=["transaction_hash", "log_index"])
    )
    return db.execute(stmt).rowcount > 0
