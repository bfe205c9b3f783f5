from datetime import datetime, timezone
from typing import List, Tuple

from sqlalchemy import select, tuple_, update
from sqlalchemy.orm import Session

from amm_indexer.storage.db_utils import upsert_insert
from amm_indexer.utils.sanitize import as_int, to_hex_str
from amm_indexer.storage.models.amm_event import AmmRawEvent, EVENT_PENDING, EVENT_PROCESSED


def _key(raw_log: dict) -> Tuple[str, int]:
    return to_hex_str(raw_log["transactionHash"]), as_int(raw_log["logIndex"])


def filter_already_processed(
    db: Session,
    network: str,
    logs: List[dict],
) -> Tuple[List[dict], List[dict]]:
    """Split logs into (to_process, already_processed).

    Only rows that reached ``processed`` count as done; pending or failed rows
    from an earlier run are picked up again.
    """
    if not logs:
        return [], []

    keys = {_key(raw_log) for raw_log in logs}
    done = set(
        db.execute(
            select(AmmRawEvent.transaction_hash, AmmRawEvent.log_index)
            .where(AmmRawEvent.network == network)
            .where(AmmRawEvent.status == EVENT_PROCESSED)
            .where(tuple_(AmmRawEvent.transaction_hash, AmmRawEvent.log_index).in_(list(keys)))
        ).all()
    )
    fresh, skipped = [], []
    for raw_log in logs:
        (skipped if _key(raw_log) in done else fresh).append(raw_log)
    return fresh, skipped


def store_raw_event(db: Session, network: str, raw_log: dict, source: str) -> int:
    """Upsert the raw log (reset to pending) and return its row id."""
    tx_hash, log_index = _key(raw_log)
    topics = raw_log.get("topics") or []
    stmt = upsert_insert(db, AmmRawEvent.__table__).values(
        network=network,
        block_number=as_int(raw_log["blockNumber"]),
        transaction_hash=tx_hash,
        log_index=log_index,
        event_topic=topics[0] if topics else None,
        contract_address=str(raw_log.get("address", "")).lower(),
        raw_event=raw_log,
        status=EVENT_PENDING,
        source=source,
        created_at=datetime.now(timezone.utc),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["network", "transaction_hash", "log_index"],
        set_={"status": EVENT_PENDING, "error_message": None, "source": stmt.excluded.source},
    )
    db.execute(stmt)
    return db.execute(
        select(AmmRawEvent.id)
        .where(AmmRawEvent.network == network)
        .where(AmmRawEvent.transaction_hash == tx_hash)
        .where(AmmRawEvent.log_index == log_index)
    ).scalar_one()


def mark_raw_event(db: Session, event_id: int, status: str, error_message: str | None = None) -> None:
    db.execute(
        update(AmmRawEvent)
        .where(AmmRawEvent.id == event_id)
        .values(status=status, error_message=error_message, processed_at=datetime.now(timezone.utc))
    )
