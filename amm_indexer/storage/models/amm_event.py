from sqlalchemy import Column, Integer, BigInteger, String, Text, JSON, TIMESTAMP, Index, func
from amm_indexer.storage.base import Base

EVENT_PENDING = "pending"
EVENT_PROCESSED = "processed"
EVENT_FAILED = "failed"


class AmmRawEvent(Base):
    """Raw copy of every fetched log; (network, tx, log_index) dedups across runs."""
    __tablename__ = "blockchain_events"

    id               = Column(Integer, primary_key=True)
    network          = Column(String(32), nullable=False)
    block_number     = Column(BigInteger, nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    log_index        = Column(Integer, nullable=False)
    event_topic      = Column(String(66))
    contract_address = Column(String(42))
    raw_event        = Column(JSON)
    status           = Column(String(16), nullable=False, default=EVENT_PENDING)
    source           = Column(String(64))
    error_message    = Column(Text)
    processed_at     = Column(TIMESTAMP(timezone=True))
    created_at       = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("uq_blockchain_events_net_tx_log", "network", "transaction_hash", "log_index", unique=True),
    )
