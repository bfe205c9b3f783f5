from sqlalchemy import Column, Integer, BigInteger, Text, String, JSON, TIMESTAMP, Index, func
from amm_indexer.storage.base import Base


class AmmTransaction(Base):
    """Append-only log of mint / burn / swap activity per pair."""
    __tablename__ = "amm_transactions"

    id               = Column(Integer, primary_key=True, autoincrement=True)
    pair_address     = Column(String(42), nullable=False)
    event_type       = Column(String(8), nullable=False)
    user_address     = Column(String(42))

    # base units as decimal strings; amount0/amount1 hold amountIn for swaps
    amount0          = Column(Text, nullable=False, default="0")
    amount1          = Column(Text, nullable=False, default="0")
    amount0_out      = Column(Text, nullable=False, default="0")
    amount1_out      = Column(Text, nullable=False, default="0")

    block_number     = Column(BigInteger, nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    log_index        = Column(Integer, nullable=False)
    timestamp        = Column(TIMESTAMP(timezone=True), nullable=False)
    raw_event_data   = Column(JSON)
    created_at       = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("uq_amm_transactions_tx_log", "transaction_hash", "log_index", unique=True),
        Index("ix_amm_transactions_pair_type_ts", "pair_address", "event_type", "timestamp"),
    )
