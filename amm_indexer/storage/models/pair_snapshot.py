from sqlalchemy import Column, Integer, Numeric, Text, String, TIMESTAMP, UniqueConstraint, func
from amm_indexer.storage.base import Base


class PairSnapshot(Base):
    __tablename__ = "amm_pair_snapshots"

    id                 = Column(Integer, primary_key=True)
    pair_address       = Column(String(42), nullable=False)
    snapshot_timestamp = Column(TIMESTAMP(timezone=True), nullable=False)   # hour bucket

    tvl_usd            = Column(Numeric(38, 18))
    price_token0       = Column(Numeric(38, 18))
    price_token1       = Column(Numeric(38, 18))
    volume_24h         = Column(Numeric(38, 18))
    fees_24h           = Column(Numeric(38, 18))
    apr                = Column(Numeric(38, 18))

    reserve0           = Column(Text, nullable=False)
    reserve1           = Column(Text, nullable=False)
    total_supply       = Column(Text, nullable=False)
    created_at         = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("pair_address", "snapshot_timestamp", name="uq_amm_pair_snapshots_bucket"),
    )
