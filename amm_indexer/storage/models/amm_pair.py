from sqlalchemy import Column, Integer, BigInteger, Text, String, TIMESTAMP, UniqueConstraint, func
from amm_indexer.storage.base import Base


class AmmPair(Base):
    __tablename__ = "amm_pairs"

    id                   = Column(Integer, primary_key=True)
    pair_address         = Column(String(42), nullable=False, unique=True)   # lower-case hex
    token0_address       = Column(String(42), nullable=False)
    token1_address       = Column(String(42), nullable=False)
    factory_address      = Column(String(42), nullable=False)

    # base units as decimal strings
    reserve0             = Column(Text, nullable=False, default="0")
    reserve1             = Column(Text, nullable=False, default="0")
    total_supply         = Column(Text, nullable=False, default="0")

    created_at_block     = Column(BigInteger)
    created_at_timestamp = Column(TIMESTAMP(timezone=True))
    last_sync_block      = Column(BigInteger)
    last_sync_timestamp  = Column(TIMESTAMP(timezone=True))

    created_at           = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at           = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("factory_address", "token0_address", "token1_address",
                         name="uq_amm_pairs_factory_tokens"),
    )

    def __repr__(self) -> str:
        return f"<AmmPair {self.pair_address} {self.token0_address}/{self.token1_address}>"
