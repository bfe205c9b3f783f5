from sqlalchemy import Column, Integer, BigInteger, String, Text, JSON, TIMESTAMP, Index, func
from amm_indexer.storage.base import Base

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"


class SyncRun(Base):
    """Provenance for one pipeline execution."""
    __tablename__ = "blockchain_sync_runs"

    id               = Column(Integer, primary_key=True)
    job_name         = Column(String(64), nullable=False)
    source           = Column(String(64), nullable=False, default="api")
    status           = Column(String(16), nullable=False, default=RUN_RUNNING)
    start_time       = Column(TIMESTAMP(timezone=True), nullable=False)
    end_time         = Column(TIMESTAMP(timezone=True))
    start_block      = Column(BigInteger)
    end_block        = Column(BigInteger)
    blocks_processed = Column(BigInteger)
    events_found     = Column(Integer, nullable=False, default=0)
    events_processed = Column(Integer, nullable=False, default=0)
    events_skipped   = Column(Integer, nullable=False, default=0)
    events_failed    = Column(Integer, nullable=False, default=0)
    duration_ms      = Column(BigInteger)
    error_message    = Column(Text)
    run_metadata     = Column("metadata", JSON)
    created_at       = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_blockchain_sync_runs_start_time", "start_time"),
    )
