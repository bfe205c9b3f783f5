import pytest
from sqlalchemy import select

from amm_indexer.sources.amm_pipeline.evm.utils.blocks import BlockTimestampResolver
from amm_indexer.sources.amm_pipeline.evm.utils.orchestrator import (
    BackfillRequest,
    run_event_backfill,
    run_pair_discovery,
    run_webhook_ingest,
)
from amm_indexer.sources.amm_pipeline.evm.utils.rate_limit import DiscoveryPolicy
from amm_indexer.storage.models.amm_pair import AmmPair
from amm_indexer.storage.models.amm_transaction import AmmTransaction
from amm_indexer.storage.models.sync_run import SyncRun
from amm_indexer.tests.chain_fakes import BLOCK_TIME_BASE, FACTORY, TOKENX, USDC, WMON, FakeAmmChain, addr

PAIR = addr(0xA1)
USER = addr(0xCAFE)


def _runs(db):
    db.expire_all()
    return db.execute(select(SyncRun).order_by(SyncRun.id)).scalars().all()


def test_failed_backfill_keeps_events_found(db, logs):
    chain = FakeAmmChain(logs=[
        logs.mint(PAIR, USER, 1, 1, block=10),
        logs.mint(PAIR, USER, 2, 2, block=11),
    ])
    chain.w3.eth.get_block.side_effect = RuntimeError("block lookup failed")
    request = BackfillRequest(from_block=0, to_block=50, pair_address=PAIR, delay_ms=0)

    with pytest.raises(RuntimeError):
        run_event_backfill(db, chain.w3, request, factory_address=FACTORY, sleep=lambda s: None)

    [run] = _runs(db)
    assert run.status == "failed"
    assert run.events_found == 2
    assert run.events_processed == 0
    assert "block lookup failed" in run.error_message


def test_pair_discovery_rerun_is_idempotent(db):
    chain = FakeAmmChain(pairs={
        addr(1): (WMON, USDC, 500 * 10**18, 1_000_000 * 10**6, 10**18),
        addr(2): (TOKENX, WMON, 1_000 * 10**18, 10 * 10**18, 10**18),
    })
    policy = DiscoveryPolicy(batch_size=1, delay_ms=0, call_delay_ms=0)

    def pairs():
        db.expire_all()
        return [(p.pair_address, p.reserve0, p.reserve1, p.total_supply)
                for p in db.execute(select(AmmPair).order_by(AmmPair.pair_address)).scalars()]

    first = run_pair_discovery(db, chain.w3, FACTORY, policy, sleep=lambda s: None)
    after_first = pairs()
    second = run_pair_discovery(db, chain.w3, FACTORY, policy, sleep=lambda s: None)

    assert (first["processed"], second["processed"]) == (2, 2)
    assert pairs() == after_first
    assert [row[0] for row in after_first] == [addr(1), addr(2)]
    assert [r.status for r in _runs(db)] == ["completed", "completed"]


def test_webhook_ingest_uses_pushed_timestamps(db, logs):
    pushed = [
        logs.swap(PAIR, USER, 10**18, 0, 0, 5, USER, block=20, blockTimestamp=BLOCK_TIME_BASE + 99),
        # pair events never come from the factory
        logs.mint(FACTORY, USER, 1, 1, block=21, blockTimestamp=BLOCK_TIME_BASE + 100),
    ]

    result = run_webhook_ingest(db, pushed, BlockTimestampResolver(None), factory_address=FACTORY)

    assert (result["total"], result["processed"], result["skipped"], result["failed"]) == (2, 1, 1, 0)
    tx = db.execute(select(AmmTransaction)).scalar_one()
    assert tx.block_number == 20
    [run] = _runs(db)
    assert (run.job_name, run.source, run.status) == ("amm-webhook", "alchemy_webhook", "completed")
    assert (run.start_block, run.end_block) == (20, 21)
