import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from amm_indexer.main import app
from amm_indexer.sources.amm_pipeline.config import settings
from amm_indexer.sources.amm_pipeline.evm.utils.client import get_web3_factory
from amm_indexer.sources.amm_pipeline.evm.utils.pair_registry import PairReading
from amm_indexer.sources.amm_pipeline.utils.aggregator_and_upsert.upsert.upsert_pairs import upsert_pairs
from amm_indexer.storage.db import get_db
from amm_indexer.storage.models.amm_pair import AmmPair
from amm_indexer.storage.models.sync_run import SyncRun
from amm_indexer.tests.chain_fakes import TOKENX, USDC, WMON, FakeAmmChain, addr

KEY = "secret"
KNOWN_PAIR = addr(0xA1)
NEW_PAIR = addr(0xA2)
USER = addr(0xCAFE)


@pytest.fixture
def chain():
    return FakeAmmChain(factory=settings.AMM_FACTORY_ADDRESS, latest_block=1_000)


@pytest.fixture
def client(db, chain, monkeypatch):
    monkeypatch.setattr(settings, "BACKFILL_API_KEY", KEY)
    # block timestamps come from the fake client, never a batched HTTP call
    monkeypatch.setattr(settings, "AMM_RPC_URL", "")
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_web3_factory] = lambda: lambda: chain.w3
    yield TestClient(app)
    app.dependency_overrides.clear()


def _runs(db):
    db.expire_all()
    return db.execute(select(SyncRun).order_by(SyncRun.id)).scalars().all()


@pytest.mark.parametrize("params", [{}, {"apiKey": "wrong"}])
def test_bad_or_missing_key_is_401(client, params):
    assert client.get("/api/backfill/amm-events", params=params).status_code == 401
    assert client.get("/api/backfill/amm-pairs", params=params).status_code == 401
    assert client.post("/api/analytics/snapshots", params=params).status_code == 401


def test_unconfigured_key_rejects_everything(client, monkeypatch):
    monkeypatch.setattr(settings, "BACKFILL_API_KEY", "")

    assert client.get("/api/backfill/amm-events", params={"apiKey": ""}).status_code == 401


@pytest.mark.parametrize("params", [
    {"pairAddress": "0x1234"},
    {"fromBlock": 500, "toBlock": 100},
    {"fromBlock": -1},
    {"fromBlock": "abc"},
    {"chunkSize": 0},
    {"delayMs": -5},
    {"hoursAgo": 0},
])
def test_invalid_parameters_are_400(client, db, params):
    response = client.get("/api/backfill/amm-events", params={"apiKey": KEY, **params})

    assert response.status_code == 400
    assert _runs(db) == []


@pytest.fixture
def unreachable_rpc(client):
    attempts = []

    def connect():
        attempts.append(1)
        raise ConnectionError("Failed to connect to RPC: http://127.0.0.1:1")

    app.dependency_overrides[get_web3_factory] = lambda: connect
    return attempts


def test_rejections_happen_before_connecting(client, db, unreachable_rpc):
    assert client.get("/api/backfill/amm-events", params={"apiKey": "wrong"}).status_code == 401
    assert client.get("/api/backfill/amm-pairs", params={"apiKey": "wrong"}).status_code == 401
    bad_pair = client.get("/api/backfill/amm-events", params={"apiKey": KEY, "pairAddress": "0x12"})
    assert bad_pair.status_code == 400
    bad_range = client.get("/api/backfill/amm-events", params={"apiKey": KEY, "fromBlock": 9, "toBlock": 3})
    assert bad_range.status_code == 400
    assert client.get("/api/backfill/amm-pairs", params={"apiKey": KEY, "batchSize": 0}).status_code == 400

    assert unreachable_rpc == []
    assert _runs(db) == []


def test_connection_failure_after_validation_is_500(client, unreachable_rpc):
    response = client.get("/api/backfill/amm-events", params={"apiKey": KEY, "fromBlock": 1, "toBlock": 2})

    assert response.status_code == 500
    assert "Failed to connect" in response.json()["detail"]["details"]
    assert unreachable_rpc == [1]
    assert client.get("/api/backfill/amm-pairs", params={"apiKey": KEY}).status_code == 500


def test_zero_events_is_success(client, db):
    response = client.get("/api/backfill/amm-events", params={"apiKey": KEY, "fromBlock": 10, "toBlock": 20})

    assert response.status_code == 200
    body = response.json()
    assert (body["eventsFound"], body["processed"], body["skipped"], body["failed"]) == (0, 0, 0, 0)
    [run] = _runs(db)
    assert body["syncRunId"] == run.id
    assert run.status == "completed"
    assert run.blocks_processed == 11


def test_hours_ago_defaults_to_recent_window(client, chain):
    response = client.get("/api/backfill/amm-events", params={"apiKey": KEY})

    assert response.status_code == 200
    assert response.json()["filter"]["toBlock"] == chain.latest_block


def test_general_backfill_projects_events(client, db, chain, logs):
    upsert_pairs(db, [PairReading(KNOWN_PAIR, WMON, USDC, 1, 1, 1, 50, 1_700_000_050)], settings.AMM_FACTORY_ADDRESS)
    db.commit()
    chain.logs = [
        logs.pair_created(settings.AMM_FACTORY_ADDRESS, TOKENX, WMON, NEW_PAIR, block=100),
        logs.swap(KNOWN_PAIR, USER, 10**18, 0, 0, 2 * 10**6, USER, block=150),
        logs.sync(KNOWN_PAIR, 7 * 10**18, 9 * 10**6, block=150),
        logs.sync(addr(0xDEAD), 1, 1, block=150),   # not watched
    ]
    params = {"apiKey": KEY, "fromBlock": 100, "toBlock": 349, "chunkSize": 100, "delayMs": 0}

    body = client.get("/api/backfill/amm-events", params=params).json()

    assert body["mode"] == "general"
    assert (body["eventsFound"], body["processed"], body["skipped"], body["failed"]) == (3, 3, 0, 0)
    assert chain.w3.eth.get_logs.call_count == 3
    db.expire_all()
    known = db.execute(select(AmmPair).where(AmmPair.pair_address == KNOWN_PAIR)).scalar_one()
    assert (known.reserve0, known.reserve1) == (str(7 * 10**18), str(9 * 10**6))
    assert db.execute(select(func.count()).select_from(AmmPair)).scalar_one() == 2

    again = client.get("/api/backfill/amm-events", params=params).json()
    assert (again["processed"], again["skipped"]) == (0, 3)
    assert db.execute(select(func.count()).select_from(AmmPair)).scalar_one() == 2


def test_pair_mode_watches_only_that_pair(client, chain, logs):
    chain.logs = [
        logs.mint(KNOWN_PAIR, USER, 1, 1, block=10),
        logs.mint(NEW_PAIR, USER, 1, 1, block=10),
    ]

    body = client.get("/api/backfill/amm-events", params={
        "apiKey": KEY, "fromBlock": 0, "toBlock": 50, "pairAddress": KNOWN_PAIR.upper().replace("0X", "0x"),
    }).json()

    assert body["mode"] == "pair"
    assert body["filter"]["addresses"] == [KNOWN_PAIR]
    assert body["processed"] == 1


def test_upstream_failure_is_500_and_marks_run_failed(client, db, chain):
    chain.w3.eth.get_logs.side_effect = RuntimeError("rpc exploded")

    response = client.get("/api/backfill/amm-events", params={"apiKey": KEY, "fromBlock": 0, "toBlock": 10})

    assert response.status_code == 500
    [run] = _runs(db)
    assert run.status == "failed"
    assert "rpc exploded" in run.error_message


def test_pair_discovery_endpoint(client, db, chain):
    chain.pairs = {
        KNOWN_PAIR: (WMON, USDC, 500 * 10**18, 1_000_000 * 10**6, 10**18),
        NEW_PAIR: (TOKENX, WMON, 1_000 * 10**18, 10 * 10**18, 10**18),
    }

    response = client.get("/api/backfill/amm-pairs", params={"apiKey": KEY, "batchSize": 1, "delayMs": 0})

    assert response.status_code == 200
    body = response.json()
    assert (body["totalPairs"], body["processed"], body["failed"]) == (2, 2, 0)
    assert [r.status for r in _runs(db)] == ["completed"]

    assert client.get("/api/backfill/amm-pairs", params={"apiKey": KEY, "batchSize": 0}).status_code == 400


def test_snapshots_and_admin_endpoints(client, db):
    upsert_pairs(db, [PairReading(KNOWN_PAIR, WMON, USDC, 500 * 10**18, 1_000_000 * 10**6, 1, 50, 1_700_000_050)],
                 settings.AMM_FACTORY_ADDRESS)
    db.commit()

    snapshots = client.post("/api/analytics/snapshots", params={"apiKey": KEY})
    assert snapshots.status_code == 200
    assert (snapshots.json()["created"], snapshots.json()["errors"]) == (1, 0)

    listing = client.get("/api/admin/sync-runs", params={"apiKey": KEY}).json()
    assert [r["jobName"] for r in listing["runs"]] == ["amm-snapshots"]

    stats = client.get("/api/admin/sync-runs", params={"apiKey": KEY, "action": "stats"}).json()
    assert stats["completed"] == 1

    assert client.get("/api/admin/sync-runs", params={"apiKey": KEY, "action": "purge"}).status_code == 400
