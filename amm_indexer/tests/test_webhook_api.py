from datetime import datetime, timezone
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from amm_indexer.main import app
from amm_indexer.sources.amm_pipeline.config import settings
from amm_indexer.sources.amm_pipeline.evm.utils.client import get_web3_factory
from amm_indexer.sources.amm_pipeline.utils.webhook_payload import extract_webhook_logs
from amm_indexer.storage.db import get_db
from amm_indexer.storage.models.amm_transaction import AmmTransaction
from amm_indexer.storage.models.sync_run import SyncRun
from amm_indexer.tests.chain_fakes import BLOCK_TIME_BASE, FakeAmmChain, addr
from amm_indexer.utils.errors import InvalidRequestError

SIGNING_KEY = "whsec_test"
URL = "/api/webhooks/amm-tracking"
PAIR = addr(0xA1)
USER = addr(0xCAFE)


def _sign(body: bytes, key: str = SIGNING_KEY) -> str:
    return hmac.new(key.encode(), body, hashlib.sha256).hexdigest()


def _graphql_payload(raw_logs, number=42, timestamp=BLOCK_TIME_BASE + 4_200):
    return {
        "webhookId": "wh_amm",
        "type": "GRAPHQL",
        "event": {"data": {"block": {
            "hash": "0x" + "b1" * 32,
            "number": number,
            "timestamp": timestamp,
            "logs": [
                {
                    "data": entry["data"],
                    "topics": entry["topics"],
                    "index": entry["logIndex"],
                    "account": {"address": entry["address"]},
                    "transaction": {"hash": entry["transactionHash"], "index": 0},
                }
                for entry in raw_logs
            ],
        }}},
    }


@pytest.fixture
def chain():
    return FakeAmmChain(factory=settings.AMM_FACTORY_ADDRESS)


@pytest.fixture
def connects(chain):
    calls = []

    def connect():
        calls.append(1)
        return chain.w3

    return calls, connect


@pytest.fixture
def client(db, connects, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SIGNING_KEY", SIGNING_KEY)
    monkeypatch.setattr(settings, "AMM_RPC_URL", "")
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_web3_factory] = lambda: connects[1]
    yield TestClient(app)
    app.dependency_overrides.clear()


def _post(client, payload, signature=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {"content-type": "application/json",
               "x-alchemy-signature": signature if signature is not None else _sign(body)}
    return client.post(URL, content=body, headers=headers)


def test_graphql_block_is_projected_without_rpc(client, db, logs, connects):
    payload = _graphql_payload([logs.swap(PAIR, USER, 10**18, 0, 0, 3 * 10**6, USER)])

    response = _post(client, payload)

    assert response.status_code == 200
    body = response.json()
    assert (body["success"], body["total"], body["processed"], body["skipped"]) == (True, 1, 1, 0)
    tx = db.execute(select(AmmTransaction)).scalar_one()
    assert (tx.pair_address, tx.block_number, tx.event_type) == (PAIR, 42, "swap")
    assert tx.timestamp.replace(tzinfo=timezone.utc) == datetime.fromtimestamp(BLOCK_TIME_BASE + 4_200, tz=timezone.utc)
    run = db.execute(select(SyncRun)).scalar_one()
    assert (run.source, run.status) == ("alchemy_webhook", "completed")
    assert connects[0] == []


def test_redelivery_is_skipped(client, logs):
    payload = _graphql_payload([logs.mint(PAIR, USER, 5, 5)])

    assert _post(client, payload).json()["processed"] == 1
    again = _post(client, payload).json()
    assert (again["processed"], again["skipped"]) == (0, 1)


def test_bare_array_without_timestamps_reads_blocks(client, logs, connects):
    payload = [logs.mint(PAIR, USER, 5, 5, block=7)]

    response = _post(client, payload)

    assert response.status_code == 200
    assert response.json()["processed"] == 1
    assert connects[0] == [1]


@pytest.mark.parametrize("signature", ["", "deadbeef", "0x" + "0" * 64])
def test_bad_signature_is_401(client, db, logs, signature):
    response = _post(client, [logs.mint(PAIR, USER, 1, 1)], signature=signature)

    assert response.status_code == 401
    assert db.execute(select(SyncRun)).first() is None


def test_prefixed_signature_is_accepted(client):
    body = json.dumps({"logs": []}).encode()

    assert _post(client, body, signature="0x" + _sign(body)).status_code == 200


def test_unconfigured_signing_key_rejects(client, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SIGNING_KEY", "")

    assert _post(client, {"logs": []}).status_code == 401


@pytest.mark.parametrize("body", [
    b"{not json",
    json.dumps("just a string").encode(),
    json.dumps({"logs": "nope"}).encode(),
    json.dumps([{"address": PAIR, "topics": []}]).encode(),
    json.dumps([{"address": "0x12", "topics": [], "data": "0x", "blockNumber": 1,
                 "transactionHash": "0x" + "ab" * 32, "logIndex": 0}]).encode(),
])
def test_malformed_payload_is_400(client, body):
    assert _post(client, body).status_code == 400


def test_empty_payload_has_nothing_to_process(client):
    response = _post(client, {"logs": []})

    assert response.status_code == 200
    assert response.json() == {"message": "No events to process", "processed": 0}


def test_health_check(client):
    body = client.get(URL).json()

    assert (body["status"], body["endpoint"]) == ("healthy", "amm-tracking")


def test_extract_normalizes_graphql_fields(logs):
    [entry] = extract_webhook_logs(_graphql_payload([logs.sync(PAIR, 1, 2)],
                                                    number="0x2a"))

    assert entry["address"] == PAIR
    assert (entry["blockNumber"], entry["blockTimestamp"], entry["removed"]) == (42, BLOCK_TIME_BASE + 4_200, False)
    assert isinstance(entry["logIndex"], int)


def test_extract_rejects_non_object_entries():
    with pytest.raises(InvalidRequestError):
        extract_webhook_logs([1, 2, 3])
