# webhook_payload.py
# --------------------------------------------------------------
# Signature check and log extraction for pushed AMM webhooks.
# Accepts the Alchemy GraphQL block payload, a bare log array or
# an object with a "logs" array.
# --------------------------------------------------------------
from typing import List
import hashlib
import hmac

from amm_indexer.utils.errors import InvalidRequestError
from amm_indexer.utils.sanitize import as_int, is_address, to_hex_str

REQUIRED_FIELDS = ("address", "topics", "data", "blockNumber", "transactionHash", "logIndex")


def verify_signature(body: bytes, signature: str | None, signing_key: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded, optionally 0x-prefixed."""
    if not signing_key or not signature:
        return False
    expected = hmac.new(signing_key.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower().removeprefix("0x"))


def _get(obj, key):
    return obj.get(key) if isinstance(obj, dict) else None


def _from_graphql_block(block: dict, entry) -> dict:
    if not isinstance(entry, dict):
        raise InvalidRequestError("Invalid webhook payload structure: log entry is not an object")
    transaction = entry.get("transaction")
    return {
        "address": _get(entry.get("account"), "address"),
        "topics": entry.get("topics"),
        "data": entry.get("data"),
        "blockNumber": block.get("number"),
        "blockHash": block.get("hash"),
        "blockTimestamp": block.get("timestamp"),
        "transactionHash": _get(transaction, "hash"),
        "transactionIndex": _get(transaction, "index"),
        "logIndex": entry.get("index"),
        "removed": False,
    }


def _normalize(entry) -> dict:
    if not isinstance(entry, dict):
        raise InvalidRequestError("Invalid webhook payload structure: log entry is not an object")
    missing = [name for name in REQUIRED_FIELDS if entry.get(name) is None]
    if missing:
        raise InvalidRequestError(f"Webhook log is missing {', '.join(missing)}")
    if not is_address(entry["address"]):
        raise InvalidRequestError(f"Webhook log has invalid address {entry['address']!r}")
    if not isinstance(entry["topics"], list):
        raise InvalidRequestError("Webhook log topics must be an array")

    try:
        out = {
            **entry,
            "address": entry["address"].lower(),
            "topics": [to_hex_str(t) for t in entry["topics"]],
            "data": str(entry["data"]),
            "blockNumber": as_int(entry["blockNumber"]),
            "transactionHash": to_hex_str(entry["transactionHash"]),
            "logIndex": as_int(entry["logIndex"]),
            "removed": bool(entry.get("removed", False)),
        }
        if entry.get("blockTimestamp") is not None:
            out["blockTimestamp"] = as_int(entry["blockTimestamp"])
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"Webhook log has malformed numeric field: {e}") from e
    return out


def extract_webhook_logs(payload) -> List[dict]:
    """Raw log dicts in the shape ``process_logs`` expects.

    An empty list means the payload carried no logs. Anything that is not
    one of the known shapes, or a log missing required fields, raises
    :class:`InvalidRequestError`.
    """
    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict):
        block = _get(_get(payload.get("event"), "data"), "block")
        if isinstance(block, dict):
            logs = block.get("logs") or []
            if not isinstance(logs, list):
                raise InvalidRequestError("Invalid webhook payload structure: block.logs must be an array")
            entries = [_from_graphql_block(block, entry) for entry in logs]
        elif "logs" in payload:
            if not isinstance(payload["logs"], list):
                raise InvalidRequestError("Invalid webhook payload structure: logs must be an array")
            entries = payload["logs"]
        else:
            entries = []
    else:
        raise InvalidRequestError("Invalid webhook payload structure")

    return [_normalize(entry) for entry in entries]
