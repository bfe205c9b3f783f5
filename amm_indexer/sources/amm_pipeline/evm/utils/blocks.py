import logging
import time
from typing import Dict, Iterable, List

import requests
from web3 import Web3

from amm_indexer.utils.sanitize import as_int

logger = logging.getLogger(__name__)


class BlockClient:
    def __init__(self, w3: Web3):
        self.w3 = w3

    def get_latest_block(self) -> int:
        return self.w3.eth.block_number

    def get_block_timestamp(self, block_number: int) -> int:
        return self.w3.eth.get_block(block_number)["timestamp"]

    def find_block_by_timestamp(self, target_ts: int, start_block: int = 0, end_block: int = None) -> int:
        """First block whose timestamp is >= ``target_ts`` (binary search)."""
        if end_block is None:
            end_block = self.get_latest_block()

        while start_block <= end_block:
            mid = (start_block + end_block) // 2
            mid_ts = self.get_block_timestamp(mid)

            if mid_ts < target_ts:
                start_block = mid + 1
            elif mid_ts > target_ts:
                end_block = mid - 1
            else:
                return mid
        return start_block

    def block_hours_ago(self, hours_ago: float, latest_block: int, now: float | None = None) -> int:
        now = time.time() if now is None else now
        target_ts = int(now - hours_ago * 3600)
        return min(self.find_block_by_timestamp(target_ts, 0, latest_block), latest_block)


class BlockTimestampResolver:
    """Resolves block → unix timestamp for a set of logs.

    Providers that attach ``blockTimestamp`` to logs are trusted as-is; the
    rest are fetched in one JSON-RPC batch, with a single-block web3 call as
    the rescue path for anything the batch did not answer.
    """

    def __init__(self, w3: Web3, rpc_url: str | None = None):
        self.w3 = w3
        self.rpc_url = rpc_url
        self.cache: Dict[int, int] = {}

    def _get_single_block_ts(self, block: int) -> int:
        blk = self.w3.eth.get_block(block, full_transactions=False)
        return int(blk["timestamp"])

    def batch_get_block_timestamps(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        wanted = sorted({b for b in block_numbers if b not in self.cache})
        if not wanted:
            return {b: self.cache[b] for b in block_numbers}

        if self.rpc_url:
            payload = [
                {"jsonrpc": "2.0", "method": "eth_getBlockByNumber",
                 "params": [hex(b), False], "id": i}
                for i, b in enumerate(wanted)
            ]
            try:
                r = requests.post(self.rpc_url, json=payload, timeout=10)
                r.raise_for_status()
                for item in r.json():
                    if item.get("result"):
                        res = item["result"]
                        self.cache[as_int(res["number"])] = as_int(res["timestamp"])
            except (requests.RequestException, ValueError) as exc:
                logger.warning(f"batch RPC ({len(wanted)} blocks) failed, falling back: {exc}")

        for b in wanted:
            if b not in self.cache:
                self.cache[b] = self._get_single_block_ts(b)

        return {b: self.cache[b] for b in block_numbers}

    def assign_timestamps(self, logs: List[dict]) -> Dict[int, int]:
        """Set ``log["timestamp"]`` on every log; returns the block → ts map used."""
        missing = set()
        for entry in logs:
            bn = as_int(entry["blockNumber"])
            if entry.get("blockTimestamp") is not None:
                self.cache.setdefault(bn, as_int(entry["blockTimestamp"]))
            elif bn not in self.cache:
                missing.add(bn)

        if missing:
            self.batch_get_block_timestamps(missing)

        for entry in logs:
            entry["timestamp"] = self.cache[as_int(entry["blockNumber"])]
        return dict(self.cache)
