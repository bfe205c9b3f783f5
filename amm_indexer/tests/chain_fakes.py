"""Test doubles for the chain side: raw log builders and a fake web3."""
from unittest.mock import MagicMock

from eth_abi import encode

from amm_indexer.sources.amm_pipeline.config.settings import (
    BURN_TOPIC,
    MINT_TOPIC,
    PAIR_CREATED_TOPIC,
    SWAP_TOPIC,
    SYNC_TOPIC,
)

FACTORY = "0x" + "fa" * 20
WMON = "0x" + "aa" * 20
USDC = "0x" + "cc" * 20
TOKENX = "0x" + "11" * 20
BLOCK_TIME_BASE = 1_700_000_000


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


def topic_for(address: str) -> str:
    return "0x" + "0" * 24 + address.lower()[2:]


class LogFactory:
    """Builds raw logs shaped like a sanitized ``eth_getLogs`` result."""

    def __init__(self):
        self._next_index = 0

    def _log(self, address, topics, data: bytes, block=100, tx_hash=None, log_index=None, **extra):
        if log_index is None:
            log_index = self._next_index
            self._next_index += 1
        entry = {
            "address": address.lower(),
            "topics": topics,
            "data": "0x" + data.hex(),
            "blockNumber": block,
            "transactionHash": tx_hash or "0x" + f"{block:032x}{log_index:032x}",
            "logIndex": log_index,
            "removed": False,
        }
        entry.update(extra)
        return entry

    def pair_created(self, factory, token0, token1, pair, count=1, **kw):
        return self._log(
            factory,
            [PAIR_CREATED_TOPIC, topic_for(token0), topic_for(token1)],
            encode(["address", "uint256"], [pair, count]),
            **kw,
        )

    def mint(self, pair, sender, amount0, amount1, **kw):
        return self._log(pair, [MINT_TOPIC, topic_for(sender)],
                         encode(["uint256", "uint256"], [amount0, amount1]), **kw)

    def burn(self, pair, sender, amount0, amount1, to, **kw):
        return self._log(pair, [BURN_TOPIC, topic_for(sender), topic_for(to)],
                         encode(["uint256", "uint256"], [amount0, amount1]), **kw)

    def swap(self, pair, sender, amount0_in, amount1_in, amount0_out, amount1_out, to, **kw):
        return self._log(
            pair,
            [SWAP_TOPIC, topic_for(sender), topic_for(to)],
            encode(["uint256"] * 4, [amount0_in, amount1_in, amount0_out, amount1_out]),
            **kw,
        )

    def sync(self, pair, reserve0, reserve1, **kw):
        return self._log(pair, [SYNC_TOPIC], encode(["uint112", "uint112"], [reserve0, reserve1]), **kw)


def _call(value):
    fn = MagicMock()
    if isinstance(value, Exception):
        fn.call.side_effect = value
    else:
        fn.call.return_value = value
    return fn


class FakeAmmChain:
    """MagicMock-backed web3 exposing a factory, its pairs and a log store.

    ``pairs`` maps pair address → (token0, token1, reserve0, reserve1, total_supply).
    Anything listed in ``broken`` raises on ``getReserves``.
    """

    def __init__(self, factory=FACTORY, pairs=None, logs=None, latest_block=1_000, broken=()):
        self.factory = factory.lower()
        self.pairs = {k.lower(): v for k, v in (pairs or {}).items()}
        self.logs = list(logs or [])
        self.broken = {b.lower() for b in broken}
        self.latest_block = latest_block

        self.w3 = MagicMock()
        self.w3.eth.block_number = latest_block
        self.w3.eth.get_block.side_effect = self._get_block
        self.w3.eth.get_logs.side_effect = self._get_logs
        self.w3.eth.contract.side_effect = self._contract

    def _get_block(self, block, full_transactions=False):
        number = self.latest_block if block == "latest" else int(block)
        return {"number": number, "timestamp": BLOCK_TIME_BASE + number}

    def _get_logs(self, log_filter):
        wanted = {a.lower() for a in log_filter.get("address") or []}
        return [
            entry for entry in self.logs
            if log_filter["fromBlock"] <= entry["blockNumber"] <= log_filter["toBlock"]
            and (not wanted or entry["address"] in wanted)
        ]

    def _contract(self, address, abi):
        address = address.lower()
        contract = MagicMock()
        if address == self.factory:
            ordered = list(self.pairs)
            contract.functions.allPairsLength.return_value = _call(len(ordered))
            contract.functions.allPairs.side_effect = lambda i: _call(ordered[i])
            contract.functions.getPair.side_effect = self._get_pair
            return contract

        token0, token1, reserve0, reserve1, supply = self.pairs[address]
        contract.functions.token0.return_value = _call(token0)
        contract.functions.token1.return_value = _call(token1)
        contract.functions.totalSupply.return_value = _call(supply)
        if address in self.broken:
            contract.functions.getReserves.return_value = _call(RuntimeError("execution reverted"))
        else:
            contract.functions.getReserves.return_value = _call([reserve0, reserve1, 0])
        return contract

    def _get_pair(self, a, b):
        wanted = {a.lower(), b.lower()}
        for pair, (token0, token1, *_rest) in self.pairs.items():
            if {token0.lower(), token1.lower()} == wanted:
                return _call(pair)
        return _call("0x" + "0" * 40)
