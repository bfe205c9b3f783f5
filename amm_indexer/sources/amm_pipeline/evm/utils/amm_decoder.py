# amm_decoder.py
# --------------------------------------------------------------
# Classify Uni V2-style factory / pair logs into typed events.
# --------------------------------------------------------------
from dataclasses import dataclass
from typing import Callable, Dict, Union

from eth_abi import abi
from eth_abi.exceptions import DecodingError
from eth_utils import to_bytes

from amm_indexer.sources.amm_pipeline.config.settings import (
    BURN_TOPIC,
    MINT_TOPIC,
    PAIR_CREATED_TOPIC,
    SWAP_TOPIC,
    SYNC_TOPIC,
)
from amm_indexer.utils.errors import EventDecodeError
from amm_indexer.utils.sanitize import as_int, to_hex_str


@dataclass(frozen=True)
class LogRef:
    """Where a decoded event came from."""
    emitter: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass(frozen=True)
class PairCreated:
    ref: LogRef
    pair_address: str
    token0: str
    token1: str
    pair_count: int
    kind: str = "PairCreated"


@dataclass(frozen=True)
class Mint:
    ref: LogRef
    pair_address: str
    sender: str
    amount0: int
    amount1: int
    kind: str = "Mint"


@dataclass(frozen=True)
class Burn:
    ref: LogRef
    pair_address: str
    sender: str
    amount0: int
    amount1: int
    to: str
    kind: str = "Burn"


@dataclass(frozen=True)
class Swap:
    ref: LogRef
    pair_address: str
    sender: str
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int
    to: str
    kind: str = "Swap"


@dataclass(frozen=True)
class Sync:
    ref: LogRef
    pair_address: str
    reserve0: int
    reserve1: int
    kind: str = "Sync"


AmmEvent = Union[PairCreated, Mint, Burn, Swap, Sync]


def _topic_address(topic: str) -> str:
    # indexed address = last 20 bytes of the 32-byte topic
    return "0x" + to_hex_str(topic)[-40:]


def _data(raw_log: dict) -> bytes:
    data = raw_log.get("data") or "0x"
    return bytes(data) if isinstance(data, (bytes, bytearray)) else to_bytes(hexstr=data)


def _ref(raw_log: dict) -> LogRef:
    return LogRef(
        emitter=str(raw_log["address"]).lower(),
        block_number=as_int(raw_log["blockNumber"]),
        tx_hash=to_hex_str(raw_log["transactionHash"]),
        log_index=as_int(raw_log["logIndex"]),
    )


def _decode_pair_created(raw_log: dict, topics: list) -> PairCreated:
    pair, count = abi.decode(["address", "uint256"], _data(raw_log))
    return PairCreated(
        ref=_ref(raw_log),
        pair_address=pair.lower(),
        token0=_topic_address(topics[1]),
        token1=_topic_address(topics[2]),
        pair_count=count,
    )


def _decode_mint(raw_log: dict, topics: list) -> Mint:
    amount0, amount1 = abi.decode(["uint256", "uint256"], _data(raw_log))
    ref = _ref(raw_log)
    return Mint(ref=ref, pair_address=ref.emitter, sender=_topic_address(topics[1]),
                amount0=amount0, amount1=amount1)


def _decode_burn(raw_log: dict, topics: list) -> Burn:
    amount0, amount1 = abi.decode(["uint256", "uint256"], _data(raw_log))
    ref = _ref(raw_log)
    return Burn(ref=ref, pair_address=ref.emitter, sender=_topic_address(topics[1]),
                amount0=amount0, amount1=amount1, to=_topic_address(topics[2]))


def _decode_swap(raw_log: dict, topics: list) -> Swap:
    a0_in, a1_in, a0_out, a1_out = abi.decode(["uint256"] * 4, _data(raw_log))
    ref = _ref(raw_log)
    return Swap(
        ref=ref,
        pair_address=ref.emitter,
        sender=_topic_address(topics[1]),
        amount0_in=a0_in,
        amount1_in=a1_in,
        amount0_out=a0_out,
        amount1_out=a1_out,
        to=_topic_address(topics[2]),
    )


def _decode_sync(raw_log: dict, topics: list) -> Sync:
    reserve0, reserve1 = abi.decode(["uint112", "uint112"], _data(raw_log))
    ref = _ref(raw_log)
    return Sync(ref=ref, pair_address=ref.emitter, reserve0=reserve0, reserve1=reserve1)


DECODERS: Dict[str, Callable[[dict, list], AmmEvent]] = {
    PAIR_CREATED_TOPIC: _decode_pair_created,
    MINT_TOPIC: _decode_mint,
    BURN_TOPIC: _decode_burn,
    SWAP_TOPIC: _decode_swap,
    SYNC_TOPIC: _decode_sync,
}


def classify(raw_log: dict) -> AmmEvent | None:
    """Decode one raw log by its signature topic.

    Returns ``None`` for logs that are not one of the five AMM events.
    Content-only: nothing here checks *who* emitted the log.
    """
    topics = [to_hex_str(t) for t in raw_log.get("topics") or []]
    if not topics:
        return None
    decoder = DECODERS.get(topics[0])
    if decoder is None:
        return None
    try:
        return decoder(raw_log, topics)
    except (DecodingError, IndexError, KeyError, ValueError) as e:
        raise EventDecodeError(
            f"cannot decode {decoder.__name__[8:]} log "
            f"{raw_log.get('transactionHash')}#{raw_log.get('logIndex')}: {e}"
        ) from e


def is_expected_origin(event: AmmEvent, factory_address: str) -> bool:
    """PairCreated must come from the factory; pair events must not."""
    factory = factory_address.lower()
    if event.kind == "PairCreated":
        return event.ref.emitter == factory
    return event.ref.emitter != factory
