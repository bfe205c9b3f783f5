from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterator, List
import logging
import time

from web3 import Web3

from amm_indexer.sources.amm_pipeline.config.settings import FACTORY_ABI, PAIR_ABI
from amm_indexer.sources.amm_pipeline.evm.utils.rate_limit import DiscoveryPolicy, RateLimiter

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairReading:
    pair_address: str
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    total_supply: int
    observed_at_block: int
    observed_at_timestamp: int


@dataclass
class BatchResult:
    index: int
    start: int
    end: int                      # exclusive
    readings: List[PairReading] = field(default_factory=list)
    errors: int = 0


@dataclass
class DiscoveryResult:
    total: int = 0
    readings: List[PairReading] = field(default_factory=list)
    errors: int = 0


def _factory(w3: Web3, factory_address: str):
    return w3.eth.contract(address=Web3.to_checksum_address(factory_address), abi=FACTORY_ABI)


def get_pair_count(w3: Web3, factory_address: str) -> int:
    return int(_factory(w3, factory_address).functions.allPairsLength().call())


def get_pair(w3: Web3, factory_address: str, token_a: str, token_b: str) -> str | None:
    """Factory ``getPair`` lookup; ``None`` when the pair does not exist."""
    addr = _factory(w3, factory_address).functions.getPair(
        Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b)
    ).call()
    if int(addr, 16) == 0:
        return None
    return addr.lower()


def read_pair_detail(
    w3: Web3,
    pair_address: str,
    block_number: int,
    block_timestamp: int,
    limiter: RateLimiter,
) -> PairReading:
    """token0, token1, getReserves, totalSupply, one paced call at a time."""
    pair = w3.eth.contract(address=Web3.to_checksum_address(pair_address), abi=PAIR_ABI)

    limiter.wait()
    token0 = pair.functions.token0().call()
    limiter.wait()
    token1 = pair.functions.token1().call()
    limiter.wait()
    reserve0, reserve1, _ = pair.functions.getReserves().call()
    limiter.wait()
    total_supply = pair.functions.totalSupply().call()

    return PairReading(
        pair_address=pair_address.lower(),
        token0=token0.lower(),
        token1=token1.lower(),
        reserve0=int(reserve0),
        reserve1=int(reserve1),
        total_supply=int(total_supply),
        observed_at_block=block_number,
        observed_at_timestamp=block_timestamp,
    )


def iter_pair_batches(
    w3: Web3,
    factory_address: str,
    policy: DiscoveryPolicy,
    total: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[BatchResult]:
    """Walk ``allPairs[0..N)`` batch by batch.

    Address reads inside a batch run concurrently; detail reads are
    sequential. One pair failing is logged and counted, never raised.
    The batch delay is measured from the end of the previous batch.
    """
    factory = _factory(w3, factory_address)
    if total is None:
        total = int(factory.functions.allPairsLength().call())
    if total == 0:
        return

    latest = w3.eth.get_block("latest")
    block_number, block_ts = int(latest["number"]), int(latest["timestamp"])

    batch_limiter = RateLimiter(policy.delay_ms, sleep=sleep, clock=clock)
    call_limiter = RateLimiter(policy.call_delay_ms, sleep=sleep, clock=clock)

    def _address_at(i: int) -> str:
        return factory.functions.allPairs(i).call()

    with ThreadPoolExecutor(max_workers=policy.workers) as pool:
        for n, start in enumerate(range(0, total, policy.batch_size), 1):
            end = min(start + policy.batch_size, total)
            batch_limiter.wait()
            log.info(f"Processing batch {n}: pairs {start} to {end - 1}")

            result = BatchResult(index=n, start=start, end=end)
            futures = [(i, pool.submit(_address_at, i)) for i in range(start, end)]
            addresses = []
            for i, fut in futures:
                try:
                    addresses.append(fut.result())
                except Exception as e:
                    log.error(f"allPairs({i}) failed: {e}")
                    result.errors += 1

            for pair_address in addresses:
                try:
                    reading = read_pair_detail(w3, pair_address, block_number, block_ts, call_limiter)
                except Exception as e:
                    log.error(f"Error processing pair {pair_address}: {e}")
                    result.errors += 1
                    continue
                result.readings.append(reading)
                log.info(f"Processed pair {reading.pair_address} ({reading.token0}/{reading.token1})")

            batch_limiter.restart()
            yield result


def discover_all_pairs(
    w3: Web3,
    factory_address: str,
    policy: DiscoveryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DiscoveryResult:
    policy = policy or DiscoveryPolicy()
    total = get_pair_count(w3, factory_address)
    out = DiscoveryResult(total=total)
    for batch in iter_pair_batches(w3, factory_address, policy, total=total, sleep=sleep):
        out.readings.extend(batch.readings)
        out.errors += batch.errors
    return out
