import logging
import math
import time
from typing import Callable, Iterator, List, Tuple

from web3 import Web3

from amm_indexer.sources.amm_pipeline.evm.utils.rate_limit import RateLimiter
from amm_indexer.utils.errors import LogFetchError
from amm_indexer.utils.sanitize import sanitize_log

log = logging.getLogger(__name__)


def split_block_range(from_block: int, to_block: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Contiguous, ascending, non-overlapping [start, end] chunks covering the range."""
    return [
        (start, min(start + chunk_size - 1, to_block))
        for start in range(from_block, to_block + 1, chunk_size)
    ]


def iter_chunks(from_block: int, to_block: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    block_range = to_block - from_block + 1
    if block_range <= chunk_size:
        yield from_block, to_block
        return
    yield from split_block_range(from_block, to_block, chunk_size)


def fetch_logs(
    w3: Web3,
    log_filter: dict,
    chunk_size: int,
    delay_ms: int,
    sleep: Callable[[float], None] | None = None,
) -> List[dict]:
    """Fetch logs for ``log_filter`` over [fromBlock, toBlock] in sequential chunks.

    The caller has already validated ``fromBlock <= toBlock`` and that both
    are non-negative. Any chunk failure aborts the whole fetch with
    :class:`LogFetchError`; there is no partial result and no retry.
    """
    from_block = int(log_filter["fromBlock"])
    to_block = int(log_filter["toBlock"])
    block_range = to_block - from_block + 1
    total_chunks = max(1, math.ceil(block_range / chunk_size))

    limiter = RateLimiter(delay_ms, sleep=sleep or time.sleep)

    log.info(
        f"Fetching logs for {block_range} blocks ({from_block}-{to_block}) "
        f"in {total_chunks} chunk(s) of <= {chunk_size}"
    )

    out: List[dict] = []
    for n, (chunk_start, chunk_end) in enumerate(iter_chunks(from_block, to_block, chunk_size), 1):
        limiter.wait()
        chunk_filter = {**log_filter, "fromBlock": chunk_start, "toBlock": chunk_end}
        try:
            logs = w3.eth.get_logs(chunk_filter)
        except Exception as e:
            log.error(f"[chunk {n}/{total_chunks}] get_logs {chunk_start}-{chunk_end} failed: {e}")
            raise LogFetchError(chunk_start, chunk_end, e) from e

        out.extend(sanitize_log(entry) for entry in logs)
        log.info(f"[chunk {n}/{total_chunks}] {len(logs)} logs (total so far: {len(out)})")

    return out
