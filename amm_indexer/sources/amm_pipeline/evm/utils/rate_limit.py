# rate_limit.py
# --------------------------------------------------------------
# Static pacing for RPC calls (eth_getLogs chunks, discovery
# batches, per-pair detail reads). No adaptive behaviour.
# --------------------------------------------------------------
import time
from dataclasses import dataclass, field
from typing import Callable

from amm_indexer.sources.amm_pipeline.config.settings import (
    DEFAULT_BATCH_DELAY_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CALL_DELAY_MS,
    DEFAULT_CHUNK_DELAY_MS,
    DEFAULT_CHUNK_SIZE,
)
from amm_indexer.utils.errors import InvalidRequestError


class RateLimiter:
    """Fixed-window pacing: at most one call per ``interval_ms``.

    The first ``wait()`` returns immediately; every later call sleeps for
    whatever is left of the window opened by the previous call.
    """

    def __init__(
        self,
        interval_ms: int,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval_ms < 0:
            raise InvalidRequestError("interval_ms must be >= 0")
        self.interval = interval_ms / 1000
        self._sleep = sleep
        self._clock = clock
        self._last: float | None = None

    def wait(self) -> float:
        """Block until the window is open. Returns the seconds slept."""
        slept = 0.0
        if self._last is not None and self.interval > 0:
            remaining = self.interval - (self._clock() - self._last)
            if remaining > 0:
                self._sleep(remaining)
                slept = remaining
        self._last = self._clock()
        return slept

    def restart(self) -> None:
        """Open the next window now, e.g. once a long unit of work has finished."""
        self._last = self._clock()


@dataclass(frozen=True)
class FetchPolicy:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: int = DEFAULT_CHUNK_DELAY_MS

    def __post_init__(self):
        if self.chunk_size < 1:
            raise InvalidRequestError("chunkSize must be >= 1")
        if self.delay_ms < 0:
            raise InvalidRequestError("delayMs must be >= 0")


@dataclass(frozen=True)
class DiscoveryPolicy:
    batch_size: int = DEFAULT_BATCH_SIZE
    delay_ms: int = DEFAULT_BATCH_DELAY_MS
    call_delay_ms: int = DEFAULT_CALL_DELAY_MS
    max_workers: int | None = field(default=None)

    def __post_init__(self):
        if self.batch_size < 1:
            raise InvalidRequestError("batchSize must be >= 1")
        if self.delay_ms < 0 or self.call_delay_ms < 0:
            raise InvalidRequestError("delays must be >= 0")

    @property
    def workers(self) -> int:
        return self.max_workers or self.batch_size
