class IndexerError(Exception):
    """Base class for pipeline errors."""


class InvalidRequestError(IndexerError):
    """Bad range / address / tuning input, rejected before any RPC or DB work."""


class LogFetchError(IndexerError):
    def __init__(self, from_block: int, to_block: int, cause: Exception):
        super().__init__(f"eth_getLogs failed for blocks {from_block}-{to_block}: {cause}")
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause


class EventDecodeError(IndexerError):
    pass


class SyncRunNotFoundError(IndexerError):
    pass


class SyncRunStateError(IndexerError):
    """A run that already reached a terminal state was asked to transition again."""
