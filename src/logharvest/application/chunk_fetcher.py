from __future__ import annotations

from ..domain.errors import ChunkFetchError, ChunkTruncationError, ContractContext
from ..domain.models import BlockRange, ChunkResult, LogFilter
from ..ports.rpc import RPCClient


class ChunkFetcher:
    """Fetch one sub-range through the injected RPC client and reject suspicious results.

    A chunk returning ``max_logs_per_chunk`` logs or more is treated as possibly
    truncated by the node and raised as :class:`ChunkTruncationError`, so it is
    retried and reported like any other failure.
    """

    def __init__(self, rpc: RPCClient, *, max_logs_per_chunk: int) -> None:
        self.rpc = rpc
        self.max_logs_per_chunk = max_logs_per_chunk

    async def fetch(self, block_range: BlockRange, log_filter: LogFilter) -> ChunkResult:
        try:
            logs = await self.rpc.get_logs(log_filter, block_range.start, block_range.end)
        except Exception as e:
            raise ChunkFetchError(
                "Failed to query events",
                block_range=block_range,
                contract=_contract_context(log_filter),
                cause=e,
            ) from e

        if len(logs) >= self.max_logs_per_chunk:
            raise ChunkTruncationError(block_range, len(logs), self.max_logs_per_chunk)
        return ChunkResult(logs=logs, block_range=block_range)


def _contract_context(log_filter: LogFilter) -> ContractContext | None:
    addr = log_filter.describe_address()
    if addr is None and log_filter.event_name is None:
        return None
    return ContractContext(contract_address=addr or "*", event_name=log_filter.event_name)
