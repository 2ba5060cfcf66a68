# logharvest/ports/rpc.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import EventLog, LogFilter


class RPCClient(Protocol):
    """Port defining the contract for an Ethereum JSON-RPC logs client.

    Transport implementations perform a single call per method: no chunking,
    no retries. Retrying wrappers decorate them behind the same protocol.
    """

    async def get_logs(
        self,
        log_filter: LogFilter,
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def chain_id(self) -> int:
        """Return the chain id reported by the node."""

    async def is_syncing(self) -> bool:
        """Return True while the node reports it is still syncing."""

    async def aclose(self) -> None:
        """Release transport resources."""
