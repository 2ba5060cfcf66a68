"""Shared fixtures: an in-memory RPC client and a recording sleep."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from logharvest.domain.models import EventLog, LogFilter
from logharvest.domain.value_types import Address

USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
TRANSFER_T0 = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def make_log(block: int, log_index: int = 0, address: str = USDC) -> EventLog:
    return EventLog(
        address=Address(address),
        topics=(TRANSFER_T0,),
        data_hex="0x",
        block_number=block,
        tx_hash=f"0x{block:064x}",
        log_index=log_index,
    )


class FakeRPC:
    """RPCClient double.

    ``behaviour(from_block, to_block, call_no)`` returns the logs for a call or
    raises; ``call_no`` counts calls for that exact range starting at 1. By
    default one log per block is returned.
    """

    def __init__(self, behaviour: Callable[[int, int, int], list[EventLog]] | None = None, *, latest: int = 1_000) -> None:
        self.behaviour = behaviour or (lambda a, b, n: [make_log(x) for x in range(a, b + 1)])
        self.latest = latest
        self.calls: list[tuple[int, int]] = []
        self.filters: list[LogFilter] = []
        self.closed = False

    async def get_logs(self, log_filter: LogFilter, from_block: int, to_block: int) -> list[EventLog]:
        self.calls.append((from_block, to_block))
        self.filters.append(log_filter)
        await asyncio.sleep(0)
        return self.behaviour(from_block, to_block, self.calls.count((from_block, to_block)))

    async def latest_block(self) -> int:
        return self.latest

    async def chain_id(self) -> int:
        return 1

    async def is_syncing(self) -> bool:
        return False

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_rpc() -> FakeRPC:
    return FakeRPC()
