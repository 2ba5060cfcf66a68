from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar, Union
from .value_types import Address, Topic0

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1
    def __str__(self) -> str: return f"{self.start}-{self.end}"


@dataclass(slots=True, frozen=True)
class EventLog:
    address: Address
    topics: tuple[str, ...]          # all topics, lowercased with 0x
    data_hex: str                    # hex with 0x (or "0x")
    block_number: int
    tx_hash: str
    log_index: int
    block_hash: str | None = None
    block_timestamp: int | None = None
    removed: bool = False

    @property
    def topic0(self) -> Topic0 | None:
        return Topic0(self.topics[0]) if self.topics else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "topics": list(self.topics),
            "data": self.data_hex,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "tx_hash": self.tx_hash,
            "log_index": self.log_index,
            "block_timestamp": self.block_timestamp,
            "removed": self.removed,
        }


@dataclass(slots=True, frozen=True)
class LogFilter:
    """Address/topic criteria for ``eth_getLogs``; block bounds are supplied per chunk."""
    address: Address | tuple[Address, ...] | None = None
    topics: tuple[Topic0 | tuple[Topic0, ...] | None, ...] = ()
    event_name: str | None = None    # context only, never sent to the node

    def to_params(self, from_block: int, to_block: int) -> dict[str, Any]:
        params: dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if self.address is not None:
            params["address"] = list(self.address) if isinstance(self.address, tuple) else self.address
        if self.topics:
            params["topics"] = [list(t) if isinstance(t, tuple) else t for t in self.topics]
        return params

    def describe_address(self) -> str | None:
        if self.address is None: return None
        return ",".join(self.address) if isinstance(self.address, tuple) else str(self.address)


@dataclass(slots=True, frozen=True)
class ChunkResult:
    logs: list[EventLog]
    block_range: BlockRange


@dataclass(slots=True, frozen=True)
class FetchTask(Generic[T]):
    index: int
    operation: Callable[[], Awaitable[T]]
    block_range: BlockRange | None = None


@dataclass(slots=True, frozen=True)
class Success(Generic[T]):
    payload: T
    chunk_range: BlockRange | None
    attempts: int = 1


@dataclass(slots=True, frozen=True)
class Failure:
    error: BaseException
    chunk_range: BlockRange | None
    attempts: int = 1
    aborted: bool = False            # cut short by a fail-fast abort, retries not exhausted


TaskOutcome = Union[Success[Any], Failure]


@dataclass(slots=True)
class FetchReport:
    logs: list[EventLog]
    failures: list[Failure] = field(default_factory=list)
    total_chunks: int = 0

    @property
    def failed_ranges(self) -> list[BlockRange]:
        return [f.chunk_range for f in self.failures if f.chunk_range is not None]

    @property
    def complete(self) -> bool:
        return not self.failures

