from __future__ import annotations
from typing import Sequence, TypeVar
from ..domain.errors import BlockRangeError
from ..domain.models import BlockRange

T = TypeVar("T")


def partition_range(from_block: int, to_block: int, chunk_size: int) -> list[BlockRange]:
    """Split [from_block, to_block] into ascending, contiguous chunks of at most chunk_size blocks."""
    if from_block > to_block:
        raise BlockRangeError("Start block must be less than or equal to end block",
                              from_block=from_block, to_block=to_block, chunk_size=chunk_size)
    if chunk_size <= 0:
        raise BlockRangeError("Chunk size must be positive",
                              from_block=from_block, to_block=to_block, chunk_size=chunk_size)
    if from_block < 0:
        raise BlockRangeError("Block numbers must be non-negative",
                              from_block=from_block, to_block=to_block, chunk_size=chunk_size)
    out: list[BlockRange] = []
    b = from_block
    while b <= to_block:
        out.append(BlockRange(b, min(to_block, b + chunk_size - 1)))
        b += chunk_size
    return out


def chunk_list(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
