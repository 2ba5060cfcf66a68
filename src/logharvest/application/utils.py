from __future__ import annotations
from typing import Sequence

from eth_utils import is_address, keccak, to_checksum_address

from ..domain.value_types import Address, Topic0


def is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x) == 66

def normalize_address(address: str) -> Address:
    if not is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return Address(address.lower())

def checksum(address: str) -> str: return to_checksum_address(address)

def event_topic0(event: str) -> Topic0:
    """Accept a topic0 hash as-is or hash a canonical signature like ``Transfer(address,address,uint256)``."""
    s = event.strip()
    if is_topic_hash(s.lower()):
        return Topic0(s.lower())
    if "(" not in s or not s.endswith(")"):
        raise ValueError(f"Not an event signature or topic0 hash: {event!r}")
    sig = s.replace(" ", "")
    return Topic0("0x" + keccak(text=sig).hex().removeprefix("0x"))

def normalize_topic0_list(events: Sequence[str]) -> tuple[Topic0, ...]:
    return tuple(event_topic0(e) for e in events)
