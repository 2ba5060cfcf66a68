# logharvest/ports/storage.py
from __future__ import annotations

from typing import Iterable, Protocol
from ..domain.models import EventLog


class EventSink(Protocol):
    """Port for exporting fetched logs once a range has been collected (e.g., JSONL, Parquet)."""

    def write(self, events: Iterable[EventLog]) -> int:
        """Write all events in the given order; return the number written."""
