from __future__ import annotations
import os, pyarrow as pa, pyarrow.parquet as pq
from typing import Iterable

from ..ports.storage import EventSink
from ..domain.models import EventLog

LOG_SCHEMA = pa.schema([
    ("block_number",    pa.int64()),
    ("log_index",       pa.int64()),
    ("block_hash",      pa.string()),
    ("tx_hash",         pa.string()),
    ("address",         pa.string()),
    ("topic0",          pa.string()),
    ("topics",          pa.list_(pa.string())),
    ("data_hex",        pa.string()),
    ("block_timestamp", pa.int64()),
    ("removed",         pa.bool_()),
])

def events_to_table(events: Iterable[EventLog]) -> pa.Table:
    evs = list(events)
    table = pa.Table.from_pydict({
        "block_number":    [e.block_number for e in evs],
        "log_index":       [e.log_index for e in evs],
        "block_hash":      [e.block_hash for e in evs],
        "tx_hash":         [e.tx_hash for e in evs],
        "address":         [e.address for e in evs],
        "topic0":          [e.topic0 for e in evs],
        "topics":          [list(e.topics) for e in evs],
        "data_hex":        [e.data_hex for e in evs],
        "block_timestamp": [e.block_timestamp for e in evs],
        "removed":         [e.removed for e in evs],
    }, schema=LOG_SCHEMA)
    return table.sort_by([("block_number", "ascending"), ("log_index", "ascending")])

class ParquetEventSink(EventSink):
    def __init__(self, path: str, codec: str = "zstd") -> None:
        self.path = path
        self.codec = codec
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def write(self, events: Iterable[EventLog]) -> int:
        table = events_to_table(events)
        tmp = self.path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec, use_dictionary=True)
        os.replace(tmp, self.path)
        return table.num_rows
