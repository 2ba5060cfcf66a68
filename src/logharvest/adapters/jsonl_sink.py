from __future__ import annotations
import os, json
from typing import Iterable
from ..ports.storage import EventSink
from ..domain.models import EventLog

class JSONLEventSink(EventSink):
    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def write(self, events: Iterable[EventLog]) -> int:
        n = 0
        tmp = self.path + ".tmp"
        with open(tmp, "w") as f:
            for ev in events:
                f.write(json.dumps(ev.to_dict(), separators=(",", ":")) + "\n")
                n += 1
            f.flush(); os.fsync(f.fileno())
        os.replace(tmp, self.path)
        return n
