from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    if minutes == 0:
        return f"{secs}s"
    hours, minutes = divmod(minutes, 60)
    if hours == 0:
        return f"{minutes}m {secs}s"
    return f"{hours}h {minutes}m {secs}s"


class ProgressTracker:
    """Logs throttled "label: n/total (pct%)" lines with elapsed and remaining time.

    Usable directly as an executor progress callback: ``tracker(completed, total)``.
    """

    def __init__(
        self,
        total: int,
        label: str = "Processing",
        update_interval_s: float = 5.0,
        *,
        emit: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total = total
        self.label = label
        self.update_interval_s = update_interval_s
        self.completed = 0
        self._emit = emit or logger.info
        self._clock = clock
        self._start = clock()
        self._last = self._start

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    def __call__(self, completed: int, total: int) -> None:
        self.total = total
        self.update(completed - self.completed)

    def update(self, increment: int = 1, force: bool = False) -> None:
        self.completed += increment
        now = self._clock()
        if not (force or now - self._last >= self.update_interval_s or self.completed >= self.total):
            return
        self._last = now
        elapsed = now - self._start
        timing = ""
        if self.completed > 0 and elapsed > 0:
            rate = self.completed / elapsed
            remaining = max(0.0, self.total / rate - elapsed)
            timing = f" ({format_duration(elapsed)} elapsed, {format_duration(remaining)} remaining)"
        self._emit(f"{self.label}: {self.completed}/{self.total} ({self.fraction * 100:.2f}%){timing}")

    def complete(self) -> None:
        self.update(self.total - self.completed, force=True)
        self._emit(f"{self.label} completed in {format_duration(self._clock() - self._start)}")
