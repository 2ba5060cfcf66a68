from __future__ import annotations

import math

from .telemetry import log_concurrency_reduced

RATE_LIMIT_STREAK = 3
REDUCTION_FACTOR = 0.7


class ConcurrencyGovernor:
    """Adaptive admission limit.

    Three consecutive rate-limit signals shrink the limit to 70% (floor, min 1).
    The limit is never raised again automatically; call :meth:`reset` or build
    a new governor to recover.
    """

    def __init__(self, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.initial_limit = concurrency
        self.current_limit = concurrency
        self.consecutive_rate_limit_hits = 0

    @property
    def reduced(self) -> bool:
        return self.current_limit < self.initial_limit

    def record_rate_limit_hit(self) -> bool:
        """Count a rate-limit signal; return True if this call reduced the limit."""
        self.consecutive_rate_limit_hits += 1
        if self.consecutive_rate_limit_hits < RATE_LIMIT_STREAK or self.current_limit <= 1:
            return False
        old = self.current_limit
        self.current_limit = max(1, math.floor(old * REDUCTION_FACTOR))
        self.consecutive_rate_limit_hits = 0
        log_concurrency_reduced(old_limit=old, new_limit=self.current_limit)
        return True

    def record_success(self) -> None:
        self.consecutive_rate_limit_hits = 0

    def reset(self) -> None:
        self.current_limit = self.initial_limit
        self.consecutive_rate_limit_hits = 0
