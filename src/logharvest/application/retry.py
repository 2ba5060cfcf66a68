from __future__ import annotations

import random
from dataclasses import dataclass, field

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests", "throttled")


def _messages(error: BaseException) -> str:
    parts: list[str] = []
    seen: set[int] = set()
    cur: BaseException | None = error
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        parts.append(str(cur))
        cur = cur.__cause__
    return " ".join(parts).lower()


def is_rate_limit_error(error: BaseException) -> bool:
    """Heuristic: does the error (or any chained cause) read like server-side throttling?"""
    msg = _messages(error)
    if any(m in msg for m in _RATE_LIMIT_MARKERS):
        return True
    return "exceeded" in msg and "capacity" in msg


def retry_after_hint(error: BaseException) -> float | None:
    """First ``retry_after_s`` found along the cause chain, if the node suggested one."""
    seen: set[int] = set()
    cur: BaseException | None = error
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        hint = getattr(cur, "retry_after_s", None)
        if hint is not None:
            return hint
        cur = cur.__cause__
    return None


@dataclass(slots=True, frozen=True)
class RetryDecision:
    should_retry: bool
    delay: float          # seconds; 0.0 when not retrying
    rate_limited: bool


@dataclass(slots=True)
class RetryContext:
    attempt: int
    max_retries: int
    last_error: BaseException | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter; rate-limit errors back off from a higher floor.

    Pure: ``decide`` computes delays but never sleeps.
    """
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True
    rate_limit_floor: float = 2.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    @classmethod
    def from_millis(cls, *, max_retries: int, initial_delay_ms: int, max_delay_ms: int, jitter: bool = True) -> RetryPolicy:
        return cls(max_retries=max_retries, base_delay=initial_delay_ms / 1000.0,
                   max_delay=max_delay_ms / 1000.0, jitter=jitter)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def is_rate_limit(self, error: BaseException) -> bool:
        return is_rate_limit_error(error)

    def backoff(self, attempt: int, *, rate_limited: bool) -> float:
        if rate_limited:
            base = max(2 * self.base_delay, self.rate_limit_floor)
            lo, hi = -0.3, 0.3
        else:
            base = self.base_delay
            lo, hi = -0.1, 0.1
        delay = min(base * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay *= 1 + self.rng.uniform(lo, hi)
        return max(0.0, delay)

    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        rate_limited = self.is_rate_limit(error)
        if not self.should_retry(attempt):
            return RetryDecision(False, 0.0, rate_limited)
        return RetryDecision(True, self.backoff(attempt, rate_limited=rate_limited), rate_limited)
