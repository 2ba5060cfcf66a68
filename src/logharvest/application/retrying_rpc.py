"""RPCClient decorator that retries the node's metadata calls.

``latest_block``, ``chain_id`` and ``is_syncing`` go through the same backoff
as chunk fetches. ``get_logs`` is passed straight through: chunk retries are
owned by the executor, and retrying here as well would multiply attempts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..domain.errors import ProviderError, RateLimitError
from ..domain.models import EventLog, LogFilter
from ..ports.rpc import RPCClient
from .retry import RetryPolicy, retry_after_hint

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryingRPC(RPCClient):
    def __init__(
        self,
        inner: RPCClient,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def _with_retry(self, method: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except Exception as e:
                decision = self.policy.decide(e, attempt)
                if not decision.should_retry:
                    raise self._exhausted(method, e, attempts=attempt + 1, rate_limited=decision.rate_limited) from e
                logger.warning("%s failed (attempt %d/%d), retrying in %.2fs: %s",
                               method, attempt + 1, self.policy.max_retries + 1, decision.delay, e)
                await self._sleep(decision.delay)
                attempt += 1

    def _exhausted(self, method: str, error: Exception, *, attempts: int, rate_limited: bool) -> Exception:
        retries = self.policy.max_retries
        if rate_limited:
            return RateLimitError(f"Rate limit exceeded after {retries} retries: {error}",
                                  attempts=attempts, retry_after_s=retry_after_hint(error), cause=error)
        return ProviderError(f"{method} failed after {retries} retries",
                             url=getattr(error, "url", None), status_code=getattr(error, "status_code", None),
                             cause=error)

    async def get_logs(self, log_filter: LogFilter, from_block: int, to_block: int) -> list[EventLog]:
        return await self.inner.get_logs(log_filter, from_block, to_block)

    async def latest_block(self) -> int:
        return await self._with_retry("eth_blockNumber", self.inner.latest_block)

    async def chain_id(self) -> int:
        return await self._with_retry("eth_chainId", self.inner.chain_id)

    async def is_syncing(self) -> bool:
        return await self._with_retry("eth_syncing", self.inner.is_syncing)

    async def connect(self) -> int:
        """Check the node answers before any work is planned; returns its chain id."""
        try:
            cid = await self.chain_id()
        except RateLimitError:
            raise
        except ProviderError as e:
            raise ProviderError("Failed to connect to provider", url=e.url, cause=e) from e
        logger.debug("connected to chain %d", cid)
        return cid

    async def aclose(self) -> None:
        await self.inner.aclose()
