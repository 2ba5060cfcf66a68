from __future__ import annotations

import asyncio
import functools
import logging

from ..config import FetcherConfig, ProgressCallback, create_config
from ..domain.models import BlockRange, ChunkResult, EventLog, FetchReport, FetchTask, LogFilter
from ..ports.rpc import RPCClient
from .chunk_fetcher import ChunkFetcher
from .executor import ParallelExecutor, Sleep
from .planning import partition_range
from .progress import ProgressTracker
from .retry import RetryPolicy
from .retrying_rpc import RetryingRPC
from .telemetry import log_chunk_plan
from .utils import event_topic0, is_topic_hash, normalize_address

logger = logging.getLogger(__name__)

BlockBound = int | str


async def resolve_block(rpc: RPCClient, value: BlockBound) -> int:
    """Ints pass through; "earliest"/"genesis" → 0, "latest" → the node's head, hex/decimal strings parsed."""
    if not isinstance(value, str):
        return int(value)
    v = value.strip().lower()
    if v in ("earliest", "genesis"):
        return 0
    if v == "latest":
        return await rpc.latest_block()
    return int(v, 16) if v.startswith("0x") else int(v)


def build_chunk_tasks(fetcher: ChunkFetcher, chunks: list[BlockRange], log_filter: LogFilter) -> list[FetchTask[ChunkResult]]:
    return [FetchTask(i, functools.partial(fetcher.fetch, rng, log_filter), rng) for i, rng in enumerate(chunks)]


async def fetch_range_report(
    rpc: RPCClient,
    from_block: BlockBound,
    to_block: BlockBound,
    log_filter: LogFilter,
    config: FetcherConfig,
    *,
    chunk_size: int | None = None,
    on_progress: ProgressCallback | None = None,
    sleep: Sleep = asyncio.sleep,
) -> FetchReport:
    """Fetch ``[from_block, to_block]`` chunk by chunk; logs come back in block-range order.

    Failed chunks (only possible with ``continue_on_error``) contribute no logs and
    are listed in ``FetchReport.failures``.
    """
    policy = RetryPolicy.from_millis(
        max_retries=config.max_retries,
        initial_delay_ms=config.initial_retry_delay_ms,
        max_delay_ms=config.max_retry_delay_ms,
    )
    meta = rpc if isinstance(rpc, RetryingRPC) else RetryingRPC(rpc, policy, sleep=sleep)
    s_block = await resolve_block(meta, from_block)
    e_block = await resolve_block(meta, to_block)
    size = chunk_size or config.chunk_size
    chunks = partition_range(s_block, e_block, size)
    requested = BlockRange(s_block, e_block)
    label = f"Fetching {log_filter.event_name or 'logs'}"

    log_chunk_plan(from_block=s_block, to_block=e_block, chunk_size=size,
                   total_chunks=len(chunks), concurrency=config.concurrency)
    if config.show_progress:
        logger.info("%s from blocks %s to %s in %d chunks", label, f"{s_block:,}", f"{e_block:,}", len(chunks))

    tracker = ProgressTracker(len(chunks), label=label) if config.show_progress else None
    callbacks = [cb for cb in (on_progress, config.progress_callback) if cb is not None]

    def progress(completed: int, total: int) -> None:
        if tracker is not None:
            tracker(completed, total)
        for cb in callbacks:
            cb(completed, total, requested)

    executor: ParallelExecutor[ChunkResult] = ParallelExecutor(
        concurrency=config.concurrency,
        continue_on_error=config.continue_on_error,
        policy=policy,
        on_progress=progress,
        sleep=sleep,
        label=label,
    )
    fetcher = ChunkFetcher(rpc, max_logs_per_chunk=config.max_logs_per_chunk)
    results = await executor.execute(build_chunk_tasks(fetcher, chunks, log_filter))

    logs = [log for r in results for log in r.logs]
    if config.show_progress:
        logger.info("%s done: %d logs across %d chunks", label, len(logs), len(results))
    return FetchReport(logs=logs, failures=executor.failures, total_chunks=len(chunks))


async def fetch_range(
    rpc: RPCClient,
    from_block: BlockBound,
    to_block: BlockBound,
    log_filter: LogFilter,
    config: FetcherConfig,
    **kwargs,
) -> list[EventLog]:
    report = await fetch_range_report(rpc, from_block, to_block, log_filter, config, **kwargs)
    return report.logs


class LogFetcher:
    """Configured entry point bound to one RPC client."""

    def __init__(self, rpc: RPCClient, config: FetcherConfig | None = None, **overrides) -> None:
        self.rpc = rpc
        if config is None:
            self._config = create_config(**overrides)
        else:
            self._config = create_config(config, environ={}, **overrides)

    @property
    def config(self) -> FetcherConfig:
        return self._config

    def update_config(self, **overrides) -> None:
        self._config = create_config(self._config, environ={}, **overrides)

    async def fetch_logs_report(
        self,
        log_filter: LogFilter,
        from_block: BlockBound,
        to_block: BlockBound,
        *,
        chunk_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> FetchReport:
        return await fetch_range_report(self.rpc, from_block, to_block, log_filter, self._config,
                                        chunk_size=chunk_size, on_progress=on_progress, sleep=sleep)

    async def fetch_logs(self, log_filter: LogFilter, from_block: BlockBound, to_block: BlockBound, **kwargs) -> list[EventLog]:
        return (await self.fetch_logs_report(log_filter, from_block, to_block, **kwargs)).logs

    async def fetch_events(
        self,
        address: str,
        event: str,
        from_block: BlockBound,
        to_block: BlockBound,
        **kwargs,
    ) -> list[EventLog]:
        """``event`` is a signature such as ``Transfer(address,address,uint256)`` or a topic0 hash."""
        log_filter = LogFilter(
            address=normalize_address(address),
            topics=(event_topic0(event),),
            event_name=None if is_topic_hash(event.strip().lower()) else event.split("(", 1)[0].strip(),
        )
        return await self.fetch_logs(log_filter, from_block, to_block, **kwargs)
