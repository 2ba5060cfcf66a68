"""Structured log events for chunked fetches.

Event names are stable; context travels in ``extra`` so handlers that
understand structured records can pick the fields up directly.
"""

from __future__ import annotations

import logging

from ..domain.models import BlockRange

logger = logging.getLogger(__name__)


def _rng(block_range: BlockRange | None) -> str | None:
    return str(block_range) if block_range is not None else None


def log_chunk_plan(*, from_block: int, to_block: int, chunk_size: int, total_chunks: int, concurrency: int) -> None:
    logger.info(
        "chunk_plan_created",
        extra={
            "from_block": from_block,
            "to_block": to_block,
            "chunk_size": chunk_size,
            "total_chunks": total_chunks,
            "concurrency": concurrency,
        },
    )


def log_task_retry(
    *,
    index: int,
    block_range: BlockRange | None,
    attempt: int,
    max_retries: int,
    delay_s: float,
    rate_limited: bool,
    error: BaseException,
) -> None:
    logger.warning(
        "task_retry_scheduled: task %d (attempt %d/%d) %s, retrying in %.2fs",
        index, attempt + 1, max_retries + 1,
        "rate limited" if rate_limited else f"failed: {error}",
        delay_s,
        extra={
            "task_index": index,
            "block_range": _rng(block_range),
            "attempt": attempt,
            "delay_s": delay_s,
            "rate_limited": rate_limited,
            "error_type": type(error).__name__,
        },
    )


def log_concurrency_reduced(*, old_limit: int, new_limit: int) -> None:
    logger.warning(
        "concurrency_reduced: %d -> %d due to rate limiting", old_limit, new_limit,
        extra={"old_limit": old_limit, "new_limit": new_limit},
    )


def log_task_failed(*, index: int, block_range: BlockRange | None, attempts: int, error: BaseException) -> None:
    logger.error(
        "task_failed: task %d after %d attempt(s): %s", index, attempts, error,
        extra={
            "task_index": index,
            "block_range": _rng(block_range),
            "attempts": attempts,
            "error_type": type(error).__name__,
        },
    )


def log_execution_complete(
    *,
    total_tasks: int,
    succeeded: int,
    failed: int,
    final_concurrency: int,
    latency_ms: float,
    aborted: int = 0,
) -> None:
    level = logging.WARNING if failed else logging.INFO
    logger.log(
        level,
        "execution_complete: %d/%d tasks succeeded, %d failed, %d aborted",
        succeeded, total_tasks, failed, aborted,
        extra={
            "total_tasks": total_tasks,
            "succeeded": succeeded,
            "failed": failed,
            "aborted": aborted,
            "final_concurrency": final_concurrency,
            "latency_ms": latency_ms,
        },
    )
