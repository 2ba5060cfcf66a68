"""Unit tests for error formatting and helpers."""

from __future__ import annotations

from logharvest.domain.errors import (
    ChunkFetchError,
    ChunkTruncationError,
    ContractContext,
    ErrorKind,
    FetcherError,
    ParallelExecutionError,
    ProviderError,
    RateLimitError,
    is_fetcher_error,
    is_retryable_error,
)
from logharvest.domain.models import BlockRange


class TestErrorFormatting:
    def test_fetch_error_context(self):
        err = ChunkFetchError(
            "Failed to query events",
            block_range=BlockRange(5, 9),
            contract=ContractContext("0xabc", "Swap"),
            cause=TimeoutError("read timeout"),
        )
        assert str(err) == (
            "Failed to query events | Contract: 0xabc, Event: Swap | Blocks: 5-9\nCaused by: read timeout"
        )
        assert err.kind is ErrorKind.EVENT_FETCH

    def test_parallel_execution_error(self):
        first = ChunkTruncationError(BlockRange(0, 99), 100, 100)
        err = ParallelExecutionError("task 0 failed", failed_tasks=2, total_tasks=5, errors=[first, RuntimeError("x")])
        assert err.first_error is first
        assert "(2/5 tasks failed)" in str(err)
        assert "First error: Potential event truncation" in str(err)
        assert err.code == "PARALLEL_EXECUTION_ERROR"

    def test_parallel_execution_error_without_errors(self):
        err = ParallelExecutionError("nothing", failed_tasks=0, total_tasks=0, errors=[])
        assert err.first_error is None
        assert "Unknown error" in str(err)

    def test_parallel_execution_error_counts_aborted(self):
        err = ParallelExecutionError("task 3 failed", failed_tasks=1, total_tasks=6, errors=[RuntimeError("x")],
                                     aborted_tasks=2)
        assert err.aborted_tasks == 2
        assert "(1/6 tasks failed, 2 aborted)" in str(err)

    def test_rate_limit_and_provider(self):
        assert str(RateLimitError("slow down", attempts=4, retry_after_s=2.5)) == "slow down | Attempts: 4 | Retry after: 2.5s"
        assert str(ProviderError("eth_getLogs HTTP 502", url="http://node", status_code=502)) == (
            "Provider error: eth_getLogs HTTP 502 (HTTP 502) (URL: http://node)"
        )

    def test_hierarchy_is_flat(self):
        for cls in (ChunkFetchError, ChunkTruncationError, RateLimitError, ProviderError, ParallelExecutionError):
            assert cls.__bases__ == (FetcherError,)


class TestHelpers:
    def test_is_fetcher_error(self):
        assert is_fetcher_error(RateLimitError("x"))
        assert not is_fetcher_error(RuntimeError("x"))

    def test_is_retryable_error(self):
        assert is_retryable_error(ProviderError("x"))
        assert is_retryable_error(RuntimeError("Connection reset by peer"))
        assert is_retryable_error(RuntimeError("request timed out"))
        assert not is_retryable_error(RuntimeError("execution reverted"))
        assert not is_retryable_error("timeout")
