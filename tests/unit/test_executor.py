"""Unit tests for the parallel executor and per-task retry loop."""

from __future__ import annotations

import asyncio

import pytest

from logharvest.application.executor import ParallelExecutor, TaskSlot, execute_in_parallel
from logharvest.application.governor import ConcurrencyGovernor
from logharvest.application.retry import RetryPolicy
from logharvest.domain.errors import ParallelExecutionError, ProviderError, RateLimitError
from logharvest.domain.models import BlockRange, FetchTask, Failure, Success


def no_jitter(max_retries: int = 3) -> RetryPolicy:
    return RetryPolicy(max_retries=max_retries, base_delay=0.01, max_delay=0.1, jitter=False, rate_limit_floor=0.02)


def make_task(index: int, fn) -> FetchTask:
    return FetchTask(index=index, operation=fn, block_range=BlockRange(index * 10, index * 10 + 9))


def const(value, delay: float = 0.0):
    async def op():
        if delay:
            await asyncio.sleep(delay)
        return value
    return op


def always_fail(message: str = "boom"):
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        raise RuntimeError(message)
    op.calls = calls
    return op


class TestTaskSlot:
    @pytest.mark.asyncio
    async def test_retry_then_succeed(self, fake_sleep):
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RuntimeError("transient")
            return "ok"

        slot = TaskSlot(make_task(0, flaky))
        outcome = await slot.run(no_jitter(max_retries=2), ConcurrencyGovernor(2), sleep=fake_sleep)

        assert isinstance(outcome, Success)
        assert outcome.payload == "ok"
        assert outcome.attempts == 3
        assert calls == 3
        assert slot.state == "succeeded"
        assert fake_sleep.delays == [0.01, 0.02]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_terminally(self, fake_sleep):
        op = always_fail()
        slot = TaskSlot(make_task(4, op))
        outcome = await slot.run(no_jitter(max_retries=2), ConcurrencyGovernor(2), sleep=fake_sleep)

        assert isinstance(outcome, Failure)
        assert op.calls["n"] == 3
        assert outcome.chunk_range == BlockRange(40, 49)
        assert slot.state == "failed_terminal"
        assert str(outcome.error) == "boom"

    @pytest.mark.asyncio
    async def test_rate_limited_terminal_error_is_specialized(self, fake_sleep):
        gov = ConcurrencyGovernor(5)
        slot = TaskSlot(make_task(0, always_fail("429 Too Many Requests")))
        outcome = await slot.run(no_jitter(max_retries=3), gov, sleep=fake_sleep)

        assert isinstance(outcome.error, RateLimitError)
        assert isinstance(outcome.error.__cause__, RuntimeError)
        assert outcome.error.attempts == 4
        # three retries → three rate-limit signals → one reduction
        assert gov.current_limit == 3

    @pytest.mark.asyncio
    async def test_success_clears_rate_limit_streak(self, fake_sleep):
        gov = ConcurrencyGovernor(5)
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("rate limit")
            return 1

        await TaskSlot(make_task(0, op)).run(no_jitter(), gov, sleep=fake_sleep)
        assert gov.consecutive_rate_limit_hits == 0

    @pytest.mark.asyncio
    async def test_abort_skips_further_retries(self, fake_sleep):
        op = always_fail()
        abort = asyncio.Event()
        abort.set()
        slot = TaskSlot(make_task(0, op))
        outcome = await slot.run(no_jitter(max_retries=5), ConcurrencyGovernor(1), sleep=fake_sleep, abort=abort)

        assert isinstance(outcome, Failure)
        assert outcome.aborted
        assert slot.state == "aborted"
        assert op.calls["n"] == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_abort_interrupts_retry_wait(self):
        op = always_fail("HTTP 429")
        abort = asyncio.Event()
        policy = RetryPolicy(max_retries=3, base_delay=0.01, jitter=False, rate_limit_floor=5.0)
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, abort.set)

        t0 = loop.time()
        outcome = await TaskSlot(make_task(0, op)).run(policy, ConcurrencyGovernor(1), abort=abort)

        assert loop.time() - t0 < 1.0
        assert outcome.aborted
        assert op.calls["n"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_keeps_retry_after_hint(self, fake_sleep):
        async def op():
            raise ProviderError("eth_getLogs HTTP 429 Too Many Requests", status_code=429, retry_after_s=7.0)

        outcome = await TaskSlot(make_task(0, op)).run(no_jitter(max_retries=0), ConcurrencyGovernor(1), sleep=fake_sleep)
        assert isinstance(outcome.error, RateLimitError)
        assert outcome.error.retry_after_s == 7.0


class TestParallelExecutor:
    @pytest.mark.asyncio
    async def test_empty_input(self):
        executor = ParallelExecutor(concurrency=3)
        assert await executor.execute([]) == []
        assert executor.errors == []

    @pytest.mark.asyncio
    async def test_order_preserved_under_varied_latency(self):
        latencies = [0.05, 0.0, 0.03, 0.01, 0.04, 0.0, 0.02]
        tasks = [make_task(i, const(i, d)) for i, d in enumerate(latencies)]
        finished: list[int] = []

        def record(op, i):
            async def wrapped():
                value = await op()
                finished.append(i)
                return value
            return wrapped

        tasks = [FetchTask(t.index, record(t.operation, t.index), t.block_range) for t in tasks]
        result = await ParallelExecutor(concurrency=4, policy=no_jitter()).execute(tasks)

        assert result == list(range(len(latencies)))
        assert finished != sorted(finished)

    @pytest.mark.asyncio
    async def test_admission_respects_limit(self):
        active = 0
        peak = 0

        async def op():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.005)
            active -= 1
            return True

        await ParallelExecutor(concurrency=3).execute([make_task(i, op) for i in range(12)])
        assert peak == 3

    @pytest.mark.asyncio
    async def test_fail_fast_raises_first_error(self, fake_sleep):
        failing = always_fail("chunk 2 broke")
        tasks = [make_task(0, const("r1")), make_task(1, failing), make_task(2, const("r3"))]
        executor = ParallelExecutor(concurrency=3, continue_on_error=False, policy=no_jitter(2), sleep=fake_sleep)

        with pytest.raises(ParallelExecutionError) as exc:
            await executor.execute(tasks)

        err = exc.value
        assert "chunk 2 broke" in str(err.first_error)
        assert err.failed_tasks == 1
        assert err.total_tasks == 3
        assert err.__cause__ is err.first_error
        assert failing.calls["n"] == 3

    @pytest.mark.asyncio
    async def test_fail_fast_stops_admitting(self, fake_sleep):
        later = always_fail("never")
        started: list[int] = []

        def tracked(i, op):
            async def wrapped():
                started.append(i)
                return await op()
            return wrapped

        tasks = [make_task(0, tracked(0, always_fail())), make_task(1, tracked(1, const(1))),
                 make_task(2, tracked(2, later))]
        executor = ParallelExecutor(concurrency=1, continue_on_error=False, policy=no_jitter(0), sleep=fake_sleep)

        with pytest.raises(ParallelExecutionError):
            await executor.execute(tasks)
        assert started == [0]
        assert later.calls["n"] == 0

    @pytest.mark.asyncio
    async def test_fail_fast_does_not_wait_out_sibling_backoff(self):
        async def broken():
            await asyncio.sleep(0.01)
            raise RuntimeError("execution reverted")

        # task 0 exhausts its single retry quickly; task 1 sits in a 3s rate-limit backoff
        throttled = always_fail("HTTP 429")
        policy = RetryPolicy(max_retries=1, base_delay=0.01, jitter=False, rate_limit_floor=3.0)
        executor = ParallelExecutor(concurrency=2, continue_on_error=False, policy=policy)

        loop = asyncio.get_running_loop()
        t0 = loop.time()
        with pytest.raises(ParallelExecutionError) as exc:
            await executor.execute([make_task(0, broken), make_task(1, throttled)])

        assert loop.time() - t0 < 1.0
        assert throttled.calls["n"] == 1
        err = exc.value
        assert "execution reverted" in str(err.first_error)
        assert err.failed_tasks == 1
        assert err.aborted_tasks == 1
        assert len(executor.errors) == 1
        assert executor.failures[0].chunk_range == BlockRange(0, 9)

    @pytest.mark.asyncio
    async def test_continue_on_error_skips_failed(self, fake_sleep):
        tasks = [make_task(0, const("r1")), make_task(1, always_fail()), make_task(2, const("r3"))]
        progress: list[tuple[int, int]] = []
        executor = ParallelExecutor(concurrency=3, continue_on_error=True, policy=no_jitter(2),
                                    sleep=fake_sleep, on_progress=lambda c, t: progress.append((c, t)))

        assert await executor.execute(tasks) == ["r1", "r3"]
        assert len(executor.errors) == 1
        assert [f.chunk_range for f in executor.failures] == [BlockRange(10, 19)]
        assert [c for c, _ in progress] == [1, 2, 3]
        assert all(t == 3 for _, t in progress)

    @pytest.mark.asyncio
    async def test_progress_callback_errors_are_ignored(self):
        def boom(completed, total):
            raise ValueError("sink broke")

        result = await ParallelExecutor(concurrency=2, on_progress=boom).execute(
            [make_task(i, const(i)) for i in range(3)]
        )
        assert result == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_rate_limits_shrink_admissions(self, fake_sleep):
        gov = ConcurrencyGovernor(4)
        attempts: dict[int, int] = {}

        def limited(i):
            async def op():
                attempts[i] = attempts.get(i, 0) + 1
                if attempts[i] == 1:
                    raise RuntimeError("HTTP 429")
                return i
            return op

        executor = ParallelExecutor(governor=gov, policy=no_jitter(), sleep=fake_sleep)
        result = await executor.execute([make_task(i, limited(i)) for i in range(8)])

        assert result == list(range(8))
        assert gov.current_limit < 4

    @pytest.mark.asyncio
    async def test_governor_not_restored_between_runs(self, fake_sleep):
        gov = ConcurrencyGovernor(5)
        for _ in range(3):
            gov.record_rate_limit_hit()
        executor = ParallelExecutor(governor=gov, sleep=fake_sleep)
        await executor.execute([make_task(0, const(0))])
        assert gov.current_limit == 3


class TestExecuteInParallel:
    @pytest.mark.asyncio
    async def test_plain_operations(self):
        ops = [const(i, 0.01 * (3 - i)) for i in range(4)]
        assert await execute_in_parallel(ops, concurrency=4) == [0, 1, 2, 3]
