from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from ..domain.errors import ParallelExecutionError, RateLimitError
from ..domain.models import FetchTask, Failure, Success, TaskOutcome
from ..domain.value_types import TaskState
from .governor import ConcurrencyGovernor
from .retry import RetryContext, RetryPolicy, retry_after_hint
from .telemetry import log_execution_complete, log_task_failed, log_task_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
ProgressFn = Callable[[int, int], None]


# ──────────────────────────────
# Per-task lifecycle
# ──────────────────────────────

class TaskSlot(Generic[T]):
    """One task's retry loop: pending → running → succeeded | retry_scheduled → running | failed_terminal | aborted."""

    def __init__(self, task: FetchTask[T]) -> None:
        self.task = task
        self.state: TaskState = "pending"
        self.attempts = 0
        self.result: T | None = None
        self.error: BaseException | None = None

    @property
    def index(self) -> int:
        return self.task.index

    async def run(
        self,
        policy: RetryPolicy,
        governor: ConcurrencyGovernor,
        *,
        sleep: Sleep = asyncio.sleep,
        abort: asyncio.Event | None = None,
    ) -> TaskOutcome:
        ctx = RetryContext(attempt=0, max_retries=policy.max_retries)
        while True:
            self.state = "running"
            self.attempts += 1
            try:
                payload = await self.task.operation()
            except Exception as e:
                ctx.last_error = e
                decision = policy.decide(e, ctx.attempt)
                if not decision.should_retry:
                    return self._fail(e, exhausted=True, rate_limited=decision.rate_limited, policy=policy)
                if abort is not None and abort.is_set():
                    return self._abort(e)
                if decision.rate_limited:
                    governor.record_rate_limit_hit()
                log_task_retry(index=self.index, block_range=self.task.block_range, attempt=ctx.attempt,
                               max_retries=ctx.max_retries, delay_s=decision.delay,
                               rate_limited=decision.rate_limited, error=e)
                self.state = "retry_scheduled"
                if not await _wait_or_abort(sleep(decision.delay), abort):
                    return self._abort(e)
                ctx.attempt += 1
                continue

            self.state = "succeeded"
            self.result = payload
            governor.record_success()
            return Success(payload, self.task.block_range, self.attempts)

    def _abort(self, error: BaseException) -> Failure:
        self.state = "aborted"
        self.error = error
        return Failure(error, self.task.block_range, self.attempts, aborted=True)

    def _fail(
        self,
        error: BaseException,
        *,
        exhausted: bool = False,
        rate_limited: bool = False,
        policy: RetryPolicy | None = None,
    ) -> Failure:
        if exhausted and rate_limited and not isinstance(error, RateLimitError):
            retries = policy.max_retries if policy is not None else self.attempts - 1
            wrapped = RateLimitError(
                f"Rate limit exceeded after {retries} retries: {error}",
                block_range=self.task.block_range, attempts=self.attempts,
                retry_after_s=retry_after_hint(error), cause=error,
            )
            wrapped.__cause__ = error
            error = wrapped
        self.state = "failed_terminal"
        self.error = error
        return Failure(error, self.task.block_range, self.attempts)


async def _wait_or_abort(delay: Awaitable[None], abort: asyncio.Event | None) -> bool:
    """Await a retry delay; False if ``abort`` fired first (the delay is then cancelled)."""
    if abort is None:
        await delay
        return True
    if abort.is_set():
        if asyncio.iscoroutine(delay):
            delay.close()
        return False
    sleeper = asyncio.ensure_future(delay)
    watcher = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for t in (sleeper, watcher):
            t.cancel()
        await asyncio.gather(sleeper, watcher, return_exceptions=True)
    return not abort.is_set()


# ──────────────────────────────
# Run bookkeeping
# ──────────────────────────────

@dataclass
class ExecutionState:
    """Shared run state; only mutated on the event loop between awaits."""
    total: int
    outcomes: dict[int, TaskOutcome] = field(default_factory=dict)
    errors: list[BaseException] = field(default_factory=list)
    completed: int = 0
    in_flight: int = 0
    fatal: BaseException | None = None
    fatal_index: int | None = None
    abort: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def aborted(self) -> bool:
        return self.fatal is not None

    @property
    def aborted_tasks(self) -> int:
        return sum(1 for o in self.outcomes.values() if isinstance(o, Failure) and o.aborted)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes.values() if isinstance(o, Success))

    def failures(self) -> list[Failure]:
        return [o for _, o in sorted(self.outcomes.items()) if isinstance(o, Failure) and not o.aborted]

    def ordered_results(self) -> list:
        """Successful payloads by ascending task index; failed slots are skipped."""
        return [o.payload for _, o in sorted(self.outcomes.items()) if isinstance(o, Success)]


# ──────────────────────────────
# Executor
# ──────────────────────────────

class ParallelExecutor(Generic[T]):
    """Runs tasks concurrently under an adaptive limit, retrying each independently.

    Results come back in task-index order regardless of completion order. With
    ``continue_on_error`` failed tasks are skipped (see :attr:`failures`);
    otherwise the first terminal failure stops admissions, cuts pending retry
    waits short and, once in-flight attempts settle, is raised wrapped in
    :class:`ParallelExecutionError`. Tasks abandoned that way are counted as
    aborted, not failed.
    """

    def __init__(
        self,
        *,
        concurrency: int = 5,
        continue_on_error: bool = False,
        policy: RetryPolicy | None = None,
        governor: ConcurrencyGovernor | None = None,
        on_progress: ProgressFn | None = None,
        sleep: Sleep = asyncio.sleep,
        label: str = "Tasks",
    ) -> None:
        self.continue_on_error = continue_on_error
        self.policy = policy or RetryPolicy()
        self.governor = governor or ConcurrencyGovernor(concurrency)
        self.on_progress = on_progress
        self.label = label
        self._sleep = sleep
        self._state: ExecutionState | None = None

    @property
    def errors(self) -> list[BaseException]:
        return list(self._state.errors) if self._state else []

    @property
    def failures(self) -> list[Failure]:
        return self._state.failures() if self._state else []

    async def execute(self, tasks: Sequence[FetchTask[T]]) -> list[T]:
        state = ExecutionState(total=len(tasks))
        self._state = state
        if not tasks:
            return []

        t0 = perf_counter()
        changed = asyncio.Condition()
        running: list[asyncio.Task[None]] = []

        def admissible() -> bool:
            return state.aborted or state.in_flight < self.governor.current_limit

        try:
            for task in tasks:
                async with changed:
                    await changed.wait_for(admissible)
                if state.aborted:
                    break
                state.in_flight += 1
                running.append(asyncio.create_task(self._run_slot(TaskSlot(task), state, changed)))
            await asyncio.gather(*running)
        except asyncio.CancelledError:
            for t in running:
                t.cancel()
            raise

        log_execution_complete(
            total_tasks=state.total,
            succeeded=state.succeeded,
            failed=len(state.errors),
            aborted=state.aborted_tasks,
            final_concurrency=self.governor.current_limit,
            latency_ms=(perf_counter() - t0) * 1000.0,
        )

        if state.fatal is not None:
            raise ParallelExecutionError(
                f"task {state.fatal_index} failed after all retries",
                failed_tasks=len(state.errors),
                total_tasks=state.total,
                errors=state.errors,
                aborted_tasks=state.aborted_tasks,
            ) from state.fatal
        return state.ordered_results()

    async def _run_slot(self, slot: TaskSlot[T], state: ExecutionState, changed: asyncio.Condition) -> None:
        try:
            outcome = await slot.run(self.policy, self.governor, sleep=self._sleep, abort=state.abort)
            self._record(slot, outcome, state)
        finally:
            state.in_flight -= 1
            async with changed:
                changed.notify_all()

    def _record(self, slot: TaskSlot[T], outcome: TaskOutcome, state: ExecutionState) -> None:
        state.outcomes[slot.index] = outcome
        if isinstance(outcome, Failure) and outcome.aborted:
            logger.debug("%s: task %d abandoned after %d attempt(s): %s",
                         self.label, slot.index, outcome.attempts, outcome.error)
            return
        if isinstance(outcome, Success):
            state.completed += 1
            self._report(state)
            return

        state.errors.append(outcome.error)
        log_task_failed(index=slot.index, block_range=outcome.chunk_range,
                        attempts=outcome.attempts, error=outcome.error)
        if self.continue_on_error:
            state.completed += 1
            self._report(state)
        elif state.fatal is None:
            state.fatal = outcome.error
            state.fatal_index = slot.index
            state.abort.set()

    def _report(self, state: ExecutionState) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(state.completed, state.total)
        except Exception:
            logger.warning("%s: progress callback raised; ignoring", self.label, exc_info=True)


async def execute_in_parallel(
    operations: Sequence[Callable[[], Awaitable[T]]],
    **options,
) -> list[T]:
    """Run plain zero-argument coroutine functions through a fresh :class:`ParallelExecutor`."""
    executor: ParallelExecutor[T] = ParallelExecutor(**options)
    return await executor.execute([FetchTask(i, op) for i, op in enumerate(operations)])
