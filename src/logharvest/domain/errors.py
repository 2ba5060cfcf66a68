# logharvest/domain/errors.py
"""Error taxonomy.

Every error derives directly from :class:`FetcherError` and carries an
:class:`ErrorKind` plus the context fields for that kind. Messages are built
by one formatter per kind so callers that only hold the payload can render
the same text.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .models import BlockRange


class ErrorKind(str, Enum):
    CONFIGURATION = "CONFIGURATION_ERROR"
    BLOCK_RANGE = "BLOCK_RANGE_ERROR"
    EVENT_FETCH = "EVENT_FETCH_ERROR"
    CHUNK_TRUNCATION = "CHUNK_TRUNCATION_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    PROVIDER = "PROVIDER_ERROR"
    PARALLEL_EXECUTION = "PARALLEL_EXECUTION_ERROR"


@dataclass(slots=True, frozen=True)
class ContractContext:
    contract_address: str
    event_name: str | None = None


# ──────────────────────────────
# Formatters (one per kind)
# ──────────────────────────────

def _caused_by(cause: BaseException | None) -> str:
    return f"\nCaused by: {cause}" if cause is not None else ""


def format_configuration(message: str, errors: Sequence[str]) -> str:
    return f"Invalid configuration: {message}\nErrors: {', '.join(errors)}"


def format_block_range(message: str, from_block: int, to_block: int, chunk_size: int | None) -> str:
    cs = chunk_size if chunk_size is not None else "N/A"
    return f"Block range error: {message} (fromBlock: {from_block}, toBlock: {to_block}, chunkSize: {cs})"


def format_event_fetch(
    message: str,
    block_range: BlockRange | None,
    contract: ContractContext | None,
    cause: BaseException | None,
) -> str:
    parts: list[str] = []
    if contract is not None:
        parts.append(f"Contract: {contract.contract_address}"
                     + (f", Event: {contract.event_name}" if contract.event_name else ""))
    if block_range is not None:
        parts.append(f"Blocks: {block_range.start}-{block_range.end}")
    ctx = (" | " + " | ".join(parts)) if parts else ""
    return f"{message}{ctx}{_caused_by(cause)}"


def format_truncation(block_range: BlockRange, event_count: int, limit: int) -> str:
    return (f"Potential event truncation detected: Chunk {block_range.start}-{block_range.end} "
            f"returned {event_count} events, which meets or exceeds the limit of {limit}. "
            f"Consider using a smaller chunk size.")


def format_rate_limit(message: str, attempts: int | None, retry_after_s: float | None) -> str:
    details = [message]
    if attempts is not None:
        details.append(f"Attempts: {attempts}")
    if retry_after_s is not None:
        details.append(f"Retry after: {retry_after_s:g}s")
    return " | ".join(details)


def format_provider(message: str, url: str | None, status_code: int | None, cause: BaseException | None) -> str:
    out = f"Provider error: {message}"
    if status_code is not None: out += f" (HTTP {status_code})"
    if url: out += f" (URL: {url})"
    return out + _caused_by(cause)


def format_parallel_execution(message: str, failed: int, total: int, first: BaseException | None, aborted: int = 0) -> str:
    extra = f", {aborted} aborted" if aborted else ""
    return (f"Parallel execution failed: {message} ({failed}/{total} tasks failed{extra})\n"
            f"First error: {first if first is not None else 'Unknown error'}")


# ──────────────────────────────
# Exceptions
# ──────────────────────────────

class FetcherError(Exception):
    """Base exception for all logharvest errors."""
    kind: ErrorKind

    @property
    def code(self) -> str:
        return self.kind.value


class ConfigurationError(FetcherError):
    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__(format_configuration(message, self.errors))


class BlockRangeError(FetcherError):
    """Invalid range or chunk size; raised before any work starts."""
    kind = ErrorKind.BLOCK_RANGE

    def __init__(self, message: str, *, from_block: int, to_block: int, chunk_size: int | None = None) -> None:
        self.from_block = from_block
        self.to_block = to_block
        self.chunk_size = chunk_size
        super().__init__(format_block_range(message, from_block, to_block, chunk_size))


class ChunkFetchError(FetcherError):
    """A single chunk's RPC call failed."""
    kind = ErrorKind.EVENT_FETCH

    def __init__(
        self,
        message: str,
        *,
        block_range: BlockRange | None = None,
        contract: ContractContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.block_range = block_range
        self.contract = contract
        self.cause = cause
        super().__init__(format_event_fetch(message, block_range, contract, cause))


class ChunkTruncationError(FetcherError):
    """A chunk returned at least the configured maximum number of logs."""
    kind = ErrorKind.CHUNK_TRUNCATION

    def __init__(self, block_range: BlockRange, event_count: int, limit: int) -> None:
        self.block_range = block_range
        self.event_count = event_count
        self.limit = limit
        super().__init__(format_truncation(block_range, event_count, limit))


class RateLimitError(FetcherError):
    """Retries exhausted and the last failure looked like server-side throttling."""
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        block_range: BlockRange | None = None,
        attempts: int | None = None,
        retry_after_s: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.block_range = block_range
        self.attempts = attempts
        self.retry_after_s = retry_after_s
        self.cause = cause
        super().__init__(format_rate_limit(message, attempts, retry_after_s))


class ProviderError(FetcherError):
    """Transport or JSON-RPC level failure reported by the node."""
    kind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        rpc_code: int | None = None,
        retry_after_s: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.rpc_code = rpc_code
        self.retry_after_s = retry_after_s   # from a Retry-After header, if the node sent one
        self.cause = cause
        super().__init__(format_provider(message, url, status_code, cause))


class ParallelExecutionError(FetcherError):
    """Fail-fast run aborted; wraps the first terminal task error."""
    kind = ErrorKind.PARALLEL_EXECUTION

    def __init__(
        self,
        message: str,
        *,
        failed_tasks: int,
        total_tasks: int,
        errors: Sequence[BaseException],
        aborted_tasks: int = 0,
    ) -> None:
        self.failed_tasks = failed_tasks
        self.total_tasks = total_tasks
        self.aborted_tasks = aborted_tasks
        self.errors = list(errors)
        super().__init__(format_parallel_execution(message, failed_tasks, total_tasks, self.first_error, aborted_tasks))

    @property
    def first_error(self) -> BaseException | None:
        return self.errors[0] if self.errors else None


# ──────────────────────────────
# Helpers
# ──────────────────────────────

_RETRYABLE_MARKERS = ("timeout", "timed out", "network", "connection", "econnrefused", "enotfound")


def is_fetcher_error(error: object) -> bool:
    return isinstance(error, FetcherError)


def is_retryable_error(error: object) -> bool:
    if isinstance(error, (RateLimitError, ProviderError)):
        return True
    if isinstance(error, Exception):
        msg = str(error).lower()
        return any(m in msg for m in _RETRYABLE_MARKERS)
    return False
