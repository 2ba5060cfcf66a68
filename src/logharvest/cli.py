import asyncio, logging, time
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn
)
from rich.panel import Panel

from .adapters.jsonl_sink import JSONLEventSink
from .adapters.parquet_sink import ParquetEventSink
from .adapters.rpc_httpx import HttpxRPC, provider_status
from .application.retry import RetryPolicy
from .application.retrying_rpc import RetryingRPC
from .application.use_cases import LogFetcher
from .application.utils import checksum, normalize_address, normalize_topic0_list
from .config import create_config
from .domain.errors import FetcherError, ParallelExecutionError
from .domain.models import LogFilter

console = Console()


def _setup_logging(verbose: int) -> None:
    level = logging.WARNING if verbose == 0 else (logging.INFO if verbose == 1 else logging.DEBUG)
    logging.basicConfig(
        level=level, format="%(message)s", datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _block_bound(value: str) -> int | str:
    v = value.strip().lower()
    if v in ("earliest", "genesis", "latest"):
        return v
    try:
        n = int(v, 16) if v.startswith("0x") else int(v)
    except ValueError:
        raise click.BadParameter(f"expected a block number, 0x-hex, or earliest/latest, got {value!r}")
    if n < 0:
        raise click.BadParameter(f"block number must not be negative, got {value!r}")
    return n


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug)")
def cli(verbose):
    """logharvest: chunked, parallel eth_getLogs with retries and adaptive throttling."""
    _setup_logging(verbose)


@cli.command("fetch-logs")
@click.option("--rpc", "rpc_url", required=True, help="RPC endpoint URL")
@click.option("--address", "addresses", multiple=True, help="Emitter contract address; repeat to OR")
@click.option("--event", "events", multiple=True, help="Event signature or topic0; repeat to OR")
@click.option("--from-block", required=True, help="Block number, hex, or earliest")
@click.option("--to-block", default="latest", show_default=True, help="Block number, hex, or latest")
@click.option("--chunk-size", type=int, default=None, help="Blocks per request")
@click.option("--concurrency", type=int, default=None, help="Max parallel requests")
@click.option("--max-retries", type=int, default=None)
@click.option("--retry-delay-ms", type=int, default=None, help="Initial retry delay in milliseconds")
@click.option("--max-logs-per-chunk", type=int, default=None, help="Truncation threshold per chunk")
@click.option("--continue-on-error/--fail-fast", default=None,
              help="Skip chunks that keep failing instead of aborting the run")
@click.option("--timeout", type=float, default=20, show_default=True, help="Per-request timeout (s)")
@click.option("--jsonl-out", type=str, default="", help="Optional path to write logs (NDJSON)")
@click.option("--parquet-out", type=str, default="", help="Optional path to write logs (Parquet)")
def fetch_logs_cmd(rpc_url, addresses, events, from_block, to_block, chunk_size, concurrency, max_retries,
                   retry_delay_ms, max_logs_per_chunk, continue_on_error, timeout, jsonl_out, parquet_out):
    """Fetch logs across a block range with a live progress bar."""
    if not addresses and not events:
        raise click.UsageError("Pass at least one --address or --event")
    try:
        cfg = create_config(
            chunk_size=chunk_size, concurrency=concurrency, max_retries=max_retries,
            initial_retry_delay_ms=retry_delay_ms, max_logs_per_chunk=max_logs_per_chunk,
            continue_on_error=continue_on_error,
        )
        addrs = tuple(normalize_address(a) for a in addresses)
        topic0s = normalize_topic0_list(events)
    except (FetcherError, ValueError) as e:
        raise click.ClickException(str(e))

    names = [e.split("(", 1)[0] for e in events if "(" in e]
    log_filter = LogFilter(
        address=(addrs[0] if len(addrs) == 1 else addrs) if addrs else None,
        topics=(topic0s,) if topic0s else (),
        event_name="/".join(names) or None,
    )
    start, end = _block_bound(from_block), _block_bound(to_block)

    progress = Progress(SpinnerColumn(),
                        TextColumn("[bold]collecting logs[/]"),
                        BarColumn(),
                        MofNCompleteColumn(),
                        TextColumn("•"),
                        TimeElapsedColumn(),
                        TextColumn("→"),
                        TimeRemainingColumn(),
                        TextColumn(" • {task.description}"),
                        console=console,
                        transient=False,
                        expand=True,
                        )

    async def run():
        policy = RetryPolicy.from_millis(max_retries=cfg.max_retries, initial_delay_ms=cfg.initial_retry_delay_ms,
                                          max_delay_ms=cfg.max_retry_delay_ms)
        rpc = RetryingRPC(HttpxRPC(rpc_url, timeout_s=timeout, max_conn=max(32, 2 * cfg.concurrency)), policy)
        try:
            await rpc.connect()
            fetcher = LogFetcher(rpc, cfg)
            with progress:
                task = progress.add_task(description=f"{from_block}-{to_block}", total=None)

                def on_progress(completed, total, rng):
                    progress.update(task, completed=completed, total=total, description=f"{rng.start:,}-{rng.end:,}")

                return await fetcher.fetch_logs_report(log_filter, start, end, on_progress=on_progress)
        finally:
            await rpc.aclose()

    t0 = time.time()
    try:
        report = asyncio.run(run())
    except ParallelExecutionError as e:
        raise click.ClickException(f"{e}\nHint: use --continue-on-error to keep going past failing chunks")
    except FetcherError as e:
        raise click.ClickException(str(e))
    elapsed = time.time() - t0

    if jsonl_out:
        n = JSONLEventSink(jsonl_out).write(report.logs)
        console.print(f"wrote {n} logs → {jsonl_out}")
    if parquet_out:
        n = ParquetEventSink(parquet_out).write(report.logs)
        console.print(f"wrote {n} logs → {parquet_out}")

    ok = report.total_chunks - len(report.failures)
    console.print(f"[bold]done[/]: {len(report.logs)} logs • {elapsed:.2f}s")
    console.print(
        f"[bold]summary[/]: "
        f"[green]chunks_ok[/]={ok}  "
        f"[red]chunks_failed[/]={len(report.failures)}  "
        f"(chunks={report.total_chunks}"
        + (f", contracts={','.join(checksum(a) for a in addrs)}" if addrs else "")
        + ")"
    )
    for f in report.failures:
        console.print(f"  [red]failed[/] {f.chunk_range} after {f.attempts} attempt(s): {type(f.error).__name__}")


@cli.command("status")
@click.option("--rpc", "rpc_url", required=True, help="RPC endpoint URL")
@click.option("--timeout", type=float, default=10, show_default=True)
def status_cmd(rpc_url, timeout):
    """Probe an RPC endpoint: chain id, head block, sync state."""
    async def run():
        rpc = RetryingRPC(HttpxRPC(rpc_url, timeout_s=timeout, max_conn=4),
                          RetryPolicy(max_retries=2, base_delay=0.5, max_delay=5.0))
        try:
            return await provider_status(rpc)
        finally:
            await rpc.aclose()

    st = asyncio.run(run())
    if not st.connected:
        console.print(Panel(f"[red]unreachable[/]: {rpc_url}", title="status"))
        raise SystemExit(1)
    console.print(Panel(
        f"chain_id     {st.chain_id}\n"
        f"latest_block {st.latest_block:,}\n"
        f"syncing      {st.syncing}",
        title=rpc_url,
    ))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
