import asyncio, logging
from decimal import Decimal

import click
from eth_utils import to_checksum_address
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn
)
from rich.table import Table

from ..adapters.graph_httpx import HttpxGraphSource
from ..adapters.parquet_sink import ParquetLedgerSink
from ..adapters.rpc_httpx import HttpxRPC
from ..application.discovery import discover_from_index
from ..application.ledger import PositionLedger
from ..application.retry import RetryingProvider
from ..application.scanner import ScanResult
from ..application.timestamps import BlockTimestampCache
from ..application.use_cases import analyze_vault, census_topics, infer_into_ledger, resolve_active_ranges
from ..application.vault_info import read_vault_info
from ..config import CHAINS, AnalysisConfig
from ..domain.errors import VaultscopeError
from ..domain.value_types import Address
from .report import build_rows, filter_positions, format_units, summarize

log = logging.getLogger(__name__)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # keep httpx request lines out of INFO output
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _config(vault: str, chain: int, rpc: str | None, **overrides) -> AnalysisConfig:
    if rpc:
        overrides["rpc_url"] = rpc
    try:
        return AnalysisConfig.for_chain(chain, vault, **overrides)
    except VaultscopeError as e:
        raise click.BadParameter(str(e))


def _run(coro):
    try:
        return asyncio.run(coro)
    except VaultscopeError as e:
        raise click.ClickException(str(e))


def vault_options(f):
    options = [
        click.option("--vault", required=True, help="Vault contract address"),
        click.option("--chain", type=click.Choice([str(c) for c in CHAINS]), default="1", show_default=True,
                     help="Chain id; selects the default public RPC"),
        click.option("--rpc", default=None, help="RPC endpoint URL (overrides the chain default)"),
        click.option("--from-block", "deployment_block", type=int, default=None,
                     help="Deployment block; discovery starts here when given"),
        click.option("--max-probe-width", type=int, default=10_000, show_default=True,
                     help="Provider-safe eth_getLogs span"),
        click.option("--chunk-size", type=int, default=5_000, show_default=True,
                     help="Blocks per discovery chunk"),
        click.option("--discovery-span", "discovery_span_blocks", type=int, default=500_000, show_default=True,
                     help="Blocks back from head to search when no deployment block is known"),
        click.option("--scan-window", "scan_window_blocks", type=int, default=5_000, show_default=True,
                     help="Recent window scanned when discovery finds nothing"),
        click.option("--retries", type=int, default=3, show_default=True),
        click.option("--verbose", "-v", is_flag=True, help="Debug logging"),
    ]
    for opt in reversed(options):
        f = opt(f)
    return f


@click.group()
def cli():
    """vaultscope: depositor positions for ERC-4626 vaults from raw logs."""


@cli.command("analyze")
@vault_options
@click.option("--scan-chunk-size", type=int, default=2_000, show_default=True, help="Blocks per getLogs while scanning")
@click.option("--concurrency", type=int, default=8, show_default=True, help="Max parallel requests")
@click.option("--pacing", "pacing_s", type=float, default=0.1, show_default=True, help="Delay after each chunk (s)")
@click.option("--budget", "max_event_budget", type=int, default=None, help="Stop after this many classified events")
@click.option("--graph-endpoint", default=None, help="GraphQL endpoint of an indexed source for discovery")
@click.option("--merge-gap", "merge_gap_threshold", type=int, default=100, show_default=True,
              help="Max gap when clustering indexed block numbers")
@click.option("--include-withdrawn/--no-include-withdrawn", default=False, show_default=True)
@click.option("--min-threshold", type=Decimal, default=Decimal(0), show_default=True,
              help="Hide positive positions below this (token units)")
@click.option("--decimals", type=int, default=None,
              help="Asset decimals for display (default: read from the asset token)")
@click.option("--share-decimals", type=int, default=None,
              help="Share decimals for display (default: read from the vault)")
@click.option("--skip-vault-check", is_flag=True,
              help="Do not read ERC-4626 metadata; for vaults without asset()/totalAssets()")
@click.option("--limit", type=int, default=25, show_default=True, help="Rows to print")
@click.option("--out", default="", help="Write the ledger snapshot to this Parquet file")
@click.option("--timeout", type=float, default=None, help="Abort after N seconds, keeping partial results")
def analyze_cmd(vault, chain, rpc, verbose, include_withdrawn, min_threshold, decimals, share_decimals,
                skip_vault_check, limit, out, timeout, graph_endpoint, **overrides):
    """Discover active ranges, scan them and print per-address positions."""
    _setup_logging(verbose)
    cfg = _config(vault, int(chain), rpc, graph_endpoint=graph_endpoint, **overrides)

    async def run():
        rpc_client = HttpxRPC(cfg.rpc_url, timeout_s=cfg.timeout_s, max_conn=max(32, 2 * cfg.concurrency))
        graph = HttpxGraphSource(cfg.graph_endpoint) if cfg.graph_endpoint else None
        ledger, scan = PositionLedger(), ScanResult()
        progress = Progress(SpinnerColumn(),
                            TextColumn("[bold]scanning[/]"),
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
        task = progress.add_task(description=cfg.address, total=None)
        info = None
        try:
            if not skip_vault_check:
                reader = RetryingProvider(rpc_client, retries=cfg.retries, backoff_s=cfg.retry_backoff_s)
                info = await read_vault_info(reader, Address(cfg.address))
            with progress:
                res = await asyncio.wait_for(analyze_vault(
                    rpc_client, cfg, index_source=graph, ledger=ledger, scan=scan,
                    on_ranges=lambda ranges, chunks: progress.update(task, total=len(chunks)),
                    on_chunk=lambda rec: progress.advance(task, 1),
                ), timeout=timeout)
        except asyncio.TimeoutError:
            # canonical events are already in the ledger; a transfer-only vault still needs inference
            try:
                await asyncio.wait_for(
                    infer_into_ledger(scan, ledger, BlockTimestampCache(rpc_client), concurrency=cfg.concurrency),
                    timeout=timeout)
            except asyncio.TimeoutError:
                log.warning("transfer inference over partial results timed out")
            console.print(f"[yellow]timed out after {timeout}s[/]: partial results "
                          f"({len(scan.deposits)} deposits, {len(scan.withdraws)} withdraws, "
                          f"{len(scan.transfers)} transfers scanned; {len(ledger)} addresses in ledger)")
            return ledger, None, info
        finally:
            await rpc_client.aclose()
            if graph is not None:
                await graph.aclose()
        return ledger, res, info

    ledger, res, info = _run(run())

    asset_decimals = decimals if decimals is not None else (info.asset_decimals if info else 0)
    if share_decimals is None:
        share_decimals = info.decimals if info else asset_decimals
    if info is not None:
        console.print(Panel.fit(
            f"{info.name} ({info.symbol})  asset={info.asset_symbol} {to_checksum_address(info.asset_address)}\n"
            f"totalAssets={format_units(info.total_assets, info.asset_decimals):,f} {info.asset_symbol}  "
            f"totalSupply={format_units(info.total_supply, info.decimals):,f} {info.symbol}",
            title="vault"))

    positions = filter_positions(ledger.snapshot(), include_withdrawn=include_withdrawn,
                                 min_threshold=min_threshold, decimals=asset_decimals)
    rows = build_rows(positions, decimals=asset_decimals, share_decimals=share_decimals)
    if res is not None:
        scan = res.scan
        console.print(Panel.fit(
            f"head={res.head:,}  ranges={len(res.ranges)} ({res.range_source})  "
            f"deposits={len(scan.deposits)}  withdraws={len(scan.withdraws)}  transfers={len(scan.transfers)}  "
            f"vault_updates={len(scan.vault_updates)}  unknown={scan.unknown}  skipped={len(scan.skipped)}"
            + ("  [yellow]inferred from transfers[/]" if res.inferred else "")
            + ("  [yellow]budget reached[/]" if scan.budget_exhausted else ""),
            title="scan"))
    if not rows:
        raise click.ClickException(
            "No active positions found with the current filters. "
            "Try adjusting your filters or including withdrawn positions.")

    on_chain_tvl = format_units(info.total_assets, asset_decimals) if info is not None else None
    unit = f" {info.asset_symbol}" if info is not None else ""
    s = summarize(rows, on_chain_tvl=on_chain_tvl)
    console.print(f"[bold]depositors[/]={s.depositors}  [bold]tvl[/]={s.total_tvl:,.6f}{unit}  "
                  f"[bold]largest[/]={s.largest:,.6f}  [bold]average[/]={s.average:,.6f}  [bold]median[/]={s.median:,.6f}")
    table = Table(show_lines=False)
    for col in ("#", "address", "net", "shares", "%", "first", "last", "dep", "wd"):
        table.add_column(col, justify="right" if col not in ("address",) else "left")
    for r in rows[:limit]:
        table.add_row(str(r.rank), r.address, f"{r.net:,.6f}", f"{r.shares:,.6f}", f"{r.percentage}",
                      r.first_activity, r.last_activity, str(r.deposit_count), str(r.withdrawal_count))
    console.print(table)

    if out:
        path = ParquetLedgerSink(out).write_positions(ledger.snapshot())
        console.print(f"[bold]wrote[/] {len(ledger)} positions → {path}")


@cli.command("discover")
@vault_options
def discover_cmd(vault, chain, rpc, verbose, **overrides):
    """Print the active block ranges for a vault."""
    _setup_logging(verbose)
    cfg = _config(vault, int(chain), rpc, **overrides)

    async def run():
        rpc_client = HttpxRPC(cfg.rpc_url, timeout_s=cfg.timeout_s)
        try:
            head = await rpc_client.latest_block()
            provider = RetryingProvider(rpc_client, retries=cfg.retries, backoff_s=cfg.retry_backoff_s)
            return await resolve_active_ranges(provider, cfg, head)
        finally:
            await rpc_client.aclose()

    found = _run(run())
    table = Table(title=f"{found.source} ranges in {found.span}")
    for col in ("start", "end", "blocks"):
        table.add_column(col, justify="right")
    for r in found.ranges:
        table.add_row(f"{r.start:,}", f"{r.end:,}", f"{r.block_count:,}")
    console.print(table)


@cli.command("census")
@click.option("--vault", required=True, help="Contract address")
@click.option("--chain", type=click.Choice([str(c) for c in CHAINS]), default="1", show_default=True)
@click.option("--rpc", default=None, help="RPC endpoint URL")
@click.option("--window", type=int, default=5_000, show_default=True, help="Blocks back from head")
@click.option("--verbose", "-v", is_flag=True)
def census_cmd(vault, chain, rpc, window, verbose):
    """List the event signatures a contract emitted recently."""
    _setup_logging(verbose)
    cfg = _config(vault, int(chain), rpc)

    async def run():
        rpc_client = HttpxRPC(cfg.rpc_url, timeout_s=cfg.timeout_s)
        try:
            return await census_topics(rpc_client, cfg.address, window)
        finally:
            await rpc_client.aclose()

    rows = _run(run())
    if not rows:
        console.print("[yellow]no recent events[/]; the contract might be inactive or very new")
        return
    table = Table()
    table.add_column("topic0"); table.add_column("count", justify="right"); table.add_column("signature")
    for r in rows:
        table.add_row(r.topic0, str(r.count), r.signature or "[dim]unknown[/]")
    console.print(table)


@cli.command("graph-ranges")
@click.option("--endpoint", required=True, help="GraphQL endpoint")
@click.option("--vault", required=True, help="Vault address")
@click.option("--merge-gap", type=int, default=100, show_default=True)
@click.option("--page-size", type=int, default=1_000, show_default=True)
@click.option("--max-pages", type=int, default=None)
@click.option("--verbose", "-v", is_flag=True)
def graph_ranges_cmd(endpoint, vault, merge_gap, page_size, max_pages, verbose):
    """Cluster an indexed source's block numbers into active ranges."""
    _setup_logging(verbose)

    async def run():
        source = HttpxGraphSource(endpoint)
        try:
            return await discover_from_index(source, Address(vault.lower()), merge_gap=merge_gap,
                                             page_size=page_size, max_pages=max_pages)
        finally:
            await source.aclose()

    ranges = _run(run())
    for r in ranges:
        console.print(f"{r.start:,} → {r.end:,} ({r.block_count:,} blocks)")
    console.print(f"[bold]{len(ranges)}[/] ranges")


if __name__ == "__main__":
    cli()
