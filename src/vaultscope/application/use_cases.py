from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Literal

from ..config import AnalysisConfig
from ..domain.decoding import label_topics
from ..domain.errors import ConfigError, EmptyLedgerError, ProviderError
from ..domain.models import (
    ActiveRange, BlockRange, ChunkRec, VaultInfo,
)
from ..domain.value_types import Address, Topic0
from ..ports.indexer import IndexedEventSource
from ..ports.rpc import ContractReader, LogProvider
from .discovery import discover_active_ranges, discover_from_index
from .inference import infer_from_transfers, should_infer
from .ledger import PositionLedger
from .planning import merge_intervals
from .probe import RangeProbe
from .retry import RetryingProvider
from .scanner import ChunkedLogScanner, ScanResult
from .timestamps import BlockTimestampCache
from .vault_info import read_vault_info

log = logging.getLogger(__name__)

RangeSource = Literal["rpc", "index", "fallback"]


@dataclass(slots=True)
class AnalysisResult:
    address: Address
    head: int
    discovery_span: BlockRange
    ranges: list[ActiveRange]
    range_source: RangeSource
    scan: ScanResult
    ledger: PositionLedger
    inferred: bool = False
    elapsed_s: float = 0.0
    timestamps_fetched: int = 0
    vault_info: VaultInfo | None = None

    @property
    def fallback_used(self) -> bool:
        return self.range_source == "fallback"


@dataclass(slots=True)
class DiscoveryOutcome:
    span: BlockRange
    ranges: list[ActiveRange] = field(default_factory=list)
    source: RangeSource = "rpc"


def discovery_span(config: AnalysisConfig, head: int) -> BlockRange:
    """Deployment block (if known) or `discovery_span_blocks` back from head, to head."""
    if config.deployment_block is not None:
        if config.deployment_block > head:
            raise ConfigError(f"deployment_block {config.deployment_block} is past chain head {head}")
        return BlockRange(config.deployment_block, head)
    return BlockRange(max(0, head - config.discovery_span_blocks + 1), head)


def fallback_window(config: AnalysisConfig, head: int) -> ActiveRange:
    return ActiveRange(max(0, head - config.scan_window_blocks + 1), head)


def _normalize(ranges: list[ActiveRange], head: int) -> list[ActiveRange]:
    clipped = [(r.start, min(r.end, head)) for r in ranges if r.start <= head]
    return [ActiveRange(s, e) for s, e in merge_intervals(clipped)]


async def resolve_active_ranges(
    provider: LogProvider,
    config: AnalysisConfig,
    head: int,
    *,
    index_source: IndexedEventSource | None = None,
) -> DiscoveryOutcome:
    """
    Produce the ranges to scan. Discovery failures and empty discovery both
    end in the recent-window fallback; neither is an error.
    """
    span = discovery_span(config, head)
    address = Address(config.address)
    out = DiscoveryOutcome(span=span)

    if index_source is not None:
        try:
            out.ranges = _normalize(await discover_from_index(
                index_source, address, merge_gap=config.merge_gap_threshold), head)
            out.source = "index"
        except ProviderError as e:
            log.warning("indexed discovery failed (%s), falling back to RPC discovery", e)

    if not out.ranges:
        probe = RangeProbe(provider, address)
        try:
            out.ranges = _normalize(await discover_active_ranges(
                probe, config.topics.topic0s(), span.start, span.end,
                max_probe_width=config.max_probe_width, chunk_size=config.chunk_size), head)
            out.source = "rpc"
        except ProviderError as e:
            log.warning("block discovery failed: %s", e)
            out.ranges = []

    if not out.ranges:
        window = fallback_window(config, head)
        log.info("no active ranges discovered, scanning recent window %d..%d", window.start, window.end)
        out.ranges = [window]
        out.source = "fallback"
    return out


async def infer_into_ledger(scan: ScanResult, ledger: PositionLedger,
                            timestamps: BlockTimestampCache, *, concurrency: int = 8) -> int:
    """
    Mint/burn inference over a finished or partial scan, folded into ``ledger``.
    Runs only when the scan holds no canonical event; returns the number of
    synthetic events applied.
    """
    if not should_infer(len(scan.deposits), len(scan.withdraws), len(scan.transfers)):
        return 0
    log.info("no Deposit/Withdraw found, converting Transfer mint/burn to deposits/withdrawals")
    deposits, withdraws = infer_from_transfers(scan.transfers)
    events = sorted([*deposits, *withdraws], key=lambda e: (e.block_number, e.log_index))
    ts = await timestamps.resolve_many((e.block_number for e in events), concurrency=concurrency)
    for ev in events:
        ledger.apply(ev, ts[ev.block_number])
    return len(events)


async def analyze_vault(
    provider: LogProvider,
    config: AnalysisConfig,
    *,
    index_source: IndexedEventSource | None = None,
    reader: ContractReader | None = None,
    ledger: PositionLedger | None = None,
    scan: ScanResult | None = None,
    on_ranges: Callable[[list[ActiveRange], list[BlockRange]], None] | None = None,
    on_chunk: Callable[[ChunkRec], None] | None = None,
) -> AnalysisResult:
    """
    Metadata check -> discovery -> scan -> transfer inference -> ledger.

    Only a failing chain-head lookup or a failed vault check (when ``reader``
    is given) is fatal. Canonical events reach ``ledger`` chunk by chunk, so a
    caller that passes its own ``ledger``/``scan`` keeps consistent partial
    results if the run is cancelled.
    """
    t0 = time.monotonic()
    address = Address(config.address)
    head = await provider.latest_block()   # fatal if the provider is unreachable
    log.info("chain head %d, analyzing %s", head, address)

    retrying = RetryingProvider(provider, retries=config.retries, backoff_s=config.retry_backoff_s)
    info = None
    if reader is not None:
        info = await read_vault_info(
            RetryingProvider(reader, retries=config.retries, backoff_s=config.retry_backoff_s), address)

    found = await resolve_active_ranges(retrying, config, head, index_source=index_source)

    ledger = ledger if ledger is not None else PositionLedger()
    timestamps = BlockTimestampCache(retrying)
    scanner = ChunkedLogScanner(
        retrying, address, config.topics,
        chunk_size=config.scan_chunk_size,
        concurrency=config.concurrency,
        pacing_s=config.pacing_s,
        max_event_budget=config.max_event_budget,
        on_chunk=on_chunk,
        ledger=ledger,
        timestamps=timestamps,
    )
    if on_ranges is not None:
        on_ranges(found.ranges, [c for r in found.ranges for c in scanner.plan(r.as_range())])

    scan = scan if scan is not None else ScanResult()
    for rng in found.ranges:
        if scanner.budget_reached(scan):
            break
        await scanner.scan(rng.as_range(), into=scan)
    scan.sort()
    log.info("scan complete: %d deposits, %d withdraws, %d transfers, %d vault updates, %d unknown, %d skipped",
             len(scan.deposits), len(scan.withdraws), len(scan.transfers),
             len(scan.vault_updates), scan.unknown, len(scan.skipped))

    inferred = await infer_into_ledger(scan, ledger, timestamps, concurrency=config.concurrency)
    if not scan.has_canonical and not inferred:
        raise EmptyLedgerError(
            f"no deposit or withdrawal events found for {address}; the vault may be new or inactive"
        )
    log.info("ledger holds %d addresses", len(ledger))

    return AnalysisResult(
        address=address,
        head=head,
        discovery_span=found.span,
        ranges=found.ranges,
        range_source=found.source,
        scan=scan,
        ledger=ledger,
        inferred=inferred > 0,
        elapsed_s=time.monotonic() - t0,
        timestamps_fetched=timestamps.calls,
        vault_info=info,
    )


@dataclass(slots=True, frozen=True)
class TopicCensusRow:
    topic0: Topic0
    count: int
    signature: str | None


async def census_topics(provider: LogProvider, address: str, window_blocks: int) -> list[TopicCensusRow]:
    """Group a recent window's logs (any topic) by topic0 and label the known ones."""
    head = await provider.latest_block()
    rng = BlockRange(max(0, head - window_blocks + 1), head)
    logs = await RangeProbe(provider, Address(address.lower())).fetch_logs(rng, [])
    counts = Counter(lg.topic0 for lg in logs if lg.topic0 is not None)
    labels = label_topics(list(counts))
    log.info("found %d logs from %s in %s across %d signatures", len(logs), address, rng, len(counts))
    return [TopicCensusRow(t, n, labels[t]) for t, n in counts.most_common()]
