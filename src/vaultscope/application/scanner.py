from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..domain.decoding import EventTopicSet, decode_log
from ..domain.errors import DecodeError, ProviderError
from ..domain.models import (
    BlockRange, ChunkRec, DepositEvent, EventLog, TransferEvent, VaultUpdateEvent,
    WithdrawEvent,
)
from ..domain.value_types import Address
from ..ports.rpc import LogProvider
from .ledger import PositionLedger
from .planning import plan_chunks
from .timestamps import BlockTimestampCache

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ScanResult:
    """Accumulator threaded through one or more scans of the same run."""
    deposits: list[DepositEvent] = field(default_factory=list)
    withdraws: list[WithdrawEvent] = field(default_factory=list)
    transfers: list[TransferEvent] = field(default_factory=list)
    vault_updates: list[VaultUpdateEvent] = field(default_factory=list)
    unknown: int = 0
    logs: int = 0
    chunks: list[ChunkRec] = field(default_factory=list)
    skipped: list[BlockRange] = field(default_factory=list)
    budget_exhausted: bool = False

    @property
    def classified(self) -> int:
        """Events counted against the event budget."""
        return len(self.deposits) + len(self.withdraws) + len(self.transfers)

    @property
    def has_canonical(self) -> bool:
        return bool(self.deposits or self.withdraws)

    def sort(self) -> None:
        """Chain order; chunks complete out of order under concurrency."""
        key = lambda e: (e.block_number, e.log_index)
        self.deposits.sort(key=key)
        self.withdraws.sort(key=key)
        self.transfers.sort(key=key)
        self.vault_updates.sort(key=key)


@dataclass(slots=True)
class _Decoded:
    deposits: list[DepositEvent] = field(default_factory=list)
    withdraws: list[WithdrawEvent] = field(default_factory=list)
    transfers: list[TransferEvent] = field(default_factory=list)
    vault_updates: list[VaultUpdateEvent] = field(default_factory=list)
    unknown: int = 0

    @property
    def total(self) -> int:
        return len(self.deposits) + len(self.withdraws) + len(self.transfers) + len(self.vault_updates)


class ChunkedLogScanner:
    """
    Walks a range in small chunks, one eth_getLogs per chunk for the union of
    watched topics. A failed chunk is split exactly once; a half that fails
    again is logged and recorded as skipped. Partial data beats no data.

    With a ``ledger``, each chunk's Deposit/Withdraw events are folded in as
    the chunk completes, so a cancelled scan leaves the ledger matching the
    accumulator.
    """

    def __init__(
        self,
        provider: LogProvider,
        address: Address,
        topics: EventTopicSet,
        *,
        chunk_size: int = 2_000,
        concurrency: int = 1,
        pacing_s: float = 0.0,
        max_event_budget: int | None = None,
        on_chunk: Callable[[ChunkRec], None] | None = None,
        ledger: PositionLedger | None = None,
        timestamps: BlockTimestampCache | None = None,
    ) -> None:
        self.provider = provider
        self.address = address
        self.topics = topics
        self.topic0s = topics.topic0s()
        self.chunk_size = chunk_size
        self.concurrency = concurrency
        self.pacing_s = pacing_s
        self.max_event_budget = max_event_budget
        self.on_chunk = on_chunk
        self.ledger = ledger
        if ledger is not None and timestamps is None:
            timestamps = BlockTimestampCache(provider)
        self.timestamps = timestamps

    def plan(self, rng: BlockRange) -> list[BlockRange]:
        return plan_chunks(rng.start, rng.end, self.chunk_size)

    def budget_reached(self, result: ScanResult) -> bool:
        if self.max_event_budget is None or result.classified < self.max_event_budget:
            return False
        if not result.budget_exhausted:
            log.info("event budget of %d reached, stopping scan", self.max_event_budget)
            result.budget_exhausted = True
        return True

    def _decode(self, logs: Sequence[EventLog]) -> _Decoded:
        out = _Decoded()
        for ev in logs:
            try:
                decoded = decode_log(ev, self.topics)
            except DecodeError as e:
                log.debug("undecodable log: %s", e)
                out.unknown += 1
                continue
            if isinstance(decoded, DepositEvent):
                out.deposits.append(decoded)
            elif isinstance(decoded, WithdrawEvent):
                out.withdraws.append(decoded)
            elif isinstance(decoded, TransferEvent):
                out.transfers.append(decoded)
            elif isinstance(decoded, VaultUpdateEvent):
                # activity signal only, not accounting
                out.vault_updates.append(decoded)
            else:
                out.unknown += 1
        return out

    async def _get(self, rng: BlockRange) -> list[EventLog]:
        return await self.provider.get_logs(self.address, self.topic0s, rng.start, rng.end)

    async def _fetch_chunk(self, chunk: BlockRange, result: ScanResult) -> tuple[list[EventLog], ChunkRec]:
        try:
            logs = await self._get(chunk)
            return logs, ChunkRec(chunk.start, chunk.end, "done", logs=len(logs))
        except ProviderError as e:
            if chunk.span() == 1:
                log.warning("getLogs failed for %s: %s", chunk, e)
                result.skipped.append(chunk)
                return [], ChunkRec(chunk.start, chunk.end, "skipped", error=str(e))
            first_err = e

        # split once
        logs: list[EventLog] = []
        errors: list[str] = []
        for half in chunk.split():
            try:
                logs.extend(await self._get(half))
            except ProviderError as e:
                log.warning("getLogs failed for %s after split: %s", half, e)
                result.skipped.append(half)
                errors.append(f"{half}: {e}")
        log.debug("chunk %s split after %s", chunk, first_err)
        return logs, ChunkRec(chunk.start, chunk.end, "split", logs=len(logs),
                              error="; ".join(errors) or None)

    async def _scan_chunk(self, chunk: BlockRange, result: ScanResult) -> None:
        logs, rec = await self._fetch_chunk(chunk, result)
        dec = self._decode(logs)
        canonical = sorted([*dec.deposits, *dec.withdraws], key=lambda e: (e.block_number, e.log_index))
        stamps: dict[int, int] = {}
        if self.ledger is not None and canonical:
            stamps = await self.timestamps.resolve_many(e.block_number for e in canonical)
        # no awaits from here on: a cancelled chunk lands in neither the accumulator nor the ledger
        result.deposits.extend(dec.deposits)
        result.withdraws.extend(dec.withdraws)
        result.transfers.extend(dec.transfers)
        result.vault_updates.extend(dec.vault_updates)
        result.unknown += dec.unknown
        result.logs += len(logs)
        if self.ledger is not None:
            for ev in canonical:
                self.ledger.apply(ev, stamps[ev.block_number])
        rec = ChunkRec(rec.from_block, rec.to_block, rec.status, rec.logs, dec.total, rec.error)
        result.chunks.append(rec)
        if self.on_chunk is not None:
            self.on_chunk(rec)

    async def scan(self, rng: BlockRange, into: ScanResult | None = None) -> ScanResult:
        result = into if into is not None else ScanResult()
        sem = asyncio.Semaphore(self.concurrency)

        async def run(chunk: BlockRange) -> None:
            if self.budget_reached(result):
                return
            async with sem:
                if self.budget_reached(result):
                    return
                await self._scan_chunk(chunk, result)
                if self.pacing_s:
                    await asyncio.sleep(self.pacing_s)

        await asyncio.gather(*(asyncio.create_task(run(c)) for c in self.plan(rng)))
        log.info("scanned %s; running totals: %d deposits, %d withdraws, %d transfers, %d unknown",
                 rng, len(result.deposits), len(result.withdraws), len(result.transfers), result.unknown)
        return result
