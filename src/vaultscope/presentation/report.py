"""Ledger snapshot -> rows for display. Nothing here feeds back into the ledger."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, getcontext
from typing import Iterable

from eth_utils import to_checksum_address

from ..domain.models import AddressPosition

getcontext().prec = 80


def format_units(value: int, decimals: int) -> Decimal:
    """Raw integer amount -> Decimal in whole token units."""
    return Decimal(value).scaleb(-decimals) if decimals else Decimal(value)


def _day(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass(slots=True, frozen=True)
class PositionRow:
    rank: int
    address: str            # checksum
    net: Decimal
    net_raw: int
    shares: Decimal
    percentage: Decimal     # of positive TVL
    first_activity: str
    last_activity: str
    deposit_count: int
    withdrawal_count: int


@dataclass(slots=True, frozen=True)
class Summary:
    depositors: int
    total_tvl: Decimal
    largest: Decimal
    average: Decimal
    median: Decimal


def filter_positions(positions: Iterable[AddressPosition], *, include_withdrawn: bool = False,
                     min_threshold: Decimal = Decimal(0), decimals: int = 0) -> list[AddressPosition]:
    """
    Drop net <= 0 unless include_withdrawn. The threshold applies to positive
    nets only, so negatives survive when included. Sorted by net, descending.
    """
    kept: list[AddressPosition] = []
    for p in positions:
        net = format_units(p.net_position, decimals)
        if not include_withdrawn and net <= 0:
            continue
        if 0 < net < min_threshold:
            continue
        kept.append(p)
    kept.sort(key=lambda p: (-p.net_position, p.address))
    return kept


def build_rows(positions: list[AddressPosition], *, decimals: int = 0, share_decimals: int | None = None) -> list[PositionRow]:
    share_decimals = decimals if share_decimals is None else share_decimals
    tvl = sum((max(0, p.net_position) for p in positions), 0)
    rows: list[PositionRow] = []
    for i, p in enumerate(positions, start=1):
        pct = (Decimal(max(0, p.net_position)) * 100 / Decimal(tvl)) if tvl > 0 else Decimal(0)
        rows.append(PositionRow(
            rank=i,
            address=to_checksum_address(p.address),
            net=format_units(p.net_position, decimals),
            net_raw=p.net_position,
            shares=format_units(p.net_shares, share_decimals),
            percentage=pct.quantize(Decimal("0.01")),
            first_activity=_day(p.first_activity),
            last_activity=_day(p.last_activity),
            deposit_count=p.deposit_count,
            withdrawal_count=p.withdrawal_count,
        ))
    return rows


def summarize(rows: list[PositionRow], *, on_chain_tvl: Decimal | None = None) -> Summary:
    """
    Withdrawn rows count as zero. ``on_chain_tvl`` (the vault's totalAssets)
    replaces the ledger sum as the headline TVL when known; the median is the
    upper middle of the clamped amounts.
    """
    clamped = sorted(max(r.net, Decimal(0)) for r in rows)
    total = sum(clamped, Decimal(0))
    return Summary(
        depositors=len(rows),
        total_tvl=on_chain_tvl if on_chain_tvl is not None else total,
        largest=clamped[-1] if clamped else Decimal(0),
        average=(total / len(rows)) if rows else Decimal(0),
        median=clamped[len(clamped) // 2] if clamped else Decimal(0),
    )
