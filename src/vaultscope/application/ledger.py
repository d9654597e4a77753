from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterator

from ..domain.models import AddressPosition, ClassifiedEvent, DepositEvent, WithdrawEvent
from ..domain.value_types import Address

log = logging.getLogger(__name__)


class PositionLedger:
    """
    Address -> AddressPosition fold for one analysis run.

    ``apply`` is synchronous, so inside one event loop it never interleaves
    with another ``apply``. Only Deposit and Withdraw events move positions;
    everything else is ignored. ``net_shares`` may go negative when burns are
    replayed ahead of mints or when shares arrived by plain transfer; that is
    reported, never raised.
    """

    def __init__(self) -> None:
        self._positions: dict[Address, AddressPosition] = {}

    def _entry(self, address: Address, timestamp: int) -> AddressPosition:
        key = Address(address.lower())
        pos = self._positions.get(key)
        if pos is None:
            pos = AddressPosition(address=key, first_activity=timestamp, last_activity=timestamp)
            self._positions[key] = pos
            log.debug("new address %s", key)
        return pos

    def apply(self, event: ClassifiedEvent, timestamp: int) -> None:
        if isinstance(event, DepositEvent):
            pos = self._entry(event.owner, timestamp)
            pos.total_deposits += event.assets
            pos.net_shares += event.shares
            pos.deposit_count += 1
            pos.first_activity = min(pos.first_activity, timestamp)
            pos.last_activity = max(pos.last_activity, timestamp)
        elif isinstance(event, WithdrawEvent):
            pos = self._entry(event.owner, timestamp)
            pos.total_withdrawals += event.assets
            pos.net_shares -= event.shares
            pos.withdrawal_count += 1
            # withdrawals never move first_activity backward
            pos.last_activity = max(pos.last_activity, timestamp)

    def merge(self, other: PositionLedger) -> None:
        """Fold another ledger into this one; field-wise sums, min/max timestamps."""
        for addr, theirs in other._positions.items():
            mine = self._positions.get(addr)
            if mine is None:
                self._positions[addr] = replace(theirs)
                continue
            mine.total_deposits += theirs.total_deposits
            mine.total_withdrawals += theirs.total_withdrawals
            mine.net_shares += theirs.net_shares
            mine.deposit_count += theirs.deposit_count
            mine.withdrawal_count += theirs.withdrawal_count
            mine.first_activity = min(mine.first_activity, theirs.first_activity)
            mine.last_activity = max(mine.last_activity, theirs.last_activity)

    def get(self, address: str) -> AddressPosition | None:
        return self._positions.get(Address(address.lower()))

    def snapshot(self) -> list[AddressPosition]:
        """Copies, so callers cannot mutate the ledger."""
        return [replace(p) for p in self._positions.values()]

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and Address(address.lower()) in self._positions

    def __iter__(self) -> Iterator[AddressPosition]:
        return iter(self._positions.values())
