from __future__ import annotations
import logging
from typing import Iterable

from ..domain.models import DepositEvent, TransferEvent, WithdrawEvent
from ..domain.value_types import ZERO_ADDRESS

log = logging.getLogger(__name__)


def should_infer(deposits: int, withdraws: int, transfers: int) -> bool:
    """Inference runs only when no canonical event was decoded and transfers exist."""
    return deposits == 0 and withdraws == 0 and transfers > 0


def infer_from_transfers(transfers: Iterable[TransferEvent]) -> tuple[list[DepositEvent], list[WithdrawEvent]]:
    """
    Reinterpret share mints/burns as deposits/withdrawals.

    zero -> X is a deposit for X, X -> zero a withdrawal for X. The share
    amount stands in for the asset amount (assets = shares = value), which is
    an approximation. Transfers between two non-zero addresses are dropped.
    Pure: the same transfers always yield the same events.
    """
    deposits: list[DepositEvent] = []
    withdraws: list[WithdrawEvent] = []
    for t in transfers:
        sender, recipient = t.sender.lower(), t.recipient.lower()
        if sender == ZERO_ADDRESS and recipient != ZERO_ADDRESS:
            deposits.append(DepositEvent(t.recipient, t.value, t.value,
                                         t.block_number, t.tx_hash, t.log_index, synthetic=True))
        elif sender != ZERO_ADDRESS and recipient == ZERO_ADDRESS:
            withdraws.append(WithdrawEvent(t.sender, t.value, t.value,
                                           t.block_number, t.tx_hash, t.log_index, synthetic=True))
    log.info("converted %d deposits and %d withdrawals from Transfer events", len(deposits), len(withdraws))
    return deposits, withdraws
