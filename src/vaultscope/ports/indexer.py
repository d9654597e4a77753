# vaultscope/ports/indexer.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol
from ..domain.value_types import Address

IndexedKind = Literal["deposit", "withdraw", "transfer"]


@dataclass(slots=True, frozen=True)
class IndexedRecord:
    kind: IndexedKind
    block_number: int
    tx_hash: str
    record_id: str          # server-assigned ordering key


class IndexedEventSource(Protocol):
    """Port for a pre-indexed (GraphQL) source of vault events."""

    async def fetch_page(self, vault: Address, first: int, skip: int) -> list[IndexedRecord]:
        """Return one page of records across all kinds; an empty page ends pagination."""
