# vaultscope/ports/storage.py
from __future__ import annotations

from typing import Iterable, Protocol
from ..domain.models import AddressPosition


class LedgerSink(Protocol):
    """Port for persisting a ledger snapshot (e.g., Parquet)."""

    def write_positions(self, positions: Iterable[AddressPosition]) -> str:
        """Persist the snapshot and return the path written."""
