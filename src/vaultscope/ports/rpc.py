# vaultscope/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0


class LogProvider(Protocol):
    """Port defining the contract for an EVM log-query provider.

    Implementations raise ``RangeTooLarge`` when a span or result count exceeds
    provider limits and ``TransientNetworkError`` for any other failure.
    """

    async def get_logs(
        self,
        address: Address,
        topic0s: Sequence[Topic0],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def block_timestamp(self, block_number: int) -> int:
        """Return the block's timestamp in seconds since epoch."""


class ContractReader(Protocol):
    """Port for read-only contract calls (eth_call at the latest block)."""

    async def eth_call(self, to: Address, data: str) -> str:
        """Return the raw hex return data; raise ``ContractCallError`` on revert or empty code."""
